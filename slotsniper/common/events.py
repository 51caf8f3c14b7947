"""
Bounded event log for session history and failures
"""
import logging
from collections import deque
from typing import Any, Deque, Iterable, List

from .models import LogEntry

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class EventLog:
    """
    Ring buffer of session events, newest first.

    Every record is also written to the standard logger so the console and
    log file see the same history.
    """

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._entries: Deque[LogEntry] = deque(maxlen=max_entries)

    def record(self, level: str, message: str, **data: Any) -> LogEntry:
        entry = LogEntry(level=level, message=message, data=data)
        self._entries.appendleft(entry)
        logger.log(_LEVELS.get(level, logging.INFO), f"{message} {data}" if data else message)
        return entry

    def load(self, entries: Iterable[LogEntry]):
        self._entries = deque(entries, maxlen=self.max_entries)

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
