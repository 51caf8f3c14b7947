"""
Common utilities for SlotSniper
"""
from .config import Config, load_config
from .errors import (
    SlotSniperError,
    CooldownActiveError,
    ClickLimitReachedError,
    SessionConfigMissingError,
    SettingsError,
    PageNavigatedError,
    AgentNotReady,
    ChannelTimeout,
)
from .models import (
    SessionConfig,
    SessionState,
    SessionStatus,
    ClickControl,
    ClickCounters,
    Classification,
    Outcome,
    ClaimResult,
    ClaimStatus,
    DateWindow,
    LogEntry,
    AlertEvent,
    AlertKind,
    SessionSnapshot,
)
from .events import EventLog
from .notifications import AlertCenter
from .scheduler import ActionTimer, Ticker, RetryStrategy, SessionClock
from .settings import BackendSettingsProvider, StaticSettingsProvider, fetch_with_fallback
from .store import JsonFileStore, MemoryStore, StateStore

__all__ = [
    "Config",
    "load_config",
    "SlotSniperError",
    "CooldownActiveError",
    "ClickLimitReachedError",
    "SessionConfigMissingError",
    "SettingsError",
    "PageNavigatedError",
    "AgentNotReady",
    "ChannelTimeout",
    "SessionConfig",
    "SessionState",
    "SessionStatus",
    "ClickControl",
    "ClickCounters",
    "Classification",
    "Outcome",
    "ClaimResult",
    "ClaimStatus",
    "DateWindow",
    "LogEntry",
    "AlertEvent",
    "AlertKind",
    "SessionSnapshot",
    "EventLog",
    "AlertCenter",
    "ActionTimer",
    "Ticker",
    "RetryStrategy",
    "SessionClock",
    "BackendSettingsProvider",
    "StaticSettingsProvider",
    "fetch_with_fallback",
    "JsonFileStore",
    "MemoryStore",
    "StateStore",
]
