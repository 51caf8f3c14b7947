"""
Persistent state store for SlotSniper

Holds one small JSON blob; last write wins.
"""
import json
import logging
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Get/set a JSON-serialisable blob"""

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored blob, or None if nothing usable is stored"""
        pass

    @abstractmethod
    def save(self, data: Dict[str, Any]):
        """Replace the stored blob"""
        pass


class JsonFileStore(StateStore):
    """Stores the blob in a JSON file"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None

        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load state from {self.path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Ignoring state file {self.path}: expected an object")
            return None

        return data

    def save(self, data: Dict[str, Any]):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            # Write then rename so a crash mid-write never leaves half a file
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, 'w') as f:
                json.dump(data, f, indent=2, default=str)
            tmp_path.replace(self.path)

            logger.debug(f"State saved to {self.path}")

        except OSError as e:
            logger.error(f"Failed to save state to {self.path}: {e}")


class MemoryStore(StateStore):
    """Keeps the blob in memory (tests, dry runs)"""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = deepcopy(data) if data is not None else None
        self.saves = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return deepcopy(self.data) if self.data is not None else None

    def save(self, data: Dict[str, Any]):
        self.data = deepcopy(data)
        self.saves += 1
