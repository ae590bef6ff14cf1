"""Key-value persistence used by the tracker and the alert evaluator.

The engine only needs ``get(key) -> str | None`` and ``set(key, value)``.
Values are JSON documents serialized to strings so the backing store can be
swapped freely (in-memory, a JSON file on disk, browser storage behind a
bridge, ...).
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal string key-value capability."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored string or None when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    def delete(self, key: str) -> None:
        """Erase ``key``. Stores without a native delete write JSON null."""
        self.set(key, "null")


class MemoryStore(KeyValueStore):
    """Process-local store, mostly useful for tests and replays."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())


class JsonFileStore(KeyValueStore):
    """Store every key in a single JSON document on disk.

    The file is re-read on every ``get`` so that several processes sharing a
    state file see each other's writes. Writes go through a temporary file
    and an atomic replace.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            # the next write replaces the broken document
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed state file %s", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)


def load_json(store: Optional[KeyValueStore], key: str) -> Any:
    """Read and decode ``key``. Any failure is logged and yields None."""
    if store is None:
        return None
    try:
        raw = store.get(key)
        if raw is None:
            return None
        return json.loads(raw)
    except Exception as e:
        logger.warning("Failed to load '%s' from store: %s", key, e)
        return None


def save_json(store: Optional[KeyValueStore], key: str, value: Any) -> bool:
    """Encode and write ``value``. Failures are logged, never raised."""
    if store is None:
        return False
    try:
        store.set(key, json.dumps(value))
        return True
    except Exception as e:
        logger.error("Failed to persist '%s': %s", key, e)
        return False


def delete_key(store: Optional[KeyValueStore], key: str) -> None:
    """Erase ``key``, logging failures."""
    if store is None:
        return
    try:
        store.delete(key)
    except Exception as e:
        logger.error("Failed to delete '%s' from store: %s", key, e)
