"""
Async key-value stores backing settings and per-tab tables.

MemoryStore lives as long as the process (the browser session equivalent);
JsonFileStore persists to a single JSON file on disk.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger("apiscope.storage")


class StorageError(Exception):
    """Raised when a store cannot be read or written."""


class MemoryStore:
    """
    In-memory async key-value store.

    Values are serialized to JSON on write and decoded on read, so callers
    never share mutable state with the store.
    """

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Cannot serialize value for {key!r}: {e}") from e

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class JsonFileStore:
    """Async key-value store persisted as one JSON object in a file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Expected a JSON object in {self.path}")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    async def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)
            logger.debug(f"Saved {key!r} to {self.path}")

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)

    def keys(self):
        return list(self._read().keys())


def tab_key(tab_id: int) -> str:
    return f"tab:{tab_id}"

