"""Local key-value storage for session and onboarding state.

Values are strings, like the device storage the mobile client used. The file
store keeps every key in one JSON object on disk.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

logger = structlog.get_logger()


class KeyValueStore(ABC):
    """Async string key-value store."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None: ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def remove_item(self, key: str) -> None: ...


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store, used in tests and when persistence is off."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class FileKeyValueStore(KeyValueStore):
    """JSON-file backed store."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            msg = f"Storage file {self.path} does not contain a JSON object"
            raise ValueError(msg)
        return data

    def _write_all(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    async def get_item(self, key: str) -> str | None:
        return self._read_all().get(key)

    async def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)
        logger.debug("storage_item_set", key=key, path=str(self.path))

    async def remove_item(self, key: str) -> None:
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)
