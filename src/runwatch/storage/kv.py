"""Durable key-value store for engine state.

Values are opaque strings (JSON produced by the stores that own each key).
The file backend keeps one file per key and replaces it atomically so a
crash mid-write never leaves a truncated blob behind.
"""

from __future__ import annotations

import asyncio
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from ..exceptions import StoreError

# Well-known keys, one per durable record.
RULES_KEY = "runwatch_alerts"
NOTIFICATIONS_KEY = "runwatch_alert_notifications"
CHECKPOINT_KEY = "runwatch_last_alert_check"
PASS_LOCK_KEY = "runwatch_pass_lock"
REGISTRATION_KEY = "runwatch_scheduler_registration"

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(ABC):
    """Asynchronous get/set of string blobs that survive process restart."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None:
        """Remove a key. Backends without delete overwrite with an empty blob."""
        await self.set(key, "")


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store. State is lost on exit."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileKeyValueStore(KeyValueStore):
    """One file per key under ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / f"{_UNSAFE.sub('_', key)}.json"

    def _read(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, key: str, value: str) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def get(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self._read, key)
        except OSError as e:
            raise StoreError(f"Cannot read '{key}': {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._write, key, value)
        except OSError as e:
            raise StoreError(f"Cannot write '{key}': {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove, key)
        except OSError as e:
            raise StoreError(f"Cannot delete '{key}': {e}") from e
