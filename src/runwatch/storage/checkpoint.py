"""The "evaluated up through" timestamp shared by every rule in a pass."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..exceptions import StoreError
from .kv import CHECKPOINT_KEY, KeyValueStore

logger = logging.getLogger("runwatch")

# A fresh install looks back this far instead of over all history.
DEFAULT_LOOKBACK = timedelta(hours=1)


class CheckpointStore:
    def __init__(self, kv: KeyValueStore, key: str = CHECKPOINT_KEY) -> None:
        self._kv = kv
        self._key = key

    async def _stored(self) -> datetime | None:
        try:
            raw = await self._kv.get(self._key)
        except StoreError as e:
            logger.warning(f"Checkpoint unreadable: {e}")
            return None
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw.strip())
        except ValueError:
            logger.warning(f"Ignoring malformed checkpoint value: {raw[:40]!r}")
            return None

    async def read(self, now: datetime | None = None) -> datetime:
        stored = await self._stored()
        if stored is None:
            return (now or datetime.now()) - DEFAULT_LOOKBACK
        return stored

    async def exists(self) -> bool:
        return await self._stored() is not None

    async def write(self, timestamp: datetime) -> datetime:
        """Advance the checkpoint. Never moves it backwards.

        Returns the value now stored.
        """
        current = await self._stored()
        if current is not None and timestamp < current:
            logger.debug(
                f"Checkpoint {timestamp.isoformat()} is older than stored "
                f"{current.isoformat()}, keeping stored value"
            )
            return current
        await self._kv.set(self._key, timestamp.isoformat())
        return timestamp
