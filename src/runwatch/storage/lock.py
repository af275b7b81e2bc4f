"""Durable "pass in progress" flag.

The host scheduler is assumed not to overlap invocations, but a manual
trigger or a second process can. A pass takes this lock before touching
any rule; a lock older than ``stale_after`` belongs to a pass that died
and is taken over. The lock is not re-entrant: its own holder is
refused until it releases.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta

from ..exceptions import StoreError
from .kv import PASS_LOCK_KEY, KeyValueStore

logger = logging.getLogger("runwatch")


def _owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:6]}"


class PassLock:
    def __init__(
        self,
        kv: KeyValueStore,
        stale_after: timedelta = timedelta(minutes=30),
        key: str = PASS_LOCK_KEY,
    ) -> None:
        self._kv = kv
        self._stale_after = stale_after
        self._key = key
        self._owner = _owner_id()

    async def holder(self) -> tuple[str, datetime] | None:
        """Current (owner, acquired_at), or None when the lock is free."""
        raw = await self._kv.get(self._key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return str(data["owner"]), datetime.fromisoformat(data["acquired_at"])
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable pass lock")
            return None

    async def acquire(self, now: datetime | None = None) -> bool:
        now = now or datetime.now()
        try:
            held = await self.holder()
        except StoreError as e:
            # Unknown holder: proceed.
            logger.warning(f"Pass lock unreadable, proceeding: {e}")
            held = None
        if held is not None:
            owner, acquired_at = held
            if now - acquired_at < self._stale_after:
                return False
            logger.warning(
                f"Taking over stale pass lock held by {owner} "
                f"since {acquired_at.isoformat()}"
            )
        try:
            await self._kv.set(
                self._key,
                json.dumps({"owner": self._owner, "acquired_at": now.isoformat()}),
            )
        except StoreError as e:
            logger.warning(f"Pass lock not persisted, proceeding unguarded: {e}")
        return True

    async def release(self) -> None:
        try:
            held = await self.holder()
            if held is not None and held[0] == self._owner:
                await self._kv.delete(self._key)
        except StoreError as e:
            logger.warning(f"Failed to release pass lock: {e}")
