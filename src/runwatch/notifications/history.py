"""Capped, newest-first log of fired notifications with read tracking."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta

from pydantic import ValidationError

from ..exceptions import StoreError
from ..rules.models import AlertNotification
from ..storage.kv import NOTIFICATIONS_KEY, KeyValueStore

logger = logging.getLogger("runwatch")


class NotificationStore:
    """Durable notification history.

    - Bounded (``cap`` newest entries, enforced on every append)
    - Age-based pruning via prune_older_than()
    - Read state is the only thing mutated after an entry is written
    """

    def __init__(
        self, kv: KeyValueStore, cap: int = 100, key: str = NOTIFICATIONS_KEY
    ) -> None:
        if cap < 1:
            raise ValueError("cap must be at least 1")
        self._kv = kv
        self._cap = cap
        self._key = key
        self._lock = asyncio.Lock()

    @property
    def cap(self) -> int:
        return self._cap

    async def _load(self) -> list[AlertNotification]:
        try:
            raw = await self._kv.get(self._key)
        except StoreError as e:
            logger.warning(f"Notification history unreadable: {e}")
            return []
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Notification history holds invalid JSON, resetting")
            return []
        if not isinstance(data, list):
            return []
        entries = []
        for item in data:
            try:
                entries.append(AlertNotification.model_validate(item))
            except ValidationError:
                continue
        return entries

    async def _save(self, entries: list[AlertNotification]) -> None:
        await self._kv.set(
            self._key, json.dumps([n.model_dump(mode="json") for n in entries])
        )

    async def list(self) -> list[AlertNotification]:
        return await self._load()

    async def append(self, notification: AlertNotification) -> None:
        async with self._lock:
            entries = await self._load()
            entries.insert(0, notification)
            await self._save(entries[: self._cap])

    async def mark_read(self, notification_id: str) -> bool:
        async with self._lock:
            entries = await self._load()
            for entry in entries:
                if entry.id == notification_id:
                    if not entry.read:
                        entry.read = True
                        await self._save(entries)
                    return True
        return False

    async def mark_all_read(self) -> int:
        """Mark everything read. Returns how many entries changed."""
        async with self._lock:
            entries = await self._load()
            changed = 0
            for entry in entries:
                if not entry.read:
                    entry.read = True
                    changed += 1
            if changed:
                await self._save(entries)
            return changed

    async def unread_count(self) -> int:
        return sum(1 for n in await self._load() if not n.read)

    async def prune_older_than(self, days: float, now: datetime | None = None) -> int:
        """Drop entries triggered more than ``days`` ago. Returns count removed."""
        cutoff = (now or datetime.now()) - timedelta(days=days)
        async with self._lock:
            entries = await self._load()
            kept = [n for n in entries if n.triggered_at > cutoff]
            removed = len(entries) - len(kept)
            if removed:
                await self._save(kept)
            return removed

    async def clear(self) -> None:
        async with self._lock:
            await self._save([])
