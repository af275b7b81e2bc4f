"""Notification sink port — user-visible banners plus a badge counter."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger("runwatch")


class ScheduledNotification(BaseModel):
    title: str
    body: str
    payload: dict[str, Any] = Field(default_factory=dict)


class NotificationSink(ABC):
    """Delivers notifications immediately; keeps a badge count."""

    def __init__(self) -> None:
        self._badge = 0

    @property
    def badge(self) -> int:
        return self._badge

    @abstractmethod
    async def request_permission(self) -> bool: ...

    @abstractmethod
    async def schedule(self, notification: ScheduledNotification) -> None: ...

    async def set_badge(self, count: int) -> None:
        self._badge = max(0, count)

    async def close(self) -> None:
        """Release any held connections."""


class CompositeSink(NotificationSink):
    """Fan out to several sinks.

    Permission is granted if any child grants it; delivery only goes to
    children that granted. One child's failure never blocks the others.
    """

    def __init__(self, sinks: list[NotificationSink]) -> None:
        super().__init__()
        self._sinks = list(sinks)
        self._granted: list[NotificationSink] = []

    @property
    def sinks(self) -> list[NotificationSink]:
        return list(self._sinks)

    async def request_permission(self) -> bool:
        granted = []
        for sink in self._sinks:
            try:
                if await sink.request_permission():
                    granted.append(sink)
            except Exception as e:
                logger.warning(f"{type(sink).__name__} permission check failed: {e}")
        self._granted = granted
        return bool(granted)

    async def schedule(self, notification: ScheduledNotification) -> None:
        targets = self._granted or self._sinks
        results = await asyncio.gather(
            *(s.schedule(notification) for s in targets), return_exceptions=True
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        for sink, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(f"{type(sink).__name__} delivery failed: {result}")
        if targets and len(failures) == len(targets):
            raise failures[0]

    async def set_badge(self, count: int) -> None:
        await super().set_badge(count)
        for sink in self._sinks:
            try:
                await sink.set_badge(count)
            except Exception as e:
                logger.warning(f"{type(sink).__name__} badge update failed: {e}")

    async def close(self) -> None:
        for sink in self._sinks:
            await sink.close()
