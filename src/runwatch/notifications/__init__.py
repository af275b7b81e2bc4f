"""Notification dispatch for triggered alert rules.

Turns a positive evaluation into:
- a banner on the configured sink(s) ("desktop", "ntfy", or both)
- an entry in the durable notification history

The dispatcher is the only writer of history content; read state is
changed through NotificationStore directly.
"""

from __future__ import annotations

__all__ = [
    "CompositeSink",
    "DesktopSink",
    "DispatchResult",
    "NotificationDispatcher",
    "NotificationSink",
    "NotificationStore",
    "NtfySink",
    "ScheduledNotification",
    "create_sink",
]

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..config import NotificationsConfig
from ..rules.models import (
    AlertEvaluationResult,
    AlertNotification,
    AlertRule,
    AlertType,
)
from .base import CompositeSink, NotificationSink, ScheduledNotification
from .desktop import DesktopSink
from .history import NotificationStore
from .ntfy import NtfySink

logger = logging.getLogger("runwatch")


def create_sink(config: NotificationsConfig) -> CompositeSink:
    """Build the sink fan-out described by the notifications config."""
    sinks: list[NotificationSink] = []
    if config.desktop_enabled:
        sinks.append(DesktopSink())
    if config.ntfy_topic:
        sinks.append(NtfySink(topic=config.ntfy_topic, server_url=config.ntfy_server_url))
    return CompositeSink(sinks)


@dataclass
class DispatchResult:
    delivered: bool
    notification: AlertNotification | None = None
    error: str | None = None


class NotificationDispatcher:
    """Deliver one trigger to the sink and record it in history. Never raises."""

    def __init__(
        self,
        sink: NotificationSink,
        history: NotificationStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._sink = sink
        self._history = history
        self._clock = clock
        self._permission_granted = False

    async def _ensure_permission(self) -> bool:
        if self._permission_granted:
            return True
        try:
            self._permission_granted = await self._sink.request_permission()
        except Exception as e:
            logger.warning(f"Notification permission request failed: {e}")
            return False
        return self._permission_granted

    async def dispatch(
        self, rule: AlertRule, result: AlertEvaluationResult
    ) -> DispatchResult:
        if not await self._ensure_permission():
            logger.info(
                f"Cannot send notification for '{rule.name}' - permission not granted"
            )
            return DispatchResult(delivered=False)

        alert_type = rule.type.value if isinstance(rule.type, AlertType) else str(rule.type)
        notification = ScheduledNotification(
            title=rule.name,
            body=result.message,
            payload={
                "alert_id": rule.id,
                "run_id": result.run_id,
                "asset_key": result.asset_key,
                "type": alert_type,
            },
        )
        try:
            await self._sink.schedule(notification)
        except Exception as e:
            logger.warning(f"Notification for '{rule.name}' failed: {e}")
            return DispatchResult(delivered=False, error=f"{rule.name}: {e}")

        entry = AlertNotification(
            alert_id=rule.id,
            alert_name=rule.name,
            type=rule.type,
            target_name=rule.target_name,
            triggered_at=self._clock(),
            run_id=result.run_id,
            asset_key=result.asset_key,
            message=result.message,
        )
        try:
            await self._history.append(entry)
        except Exception as e:
            logger.warning(f"Notification sent but history not saved: {e}")
            return DispatchResult(
                delivered=True, notification=entry, error=f"{rule.name}: {e}"
            )

        logger.info(f"Alert notification sent: {rule.name}: {result.message}")
        return DispatchResult(delivered=True, notification=entry)
