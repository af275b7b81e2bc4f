"""ntfy.sh push notification delivery.

ntfy is a free, zero-signup push notification service. Users install
the ntfy app on their phone, subscribe to a topic, and receive run
alerts as push notifications.

Docs: https://docs.ntfy.sh/
"""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from ..exceptions import NotificationError
from .base import NotificationSink, ScheduledNotification

logger = logging.getLogger("runwatch")

# alert type → ntfy emoji tags
_NTFY_TAGS = {
    "JOB_FAILURE": "x,rotating_light",
    "ANY_JOB_FAILURE": "x,rotating_light",
    "ASSET_FAILURE": "x,package",
    "JOB_SUCCESS": "white_check_mark",
}

# alert type → ntfy numeric priority
_NTFY_PRIORITY = {
    "JOB_FAILURE": "4",
    "ANY_JOB_FAILURE": "4",
    "ASSET_FAILURE": "4",
    "JOB_SUCCESS": "3",
}


class NtfySink(NotificationSink):
    """Push notifications via ntfy.sh (or self-hosted ntfy)."""

    def __init__(
        self,
        topic: str = "",
        server_url: str = "https://ntfy.sh",
    ):
        super().__init__()
        self._topic = topic
        self._server_url = server_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=15)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def request_permission(self) -> bool:
        return bool(self._topic)

    def _headers(self, notification: ScheduledNotification) -> dict:
        payload = notification.payload
        alert_type = str(payload.get("type") or "")
        headers = {
            "Title": notification.title,
            "Priority": _NTFY_PRIORITY.get(alert_type, "3"),
            "Tags": _NTFY_TAGS.get(alert_type, "bell"),
        }
        if payload.get("run_id"):
            headers["X-Run-Id"] = str(payload["run_id"])
        if payload.get("alert_id"):
            headers["X-Alert-Id"] = str(payload["alert_id"])
        return headers

    async def schedule(self, notification: ScheduledNotification) -> None:
        if not self._topic:
            raise NotificationError("ntfy topic is not configured")

        url = f"{self._server_url}/{self._topic}"
        headers = self._headers(notification)
        session = self._get_session()
        try:
            async with session.post(
                url, data=notification.body.encode(), headers=headers
            ) as resp:
                ok = resp.status < 400
                status = resp.status
        except Exception as e:
            raise NotificationError(f"ntfy error: {e}") from e

        if not ok:
            raise NotificationError(f"ntfy failed: HTTP {status}")
        logger.info(f"ntfy sent: {notification.title}")

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session:
            await self._session.close()
            self._session = None
