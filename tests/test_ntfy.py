"""Tests for ntfy.sh notification delivery."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from runwatch.exceptions import NotificationError
from runwatch.notifications.base import ScheduledNotification
from runwatch.notifications.ntfy import NtfySink


def _notification(alert_type: str = "JOB_FAILURE") -> ScheduledNotification:
    return ScheduledNotification(
        title="ETL failures",
        body='Job "etl_job" failed',
        payload={"alert_id": "a_1", "run_id": "r1", "asset_key": None, "type": alert_type},
    )


def _mock_session(sink: NtfySink, status: int = 200) -> dict:
    captured = {"url": None, "headers": {}, "data": None}

    @asynccontextmanager
    async def mock_post(url, data=None, headers=None):
        captured["url"] = url
        captured["headers"] = headers or {}
        captured["data"] = data
        resp = AsyncMock()
        resp.status = status
        yield resp

    mock_session = AsyncMock()
    mock_session.post = mock_post
    sink._session = mock_session
    return captured


class TestNtfySink:
    @pytest.mark.asyncio
    async def test_no_topic(self):
        """No topic: no permission, and scheduling raises."""
        sink = NtfySink()
        assert await sink.request_permission() is False
        with pytest.raises(NotificationError):
            await sink.schedule(_notification())
        await sink.close()

    @pytest.mark.asyncio
    async def test_post_body_and_headers(self):
        sink = NtfySink("runs", server_url="https://ntfy.example.com/")
        captured = _mock_session(sink)

        await sink.schedule(_notification())

        assert captured["url"] == "https://ntfy.example.com/runs"
        assert captured["data"] == b'Job "etl_job" failed'
        assert captured["headers"]["Title"] == "ETL failures"
        assert captured["headers"]["Priority"] == "4"
        assert captured["headers"]["Tags"] == "x,rotating_light"
        assert captured["headers"]["X-Run-Id"] == "r1"
        assert captured["headers"]["X-Alert-Id"] == "a_1"

    @pytest.mark.asyncio
    async def test_success_priority(self):
        sink = NtfySink("runs")
        captured = _mock_session(sink)
        await sink.schedule(_notification("JOB_SUCCESS"))
        assert captured["headers"]["Priority"] == "3"
        assert captured["headers"]["Tags"] == "white_check_mark"

    @pytest.mark.asyncio
    async def test_unknown_type_defaults(self):
        sink = NtfySink("runs")
        captured = _mock_session(sink)
        await sink.schedule(_notification("JOB_TIMEOUT"))
        assert captured["headers"]["Tags"] == "bell"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        sink = NtfySink("runs")
        _mock_session(sink, status=500)
        with pytest.raises(NotificationError, match="HTTP 500"):
            await sink.schedule(_notification())

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        sink = NtfySink("runs")

        @asynccontextmanager
        async def broken_post(url, data=None, headers=None):
            raise ConnectionError("refused")
            yield

        mock_session = AsyncMock()
        mock_session.post = broken_post
        sink._session = mock_session
        with pytest.raises(NotificationError, match="refused"):
            await sink.schedule(_notification())

    @pytest.mark.asyncio
    async def test_badge_never_negative(self):
        sink = NtfySink("runs")
        await sink.set_badge(-3)
        assert sink.badge == 0

    @pytest.mark.asyncio
    async def test_close_resets_session(self):
        sink = NtfySink("runs")
        mock_session = AsyncMock()
        sink._session = mock_session
        await sink.close()
        mock_session.close.assert_awaited_once()
        assert sink._session is None
