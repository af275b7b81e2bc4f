"""Tests for CompositeSink fan-out and create_sink()."""

from __future__ import annotations

import pytest

from runwatch.config import NotificationsConfig
from runwatch.exceptions import NotificationError
from runwatch.notifications import CompositeSink, DesktopSink, NtfySink, create_sink
from runwatch.notifications.base import NotificationSink, ScheduledNotification


class RecordingSink(NotificationSink):
    def __init__(self, granted: bool = True, fail: bool = False) -> None:
        super().__init__()
        self.granted = granted
        self.fail = fail
        self.sent: list[ScheduledNotification] = []
        self.closed = False

    async def request_permission(self) -> bool:
        return self.granted

    async def schedule(self, notification: ScheduledNotification) -> None:
        if self.fail:
            raise NotificationError("down")
        self.sent.append(notification)

    async def close(self) -> None:
        self.closed = True


_NOTE = ScheduledNotification(title="t", body="b")


class TestCompositeSink:
    @pytest.mark.asyncio
    async def test_permission_if_any_child_grants(self):
        sink = CompositeSink([RecordingSink(granted=False), RecordingSink()])
        assert await sink.request_permission() is True

    @pytest.mark.asyncio
    async def test_no_children_no_permission(self):
        assert await CompositeSink([]).request_permission() is False

    @pytest.mark.asyncio
    async def test_delivers_only_to_granted(self):
        denied, granted = RecordingSink(granted=False), RecordingSink()
        sink = CompositeSink([denied, granted])
        await sink.request_permission()
        await sink.schedule(_NOTE)
        assert denied.sent == []
        assert granted.sent == [_NOTE]

    @pytest.mark.asyncio
    async def test_partial_failure_tolerated(self):
        broken, ok = RecordingSink(fail=True), RecordingSink()
        sink = CompositeSink([broken, ok])
        await sink.request_permission()
        await sink.schedule(_NOTE)
        assert ok.sent == [_NOTE]

    @pytest.mark.asyncio
    async def test_total_failure_raises(self):
        sink = CompositeSink([RecordingSink(fail=True), RecordingSink(fail=True)])
        await sink.request_permission()
        with pytest.raises(NotificationError):
            await sink.schedule(_NOTE)

    @pytest.mark.asyncio
    async def test_badge_and_close_fan_out(self):
        children = [RecordingSink(), RecordingSink()]
        sink = CompositeSink(children)
        await sink.set_badge(4)
        assert sink.badge == 4
        assert [c.badge for c in children] == [4, 4]
        await sink.close()
        assert all(c.closed for c in children)


class TestCreateSink:
    def test_desktop_only_by_default(self):
        sink = create_sink(NotificationsConfig())
        assert [type(s) for s in sink.sinks] == [DesktopSink]

    def test_ntfy_added_with_topic(self):
        sink = create_sink(NotificationsConfig(desktop_enabled=False, ntfy_topic="runs"))
        assert [type(s) for s in sink.sinks] == [NtfySink]
