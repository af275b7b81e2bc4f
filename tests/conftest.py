"""Shared fakes for the engine's collaborator ports."""

from __future__ import annotations

from datetime import datetime

import pytest

from runwatch.exceptions import NotificationError
from runwatch.notifications.base import NotificationSink, ScheduledNotification
from runwatch.rules.models import RunRecord
from runwatch.runs.base import RunQueryService
from runwatch.scheduler import SchedulerPort, SchedulerStatus, TaskOptions
from runwatch.storage.kv import MemoryKeyValueStore

NOW = datetime(2026, 3, 1, 12, 0, 0)


class FakeRuns(RunQueryService):
    def __init__(self) -> None:
        self.runs: list[RunRecord] = []
        self.error: Exception | None = None
        self.calls: list[int] = []

    async def fetch_recent_runs(self, limit: int) -> list[RunRecord]:
        self.calls.append(limit)
        if self.error is not None:
            raise self.error
        return self.runs[:limit]


class FakeSink(NotificationSink):
    def __init__(self) -> None:
        super().__init__()
        self.granted = True
        self.fail = False
        self.sent: list[ScheduledNotification] = []
        self.permission_requests = 0

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        return self.granted

    async def schedule(self, notification: ScheduledNotification) -> None:
        if self.fail:
            raise NotificationError("sink unavailable")
        self.sent.append(notification)


class FakeScheduler(SchedulerPort):
    def __init__(self) -> None:
        self.tasks: dict[str, tuple] = {}
        self.register_calls = 0
        self.state = SchedulerStatus.AVAILABLE

    def is_registered(self, name: str) -> bool:
        return name in self.tasks

    def register(self, name, callback, options: TaskOptions) -> None:
        self.register_calls += 1
        self.tasks[name] = (callback, options)

    def unregister(self, name: str) -> None:
        self.tasks.pop(name, None)

    def status(self) -> SchedulerStatus:
        return self.state


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def fake_runs():
    return FakeRuns()


@pytest.fixture
def fake_sink():
    return FakeSink()


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()
