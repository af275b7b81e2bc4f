"""Tests for the AlertEngine facade."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from runwatch.config import RunwatchConfig
from runwatch.engine import AlertEngine
from runwatch.exceptions import RuleNotFoundError, RuleValidationError
from runwatch.notifications import CompositeSink
from runwatch.orchestrator import PassOutcome
from runwatch.rules.models import AlertRule, AlertType, RunRecord
from runwatch.runs import DagsterRunsClient, RunQueryService
from runwatch.scheduler import APSchedulerPort
from runwatch.storage import FileKeyValueStore

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def engine(kv, fake_runs, fake_sink, fake_scheduler):
    return AlertEngine(kv, fake_runs, fake_sink, fake_scheduler, clock=lambda: NOW)


def _failure(id: str, job: str = "etl_job", minutes_ago: float = 10) -> RunRecord:
    return RunRecord(
        id=id, job_name=job, status="FAILURE", start_time=NOW - timedelta(minutes=minutes_ago)
    )


class SlowRuns(RunQueryService):
    def __init__(self, runs: list[RunRecord]) -> None:
        self.runs = runs

    async def fetch_recent_runs(self, limit: int) -> list[RunRecord]:
        await asyncio.sleep(0.05)
        return self.runs[:limit]


class TestRuleManagement:
    @pytest.mark.asyncio
    async def test_create_and_list(self, engine):
        rule = await engine.create_rule("JOB_FAILURE", target_id="etl_job")
        assert [r.id for r in await engine.list_rules()] == [rule.id]
        assert (await engine.get_rule(rule.id)).name == "Job Failure: etl_job"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid(self, engine):
        with pytest.raises(RuleValidationError):
            await engine.create_rule("JOB_FAILURE")
        assert await engine.list_rules() == []

    @pytest.mark.asyncio
    async def test_missing_rule(self, engine):
        with pytest.raises(RuleNotFoundError):
            await engine.get_rule("a_missing")
        with pytest.raises(RuleNotFoundError):
            await engine.toggle_rule("a_missing")
        with pytest.raises(RuleNotFoundError):
            await engine.update_rule("a_missing", name="x")
        assert await engine.delete_rule("a_missing") is False

    @pytest.mark.asyncio
    async def test_update_rejects_run_metadata(self, engine):
        rule = await engine.create_rule("ANY_JOB_FAILURE")
        with pytest.raises(ValueError):
            await engine.update_rule(rule.id, last_triggered_run_id="r1")

    @pytest.mark.asyncio
    async def test_update_rejects_unusable_rule(self, engine):
        rule = await engine.create_rule("JOB_FAILURE", target_id="etl_job")
        with pytest.raises(RuleValidationError):
            await engine.update_rule(rule.id, name="", target_id="", type="BOGUS")
        with pytest.raises(RuleValidationError):
            await engine.update_rule(rule.id, name="   ")
        with pytest.raises(RuleValidationError):
            await engine.update_rule(rule.id, target_id="")
        with pytest.raises(RuleValidationError):
            await engine.update_rule(rule.id, type="BOGUS")
        assert await engine.get_rule(rule.id) == rule

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_and_invalid_fields(self, engine):
        rule = await engine.create_rule("ANY_JOB_FAILURE")
        with pytest.raises(RuleValidationError, match="colour"):
            await engine.update_rule(rule.id, colour="red")
        with pytest.raises(RuleValidationError):
            await engine.update_rule(rule.id, enabled="sometimes")
        assert (await engine.get_rule(rule.id)).enabled is True

    @pytest.mark.asyncio
    async def test_update_changes_type_and_target(self, engine):
        rule = await engine.create_rule("ANY_JOB_FAILURE")
        updated = await engine.update_rule(rule.id, type="JOB_SUCCESS", target_id="etl_job")
        assert updated.type is AlertType.JOB_SUCCESS
        assert updated.target_id == "etl_job"

    @pytest.mark.asyncio
    async def test_rename_keeps_unrecognized_persisted_type(self, engine):
        await engine.add_rule(AlertRule(id="a_future", name="Future", type="JOB_TIMEOUT"))
        renamed = await engine.update_rule("a_future", name="Still future")
        assert renamed.type == "JOB_TIMEOUT"

    @pytest.mark.asyncio
    async def test_rename_and_toggle(self, engine):
        rule = await engine.create_rule("ANY_JOB_FAILURE")
        renamed = await engine.update_rule(rule.id, name="Everything")
        toggled = await engine.toggle_rule(rule.id)
        assert renamed.name == "Everything"
        assert toggled.enabled is False
        assert toggled.name == "Everything"


class TestPassesAndNotifications:
    @pytest.mark.asyncio
    async def test_manual_trigger_then_read(self, engine, fake_runs, fake_sink):
        fake_runs.runs = [_failure("r1")]
        await engine.create_rule(AlertType.JOB_FAILURE, target_id="etl_job")

        result = await engine.manual_trigger()
        assert result.triggered_count == 1
        assert result.errors == []
        assert await engine.unread_count() == 1
        assert fake_sink.badge == 1

        [note] = await engine.list_notifications()
        assert await engine.mark_read(note.id) is True
        assert fake_sink.badge == 0

    @pytest.mark.asyncio
    async def test_mark_all_and_clear_refresh_badge(self, engine, fake_runs, fake_sink):
        fake_runs.runs = [_failure("r1"), _failure("r2", job="report")]
        await engine.create_rule("ANY_JOB_FAILURE")
        await engine.create_rule("JOB_FAILURE", target_id="report")
        await engine.run_pass()
        assert fake_sink.badge == 2
        assert await engine.mark_all_read() == 2
        assert fake_sink.badge == 0
        await engine.clear_notifications()
        assert await engine.list_notifications() == []

    @pytest.mark.asyncio
    async def test_prune_notifications(self, engine, fake_runs):
        fake_runs.runs = [_failure("r1")]
        await engine.create_rule("ANY_JOB_FAILURE")
        await engine.run_pass()
        assert await engine.prune_notifications(days=7) == 0
        assert await engine.prune_notifications(days=0) == 1

    @pytest.mark.asyncio
    async def test_run_pass_report(self, engine, fake_runs):
        await engine.create_rule("ANY_JOB_FAILURE")
        report = await engine.run_pass()
        assert report.outcome is PassOutcome.NO_DATA
        assert report.evaluated == 1

    @pytest.mark.asyncio
    async def test_manual_trigger_during_scheduled_pass(self, kv, fake_sink, fake_scheduler):
        engine = AlertEngine(
            kv, SlowRuns([_failure("r1")]), fake_sink, fake_scheduler, clock=lambda: NOW
        )
        await engine.create_rule("JOB_FAILURE", target_id="etl_job")

        report, manual = await asyncio.gather(engine.run_pass(), engine.manual_trigger())

        assert report.triggered_count == 1
        assert manual.triggered_count == 0
        assert manual.errors == ["Another evaluation pass is in progress"]
        assert len(fake_sink.sent) == 1
        assert len(await engine.list_notifications()) == 1

    @pytest.mark.asyncio
    async def test_register_scheduled_pass(self, engine, fake_scheduler):
        assert await engine.register_scheduled_pass() is True
        assert await engine.register_scheduled_pass() is False
        await engine.unregister_scheduled_pass()
        assert fake_scheduler.tasks == {}


class TestDiagnostics:
    @pytest.mark.asyncio
    async def test_status_before_first_pass(self, engine):
        await engine.create_rule("ANY_JOB_FAILURE")
        info = await engine.status()
        assert info["scheduler_status"] == "available"
        assert info["total_alerts"] == 1
        assert info["enabled_alerts"] == 1
        assert info["last_check_time"] is None
        assert info["minutes_since_last_check"] is None
        assert info["alerts"][0]["last_checked"] == "Never"
        assert info["task_registered"] is False

    @pytest.mark.asyncio
    async def test_status_after_pass(self, kv, fake_runs, fake_sink, fake_scheduler):
        clock = {"now": NOW}
        engine = AlertEngine(kv, fake_runs, fake_sink, fake_scheduler, clock=lambda: clock["now"])
        await engine.create_rule("ANY_JOB_FAILURE")
        await engine.register_scheduled_pass()
        await engine.run_pass()
        clock["now"] = NOW + timedelta(minutes=20)

        info = await engine.status()
        assert info["last_check_time"] == NOW.isoformat()
        assert info["minutes_since_last_check"] == 20
        assert info["task_registered"] is True
        assert info["registration_recorded"] is True
        assert info["alerts"][0]["last_checked"] == NOW.isoformat()

    @pytest.mark.asyncio
    async def test_recent_runs(self, engine, fake_runs):
        fake_runs.runs = [
            _failure("r2", minutes_ago=5),
            _failure("r1", minutes_ago=90),
            RunRecord(id="r0", job_name="etl_job", status="SUCCESS"),
        ]
        info = await engine.recent_runs(limit=10)
        assert info["count"] == 3
        assert info["recent_failures"] == 1
        assert [r["is_recent"] for r in info["runs"]] == [True, False, False]
        assert info["runs"][2]["start_time"] is None


class TestFromConfig:
    def test_builds_real_adapters(self, tmp_path):
        config = RunwatchConfig()
        config.storage.directory = str(tmp_path / "state")
        config.dagster.url = "http://dagster.local/graphql"
        config.notifications.ntfy_topic = "runs"

        engine = AlertEngine.from_config(config)

        assert isinstance(engine._kv, FileKeyValueStore)
        assert isinstance(engine._runs, DagsterRunsClient)
        assert isinstance(engine.sink, CompositeSink)
        assert isinstance(engine.scheduler.port, APSchedulerPort)
        assert engine.scheduler.options.minimum_interval_seconds == 900
        assert engine.history.cap == 100
