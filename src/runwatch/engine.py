"""AlertEngine — the surface exposed to the CLI and any UI.

Wires the stores, evaluator, dispatcher, orchestrator and scheduler
adapter together, either from a RunwatchConfig or from explicit
collaborators (tests, embedding).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from .config import RunwatchConfig
from .exceptions import RuleNotFoundError, RuleValidationError
from .notifications import (
    NotificationDispatcher,
    NotificationSink,
    NotificationStore,
    create_sink,
)
from .orchestrator import EvaluationOrchestrator, PassReport
from .rules.evaluator import DEFAULT_PAGE_SIZE, AlertEvaluator
from .rules.models import AlertNotification, AlertRule, AlertType, RunStatus
from .rules.store import RulesStore
from .runs import DagsterRunsClient, RunQueryService
from .scheduler import (
    DEFAULT_TASK_NAME,
    APSchedulerPort,
    ManualTriggerResult,
    SchedulerAdapter,
    SchedulerPort,
    TaskOptions,
    interval_options,
)
from .storage import CheckpointStore, FileKeyValueStore, KeyValueStore, PassLock

logger = logging.getLogger("runwatch")


class AlertEngine:
    def __init__(
        self,
        kv: KeyValueStore,
        runs: RunQueryService,
        sink: NotificationSink,
        scheduler: SchedulerPort,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        history_cap: int = 100,
        retention_days: float | None = 7,
        task_name: str = DEFAULT_TASK_NAME,
        task_options: TaskOptions | None = None,
        pass_lock: bool = True,
        lock_stale_after: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._kv = kv
        self._runs = runs
        self._sink = sink
        self._clock = clock
        self.rules = RulesStore(kv)
        self.history = NotificationStore(kv, cap=history_cap)
        self.checkpoint = CheckpointStore(kv)
        self.evaluator = AlertEvaluator(runs, page_size=page_size)
        self.dispatcher = NotificationDispatcher(sink, self.history, clock=clock)
        self.orchestrator = EvaluationOrchestrator(
            rules=self.rules,
            history=self.history,
            checkpoint=self.checkpoint,
            evaluator=self.evaluator,
            dispatcher=self.dispatcher,
            sink=sink,
            lock=PassLock(kv, stale_after=lock_stale_after) if pass_lock else None,
            retention_days=retention_days,
            clock=clock,
        )
        self.scheduler = SchedulerAdapter(
            scheduler,
            self.orchestrator,
            kv=kv,
            options=task_options,
            task_name=task_name,
        )

    @classmethod
    def from_config(cls, config: RunwatchConfig) -> AlertEngine:
        sched = config.scheduler
        return cls(
            kv=FileKeyValueStore(config.storage.directory),
            runs=DagsterRunsClient(
                url=config.dagster.url,
                api_token=config.dagster.api_token,
                timeout_seconds=config.dagster.timeout_seconds,
            ),
            sink=create_sink(config.notifications),
            scheduler=APSchedulerPort(enabled=sched.enabled),
            page_size=config.dagster.page_size,
            history_cap=config.notifications.history_cap,
            retention_days=config.notifications.retention_days,
            task_name=sched.task_name,
            task_options=interval_options(
                sched.minimum_interval_minutes,
                stop_on_terminate=sched.stop_on_terminate,
                start_on_boot=sched.start_on_boot,
            ),
            pass_lock=sched.pass_lock,
            lock_stale_after=timedelta(minutes=sched.lock_stale_minutes),
        )

    @property
    def sink(self) -> NotificationSink:
        return self._sink

    # ── Rules ──────────────────────────────────────────────────

    async def list_rules(self) -> list[AlertRule]:
        return await self.rules.list()

    async def get_rule(self, rule_id: str) -> AlertRule:
        rule = await self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"No alert with id '{rule_id}'")
        return rule

    async def create_rule(
        self,
        type: AlertType | str,
        target_id: str | None = None,
        target_name: str | None = None,
        name: str | None = None,
    ) -> AlertRule:
        rule = AlertRule.create(type, target_id=target_id, target_name=target_name, name=name)
        await self.rules.add(rule)
        logger.info(f"Alert created: {rule.name} ({rule.id})")
        return rule

    async def add_rule(self, rule: AlertRule) -> None:
        await self.rules.add(rule)

    async def update_rule(self, rule_id: str, **fields: Any) -> AlertRule:
        """Edit user-owned fields of a rule.

        The merged rule must pass the same checks as create_rule(). An
        unrecognized persisted type is kept unless ``type`` is being set.
        """
        unknown = set(fields) - set(AlertRule.model_fields)
        if unknown:
            raise RuleValidationError(f"Unknown rule fields: {sorted(unknown)}")
        # Run-tracking metadata belongs to the evaluation pass.
        blocked = {"last_triggered", "last_triggered_run_id", "last_checked"} & set(fields)
        if blocked:
            raise ValueError(f"Fields managed by the engine: {sorted(blocked)}")
        check_type = "type" in fields
        rule = await self.rules.update(
            rule_id,
            check=lambda merged: merged.validate_user_fields(check_type=check_type),
            **fields,
        )
        if rule is None:
            raise RuleNotFoundError(f"No alert with id '{rule_id}'")
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        return await self.rules.delete(rule_id)

    async def toggle_rule(self, rule_id: str) -> AlertRule:
        rule = await self.rules.toggle(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"No alert with id '{rule_id}'")
        return rule

    # ── Notifications ──────────────────────────────────────────

    async def list_notifications(self) -> list[AlertNotification]:
        return await self.history.list()

    async def mark_read(self, notification_id: str) -> bool:
        found = await self.history.mark_read(notification_id)
        await self._refresh_badge()
        return found

    async def mark_all_read(self) -> int:
        changed = await self.history.mark_all_read()
        await self._refresh_badge()
        return changed

    async def unread_count(self) -> int:
        return await self.history.unread_count()

    async def prune_notifications(self, days: float = 7) -> int:
        removed = await self.history.prune_older_than(days, now=self._clock())
        await self._refresh_badge()
        return removed

    async def clear_notifications(self) -> None:
        await self.history.clear()
        await self._refresh_badge()

    async def _refresh_badge(self) -> None:
        try:
            await self._sink.set_badge(await self.history.unread_count())
        except Exception as e:
            logger.warning(f"Error updating badge count: {e}")

    # ── Passes and scheduling ──────────────────────────────────

    async def run_pass(self) -> PassReport:
        return await self.orchestrator.run_pass()

    async def manual_trigger(self) -> ManualTriggerResult:
        return await self.scheduler.manual_trigger()

    async def register_scheduled_pass(self) -> bool:
        return await self.scheduler.register()

    async def unregister_scheduled_pass(self) -> None:
        await self.scheduler.unregister()

    # ── Diagnostics ────────────────────────────────────────────

    async def status(self) -> dict[str, Any]:
        now = self._clock()
        rules = await self.rules.list()
        has_checkpoint = await self.checkpoint.exists()
        checkpoint = await self.checkpoint.read(now)
        return {
            "timestamp": now.isoformat(),
            "scheduler_status": self.scheduler.status().value,
            "task_name": self.scheduler.task_name,
            "task_registered": self.scheduler.is_registered(),
            "registration_recorded": await self.scheduler.recorded_registration()
            is not None,
            "total_alerts": len(rules),
            "enabled_alerts": sum(1 for r in rules if r.enabled),
            "alerts": [
                {
                    "id": r.id,
                    "name": r.name,
                    "type": getattr(r.type, "value", r.type),
                    "enabled": r.enabled,
                    "target_id": r.target_id,
                    "last_checked": r.last_checked.isoformat() if r.last_checked else "Never",
                    "last_triggered": r.last_triggered.isoformat()
                    if r.last_triggered
                    else "Never",
                }
                for r in rules
            ],
            "last_check_time": checkpoint.isoformat() if has_checkpoint else None,
            "minutes_since_last_check": int((now - checkpoint).total_seconds() // 60)
            if has_checkpoint
            else None,
            "unread_notifications": await self.history.unread_count(),
        }

    async def recent_runs(self, limit: int = 10) -> dict[str, Any]:
        """Sample the run service the way an evaluation pass would see it."""
        since = await self.checkpoint.read(self._clock())
        runs = await self._runs.fetch_recent_runs(limit)
        return {
            "since": since.isoformat(),
            "count": len(runs),
            "recent_failures": sum(
                1
                for r in runs
                if r.status == RunStatus.FAILURE.value and r.started_since(since)
            ),
            "runs": [
                {
                    "id": r.id,
                    "job_name": r.job_name,
                    "status": r.status,
                    "start_time": r.start_time.isoformat() if r.start_time else None,
                    "is_recent": r.started_since(since),
                }
                for r in runs
            ],
        }

    async def close(self) -> None:
        await self._runs.close()
        await self._sink.close()
