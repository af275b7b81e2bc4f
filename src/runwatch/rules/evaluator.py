"""Alert evaluator — decides whether one rule newly holds.

Every supported rule type has the same shape: fetch a bounded window of
recent runs, filter by target, status, recency and dedup key, and credit
the first surviving run (the service returns newest first). Conditions
older than the window are invisible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from .models import AlertEvaluationResult, AlertRule, AlertType, RunRecord, RunStatus

if TYPE_CHECKING:
    from ..runs.base import RunQueryService

logger = logging.getLogger("runwatch")

DEFAULT_PAGE_SIZE = 50

# Dagster's implicit job for ad-hoc asset materializations.
ASSET_JOB_NAME = "__ASSET_JOB"


@dataclass(frozen=True)
class RunCondition:
    """How one alert type matches runs and phrases its message."""

    status: RunStatus
    noun: str  # "Job" | "Asset"
    verb: str
    targeted: bool = True
    matches_target: Callable[[RunRecord, str], bool] = (
        lambda run, target: run.job_name == target
    )
    asset_key: bool = False


def _asset_run_matches(run: RunRecord, target: str) -> bool:
    return run.job_name in (target, ASSET_JOB_NAME)


CONDITIONS: dict[AlertType, RunCondition] = {
    AlertType.JOB_FAILURE: RunCondition(RunStatus.FAILURE, "Job", "failed"),
    AlertType.JOB_SUCCESS: RunCondition(
        RunStatus.SUCCESS, "Job", "completed successfully"
    ),
    AlertType.ANY_JOB_FAILURE: RunCondition(
        RunStatus.FAILURE, "Job", "failed", targeted=False
    ),
    AlertType.ASSET_FAILURE: RunCondition(
        RunStatus.FAILURE,
        "Asset",
        "materialization failed",
        matches_target=_asset_run_matches,
        asset_key=True,
    ),
}


def _no_trigger(message: str) -> AlertEvaluationResult:
    return AlertEvaluationResult(should_trigger=False, message=message)


class AlertEvaluator:
    """Evaluates rules against the run-query service. Never raises."""

    def __init__(self, runs: RunQueryService, page_size: int = DEFAULT_PAGE_SIZE):
        self._runs = runs
        self._page_size = page_size

    async def evaluate(self, rule: AlertRule, since: datetime) -> AlertEvaluationResult:
        try:
            return await self._evaluate(rule, since)
        except Exception as e:
            logger.warning(f"Evaluation of rule '{rule.name}' ({rule.id}) failed: {e}")
            return _no_trigger("Error evaluating alert")

    async def _evaluate(self, rule: AlertRule, since: datetime) -> AlertEvaluationResult:
        condition = CONDITIONS.get(rule.type) if isinstance(rule.type, AlertType) else None
        if condition is None:
            logger.info(f"Rule '{rule.name}' has unsupported type {rule.type!s}, skipping")
            return _no_trigger(f"Unsupported alert type: {_type_value(rule.type)}")

        target = (rule.target_id or "").strip()
        if condition.targeted and not target:
            logger.warning(f"Rule '{rule.name}' ({rule.id}) has no target, skipping")
            return _no_trigger("Alert has no target")

        runs = await self._runs.fetch_recent_runs(self._page_size)
        if not runs:
            return _no_trigger("No runs found")

        for run in runs:
            if condition.targeted and not condition.matches_target(run, target):
                continue
            if run.status != condition.status.value:
                continue
            if not run.started_since(since):
                continue
            if run.id == rule.last_triggered_run_id:
                continue
            return self._triggered(rule, condition, run)

        if condition.status is RunStatus.SUCCESS:
            return _no_trigger("No successes detected")
        return _no_trigger("No failures detected")

    @staticmethod
    def _triggered(
        rule: AlertRule, condition: RunCondition, run: RunRecord
    ) -> AlertEvaluationResult:
        subject = rule.display_target or run.job_name
        asset_key = None
        if condition.asset_key and rule.target_id:
            asset_key = [p for p in rule.target_id.split("/") if p]
        return AlertEvaluationResult(
            should_trigger=True,
            run_id=run.id,
            asset_key=asset_key,
            message=f'{condition.noun} "{subject}" {condition.verb}',
        )


def _type_value(value: AlertType | str) -> str:
    return value.value if isinstance(value, AlertType) else str(value)
