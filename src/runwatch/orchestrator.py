"""Evaluation orchestrator — one pass over every enabled rule.

A pass reads the checkpoint once, evaluates each enabled rule against
that shared boundary, dispatches triggers, writes rule metadata back,
then advances the checkpoint and refreshes the badge. The checkpoint is
only advanced after the rule loop, so a crash mid-pass re-evaluates the
same window next time; the per-rule dedup key keeps notifications
exactly-once.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from .notifications import NotificationDispatcher, NotificationSink, NotificationStore
from .rules.evaluator import AlertEvaluator
from .rules.models import AlertRule
from .rules.store import RulesStore
from .storage.checkpoint import CheckpointStore
from .storage.lock import PassLock

logger = logging.getLogger("runwatch")


class PassOutcome(str, Enum):
    NEW_DATA = "new_data"  # At least one rule triggered
    NO_DATA = "no_data"
    FAILED = "failed"
    SKIPPED = "skipped"  # Another pass holds the lock


class PassReport(BaseModel):
    outcome: PassOutcome
    evaluated: int = 0
    triggered_count: int = 0
    errors: list[str] = Field(default_factory=list)
    since: datetime | None = None
    finished_at: datetime = Field(default_factory=datetime.now)


class EvaluationOrchestrator:
    """Runs the evaluator over all enabled rules for one pass."""

    def __init__(
        self,
        rules: RulesStore,
        history: NotificationStore,
        checkpoint: CheckpointStore,
        evaluator: AlertEvaluator,
        dispatcher: NotificationDispatcher,
        sink: NotificationSink,
        lock: PassLock | None = None,
        retention_days: float | None = 7,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._rules = rules
        self._history = history
        self._checkpoint = checkpoint
        self._evaluator = evaluator
        self._dispatcher = dispatcher
        self._sink = sink
        self._lock = lock
        self._retention_days = retention_days
        self._clock = clock
        self._running = False

    async def run_pass(self) -> PassReport:
        # Set before the first await; overlapping callers in this process skip.
        if self._running:
            logger.info("Another evaluation pass is in progress, skipping")
            return PassReport(outcome=PassOutcome.SKIPPED)
        self._running = True
        try:
            if self._lock is not None and not await self._lock.acquire(self._clock()):
                logger.info("Another evaluation pass is in progress, skipping")
                return PassReport(outcome=PassOutcome.SKIPPED)
            try:
                return await self._run_pass()
            finally:
                if self._lock is not None:
                    await self._lock.release()
        finally:
            self._running = False

    async def _run_pass(self) -> PassReport:
        enabled = await self._rules.enabled()
        if not enabled:
            logger.info("No enabled alerts")
            return PassReport(outcome=PassOutcome.NO_DATA)

        since = await self._checkpoint.read(self._clock())
        logger.info(
            f"Checking {len(enabled)} alert(s) since {since.isoformat(timespec='seconds')}"
        )

        errors: list[str] = []
        triggered = 0
        for rule in enabled:
            if await self._process_rule(rule, since, errors):
                triggered += 1

        try:
            await self._checkpoint.write(self._clock())
        except Exception as e:
            logger.warning(f"Failed to advance checkpoint: {e}")
            errors.append(f"checkpoint: {e}")

        await self._housekeeping()

        logger.info(
            f"Evaluation pass completed: {len(enabled)} checked, "
            f"{triggered} triggered, {len(errors)} error(s)"
        )
        return PassReport(
            outcome=PassOutcome.NEW_DATA if triggered else PassOutcome.NO_DATA,
            evaluated=len(enabled),
            triggered_count=triggered,
            errors=errors,
            since=since,
        )

    async def _process_rule(
        self, rule: AlertRule, since: datetime, errors: list[str]
    ) -> bool:
        """Evaluate, dispatch and write back one rule. Returns True if it fired."""
        fired = False
        updates: dict[str, Any] = {}
        try:
            result = await self._evaluator.evaluate(rule, since)
            logger.debug(f"EVAL: {rule.name} — trigger={result.should_trigger}, {result.message}")
            if result.should_trigger:
                fired = True
                logger.info(f"Alert triggered: {rule.name} (run {result.run_id})")
                dispatch = await self._dispatcher.dispatch(rule, result)
                if dispatch.error:
                    errors.append(dispatch.error)
                updates["last_triggered"] = self._clock()
                updates["last_triggered_run_id"] = result.run_id
        except Exception as e:
            logger.exception(f"Processing rule '{rule.name}' ({rule.id}) failed")
            errors.append(f"{rule.name}: {e}")

        updates["last_checked"] = self._clock()
        try:
            await self._rules.update(rule.id, **updates)
        except Exception as e:
            logger.warning(f"Failed to save state for rule '{rule.name}': {e}")
            errors.append(f"{rule.name}: {e}")
        return fired

    async def _housekeeping(self) -> None:
        if self._retention_days:
            try:
                removed = await self._history.prune_older_than(
                    self._retention_days, now=self._clock()
                )
                if removed:
                    logger.info(f"Pruned {removed} old notification(s)")
            except Exception as e:
                logger.warning(f"Notification pruning failed: {e}")
        try:
            await self._sink.set_badge(await self._history.unread_count())
        except Exception as e:
            logger.warning(f"Error updating badge count: {e}")
