"""Periodic scheduling of evaluation passes.

Uses APScheduler's AsyncIOScheduler with an IntervalTrigger as the host
scheduler. The adapter persists the registration in the durable store so
a restarted process can restore it (``start_on_boot``), which is how the
pass keeps running after the hosting process was terminated.

Per-invocation states: Idle → Invoked → EvaluatingRules → Completed.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from enum import Enum

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]
from pydantic import BaseModel, ValidationError

from .exceptions import SchedulerError, StoreError
from .orchestrator import EvaluationOrchestrator, PassOutcome
from .storage.kv import REGISTRATION_KEY, KeyValueStore

logger = logging.getLogger("runwatch")

DEFAULT_TASK_NAME = "RUNWATCH_ALERTS_PASS"

ScheduledCallback = Callable[[], Awaitable[PassOutcome]]


class SchedulerStatus(str, Enum):
    AVAILABLE = "available"
    DENIED = "denied"
    RESTRICTED = "restricted"


class TaskOptions(BaseModel):
    minimum_interval_seconds: float = 15 * 60
    stop_on_terminate: bool = False
    start_on_boot: bool = True


class ManualTriggerResult(BaseModel):
    triggered_count: int
    errors: list[str]


class SchedulerPort(ABC):
    """Host scheduler that invokes a named callback on its own cadence."""

    @abstractmethod
    def is_registered(self, name: str) -> bool: ...

    @abstractmethod
    def register(self, name: str, callback: ScheduledCallback, options: TaskOptions) -> None: ...

    @abstractmethod
    def unregister(self, name: str) -> None: ...

    @abstractmethod
    def status(self) -> SchedulerStatus: ...


class APSchedulerPort(SchedulerPort):
    """In-process host scheduler backed by APScheduler."""

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._scheduler: AsyncIOScheduler | None = None
        self._shut_down = False
        self.last_outcome: PassOutcome | None = None

    def _get_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()
        return self._scheduler

    def start(self) -> None:
        """Start firing jobs. Must be called from inside a running event loop."""
        if self.status() is not SchedulerStatus.AVAILABLE:
            raise SchedulerError(f"Scheduler is {self.status().value}")
        scheduler = self._get_scheduler()
        if not scheduler.running:
            scheduler.start()
            logger.info("Alert scheduler started")

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Alert scheduler stopped")
        self._shut_down = True

    def is_registered(self, name: str) -> bool:
        if self._scheduler is None:
            return False
        return self._scheduler.get_job(name) is not None

    def register(self, name: str, callback: ScheduledCallback, options: TaskOptions) -> None:
        if self.status() is not SchedulerStatus.AVAILABLE:
            raise SchedulerError(f"Cannot register '{name}': scheduler is {self.status().value}")

        async def _job() -> None:
            self.last_outcome = await callback()

        self._get_scheduler().add_job(
            _job,
            trigger=IntervalTrigger(seconds=options.minimum_interval_seconds),
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def unregister(self, name: str) -> None:
        if self.is_registered(name):
            self._get_scheduler().remove_job(name)

    def status(self) -> SchedulerStatus:
        if not self._enabled:
            return SchedulerStatus.DENIED
        if self._shut_down:
            return SchedulerStatus.RESTRICTED
        return SchedulerStatus.AVAILABLE


class SchedulerAdapter:
    """Binds the orchestrator's pass to the host scheduler."""

    def __init__(
        self,
        port: SchedulerPort,
        orchestrator: EvaluationOrchestrator,
        kv: KeyValueStore | None = None,
        options: TaskOptions | None = None,
        task_name: str = DEFAULT_TASK_NAME,
    ) -> None:
        self._port = port
        self._orchestrator = orchestrator
        self._kv = kv
        self._options = options or TaskOptions()
        self._task_name = task_name

    @property
    def port(self) -> SchedulerPort:
        return self._port

    @property
    def task_name(self) -> str:
        return self._task_name

    @property
    def options(self) -> TaskOptions:
        return self._options

    def is_registered(self) -> bool:
        return self._port.is_registered(self._task_name)

    def status(self) -> SchedulerStatus:
        return self._port.status()

    async def register(self) -> bool:
        """Register the scheduled pass. Returns False if it already was."""
        if self._port.is_registered(self._task_name):
            logger.info("Background alert pass already registered")
            return False
        self._port.register(self._task_name, self.scheduled_pass, self._options)
        await self._remember(registered=True)
        logger.info(
            f"Background alert pass registered "
            f"(every {self._options.minimum_interval_seconds / 60:g} min)"
        )
        return True

    async def unregister(self) -> None:
        self._port.unregister(self._task_name)
        await self._remember(registered=False)
        logger.info("Background alert pass unregistered")

    async def restore(self) -> bool:
        """Re-register after a process restart if a registration was recorded."""
        if not self._options.start_on_boot:
            return False
        recorded = await self.recorded_registration()
        if recorded is None:
            return False
        if recorded.stop_on_terminate:
            logger.info("Recorded registration stops on terminate, not restoring")
            return False
        return await self.register()

    async def recorded_registration(self) -> TaskOptions | None:
        if self._kv is None:
            return None
        try:
            raw = await self._kv.get(REGISTRATION_KEY)
        except StoreError as e:
            logger.warning(f"Cannot read scheduler registration: {e}")
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            if data.get("task_name") != self._task_name:
                return None
            return TaskOptions.model_validate(data.get("options") or {})
        except (ValueError, AttributeError, ValidationError):
            return None

    async def _remember(self, registered: bool) -> None:
        if self._kv is None:
            return
        try:
            if registered:
                blob = {
                    "task_name": self._task_name,
                    "options": self._options.model_dump(mode="json"),
                    "registered_at": datetime.now().isoformat(),
                }
                await self._kv.set(REGISTRATION_KEY, json.dumps(blob))
            else:
                await self._kv.delete(REGISTRATION_KEY)
        except StoreError as e:
            logger.warning(f"Cannot persist scheduler registration: {e}")

    async def scheduled_pass(self) -> PassOutcome:
        """Callback invoked by the host scheduler. Reports a coarse outcome only."""
        logger.info(f"[{self._task_name}] Invoked")
        try:
            logger.debug(f"[{self._task_name}] EvaluatingRules")
            report = await self._orchestrator.run_pass()
        except Exception:
            logger.exception(f"[{self._task_name}] Completed(failed)")
            return PassOutcome.FAILED
        # A skipped pass has nothing new for the host scheduler.
        outcome = (
            PassOutcome.NO_DATA if report.outcome is PassOutcome.SKIPPED else report.outcome
        )
        logger.info(f"[{self._task_name}] Completed({outcome.value})")
        return outcome

    async def manual_trigger(self) -> ManualTriggerResult:
        """Run a pass now, outside the scheduler cadence."""
        logger.info("Triggering manual evaluation pass")
        try:
            report = await self._orchestrator.run_pass()
        except Exception as e:
            logger.exception("Error in manual evaluation pass")
            return ManualTriggerResult(triggered_count=0, errors=[str(e)])
        errors = list(report.errors)
        if report.outcome is PassOutcome.SKIPPED:
            errors.append("Another evaluation pass is in progress")
        return ManualTriggerResult(triggered_count=report.triggered_count, errors=errors)


def interval_options(minutes: float, stop_on_terminate: bool, start_on_boot: bool) -> TaskOptions:
    return TaskOptions(
        minimum_interval_seconds=timedelta(minutes=minutes).total_seconds(),
        stop_on_terminate=stop_on_terminate,
        start_on_boot=start_on_boot,
    )
