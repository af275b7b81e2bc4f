"""Run-query port — the read-only source of recent executions."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..rules.models import RunRecord


class RunQueryService(ABC):
    """Returns the most recent runs, newest first.

    Implementations return an empty list when there is no data and raise
    RunQueryError on transport or protocol failures.
    """

    @abstractmethod
    async def fetch_recent_runs(self, limit: int) -> list[RunRecord]: ...

    async def close(self) -> None:
        """Release any held connections."""
