"""Dagster GraphQL client for recent runs.

POSTs the ``runsOrError`` query to a Dagster (OSS or Dagster+) GraphQL
endpoint. Dagster+ deployments need an API token, sent in the
``Dagster-Cloud-Api-Token`` header.
"""

from __future__ import annotations

import logging

import aiohttp
from pydantic import ValidationError

from ..exceptions import RunQueryError
from ..rules.models import RunRecord
from .base import RunQueryService

logger = logging.getLogger("runwatch")

RUNS_QUERY = """
query RecentRuns($limit: Int) {
  runsOrError(limit: $limit) {
    __typename
    ... on Runs {
      results {
        id
        runId
        status
        startTime
        endTime
        pipelineName
      }
    }
    ... on PythonError {
      message
    }
    ... on InvalidPipelineRunsFilterError {
      message
    }
  }
}
"""


def _to_record(raw: dict) -> RunRecord | None:
    run_id = raw.get("id") or raw.get("runId")
    if not run_id:
        return None
    try:
        return RunRecord(
            id=str(run_id),
            job_name=str(raw.get("pipelineName") or ""),
            status=str(raw.get("status") or ""),
            start_time=raw.get("startTime"),
        )
    except ValidationError:
        return None


class DagsterRunsClient(RunQueryService):
    """Fetch recent runs from a Dagster GraphQL endpoint."""

    def __init__(
        self,
        url: str,
        api_token: str = "",
        timeout_seconds: float = 15.0,
    ):
        self._url = url
        self._api_token = api_token
        self._timeout = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Dagster-Cloud-Api-Token"] = self._api_token
        return headers

    async def fetch_recent_runs(self, limit: int) -> list[RunRecord]:
        if not self._url:
            raise RunQueryError("Dagster URL is not configured")

        session = self._get_session()
        body = {"query": RUNS_QUERY, "variables": {"limit": limit}}
        try:
            async with session.post(
                self._url, json=body, headers=self._headers()
            ) as resp:
                if resp.status >= 400:
                    raise RunQueryError(f"Dagster returned HTTP {resp.status}")
                payload = await resp.json(content_type=None)
        except RunQueryError:
            raise
        except Exception as e:
            raise RunQueryError(f"Dagster request failed: {e}") from e

        if not isinstance(payload, dict):
            raise RunQueryError("Dagster returned a non-object response")
        if payload.get("errors"):
            first = payload["errors"][0]
            message = first.get("message", first) if isinstance(first, dict) else first
            raise RunQueryError(f"GraphQL error: {message}")

        result = (payload.get("data") or {}).get("runsOrError") or {}
        typename = result.get("__typename")
        if typename and typename != "Runs":
            raise RunQueryError(f"{typename}: {result.get('message', 'unknown error')}")

        records = []
        for raw in result.get("results") or []:
            record = _to_record(raw) if isinstance(raw, dict) else None
            if record is None:
                logger.debug("Skipping run without an id")
                continue
            records.append(record)
        return records

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session:
            await self._session.close()
            self._session = None
