"""Run-query service — port and Dagster GraphQL client."""

from .base import RunQueryService
from .dagster import DagsterRunsClient

__all__ = ["RunQueryService", "DagsterRunsClient"]
