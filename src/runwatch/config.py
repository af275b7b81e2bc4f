"""Configuration loading and validation."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigError

DEFAULT_CONFIG_PATH = "~/.runwatch/config.yaml"


class DagsterConfig(BaseModel):
    url: str = ""  # GraphQL endpoint, e.g. https://acme.dagster.cloud/prod/graphql
    api_token: str = ""
    timeout_seconds: float = 15.0
    page_size: int = 50  # Runs fetched per evaluation


class StorageConfig(BaseModel):
    directory: str = "~/.runwatch/state"


class NotificationsConfig(BaseModel):
    desktop_enabled: bool = True
    ntfy_topic: str = ""
    ntfy_server_url: str = "https://ntfy.sh"
    history_cap: int = 100
    retention_days: int = 7


class SchedulerConfig(BaseModel):
    enabled: bool = True
    task_name: str = "RUNWATCH_ALERTS_PASS"
    minimum_interval_minutes: float = 15.0
    stop_on_terminate: bool = False
    start_on_boot: bool = True
    pass_lock: bool = True
    lock_stale_minutes: float = 30.0


class RunwatchConfig(BaseModel):
    dagster: DagsterConfig = Field(default_factory=DagsterConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} with environment variable values."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    return re.sub(r"\$\{(\w+)\}", replacer, text)


def _config_from_env() -> RunwatchConfig:
    """Build config from environment variables (for container deployment)."""
    interval = os.environ.get("RUNWATCH_INTERVAL_MINUTES", "")
    try:
        return RunwatchConfig(
            dagster=DagsterConfig(
                url=os.environ.get("RUNWATCH_DAGSTER_URL", ""),
                api_token=os.environ.get("RUNWATCH_DAGSTER_TOKEN", ""),
            ),
            storage=StorageConfig(
                directory=os.environ.get("RUNWATCH_STATE_DIR", "~/.runwatch/state"),
            ),
            notifications=NotificationsConfig(
                ntfy_topic=os.environ.get("RUNWATCH_NTFY_TOPIC", ""),
            ),
            scheduler=SchedulerConfig(
                minimum_interval_minutes=float(interval) if interval else 15.0,
            ),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid environment configuration: {e}") from e


def _resolve(path: str | Path | None) -> Path:
    return Path(path or DEFAULT_CONFIG_PATH).expanduser()


def load_config(path: str | Path | None = None) -> RunwatchConfig:
    """Load config from YAML file, env vars, or defaults.

    Priority: config.yaml (with ${ENV} interpolation) > env vars > defaults.
    """
    path = _resolve(path)

    if not path.exists():
        if os.environ.get("RUNWATCH_HEADLESS") or os.environ.get(
            "RUNWATCH_DAGSTER_URL"
        ):
            return _config_from_env()
        return RunwatchConfig()

    raw_text = path.read_text()
    interpolated = _interpolate_env_vars(raw_text)
    try:
        data = yaml.safe_load(interpolated)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e
    if data is None:
        return RunwatchConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    try:
        return RunwatchConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {path}: {e}") from e


def save_config(config: RunwatchConfig, path: str | Path | None = None) -> Path:
    """Save config to YAML file."""
    path = _resolve(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump()
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    return path
