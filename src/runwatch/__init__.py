"""runwatch — poll-based alerting for job runs."""

__version__ = "0.4.0"

from .exceptions import (
    ConfigError,
    NotificationError,
    RuleNotFoundError,
    RuleValidationError,
    RunQueryError,
    RunwatchError,
    SchedulerError,
    StoreError,
)

__all__ = [
    "__version__",
    "RunwatchError",
    "StoreError",
    "RunQueryError",
    "NotificationError",
    "SchedulerError",
    "ConfigError",
    "RuleValidationError",
    "RuleNotFoundError",
]
