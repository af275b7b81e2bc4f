"""Custom exception hierarchy for runwatch.

All runwatch exceptions inherit from RunwatchError, allowing callers
to catch broad or specific errors:

    try:
        await engine.create_rule(type="JOB_FAILURE", target_id="")
    except RuleValidationError as e:
        print(f"Bad rule: {e}")
    except RunwatchError as e:
        print(f"runwatch error: {e}")
"""

from __future__ import annotations


class RunwatchError(Exception):
    """Base exception for all runwatch errors."""


class StoreError(RunwatchError):
    """Raised when the durable key-value store cannot be read or written."""


class RunQueryError(RunwatchError):
    """Raised when the run-query service fails (transport or GraphQL error)."""


class NotificationError(RunwatchError):
    """Raised when a notification sink fails to deliver."""


class SchedulerError(RunwatchError):
    """Raised when the periodic task scheduler rejects an operation."""


class ConfigError(RunwatchError):
    """Raised when configuration is invalid or missing."""


class RuleValidationError(RunwatchError):
    """Raised when a user-created rule is missing required fields."""


class RuleNotFoundError(RunwatchError):
    """Raised when a rule id does not exist in the rule store."""
