"""Pydantic models for alert rules, evaluations, notifications and runs."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from ..exceptions import RuleValidationError


class AlertType(str, Enum):
    JOB_FAILURE = "JOB_FAILURE"
    JOB_SUCCESS = "JOB_SUCCESS"
    ANY_JOB_FAILURE = "ANY_JOB_FAILURE"
    ASSET_FAILURE = "ASSET_FAILURE"
    ASSET_SUCCESS = "ASSET_SUCCESS"
    ASSET_CHECK_ERROR = "ASSET_CHECK_ERROR"

    @property
    def requires_target(self) -> bool:
        return self is not AlertType.ANY_JOB_FAILURE

    @property
    def label(self) -> str:
        return _TYPE_LABELS[self]


_TYPE_LABELS = {
    AlertType.JOB_FAILURE: "Job Failure",
    AlertType.JOB_SUCCESS: "Job Success",
    AlertType.ANY_JOB_FAILURE: "Any Job Failure",
    AlertType.ASSET_FAILURE: "Asset Failure",
    AlertType.ASSET_SUCCESS: "Asset Success",
    AlertType.ASSET_CHECK_ERROR: "Asset Check Error",
}


def parse_alert_type(value: object) -> AlertType | str:
    """Known values become AlertType; anything else is kept verbatim."""
    if isinstance(value, AlertType):
        return value
    text = str(value)
    try:
        return AlertType(text)
    except ValueError:
        return text


class RunStatus(str, Enum):
    QUEUED = "QUEUED"
    NOT_STARTED = "NOT_STARTED"
    STARTING = "STARTING"
    MANAGED = "MANAGED"
    STARTED = "STARTED"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CANCELED = "CANCELED"
    CANCELING = "CANCELING"


def new_rule_id() -> str:
    return f"a_{uuid.uuid4().hex[:10]}"


def new_notification_id() -> str:
    return f"n_{uuid.uuid4().hex[:12]}"


class AlertRule(BaseModel):
    id: str
    name: str
    type: AlertType | str = Field(union_mode="left_to_right")
    target_id: str | None = None  # Job name, or asset key path joined with '/'
    target_name: str | None = None  # Display name for the target
    enabled: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    last_checked: datetime | None = None
    last_triggered: datetime | None = None
    last_triggered_run_id: str | None = None  # Dedup key

    @property
    def display_target(self) -> str:
        return self.target_name or self.target_id or ""

    @classmethod
    def create(
        cls,
        type: AlertType | str,
        target_id: str | None = None,
        target_name: str | None = None,
        name: str | None = None,
    ) -> AlertRule:
        """Build a new enabled rule from user input.

        Raises RuleValidationError when the rule could never fire: an
        unknown type, a missing target for a targeted type, or no name.
        """
        alert_type = parse_alert_type(type)
        if not isinstance(alert_type, AlertType):
            raise RuleValidationError(f"Unknown alert type: {type}")
        target_id = (target_id or "").strip() or None
        if name is None:
            subject = target_name or target_id
            name = f"{alert_type.label}: {subject}" if subject else alert_type.label
        rule = cls(
            id=new_rule_id(),
            name=name.strip(),
            type=alert_type,
            target_id=target_id,
            target_name=target_name or None,
        )
        rule.validate_user_fields()
        return rule

    def validate_user_fields(self, check_type: bool = True) -> None:
        """Raise RuleValidationError if the user-editable fields are unusable.

        ``check_type=False`` tolerates an unrecognized persisted type.
        """
        if check_type and not isinstance(self.type, AlertType):
            raise RuleValidationError(f"Unknown alert type: {self.type}")
        if isinstance(self.type, AlertType) and self.type.requires_target:
            if not (self.target_id or "").strip():
                raise RuleValidationError(f"{self.type.value} requires a target")
        if not self.name.strip():
            raise RuleValidationError("Rule name must not be empty")


class AlertEvaluationResult(BaseModel):
    should_trigger: bool
    run_id: str | None = None
    asset_key: list[str] | None = None
    message: str


class AlertNotification(BaseModel):
    id: str = Field(default_factory=new_notification_id)
    alert_id: str
    alert_name: str
    type: AlertType | str = Field(union_mode="left_to_right")
    target_name: str | None = None
    triggered_at: datetime = Field(default_factory=datetime.now)
    run_id: str | None = None
    asset_key: list[str] | None = None
    message: str
    read: bool = False


class RunRecord(BaseModel):
    """One execution as reported by the run-query service."""

    id: str
    job_name: str = ""
    status: str = ""
    start_time: datetime | None = None

    @field_validator("start_time", mode="before")
    @classmethod
    def parse_start_time(cls, value: object) -> datetime | None:
        # The run service reports epoch seconds, often as a string.
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            value = value.isoformat()
        try:
            return datetime.fromtimestamp(float(value))
        except (TypeError, ValueError, OverflowError, OSError):
            pass
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        return parsed

    def started_since(self, since: datetime) -> bool:
        """Runs without a start time are never recent."""
        return self.start_time is not None and self.start_time >= since
