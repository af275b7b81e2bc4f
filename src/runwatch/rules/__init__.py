"""Alert rules — models, durable store, and evaluator."""

from .evaluator import AlertEvaluator
from .models import (
    AlertEvaluationResult,
    AlertNotification,
    AlertRule,
    AlertType,
    RunRecord,
    RunStatus,
)
from .store import RulesStore

__all__ = [
    "AlertEvaluator",
    "AlertEvaluationResult",
    "AlertNotification",
    "AlertRule",
    "AlertType",
    "RulesStore",
    "RunRecord",
    "RunStatus",
]
