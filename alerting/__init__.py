"""
Alerting Package.

Evaluates metric readings against threshold rules and records
every triggered alert.

Modules:
- conditions: Condition kinds and message templates
- models: Readings and evaluation results
- evaluator: AlertEvaluator
- sweep: Periodic evaluation and notification dispatch
"""

from .conditions import (
    AlertCondition,
    above_threshold,
    below_threshold,
    equals,
    percent_change,
    is_satisfied,
    format_message,
)
from .models import MetricReading, TriggeredAlert, EvaluationResult
from .evaluator import AlertEvaluator
from .sweep import (
    AlertSweep,
    MetricReader,
    NotificationHandler,
    log_notification_handler,
)


__all__ = [
    "AlertCondition",
    "above_threshold",
    "below_threshold",
    "equals",
    "percent_change",
    "is_satisfied",
    "format_message",
    "MetricReading",
    "TriggeredAlert",
    "EvaluationResult",
    "AlertEvaluator",
    "AlertSweep",
    "MetricReader",
    "NotificationHandler",
    "log_notification_handler",
]
