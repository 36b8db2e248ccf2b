"""
Alerting - Models.

============================================================
RESPONSIBILITY
============================================================
Data models passed in and out of the Alert Evaluator.

- MetricReading: one value to evaluate
- TriggeredAlert: one satisfied rule, with notification targets
- EvaluationResult: per-metric result (or captured error)

============================================================
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from core.clock import to_iso8601


@dataclass(frozen=True)
class MetricReading:
    """A metric value (and optional baseline) to evaluate."""

    metric_id: UUID
    value: float
    baseline: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricReading":
        """
        Build from a JSON entry.

        Accepts metric_id or kpiId.

        Raises:
            ValueError: On missing or malformed fields
        """
        raw_id = data.get("metric_id", data.get("kpiId"))
        if raw_id is None:
            raise ValueError("metric_id is required")
        if "value" not in data or data["value"] is None:
            raise ValueError("value is required")

        value = _finite(data["value"], "value")
        baseline = data.get("baseline")
        return cls(
            metric_id=raw_id if isinstance(raw_id, UUID) else UUID(str(raw_id)),
            value=value,
            baseline=_finite(baseline, "baseline") if baseline is not None else None,
        )


def _finite(raw: Any, name: str) -> float:
    number = float(raw)
    if not math.isfinite(number):
        raise ValueError(f"{name} must be a finite number")
    return number


@dataclass
class TriggeredAlert:
    """A rule whose condition was satisfied."""

    alert_id: UUID
    condition: str
    threshold: float
    message: str
    history_id: UUID
    channels: List[str] = field(default_factory=list)
    recipients: List[str] = field(default_factory=list)
    metric_id: Optional[UUID] = None
    metric_name: Optional[str] = None
    actual_value: Optional[float] = None
    triggered_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": str(self.alert_id),
            "condition": self.condition,
            "threshold": self.threshold,
            "message": self.message,
            "history_id": str(self.history_id),
            "channels": list(self.channels),
            "recipients": list(self.recipients),
        }


@dataclass
class EvaluationResult:
    """
    Result of evaluating one metric.

    When `error` is set the evaluation failed and only
    metric_id is meaningful.
    """

    metric_id: UUID
    metric_name: Optional[str] = None
    current_value: Optional[float] = None
    alerts_checked: int = 0
    triggered_alerts: List[TriggeredAlert] = field(default_factory=list)
    error: Optional[str] = None
    evaluated_at: Optional[datetime] = None

    @property
    def triggered_count(self) -> int:
        return len(self.triggered_alerts)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        if self.failed:
            return {"metric_id": str(self.metric_id), "error": self.error}
        return {
            "metric_id": str(self.metric_id),
            "metric_name": self.metric_name,
            "current_value": self.current_value,
            "alerts_checked": self.alerts_checked,
            "triggered_alerts": [alert.to_dict() for alert in self.triggered_alerts],
            "triggered_count": self.triggered_count,
            "evaluated_at": to_iso8601(self.evaluated_at),
        }
