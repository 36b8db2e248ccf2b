"""
Storage Models Package.

This package contains all ORM models for the delivery engine
database. Models are organized by domain.

============================================================
MODEL ORGANIZATION
============================================================

Domain 1: Scheduling (scheduling.py)
- ScheduledArtifact   -> reports
- JobBinding          -> scheduled_jobs
- DeliveryAttempt     -> report_delivery_history

Domain 2: Alerting (alerting.py)
- Metric              -> kpis
- ThresholdRule       -> kpi_alerts
- AlertTrigger        -> alert_history

============================================================
"""

from storage.models.base import Base, TimestampMixin
from storage.models.scheduling import (
    ScheduledArtifact,
    JobBinding,
    DeliveryAttempt,
)
from storage.models.alerting import (
    Metric,
    ThresholdRule,
    AlertTrigger,
)


__all__ = [
    "Base",
    "TimestampMixin",

    # Scheduling
    "ScheduledArtifact",
    "JobBinding",
    "DeliveryAttempt",

    # Alerting
    "Metric",
    "ThresholdRule",
    "AlertTrigger",
]
