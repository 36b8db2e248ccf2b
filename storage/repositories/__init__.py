"""
Storage Repositories Package.

============================================================
PURPOSE
============================================================
Data access layer between the engine services and the ORM
models. Each repository wraps one store.

============================================================
REPOSITORY ORGANIZATION
============================================================

Scheduling:
- ArtifactRepository        -> reports
- JobBindingRepository      -> scheduled_jobs
- DeliveryHistoryRepository -> report_delivery_history

Alerting:
- MetricRepository          -> kpis
- ThresholdRuleRepository   -> kpi_alerts
- AlertTriggerRepository    -> alert_history

============================================================
TRANSACTIONS
============================================================
Repositories flush but never commit. Wrap work in
Database.transaction_scope().

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    RepositoryException,
    RecordNotFoundError,
    DuplicateRecordError,
    IntegrityError,
    ConnectionError,
    QueryError,
    ImmutableRecordError,
)
from storage.repositories.artifacts import ArtifactRepository
from storage.repositories.job_bindings import JobBindingRepository
from storage.repositories.delivery_history import (
    DeliveryHistoryRepository,
    STATUS_PENDING,
    STATUS_SUCCESS,
    STATUS_FAILED,
)
from storage.repositories.threshold_rules import (
    MetricRepository,
    ThresholdRuleRepository,
    AlertTriggerRepository,
)


__all__ = [
    "BaseRepository",

    # Exceptions
    "RepositoryException",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "ImmutableRecordError",

    # Scheduling
    "ArtifactRepository",
    "JobBindingRepository",
    "DeliveryHistoryRepository",
    "STATUS_PENDING",
    "STATUS_SUCCESS",
    "STATUS_FAILED",

    # Alerting
    "MetricRepository",
    "ThresholdRuleRepository",
    "AlertTriggerRepository",
]
