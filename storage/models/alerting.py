"""
Alerting Domain ORM Models.

============================================================
PURPOSE
============================================================
Models for tracked metrics, threshold rules scoped to a metric,
and the append-only trigger history.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Metric: MUTABLE (owned externally, read for its name)
- ThresholdRule: MUTABLE (user edits), read-only to the evaluator
- AlertTrigger: IMMUTABLE (append-only)

============================================================
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class Metric(Base):
    """Tracked metric (KPI) that threshold rules attach to."""

    __tablename__ = "kpis"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Metric name used in alert messages"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Metric {self.id} '{self.name}'>"


class ThresholdRule(Base):
    """
    Alert rule scoped to a metric.

    ============================================================
    PURPOSE
    ============================================================
    Condition + threshold + notification targets. The condition
    is stored as its raw string so rule kinds the evaluator does
    not know yet can still be persisted (they are skipped).

    ============================================================
    """

    __tablename__ = "kpi_alerts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    kpi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("kpis.id", ondelete="CASCADE"),
        nullable=False,
        comment="Metric the rule watches"
    )

    condition: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="above_threshold, below_threshold, equals, percent_change"
    )

    threshold: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )

    channels: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Delivery channel identifiers"
    )

    recipients: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_kpi_alerts_kpi", "kpi_id"),
    )

    def __repr__(self) -> str:
        return f"<ThresholdRule {self.id} {self.condition} {self.threshold}>"


class AlertTrigger(Base):
    """
    One rule-satisfying evaluation.

    IMMUTABLE: never updated or deleted by the engine. No
    deduplication; every satisfying evaluation appends a row.
    """

    __tablename__ = "alert_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    alert_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        comment="Rule that triggered"
    )

    kpi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )

    actual_value: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )

    threshold: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Threshold in force at trigger time"
    )

    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_alert_history_alert", "alert_id", "triggered_at"),
        Index("idx_alert_history_kpi", "kpi_id"),
    )

    def __repr__(self) -> str:
        return f"<AlertTrigger {self.id} rule={self.alert_id} value={self.actual_value}>"
