"""
Scheduling Domain ORM Models.

============================================================
PURPOSE
============================================================
Models for scheduled artifacts, their cron bindings, and the
delivery attempt trail.

============================================================
DATA LIFECYCLE ROLE
============================================================
- ScheduledArtifact: MUTABLE (user edits, last_sent_at advance)
- JobBinding: MUTABLE (run timestamps), at most one per artifact
- DeliveryAttempt: APPEND-ONLY (status finalized exactly once)

============================================================
MODELS
============================================================
- ScheduledArtifact: Recurring report definition (reports)
- JobBinding: Cron binding per artifact (scheduled_jobs)
- DeliveryAttempt: One delivery try (report_delivery_history)

============================================================
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


class ScheduledArtifact(Base, TimestampMixin):
    """
    A recurring report whose delivery is time-driven.

    ============================================================
    PURPOSE
    ============================================================
    Holds the metadata the Due-Set Resolver reads (frequency,
    is_scheduled, last_sent_at) and the delivery parameters the
    pipeline needs (format, recipients).

    ============================================================
    DATA LIFECYCLE
    ============================================================
    - Mutability: MUTABLE
    - Written by: user edits (external), Delivery Pipeline
      (last_sent_at, send_count)

    ============================================================
    """

    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier for the artifact"
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Display name"
    )

    frequency: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="daily",
        comment="realtime, hourly, daily, weekly, monthly, on_demand"
    )

    is_scheduled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether automatic delivery is enabled"
    )

    schedule_config: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Raw schedule configuration as submitted"
    )

    delivery_format: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pdf",
        comment="Rendered file format"
    )

    recipients: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Ordered recipient addresses"
    )

    last_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last successful scheduled delivery"
    )

    send_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of successful scheduled deliveries"
    )

    __table_args__ = (
        Index("idx_reports_scheduled", "is_scheduled"),
    )

    def __repr__(self) -> str:
        return f"<ScheduledArtifact {self.id} {self.frequency} scheduled={self.is_scheduled}>"


class JobBinding(Base, TimestampMixin):
    """
    Cron binding for one artifact.

    ============================================================
    PURPOSE
    ============================================================
    Primary, precise scheduling path. next_run_at is recomputed
    from cron_expression + timezone after every run.

    ============================================================
    DATA LIFECYCLE
    ============================================================
    - Mutability: MUTABLE
    - Created when an artifact becomes scheduled
    - Deleted when it is unscheduled or deleted

    ============================================================
    """

    __tablename__ = "scheduled_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier for the binding"
    )

    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Bound artifact (one binding per artifact)"
    )

    cron_expression: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Five-field cron expression"
    )

    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
        comment="IANA time zone the cron expression is read in"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Inactive bindings are never due"
    )

    last_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last time the binding fired"
    )

    next_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Next time the binding is due (UTC)"
    )

    __table_args__ = (
        Index("idx_jobs_due", "is_active", "next_run_at"),
    )

    def __repr__(self) -> str:
        return f"<JobBinding {self.id} report={self.report_id} cron='{self.cron_expression}'>"


class DeliveryAttempt(Base):
    """
    One delivery attempt for one artifact.

    ============================================================
    PURPOSE
    ============================================================
    Audit trail written BEFORE any external call, so a crash
    mid-delivery leaves a pending row behind.

    ============================================================
    DATA LIFECYCLE
    ============================================================
    - Mutability: APPEND-ONLY
    - Only status/error_message/file_size change, and only on
      the single pending -> success|failed transition

    ============================================================
    """

    __tablename__ = "report_delivery_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier for the attempt"
    )

    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        comment="Artifact the attempt belongs to"
    )

    delivery_format: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Format the artifact was rendered in"
    )

    recipients: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Ordered recipient addresses"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending, success, failed"
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Failure reason"
    )

    file_size: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Rendered payload size in bytes"
    )

    is_test: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Test sends never advance the schedule"
    )

    delivered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the attempt started"
    )

    __table_args__ = (
        Index("idx_delivery_report_time", "report_id", "delivered_at"),
        Index("idx_delivery_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<DeliveryAttempt {self.id} report={self.report_id} status={self.status}>"
