"""
Delivery History Repository.

============================================================
PURPOSE
============================================================
Append-only log of delivery attempts per scheduled artifact.

============================================================
DATA LIFECYCLE
============================================================
- Mutability: APPEND-ONLY
- An attempt is created as `pending` before any external call
- It is finalized to `success` or `failed` exactly once; any
  further change raises ImmutableRecordError

============================================================
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from storage.models.scheduling import DeliveryAttempt
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import ImmutableRecordError


STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = (STATUS_SUCCESS, STATUS_FAILED)


class DeliveryHistoryRepository(BaseRepository[DeliveryAttempt]):
    """Repository for delivery attempts."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, DeliveryAttempt, "DeliveryHistoryRepository")

    # =========================================================
    # WRITE OPERATIONS
    # =========================================================

    def create_pending(
        self,
        report_id: UUID,
        delivery_format: str,
        recipients: List[str],
        delivered_at: datetime,
        is_test: bool = False,
    ) -> DeliveryAttempt:
        """Record the start of an attempt."""
        entity = DeliveryAttempt(
            report_id=report_id,
            delivery_format=delivery_format,
            recipients=list(recipients),
            status=STATUS_PENDING,
            is_test=is_test,
            delivered_at=delivered_at,
        )
        return self._add(entity)

    def finalize(
        self,
        attempt: DeliveryAttempt,
        status: str,
        error_message: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> DeliveryAttempt:
        """
        Move a pending attempt to its terminal status.

        Raises:
            ValueError: If status is not terminal
            ImmutableRecordError: If the attempt is already final
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Invalid terminal status: {status}")

        if attempt.status != STATUS_PENDING:
            raise ImmutableRecordError(
                repository_name=self._repository_name,
                record_id=attempt.id,
                attempted_operation=f"finalize as {status}",
            )

        attempt.status = status
        attempt.error_message = error_message
        attempt.file_size = file_size
        self._flush("finalize")
        return attempt

    def finalize_by_id(
        self,
        attempt_id: UUID,
        status: str,
        error_message: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> DeliveryAttempt:
        """
        Finalize an attempt loaded by id.

        Raises:
            RecordNotFoundError: If the attempt does not exist
        """
        attempt = self._get_by_id_or_raise(attempt_id)
        return self.finalize(attempt, status, error_message=error_message, file_size=file_size)

    # =========================================================
    # READ OPERATIONS
    # =========================================================

    def get(self, attempt_id: UUID) -> Optional[DeliveryAttempt]:
        return self._get_by_id(attempt_id)

    def list_by_artifact(self, report_id: UUID, limit: int = 50) -> List[DeliveryAttempt]:
        """Attempts for an artifact, newest first."""
        stmt = (
            select(DeliveryAttempt)
            .where(DeliveryAttempt.report_id == report_id)
            .order_by(desc(DeliveryAttempt.delivered_at))
            .limit(limit)
        )
        return self._execute_query(stmt)

    def latest_for_artifact(
        self,
        report_id: UUID,
        include_tests: bool = False,
    ) -> Optional[DeliveryAttempt]:
        """Most recent attempt for an artifact. Test sends are ignored by default."""
        stmt = select(DeliveryAttempt).where(DeliveryAttempt.report_id == report_id)
        if not include_tests:
            stmt = stmt.where(DeliveryAttempt.is_test.is_(False))
        stmt = stmt.order_by(desc(DeliveryAttempt.delivered_at)).limit(1)
        return self._execute_scalar(stmt)

    def count_by_status(self, report_id: UUID, status: str) -> int:
        return self._count(
            DeliveryAttempt.report_id == report_id,
            DeliveryAttempt.status == status,
        )

    def list_pending(self) -> List[DeliveryAttempt]:
        """Attempts left pending, e.g. by a crash mid-delivery."""
        stmt = (
            select(DeliveryAttempt)
            .where(DeliveryAttempt.status == STATUS_PENDING)
            .order_by(DeliveryAttempt.delivered_at)
        )
        return self._execute_query(stmt)
