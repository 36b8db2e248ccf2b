"""
Job Binding Repository.

============================================================
PURPOSE
============================================================
Persists the cron binding (expression, time zone, last/next
run) of each scheduled artifact. No behavior beyond storage;
next-run computation lives in delivery.cron.

============================================================
INVARIANTS
============================================================
- At most one binding per artifact (report_id UNIQUE)
- Inactive bindings are never returned as due

============================================================
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from storage.models.scheduling import JobBinding
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import DuplicateRecordError


class JobBindingRepository(BaseRepository[JobBinding]):
    """
    Repository for cron job bindings.

    ============================================================
    MUTABILITY
    ============================================================
    MUTABLE. Created when an artifact becomes scheduled, run
    timestamps updated after every run, deleted when the
    artifact is unscheduled.

    ============================================================
    """

    unique_field = "report_id"

    def __init__(self, session: Session) -> None:
        super().__init__(session, JobBinding, "JobBindingRepository")

    # =========================================================
    # WRITE OPERATIONS
    # =========================================================

    def create(
        self,
        report_id: UUID,
        cron_expression: str,
        timezone: str,
        next_run_at: Optional[datetime] = None,
        is_active: bool = True,
    ) -> JobBinding:
        """
        Create the binding for an artifact.

        Raises:
            DuplicateRecordError: If the artifact already has one
        """
        if self.get_by_artifact(report_id) is not None:
            raise DuplicateRecordError(
                repository_name=self._repository_name,
                constraint_field="report_id",
                value=report_id,
            )

        entity = JobBinding(
            report_id=report_id,
            cron_expression=cron_expression,
            timezone=timezone,
            is_active=is_active,
            next_run_at=next_run_at,
        )
        return self._add(entity, {"report_id": str(report_id)})

    def update_definition(
        self,
        binding: JobBinding,
        cron_expression: str,
        timezone: str,
        next_run_at: Optional[datetime],
    ) -> JobBinding:
        """Replace the cron definition and reactivate the binding."""
        binding.cron_expression = cron_expression
        binding.timezone = timezone
        binding.next_run_at = next_run_at
        binding.is_active = True
        self._flush("update_definition")
        return binding

    def update_run_times(
        self,
        binding: JobBinding,
        last_run_at: Optional[datetime],
        next_run_at: Optional[datetime],
    ) -> JobBinding:
        if last_run_at is not None:
            binding.last_run_at = last_run_at
        binding.next_run_at = next_run_at
        self._flush("update_run_times")
        return binding

    def set_active(self, binding: JobBinding, active: bool) -> JobBinding:
        binding.is_active = active
        self._flush("set_active")
        return binding

    def delete_by_artifact(self, report_id: UUID) -> bool:
        """Delete the binding of an artifact. Returns False if none existed."""
        binding = self.get_by_artifact(report_id)
        if binding is None:
            return False
        self._delete(binding)
        return True

    # =========================================================
    # READ OPERATIONS
    # =========================================================

    def get_by_artifact(self, report_id: UUID) -> Optional[JobBinding]:
        stmt = select(JobBinding).where(JobBinding.report_id == report_id)
        return self._execute_scalar(stmt)

    def list_due(self, now: datetime) -> List[JobBinding]:
        """
        Active bindings whose next_run_at has been reached.

        Ordered by next_run_at so the most overdue runs first.
        """
        stmt = (
            select(JobBinding)
            .where(
                JobBinding.is_active.is_(True),
                JobBinding.next_run_at.is_not(None),
                JobBinding.next_run_at <= now,
            )
            .order_by(JobBinding.next_run_at, JobBinding.id)
        )
        return self._execute_query(stmt)

    def list_missing_next_run(self) -> List[JobBinding]:
        """Active bindings that were never primed with a next_run_at."""
        stmt = select(JobBinding).where(
            JobBinding.is_active.is_(True),
            JobBinding.next_run_at.is_(None),
        )
        return self._execute_query(stmt)

    def list_all(self) -> List[JobBinding]:
        stmt = select(JobBinding).order_by(JobBinding.created_at, JobBinding.id)
        return self._execute_query(stmt)
