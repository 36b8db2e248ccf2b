"""
Delivery - Schedule Maintenance.

============================================================
RESPONSIBILITY
============================================================
Keeps job bindings in step with artifact schedules.

- schedule_artifact / unschedule_artifact
- advance_binding after a run (last_run_at, next_run_at)
- pause_job / resume_job
- prime_bindings at scheduler start
- job_statuses for operators

============================================================
DESIGN PRINCIPLES
============================================================
- A binding whose expression can no longer be resolved is
  deactivated, never left due forever
- Frequencies without a cron form (realtime, on_demand) get no
  binding; the reconciliation path covers them

============================================================
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from core.clock import ClockProtocol, SystemClock, to_iso8601
from core.exceptions import (
    ArtifactNotFoundError,
    InvalidScheduleError,
    JobBindingNotFoundError,
)
from delivery.cron import next_cron_time, schedule_to_cron, validate_cron
from delivery.models import DEFAULT_TIMEZONE, ScheduleConfig
from storage.database import Database
from storage.models.scheduling import JobBinding
from storage.repositories import (
    ArtifactRepository,
    DeliveryHistoryRepository,
    JobBindingRepository,
    STATUS_PENDING,
)


logger = logging.getLogger(__name__)


def advance_binding_record(
    bindings: JobBindingRepository,
    binding: JobBinding,
    now: datetime,
) -> Optional[datetime]:
    """
    Stamp a run on a binding and recompute next_run_at.

    Returns the new next_run_at, or None if the binding had to
    be deactivated.
    """
    try:
        next_run_at = next_cron_time(binding.cron_expression, binding.timezone, now)
    except InvalidScheduleError as e:
        logger.warning(
            f"Deactivating binding {binding.id} for artifact {binding.report_id}: {e.message}"
        )
        bindings.update_run_times(binding, last_run_at=now, next_run_at=None)
        bindings.set_active(binding, False)
        return None

    bindings.update_run_times(binding, last_run_at=now, next_run_at=next_run_at)
    return next_run_at


class ScheduleService:
    """
    Binding maintenance over the Job Binding Store.

    Usage:
        service = ScheduleService(database, clock)
        service.schedule_artifact(artifact_id, {"frequency": "weekly", "time": "08:30"})
    """

    def __init__(
        self,
        database: Database,
        clock: Optional[ClockProtocol] = None,
        default_timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self._database = database
        self._clock = clock or SystemClock()
        self._default_timezone = default_timezone

    # ---------------------------------------------------------
    # Schedule / unschedule
    # ---------------------------------------------------------

    def schedule_artifact(
        self,
        artifact_id: UUID,
        raw_config: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Enable automatic delivery for an artifact.

        Creates or updates its binding when the frequency has a
        cron form.

        Raises:
            InvalidScheduleError: On invalid configuration
            ArtifactNotFoundError: If the artifact does not exist
        """
        config = ScheduleConfig.from_dict(raw_config, self._default_timezone)
        cron_expression = schedule_to_cron(config)
        now = self._clock.now()

        next_run_at = None
        if cron_expression is not None:
            validate_cron(cron_expression, config.timezone)
            next_run_at = next_cron_time(cron_expression, config.timezone, now)

        with self._database.transaction_scope() as session:
            artifacts = ArtifactRepository(session)
            bindings = JobBindingRepository(session)

            artifact = artifacts.get(artifact_id)
            if artifact is None:
                raise ArtifactNotFoundError(artifact_id)

            artifacts.set_schedule(
                artifact,
                is_scheduled=True,
                frequency=config.frequency.value,
                schedule_config=config.to_dict(),
            )

            existing = bindings.get_by_artifact(artifact_id)
            if cron_expression is None:
                if existing is not None:
                    bindings.delete_by_artifact(artifact_id)
            elif existing is not None:
                bindings.update_definition(existing, cron_expression, config.timezone, next_run_at)
            else:
                bindings.create(artifact_id, cron_expression, config.timezone, next_run_at)

        logger.info(
            f"Scheduled artifact {artifact_id}: {config.frequency.value} "
            f"cron={cron_expression or '-'} tz={config.timezone} next={to_iso8601(next_run_at)}"
        )
        return {
            "artifact_id": str(artifact_id),
            "frequency": config.frequency.value,
            "cron_expression": cron_expression,
            "timezone": config.timezone,
            "next_run_at": to_iso8601(next_run_at),
        }

    def unschedule_artifact(self, artifact_id: UUID) -> bool:
        """
        Disable automatic delivery and delete the binding.

        Returns True if a binding was deleted.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist
        """
        with self._database.transaction_scope() as session:
            artifacts = ArtifactRepository(session)
            artifact = artifacts.get(artifact_id)
            if artifact is None:
                raise ArtifactNotFoundError(artifact_id)

            artifacts.set_schedule(artifact, is_scheduled=False)
            deleted = JobBindingRepository(session).delete_by_artifact(artifact_id)

        logger.info(f"Unscheduled artifact {artifact_id} (binding removed: {deleted})")
        return deleted

    # ---------------------------------------------------------
    # Pause / resume
    # ---------------------------------------------------------

    def pause_job(self, artifact_id: UUID) -> Dict[str, Any]:
        """
        Stop the binding from firing, keeping its definition.

        The artifact stays scheduled, so the reconciliation path
        still covers it.

        Raises:
            JobBindingNotFoundError: If the artifact has no binding
        """
        with self._database.transaction_scope() as session:
            bindings = JobBindingRepository(session)
            binding = bindings.get_by_artifact(artifact_id)
            if binding is None:
                raise JobBindingNotFoundError(artifact_id)
            bindings.set_active(binding, False)
            summary = self._binding_summary(binding)

        logger.info(f"Paused job binding for artifact {artifact_id}")
        return summary

    def resume_job(self, artifact_id: UUID) -> Dict[str, Any]:
        """
        Reactivate a binding and recompute next_run_at from now.

        Missed occurrences while paused are not replayed.

        Raises:
            JobBindingNotFoundError: If the artifact has no binding
            InvalidScheduleError: If the stored expression no longer resolves
        """
        now = self._clock.now()
        with self._database.transaction_scope() as session:
            bindings = JobBindingRepository(session)
            binding = bindings.get_by_artifact(artifact_id)
            if binding is None:
                raise JobBindingNotFoundError(artifact_id)

            next_run_at = next_cron_time(binding.cron_expression, binding.timezone, now)
            bindings.update_run_times(binding, last_run_at=None, next_run_at=next_run_at)
            bindings.set_active(binding, True)
            summary = self._binding_summary(binding)

        logger.info(f"Resumed job binding for artifact {artifact_id}, next={to_iso8601(next_run_at)}")
        return summary

    # ---------------------------------------------------------
    # Binding maintenance
    # ---------------------------------------------------------

    def advance_binding(
        self,
        artifact_id: UUID,
        now: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Advance the binding of an artifact, if it has one."""
        now = now or self._clock.now()
        with self._database.transaction_scope() as session:
            bindings = JobBindingRepository(session)
            binding = bindings.get_by_artifact(artifact_id)
            if binding is None:
                return None
            return advance_binding_record(bindings, binding, now)

    def prime_bindings(self, now: Optional[datetime] = None) -> int:
        """Fill next_run_at for active bindings that have none."""
        now = now or self._clock.now()
        primed = 0
        with self._database.transaction_scope() as session:
            bindings = JobBindingRepository(session)
            for binding in bindings.list_missing_next_run():
                try:
                    next_run_at = next_cron_time(binding.cron_expression, binding.timezone, now)
                except InvalidScheduleError as e:
                    logger.warning(f"Deactivating binding {binding.id}: {e.message}")
                    bindings.set_active(binding, False)
                    continue
                bindings.update_run_times(binding, last_run_at=None, next_run_at=next_run_at)
                primed += 1

        if primed:
            logger.info(f"Primed next_run_at for {primed} binding(s)")
        return primed

    # ---------------------------------------------------------
    # Status
    # ---------------------------------------------------------

    def job_statuses(self) -> List[Dict[str, Any]]:
        """
        One entry per binding with its latest delivery status.

        pending_attempts counts rows never finalized, i.e. runs a
        crash or a forced shutdown cut off mid-delivery.
        """
        statuses = []
        with self._database.transaction_scope() as session:
            history = DeliveryHistoryRepository(session)
            for binding in JobBindingRepository(session).list_all():
                latest = history.latest_for_artifact(binding.report_id)
                entry = self._binding_summary(binding)
                entry.update({
                    "last_status": latest.status if latest else None,
                    "last_error": latest.error_message if latest else None,
                    "pending_attempts": history.count_by_status(binding.report_id, STATUS_PENDING),
                })
                statuses.append(entry)
        return statuses

    @staticmethod
    def _binding_summary(binding: JobBinding) -> Dict[str, Any]:
        return {
            "binding_id": str(binding.id),
            "artifact_id": str(binding.report_id),
            "cron_expression": binding.cron_expression,
            "timezone": binding.timezone,
            "is_active": binding.is_active,
            "last_run_at": to_iso8601(binding.last_run_at),
            "next_run_at": to_iso8601(binding.next_run_at),
        }
