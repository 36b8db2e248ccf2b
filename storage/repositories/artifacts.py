"""
Scheduled Artifact Repository.

============================================================
PURPOSE
============================================================
Read and update access to scheduled artifacts (reports).

Artifacts are owned externally; the engine only reads their
scheduling metadata and advances last_sent_at / send_count
after a successful scheduled delivery.

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from storage.models.scheduling import ScheduledArtifact
from storage.repositories.base import BaseRepository


class ArtifactRepository(BaseRepository[ScheduledArtifact]):
    """
    Repository for scheduled artifacts.

    ============================================================
    MUTABILITY
    ============================================================
    MUTABLE. The engine writes only:
    - last_sent_at / send_count (after a successful delivery)
    - is_scheduled / frequency / schedule_config (schedule
      maintenance)

    ============================================================
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, ScheduledArtifact, "ArtifactRepository")

    def create(
        self,
        name: str,
        frequency: str = "daily",
        recipients: Optional[List[str]] = None,
        is_scheduled: bool = False,
        delivery_format: str = "pdf",
        schedule_config: Optional[Dict[str, Any]] = None,
        last_sent_at: Optional[datetime] = None,
    ) -> ScheduledArtifact:
        """Create an artifact. Used by fixtures and admin tooling."""
        entity = ScheduledArtifact(
            name=name,
            frequency=frequency,
            recipients=list(recipients or []),
            is_scheduled=is_scheduled,
            delivery_format=delivery_format,
            schedule_config=schedule_config,
            last_sent_at=last_sent_at,
            send_count=0,
        )
        return self._add(entity)

    def get(self, artifact_id: UUID) -> Optional[ScheduledArtifact]:
        """Get an artifact by id, or None."""
        return self._get_by_id(artifact_id)

    def get_or_raise(self, artifact_id: UUID) -> ScheduledArtifact:
        """Get an artifact by id, raising RecordNotFoundError."""
        return self._get_by_id_or_raise(artifact_id)

    def list_scheduled(self) -> List[ScheduledArtifact]:
        """All artifacts with automatic delivery enabled."""
        stmt = (
            select(ScheduledArtifact)
            .where(ScheduledArtifact.is_scheduled.is_(True))
            .order_by(ScheduledArtifact.created_at, ScheduledArtifact.id)
        )
        return self._execute_query(stmt)

    def mark_sent(self, artifact: ScheduledArtifact, sent_at: datetime) -> ScheduledArtifact:
        """Advance last_sent_at and bump send_count."""
        artifact.last_sent_at = sent_at
        artifact.send_count = (artifact.send_count or 0) + 1
        self._flush("mark_sent")
        self._logger.debug(f"Artifact {artifact.id} marked sent at {sent_at.isoformat()}")
        return artifact

    def set_schedule(
        self,
        artifact: ScheduledArtifact,
        is_scheduled: bool,
        frequency: Optional[str] = None,
        schedule_config: Optional[Dict[str, Any]] = None,
    ) -> ScheduledArtifact:
        """Update the scheduling flags of an artifact."""
        artifact.is_scheduled = is_scheduled
        if frequency is not None:
            artifact.frequency = frequency
        if schedule_config is not None:
            artifact.schedule_config = schedule_config
        self._flush("set_schedule")
        return artifact

    def delete(self, artifact: ScheduledArtifact) -> None:
        self._delete(artifact)
