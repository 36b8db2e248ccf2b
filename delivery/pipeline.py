"""
Delivery - Pipeline.

============================================================
RESPONSIBILITY
============================================================
Drives one artifact through one delivery:

1. Load artifact (missing or unscheduled -> skipped)
2. Record a pending attempt BEFORE any external call
3. Render (timeout-bounded)
4. Deliver to recipients (timeout-bounded)
5. Finalize the attempt; on success advance last_sent_at,
   send_count and the artifact's binding

============================================================
FAILURE SEMANTICS
============================================================
- Render, deliver and timeout failures finalize the attempt as
  `failed` and are returned, never raised
- last_sent_at only moves on success, so a failed artifact
  stays due and is retried on a later tick (at-least-once)
- A crash between steps 2 and 5 leaves a `pending` row

============================================================
CONCURRENCY
============================================================
- Deliveries of the same artifact are serialized
- Shutdown is honoured at checkpoints between steps, never in
  the middle of an external call

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Dict, Optional, TypeVar
from uuid import UUID

from core.clock import ClockProtocol, SystemClock
from core.exceptions import ArtifactNotFoundError, DeliveryAbortedError, DeliveryTimeoutError
from delivery.collaborators import ArtifactRenderer, DeliveryTransport, describe_error
from delivery.models import ArtifactSnapshot, DeliveryOutcome, DeliveryStatus
from delivery.schedule import advance_binding_record
from storage.database import Database
from storage.repositories import (
    ArtifactRepository,
    DeliveryHistoryRepository,
    JobBindingRepository,
    STATUS_FAILED,
    STATUS_SUCCESS,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_RECIPIENTS_MESSAGE = "No recipients configured"
ABANDONED_MESSAGE = "Delivery abandoned: scheduler shutting down"


class DeliveryPipeline:
    """
    Render -> deliver -> record, for one artifact at a time.

    Every call opens its own transactions, so concurrent
    deliveries of different artifacts never share a session.
    """

    def __init__(
        self,
        database: Database,
        renderer: ArtifactRenderer,
        transport: DeliveryTransport,
        clock: Optional[ClockProtocol] = None,
        timeout_seconds: float = 120.0,
    ) -> None:
        self._database = database
        self._renderer = renderer
        self._transport = transport
        self._clock = clock or SystemClock()
        self._timeout_seconds = timeout_seconds
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._lock_users: Dict[UUID, int] = {}

    # =========================================================
    # PUBLIC API
    # =========================================================

    def is_delivering(self, artifact_id: UUID) -> bool:
        lock = self._locks.get(artifact_id)
        return lock is not None and lock.locked()

    async def deliver_once(
        self,
        artifact_id: UUID,
        stop_event: Optional[asyncio.Event] = None,
    ) -> DeliveryOutcome:
        """
        Deliver an artifact once.

        Args:
            artifact_id: Artifact to deliver
            stop_event: When set, work stops at the next checkpoint

        Returns:
            DeliveryOutcome (never raises for delivery failures)
        """
        lock = self._checkout_lock(artifact_id)
        try:
            async with lock:
                return await self._deliver(artifact_id, stop_event)
        finally:
            self._release_lock(artifact_id)

    async def send_test(self, artifact_id: UUID, recipient: str) -> DeliveryOutcome:
        """
        Render and deliver an artifact to a single test recipient.

        Records an attempt flagged is_test. Never advances
        last_sent_at, send_count or bindings, and does not require
        the artifact to be scheduled.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist
        """
        started_at = self._clock.now()
        with self._database.transaction_scope() as session:
            artifact = ArtifactRepository(session).get(artifact_id)
            if artifact is None:
                raise ArtifactNotFoundError(artifact_id)
            snapshot = ArtifactSnapshot.from_model(artifact)
            attempt = DeliveryHistoryRepository(session).create_pending(
                report_id=artifact_id,
                delivery_format=snapshot.delivery_format,
                recipients=[recipient],
                delivered_at=started_at,
                is_test=True,
            )
            attempt_id = attempt.id

        outcome = DeliveryOutcome(
            artifact_id=artifact_id,
            status=DeliveryStatus.FAILED,
            attempt_id=attempt_id,
            is_test=True,
            started_at=started_at,
        )

        try:
            payload = await self._with_timeout(self._renderer.render(snapshot), "render", artifact_id)
            await self._with_timeout(
                self._transport.deliver(payload, [recipient], snapshot), "deliver", artifact_id
            )
        except Exception as e:
            return self._fail(outcome, describe_error(e))

        with self._database.transaction_scope() as session:
            DeliveryHistoryRepository(session).finalize_by_id(
                attempt_id, STATUS_SUCCESS, file_size=len(payload)
            )

        outcome.status = DeliveryStatus.DELIVERED
        outcome.file_size = len(payload)
        outcome.finished_at = self._clock.now()
        logger.info(f"Test delivery of {artifact_id} to {recipient} succeeded ({len(payload)} bytes)")
        return outcome

    # =========================================================
    # PIPELINE STEPS
    # =========================================================

    async def _deliver(
        self,
        artifact_id: UUID,
        stop_event: Optional[asyncio.Event],
    ) -> DeliveryOutcome:
        started_at = self._clock.now()

        # Steps 1 + 2: load and record the pending attempt
        with self._database.transaction_scope() as session:
            artifact = ArtifactRepository(session).get(artifact_id)
            if artifact is None:
                logger.info(f"Artifact {artifact_id} not found, skipping delivery")
                return self._skipped(artifact_id, "not_found", started_at)
            if not artifact.is_scheduled:
                logger.info(f"Artifact {artifact_id} is not scheduled, skipping delivery")
                return self._skipped(artifact_id, "not_scheduled", started_at)
            if self._stopping(stop_event):
                return DeliveryOutcome(
                    artifact_id=artifact_id,
                    status=DeliveryStatus.ABANDONED,
                    reason="shutdown",
                    started_at=started_at,
                    finished_at=started_at,
                )

            snapshot = ArtifactSnapshot.from_model(artifact)
            attempt = DeliveryHistoryRepository(session).create_pending(
                report_id=artifact_id,
                delivery_format=snapshot.delivery_format,
                recipients=snapshot.recipients,
                delivered_at=started_at,
            )
            attempt_id = attempt.id

        outcome = DeliveryOutcome(
            artifact_id=artifact_id,
            status=DeliveryStatus.FAILED,
            attempt_id=attempt_id,
            started_at=started_at,
        )

        if not snapshot.recipients:
            return self._fail(outcome, NO_RECIPIENTS_MESSAGE)

        # Step 3: render
        if self._stopping(stop_event):
            return self._abandon(outcome, "render")
        try:
            payload = await self._with_timeout(self._renderer.render(snapshot), "render", artifact_id)
        except Exception as e:
            return self._fail(outcome, describe_error(e), step="render")

        # Step 4: deliver
        if self._stopping(stop_event):
            return self._abandon(outcome, "deliver")
        try:
            await self._with_timeout(
                self._transport.deliver(payload, snapshot.recipients, snapshot),
                "deliver",
                artifact_id,
            )
        except Exception as e:
            return self._fail(outcome, describe_error(e), step="deliver")

        # Step 5: finalize and advance
        finished_at = self._clock.now()
        with self._database.transaction_scope() as session:
            DeliveryHistoryRepository(session).finalize_by_id(
                attempt_id, STATUS_SUCCESS, file_size=len(payload)
            )
            artifacts = ArtifactRepository(session)
            artifact = artifacts.get(artifact_id)
            if artifact is not None:
                artifacts.mark_sent(artifact, finished_at)

            bindings = JobBindingRepository(session)
            binding = bindings.get_by_artifact(artifact_id)
            if binding is not None and binding.is_active:
                next_run_at = advance_binding_record(bindings, binding, finished_at)
                outcome.details["next_run_at"] = next_run_at

        outcome.status = DeliveryStatus.DELIVERED
        outcome.file_size = len(payload)
        outcome.finished_at = finished_at
        logger.info(
            f"Delivered artifact {artifact_id} to {len(snapshot.recipients)} recipient(s) "
            f"({len(payload)} bytes, attempt {attempt_id})"
        )
        return outcome

    # =========================================================
    # HELPERS
    # =========================================================

    def _checkout_lock(self, artifact_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(artifact_id)
        if lock is None:
            lock = self._locks[artifact_id] = asyncio.Lock()
        self._lock_users[artifact_id] = self._lock_users.get(artifact_id, 0) + 1
        return lock

    def _release_lock(self, artifact_id: UUID) -> None:
        # Holders and waiters both count; the last one out drops the lock
        remaining = self._lock_users[artifact_id] - 1
        if remaining:
            self._lock_users[artifact_id] = remaining
        else:
            del self._lock_users[artifact_id]
            del self._locks[artifact_id]

    async def _with_timeout(self, awaitable: Awaitable[T], step: str, artifact_id: UUID) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            raise DeliveryTimeoutError(step, self._timeout_seconds, artifact_id=artifact_id)

    @staticmethod
    def _stopping(stop_event: Optional[asyncio.Event]) -> bool:
        return stop_event is not None and stop_event.is_set()

    def _skipped(self, artifact_id: UUID, reason: str, started_at: datetime) -> DeliveryOutcome:
        return DeliveryOutcome(
            artifact_id=artifact_id,
            status=DeliveryStatus.SKIPPED,
            reason=reason,
            started_at=started_at,
            finished_at=self._clock.now(),
        )

    def _fail(
        self,
        outcome: DeliveryOutcome,
        message: str,
        step: Optional[str] = None,
    ) -> DeliveryOutcome:
        with self._database.transaction_scope() as session:
            DeliveryHistoryRepository(session).finalize_by_id(
                outcome.attempt_id, STATUS_FAILED, error_message=message
            )

        outcome.status = DeliveryStatus.FAILED
        outcome.error = message
        outcome.finished_at = self._clock.now()
        where = f" at {step}" if step else ""
        logger.error(
            f"Delivery of artifact {outcome.artifact_id} failed{where}: {message} "
            f"(attempt {outcome.attempt_id})"
        )
        return outcome

    def _abandon(self, outcome: DeliveryOutcome, step: str) -> DeliveryOutcome:
        error = DeliveryAbortedError(
            ABANDONED_MESSAGE,
            artifact_id=outcome.artifact_id,
            context={"step": step, "attempt_id": str(outcome.attempt_id)},
        )
        with self._database.transaction_scope() as session:
            DeliveryHistoryRepository(session).finalize_by_id(
                outcome.attempt_id, STATUS_FAILED, error_message=error.message
            )

        outcome.status = DeliveryStatus.ABANDONED
        outcome.error = error.message
        outcome.reason = "shutdown"
        outcome.details["abort"] = error.to_dict()
        outcome.finished_at = self._clock.now()
        logger.warning(f"Delivery of artifact {outcome.artifact_id} abandoned before {step} for shutdown")
        return outcome
