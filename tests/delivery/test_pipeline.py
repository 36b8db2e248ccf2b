"""
Tests for the Delivery Pipeline.

============================================================
PURPOSE
============================================================
Covers:
1. Successful delivery (attempt, last_sent_at, binding advance)
2. Render / deliver / timeout failures recorded as failed
3. Skips (missing, unscheduled) and shutdown abandonment
4. Test sends
5. Per-artifact serialization

============================================================
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from core.clock import ensure_utc
from core.exceptions import ArtifactNotFoundError, RenderError
from delivery.models import DeliveryStatus
from delivery.pipeline import ABANDONED_MESSAGE, NO_RECIPIENTS_MESSAGE, DeliveryPipeline
from storage.repositories import (
    ArtifactRepository,
    DeliveryHistoryRepository,
    JobBindingRepository,
    STATUS_FAILED,
    STATUS_SUCCESS,
)

from factories import START_TIME, RecordingRenderer, make_artifact, make_binding


@pytest.fixture
def pipeline(database, renderer, transport, clock):
    return DeliveryPipeline(database, renderer, transport, clock, timeout_seconds=5)


def attempts_for(database, artifact_id):
    with database.transaction_scope() as session:
        return DeliveryHistoryRepository(session).list_by_artifact(artifact_id)


def load_artifact(database, artifact_id):
    with database.transaction_scope() as session:
        return ArtifactRepository(session).get(artifact_id)


# ============================================================
# SUCCESS PATH
# ============================================================

class TestSuccessfulDelivery:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_records_success_and_advances_artifact(self, database, pipeline, transport):
        artifact_id = make_artifact(database, recipients=["a@example.com", "b@example.com"])

        outcome = await pipeline.deliver_once(artifact_id)

        assert outcome.status == DeliveryStatus.DELIVERED
        assert outcome.file_size == len(b"%PDF-1.4 test report")

        attempts = attempts_for(database, artifact_id)
        assert len(attempts) == 1
        assert attempts[0].status == STATUS_SUCCESS
        assert attempts[0].id == outcome.attempt_id
        assert attempts[0].file_size == outcome.file_size

        artifact = load_artifact(database, artifact_id)
        assert ensure_utc(artifact.last_sent_at) == START_TIME
        assert artifact.send_count == 1

        assert transport.deliveries == [{
            "artifact_id": artifact_id,
            "recipients": ["a@example.com", "b@example.com"],
            "size": outcome.file_size,
        }]

    @pytest.mark.asyncio
    async def test_success_advances_binding(self, database, pipeline):
        """After a run next_run_at is strictly later than the run."""
        artifact_id = make_artifact(database)
        make_binding(database, artifact_id, START_TIME - timedelta(minutes=1), cron_expression="0 9 * * *")

        await pipeline.deliver_once(artifact_id)

        with database.transaction_scope() as session:
            binding = JobBindingRepository(session).get_by_artifact(artifact_id)
            assert ensure_utc(binding.last_run_at) == START_TIME
            assert ensure_utc(binding.next_run_at) == START_TIME.replace(hour=9) + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_inactive_binding_not_advanced(self, database, pipeline):
        artifact_id = make_artifact(database)
        make_binding(database, artifact_id, None, is_active=False)

        await pipeline.deliver_once(artifact_id)

        with database.transaction_scope() as session:
            binding = JobBindingRepository(session).get_by_artifact(artifact_id)
            assert binding.last_run_at is None
            assert binding.next_run_at is None


# ============================================================
# FAILURE PATH
# ============================================================

class TestFailedDelivery:
    """Tests for failures recorded in history."""

    @pytest.mark.asyncio
    async def test_render_failure_keeps_artifact_due(self, database, pipeline, renderer, transport):
        """A failed render is recorded and does not move last_sent_at."""
        artifact_id = make_artifact(database)
        renderer.fail_with = RenderError("template missing")

        first = await pipeline.deliver_once(artifact_id)
        second = await pipeline.deliver_once(artifact_id)

        assert first.status == DeliveryStatus.FAILED
        assert first.error == "template missing"
        assert second.attempt_id != first.attempt_id

        attempts = attempts_for(database, artifact_id)
        assert len(attempts) == 2
        assert {a.status for a in attempts} == {STATUS_FAILED}
        assert all(a.error_message == "template missing" for a in attempts)

        artifact = load_artifact(database, artifact_id)
        assert artifact.last_sent_at is None
        assert artifact.send_count == 0
        assert transport.deliveries == []

    @pytest.mark.asyncio
    async def test_transport_failure(self, database, pipeline, transport):
        artifact_id = make_artifact(database, name="Board pack")
        transport.fail_for.add(artifact_id)

        outcome = await pipeline.deliver_once(artifact_id)

        assert outcome.status == DeliveryStatus.FAILED
        assert "SMTP refused" in outcome.error
        assert attempts_for(database, artifact_id)[0].status == STATUS_FAILED

    @pytest.mark.asyncio
    async def test_no_recipients(self, database, pipeline, renderer):
        """Empty recipient list fails before rendering."""
        artifact_id = make_artifact(database, recipients=[])

        outcome = await pipeline.deliver_once(artifact_id)

        assert outcome.status == DeliveryStatus.FAILED
        assert outcome.error == NO_RECIPIENTS_MESSAGE
        assert renderer.rendered == []
        assert attempts_for(database, artifact_id)[0].error_message == NO_RECIPIENTS_MESSAGE

    @pytest.mark.asyncio
    async def test_render_timeout(self, database, transport, clock):
        renderer = RecordingRenderer(delay=1.0)
        pipeline = DeliveryPipeline(database, renderer, transport, clock, timeout_seconds=0.05)
        artifact_id = make_artifact(database)

        outcome = await pipeline.deliver_once(artifact_id)

        assert outcome.status == DeliveryStatus.FAILED
        assert outcome.error == "render timed out after 0.05s"
        assert attempts_for(database, artifact_id)[0].status == STATUS_FAILED


# ============================================================
# SKIPS AND SHUTDOWN
# ============================================================

class TestSkipsAndShutdown:
    """Tests for runs that never reach the collaborators."""

    @pytest.mark.asyncio
    async def test_missing_artifact_skipped(self, pipeline):
        outcome = await pipeline.deliver_once(uuid4())
        assert outcome.status == DeliveryStatus.SKIPPED
        assert outcome.reason == "not_found"
        assert outcome.attempt_id is None

    @pytest.mark.asyncio
    async def test_unscheduled_artifact_skipped(self, database, pipeline, renderer):
        artifact_id = make_artifact(database, is_scheduled=False)

        outcome = await pipeline.deliver_once(artifact_id)

        assert outcome.status == DeliveryStatus.SKIPPED
        assert outcome.reason == "not_scheduled"
        assert attempts_for(database, artifact_id) == []
        assert renderer.rendered == []

    @pytest.mark.asyncio
    async def test_stop_requested_before_start(self, database, pipeline):
        artifact_id = make_artifact(database)
        stop = asyncio.Event()
        stop.set()

        outcome = await pipeline.deliver_once(artifact_id, stop)

        assert outcome.status == DeliveryStatus.ABANDONED
        assert attempts_for(database, artifact_id) == []

    @pytest.mark.asyncio
    async def test_stop_requested_after_render(self, database, transport, clock):
        """Shutdown between render and deliver finalizes the attempt."""
        stop = asyncio.Event()

        class StoppingRenderer(RecordingRenderer):
            async def render(self, artifact):
                stop.set()
                return await super().render(artifact)

        pipeline = DeliveryPipeline(database, StoppingRenderer(), transport, clock)
        artifact_id = make_artifact(database)

        outcome = await pipeline.deliver_once(artifact_id, stop)

        assert outcome.status == DeliveryStatus.ABANDONED
        assert outcome.details["abort"]["type"] == "DeliveryAbortedError"
        assert outcome.details["abort"]["context"]["step"] == "deliver"
        assert transport.deliveries == []
        attempt = attempts_for(database, artifact_id)[0]
        assert attempt.status == STATUS_FAILED
        assert attempt.error_message == ABANDONED_MESSAGE
        assert load_artifact(database, artifact_id).last_sent_at is None


# ============================================================
# TEST SENDS
# ============================================================

class TestSendTest:
    """Tests for send_test."""

    @pytest.mark.asyncio
    async def test_flagged_and_never_advances(self, database, pipeline, transport):
        artifact_id = make_artifact(database, is_scheduled=False)
        make_binding(database, artifact_id, START_TIME)

        outcome = await pipeline.send_test(artifact_id, "me@example.com")

        assert outcome.status == DeliveryStatus.DELIVERED
        assert outcome.is_test is True
        assert transport.deliveries[0]["recipients"] == ["me@example.com"]

        attempt = attempts_for(database, artifact_id)[0]
        assert attempt.is_test is True
        assert attempt.recipients == ["me@example.com"]
        assert attempt.status == STATUS_SUCCESS

        artifact = load_artifact(database, artifact_id)
        assert artifact.last_sent_at is None
        assert artifact.send_count == 0
        with database.transaction_scope() as session:
            binding = JobBindingRepository(session).get_by_artifact(artifact_id)
            assert binding.last_run_at is None

    @pytest.mark.asyncio
    async def test_unknown_artifact(self, pipeline):
        with pytest.raises(ArtifactNotFoundError):
            await pipeline.send_test(uuid4(), "me@example.com")


# ============================================================
# SERIALIZATION
# ============================================================

class TestSerialization:
    """Tests for per-artifact locking."""

    @pytest.mark.asyncio
    async def test_same_artifact_never_overlaps(self, database, transport, clock):
        active = 0
        peak = 0

        class CountingRenderer(RecordingRenderer):
            async def render(self, artifact):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1
                return self.payload

        pipeline = DeliveryPipeline(database, CountingRenderer(), transport, clock)
        artifact_id = make_artifact(database)

        outcomes = await asyncio.gather(
            pipeline.deliver_once(artifact_id),
            pipeline.deliver_once(artifact_id),
        )

        assert peak == 1
        assert [o.status for o in outcomes] == [DeliveryStatus.DELIVERED] * 2
        assert not pipeline.is_delivering(artifact_id)

    @pytest.mark.asyncio
    async def test_locks_released_after_delivery(self, database, transport, clock):
        """Lock bookkeeping does not grow with every artifact ever delivered."""
        pipeline = DeliveryPipeline(database, RecordingRenderer(delay=0.01), transport, clock)
        first = make_artifact(database, name="First")
        second = make_artifact(database, name="Second")

        running = asyncio.gather(
            pipeline.deliver_once(first),
            pipeline.deliver_once(first),
            pipeline.deliver_once(second),
        )
        await asyncio.sleep(0)
        assert set(pipeline._locks) == {first, second}

        await running
        await pipeline.deliver_once(uuid4())

        assert pipeline._locks == {}
        assert pipeline._lock_users == {}

    @pytest.mark.asyncio
    async def test_lock_released_when_waiter_cancelled(self, database, transport, clock):
        pipeline = DeliveryPipeline(database, RecordingRenderer(delay=0.05), transport, clock)
        artifact_id = make_artifact(database)

        holder = asyncio.create_task(pipeline.deliver_once(artifact_id))
        waiter = asyncio.create_task(pipeline.deliver_once(artifact_id))
        await asyncio.sleep(0.01)
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)

        outcome = await holder

        assert outcome.status == DeliveryStatus.DELIVERED
        assert pipeline._locks == {}
