"""
Tests for ScheduleService.

Binding creation, update, removal, advancement and priming.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from core.clock import ensure_utc
from core.exceptions import ArtifactNotFoundError, InvalidScheduleError, JobBindingNotFoundError
from delivery.schedule import ScheduleService
from storage.repositories import (
    ArtifactRepository,
    DeliveryHistoryRepository,
    JobBindingRepository,
)

from factories import START_TIME, make_artifact, make_binding


@pytest.fixture
def service(database, clock):
    return ScheduleService(database, clock, default_timezone="UTC")


def binding_of(database, artifact_id):
    with database.transaction_scope() as session:
        return JobBindingRepository(session).get_by_artifact(artifact_id)


class TestScheduleArtifact:
    """Tests for schedule_artifact / unschedule_artifact."""

    def test_creates_binding(self, database, service):
        artifact_id = make_artifact(database, is_scheduled=False)

        summary = service.schedule_artifact(artifact_id, {"frequency": "weekly", "time": "08:30", "dayOfWeek": "friday"})

        assert summary["cron_expression"] == "30 8 * * 5"
        binding = binding_of(database, artifact_id)
        assert binding.is_active
        # 2026-01-05 is a Monday; next Friday 08:30 UTC
        assert ensure_utc(binding.next_run_at) == datetime(2026, 1, 9, 8, 30, tzinfo=timezone.utc)

        with database.transaction_scope() as session:
            artifact = ArtifactRepository(session).get(artifact_id)
            assert artifact.is_scheduled
            assert artifact.frequency == "weekly"
            assert artifact.schedule_config["dayOfWeek"] == "friday"

    def test_reschedule_updates_single_binding(self, database, service):
        artifact_id = make_artifact(database)
        service.schedule_artifact(artifact_id, {"frequency": "daily", "time": "09:00"})
        service.schedule_artifact(artifact_id, {"frequency": "daily", "time": "18:45"})

        with database.transaction_scope() as session:
            bindings = [b for b in JobBindingRepository(session).list_all() if b.report_id == artifact_id]
            assert len(bindings) == 1
            assert bindings[0].cron_expression == "45 18 * * *"

    def test_realtime_removes_binding(self, database, service):
        artifact_id = make_artifact(database)
        service.schedule_artifact(artifact_id, {"frequency": "daily"})

        summary = service.schedule_artifact(artifact_id, {"frequency": "realtime"})

        assert summary["cron_expression"] is None
        assert binding_of(database, artifact_id) is None

    def test_invalid_config_changes_nothing(self, database, service):
        artifact_id = make_artifact(database, is_scheduled=False)

        with pytest.raises(InvalidScheduleError):
            service.schedule_artifact(artifact_id, {"frequency": "daily", "timezone": "Nowhere/Land"})

        assert binding_of(database, artifact_id) is None

    def test_invalid_timezone_without_cron_form(self, database, service):
        artifact_id = make_artifact(database, is_scheduled=False)

        with pytest.raises(InvalidScheduleError):
            service.schedule_artifact(artifact_id, {"frequency": "realtime", "timezone": "Nowhere/Land"})

        with database.transaction_scope() as session:
            artifact = ArtifactRepository(session).get(artifact_id)
            assert artifact.is_scheduled is False
            assert artifact.frequency == "daily"

    def test_unknown_artifact(self, service):
        with pytest.raises(ArtifactNotFoundError):
            service.schedule_artifact(uuid4(), {"frequency": "daily"})

    def test_unschedule(self, database, service):
        artifact_id = make_artifact(database)
        service.schedule_artifact(artifact_id, {"frequency": "hourly"})

        assert service.unschedule_artifact(artifact_id) is True
        assert service.unschedule_artifact(artifact_id) is False
        assert binding_of(database, artifact_id) is None


class TestBindingMaintenance:
    """Tests for advance_binding / prime_bindings / job_statuses."""

    def test_advance_binding(self, database, service):
        artifact_id = make_artifact(database)
        make_binding(database, artifact_id, START_TIME - timedelta(hours=3))

        next_run_at = service.advance_binding(artifact_id, START_TIME)

        assert next_run_at > START_TIME
        binding = binding_of(database, artifact_id)
        assert ensure_utc(binding.last_run_at) == START_TIME
        assert ensure_utc(binding.next_run_at) == next_run_at

    def test_advance_without_binding(self, database, service):
        assert service.advance_binding(make_artifact(database)) is None

    def test_unresolvable_binding_is_deactivated(self, database, service):
        artifact_id = make_artifact(database)
        make_binding(database, artifact_id, START_TIME, cron_expression="not a cron")

        assert service.advance_binding(artifact_id, START_TIME) is None

        binding = binding_of(database, artifact_id)
        assert binding.is_active is False
        assert binding.next_run_at is None

    def test_prime_bindings(self, database, service):
        primed = make_artifact(database, name="Primed")
        already = make_artifact(database, name="Already")
        broken = make_artifact(database, name="Broken")
        make_binding(database, primed, None)
        make_binding(database, already, START_TIME + timedelta(hours=1))
        make_binding(database, broken, None, cron_expression="61 * * * *")

        assert service.prime_bindings(START_TIME) == 1

        assert binding_of(database, primed).next_run_at is not None
        assert ensure_utc(binding_of(database, already).next_run_at) == START_TIME + timedelta(hours=1)
        assert binding_of(database, broken).is_active is False

    def test_job_statuses(self, database, service):
        artifact_id = make_artifact(database)
        service.schedule_artifact(artifact_id, {"frequency": "daily"})

        statuses = service.job_statuses()

        assert len(statuses) == 1
        assert statuses[0]["artifact_id"] == str(artifact_id)
        assert statuses[0]["last_status"] is None
        assert statuses[0]["pending_attempts"] == 0

    def test_job_statuses_count_pending_attempts(self, database, service):
        artifact_id = make_artifact(database)
        make_binding(database, artifact_id, START_TIME)
        with database.transaction_scope() as session:
            DeliveryHistoryRepository(session).create_pending(
                report_id=artifact_id,
                delivery_format="pdf",
                recipients=["ops@example.com"],
                delivered_at=START_TIME,
            )

        status = service.job_statuses()[0]

        assert status["last_status"] == "pending"
        assert status["pending_attempts"] == 1


class TestPauseResume:
    """Tests for pause_job / resume_job."""

    def test_pause_keeps_definition(self, database, service):
        artifact_id = make_artifact(database)
        make_binding(database, artifact_id, START_TIME - timedelta(minutes=5))

        summary = service.pause_job(artifact_id)

        assert summary["is_active"] is False
        binding = binding_of(database, artifact_id)
        assert binding.is_active is False
        assert binding.cron_expression == "0 9 * * *"
        with database.transaction_scope() as session:
            assert JobBindingRepository(session).list_due(START_TIME) == []
            assert ArtifactRepository(session).get(artifact_id).is_scheduled

    def test_resume_recomputes_next_run(self, database, service, clock):
        artifact_id = make_artifact(database)
        make_binding(database, artifact_id, START_TIME - timedelta(days=3))
        service.pause_job(artifact_id)

        summary = service.resume_job(artifact_id)

        # Missed occurrences are not replayed; next is tomorrow 09:00 UTC
        expected = datetime(2026, 1, 6, 9, 0, tzinfo=timezone.utc)
        assert summary["is_active"] is True
        binding = binding_of(database, artifact_id)
        assert binding.is_active is True
        assert ensure_utc(binding.next_run_at) == expected
        assert binding.last_run_at is None

    def test_resume_unresolvable_binding_stays_paused(self, database, service):
        artifact_id = make_artifact(database)
        make_binding(database, artifact_id, None, cron_expression="not a cron", is_active=False)

        with pytest.raises(InvalidScheduleError):
            service.resume_job(artifact_id)

        assert binding_of(database, artifact_id).is_active is False

    @pytest.mark.parametrize("operation", ["pause_job", "resume_job"])
    def test_missing_binding(self, database, service, operation):
        artifact_id = make_artifact(database)

        with pytest.raises(JobBindingNotFoundError):
            getattr(service, operation)(artifact_id)
