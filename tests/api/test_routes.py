"""
Tests for the Engine API.

============================================================
PURPOSE
============================================================
Covers:
1. Health and status
2. Cron tick authentication
3. Manual delivery, test sends and history
4. Schedule maintenance
5. Metric evaluation

============================================================
"""

import json
from uuid import uuid4

import pytest
from aiohttp import test_utils

from scheduler.models import SchedulerConfig
from scheduler.runtime import build_engine

from factories import make_artifact, make_metric, make_rule


SECRET = "s3cret-token"


@pytest.fixture
def engine(database, clock, renderer, transport):
    config = SchedulerConfig(run_on_start=False, default_timezone="UTC")
    return build_engine(
        config,
        database=database,
        renderer=renderer,
        transport=transport,
        clock=clock,
        cron_secret=SECRET,
    )


def client_for(engine) -> test_utils.TestClient:
    return test_utils.TestClient(test_utils.TestServer(engine.create_api_app()))


# ============================================================
# HEALTH / CRON
# ============================================================

class TestHealthAndCron:
    """Tests for health, status and the cron endpoint."""

    @pytest.mark.asyncio
    async def test_health(self, engine):
        async with client_for(engine) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            body = await resp.json()
            assert body["status"] == "ok"
            assert body["scheduler_running"] is False

    @pytest.mark.asyncio
    async def test_status(self, engine):
        async with client_for(engine) as client:
            resp = await client.get("/status")
            body = await resp.json()
            assert body["data"]["tick_interval_seconds"] == 60

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [
        {},
        {"X-Cron-Secret": "wrong"},
        {"X-Cron-Secret": "s\u00e9cret"},
    ])
    async def test_cron_tick_requires_secret(self, engine, headers):
        async with client_for(engine) as client:
            resp = await client.post("/cron/tick", headers=headers)
            assert resp.status == 401
        assert engine.scheduler.history.total == 0

    @pytest.mark.asyncio
    async def test_cron_tick_runs_tick(self, database, engine, transport):
        make_artifact(database)

        async with client_for(engine) as client:
            resp = await client.post("/cron/tick", headers={"X-Cron-Secret": SECRET})
            assert resp.status == 200
            body = await resp.json()

        assert body["data"]["succeeded"] == 1
        assert len(transport.deliveries) == 1

    @pytest.mark.asyncio
    async def test_cron_tick_rejected_without_configured_secret(self, database, clock, renderer, transport):
        engine = build_engine(
            SchedulerConfig(run_on_start=False),
            database=database, renderer=renderer, transport=transport, clock=clock,
            cron_secret="",
        )
        async with client_for(engine) as client:
            resp = await client.post("/cron/tick", headers={"X-Cron-Secret": ""})
            assert resp.status == 401


# ============================================================
# DELIVERY
# ============================================================

class TestDeliveryRoutes:
    """Tests for manual delivery, test sends and history."""

    @pytest.mark.asyncio
    async def test_deliver_and_history(self, database, engine):
        artifact_id = make_artifact(database)

        async with client_for(engine) as client:
            resp = await client.post(f"/artifacts/{artifact_id}/deliver")
            assert resp.status == 200
            assert (await resp.json())["data"]["status"] == "delivered"

            resp = await client.get(f"/artifacts/{artifact_id}/deliveries?limit=5")
            history = (await resp.json())["data"]

        assert len(history) == 1
        assert history[0]["status"] == "success"
        assert history[0]["is_test"] is False

    @pytest.mark.asyncio
    async def test_deliver_unknown_artifact(self, engine):
        async with client_for(engine) as client:
            resp = await client.post(f"/artifacts/{uuid4()}/deliver")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_invalid_artifact_id(self, engine):
        async with client_for(engine) as client:
            resp = await client.post("/artifacts/not-a-uuid/deliver")
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_send_test(self, database, engine, transport):
        artifact_id = make_artifact(database)

        async with client_for(engine) as client:
            resp = await client.post(f"/artifacts/{artifact_id}/test", json={"recipient": "me@example.com"})
            assert resp.status == 200
            assert (await resp.json())["data"]["is_test"] is True

            resp = await client.post(f"/artifacts/{artifact_id}/test", json={})
            assert resp.status == 400

        assert transport.deliveries[0]["recipients"] == ["me@example.com"]


# ============================================================
# SCHEDULE
# ============================================================

class TestScheduleRoutes:
    """Tests for schedule maintenance endpoints."""

    @pytest.mark.asyncio
    async def test_schedule_and_list_jobs(self, database, engine):
        artifact_id = make_artifact(database, is_scheduled=False)

        async with client_for(engine) as client:
            resp = await client.put(
                f"/artifacts/{artifact_id}/schedule",
                json={"frequency": "daily", "time": "06:15"},
            )
            assert resp.status == 200
            assert (await resp.json())["data"]["cron_expression"] == "15 6 * * *"

            resp = await client.get("/jobs")
            jobs = (await resp.json())["data"]
            assert [job["artifact_id"] for job in jobs] == [str(artifact_id)]

            resp = await client.delete(f"/artifacts/{artifact_id}/schedule")
            assert (await resp.json())["data"]["binding_removed"] is True

    @pytest.mark.asyncio
    async def test_invalid_schedule(self, database, engine):
        artifact_id = make_artifact(database)

        async with client_for(engine) as client:
            resp = await client.put(f"/artifacts/{artifact_id}/schedule", json={"time": "99:99"})
            assert resp.status == 400

            resp = await client.put(f"/artifacts/{uuid4()}/schedule", json={"frequency": "daily"})
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, database, engine):
        artifact_id = make_artifact(database)

        async with client_for(engine) as client:
            await client.put(f"/artifacts/{artifact_id}/schedule", json={"frequency": "daily"})

            resp = await client.post(f"/artifacts/{artifact_id}/schedule/pause")
            assert resp.status == 200
            assert (await resp.json())["data"]["is_active"] is False

            jobs = (await (await client.get("/jobs")).json())["data"]
            assert jobs[0]["is_active"] is False

            resp = await client.post(f"/artifacts/{artifact_id}/schedule/resume")
            assert resp.status == 200
            data = (await resp.json())["data"]
            assert data["is_active"] is True
            assert data["next_run_at"] is not None

    @pytest.mark.asyncio
    async def test_pause_without_binding(self, database, engine):
        artifact_id = make_artifact(database)

        async with client_for(engine) as client:
            resp = await client.post(f"/artifacts/{artifact_id}/schedule/pause")
            assert resp.status == 404

            resp = await client.post("/artifacts/not-a-uuid/schedule/resume")
            assert resp.status == 400


# ============================================================
# METRICS
# ============================================================

class TestMetricRoutes:
    """Tests for /metrics/evaluate."""

    @pytest.mark.asyncio
    async def test_evaluate_batch(self, database, engine):
        metric_id = make_metric(database, "Signups")
        make_rule(database, metric_id, "below_threshold", 100)
        missing = uuid4()

        async with client_for(engine) as client:
            resp = await client.post("/metrics/evaluate", json={"entries": [
                {"metric_id": str(metric_id), "value": 42},
                {"metric_id": str(missing), "value": 1},
            ]})
            assert resp.status == 200
            data = (await resp.json())["data"]

        assert data[0]["triggered_count"] == 1
        assert data[0]["triggered_alerts"][0]["message"] == (
            'KPI "Signups" value 42 dropped below threshold 100'
        )
        assert data[1] == {"metric_id": str(missing), "error": f"Metric {missing} not found"}

    @pytest.mark.asyncio
    async def test_malformed_entries(self, engine):
        async with client_for(engine) as client:
            resp = await client.post("/metrics/evaluate", json={"entries": [{"value": 1}]})
            assert resp.status == 400

            resp = await client.post("/metrics/evaluate", json={"entries": "nope"})
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_non_finite_value_rejected(self, database, engine):
        metric_id = make_metric(database)

        async with client_for(engine) as client:
            resp = await client.post("/metrics/evaluate", json={"entries": [
                {"metric_id": str(metric_id), "value": float("nan")},
            ]})
            assert resp.status == 400
            body = json.loads(await resp.text())

        assert "finite" in body["error"]


# ============================================================
# RULES
# ============================================================

class TestRuleRoutes:
    """Tests for rule listing, activation and trigger history."""

    @pytest.mark.asyncio
    async def test_list_rules(self, database, engine):
        metric_id = make_metric(database)
        active = make_rule(database, metric_id, "above_threshold", 10)
        muted = make_rule(database, metric_id, "below_threshold", 1, active=False)

        async with client_for(engine) as client:
            resp = await client.get(f"/metrics/{metric_id}/rules")
            assert resp.status == 200
            rules = (await resp.json())["data"]

            resp = await client.get(f"/metrics/{uuid4()}/rules")
            assert resp.status == 404

        assert {rule["id"]: rule["active"] for rule in rules} == {str(active): True, str(muted): False}

    @pytest.mark.asyncio
    async def test_deactivated_rule_stops_triggering(self, database, engine):
        metric_id = make_metric(database)
        rule_id = make_rule(database, metric_id, "above_threshold", 10)
        entries = {"entries": [{"metric_id": str(metric_id), "value": 50}]}

        async with client_for(engine) as client:
            resp = await client.patch(f"/rules/{rule_id}", json={"active": False})
            assert resp.status == 200
            assert (await resp.json())["data"]["active"] is False

            resp = await client.post("/metrics/evaluate", json=entries)
            data = (await resp.json())["data"]

        assert data[0]["alerts_checked"] == 0

    @pytest.mark.asyncio
    async def test_update_rule_validation(self, database, engine):
        metric_id = make_metric(database)
        rule_id = make_rule(database, metric_id, "above_threshold", 10)

        async with client_for(engine) as client:
            resp = await client.patch(f"/rules/{rule_id}", json={"active": "no"})
            assert resp.status == 400

            resp = await client.patch(f"/rules/{uuid4()}", json={"active": True})
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_trigger_history(self, database, engine):
        metric_id = make_metric(database, "Signups")
        rule_id = make_rule(database, metric_id, "above_threshold", 10)

        async with client_for(engine) as client:
            for value in (20, 5, 30):
                await client.post("/metrics/evaluate", json={"entries": [
                    {"metric_id": str(metric_id), "value": value},
                ]})

            resp = await client.get(f"/rules/{rule_id}/history?limit=1")
            assert resp.status == 200
            data = (await resp.json())["data"]

            resp = await client.get(f"/rules/{uuid4()}/history")
            assert resp.status == 404

        assert data["total"] == 2
        assert len(data["history"]) == 1
        assert data["history"][0]["metric_id"] == str(metric_id)
        assert data["history"][0]["threshold"] == 10
