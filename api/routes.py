"""
Engine API Endpoints.

============================================================
PURPOSE
============================================================
HTTP surface of the delivery engine.

- Health and scheduler status
- Cron-triggered tick (shared secret)
- Job binding status and delivery history
- Manual delivery, test sends, schedule maintenance, pause / resume
- Threshold rule listing, activation and trigger history
- Metric evaluation

PRINCIPLES:
- Handlers only translate HTTP <-> engine calls
- Not found -> 404, invalid input -> 400, missing secret -> 401

============================================================
"""

import hmac
import json
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from aiohttp import web

from alerting.evaluator import AlertEvaluator
from alerting.models import MetricReading
from core.exceptions import ConfigurationError, NotFoundError
from delivery.pipeline import DeliveryPipeline
from delivery.schedule import ScheduleService
from scheduler.core import Scheduler
from storage.database import Database
from storage.repositories import (
    AlertTriggerRepository,
    DeliveryHistoryRepository,
    MetricRepository,
    ThresholdRuleRepository,
)


logger = logging.getLogger(__name__)

CRON_SECRET_HEADER = "X-Cron-Secret"
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 500
DEFAULT_TRIGGER_LIMIT = 100


# ============================================================
# JSON ENCODER
# ============================================================

class EngineEncoder(json.JSONEncoder):
    """JSON encoder for engine data."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=EngineEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(message: str, status: int) -> web.Response:
    return json_response({"status": "error", "error": message}, status=status)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _rule_to_dict(rule: Any) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "metric_id": rule.kpi_id,
        "condition": rule.condition,
        "threshold": rule.threshold,
        "channels": list(rule.channels or []),
        "recipients": list(rule.recipients or []),
        "active": rule.active,
        "created_at": rule.created_at,
    }


# ============================================================
# API HANDLERS
# ============================================================

class EngineAPI:
    """HTTP handlers for the delivery engine."""

    def __init__(
        self,
        database: Database,
        scheduler: Scheduler,
        pipeline: DeliveryPipeline,
        schedule_service: ScheduleService,
        evaluator: AlertEvaluator,
        cron_secret: Optional[str] = None,
    ) -> None:
        self._database = database
        self._scheduler = scheduler
        self._pipeline = pipeline
        self._schedule_service = schedule_service
        self._evaluator = evaluator
        self._cron_secret = cron_secret

    # --------------------------------------------------------
    # HEALTH / STATUS
    # --------------------------------------------------------

    async def health(self, request: web.Request) -> web.Response:
        """
        GET /health

        Liveness plus scheduler running flag.
        """
        return json_response({
            "status": "ok",
            "service": "delivery-engine",
            "scheduler_running": self._scheduler.is_running,
        })

    async def get_status(self, request: web.Request) -> web.Response:
        """GET /status"""
        return json_response({"status": "ok", "data": self._scheduler.get_status()})

    # --------------------------------------------------------
    # CRON
    # --------------------------------------------------------

    async def cron_tick(self, request: web.Request) -> web.Response:
        """
        POST /cron/tick

        Run one scheduler tick. Requires the X-Cron-Secret header
        to match the configured secret; with no secret configured
        every call is rejected.
        """
        provided = request.headers.get(CRON_SECRET_HEADER, "")
        if not self._cron_secret or not hmac.compare_digest(
            provided.encode("utf-8", "surrogateescape"),
            self._cron_secret.encode("utf-8", "surrogateescape"),
        ):
            logger.warning(f"Rejected cron tick from {request.remote}: bad or missing secret")
            return error_response("Unauthorized", 401)

        result = await self._scheduler.run_tick()
        return json_response({"status": "ok", "data": result.to_dict()})

    # --------------------------------------------------------
    # JOBS / HISTORY
    # --------------------------------------------------------

    async def list_jobs(self, request: web.Request) -> web.Response:
        """GET /jobs"""
        try:
            return json_response({"status": "ok", "data": self._schedule_service.job_statuses()})
        except Exception as e:
            logger.error(f"Error listing jobs: {e}")
            return error_response(str(e), 500)

    async def list_deliveries(self, request: web.Request) -> web.Response:
        """
        GET /artifacts/{artifact_id}/deliveries

        Query params:
        - limit: Max number of attempts (default 50)
        """
        artifact_id = _parse_uuid(request.match_info.get("artifact_id"))
        if artifact_id is None:
            return error_response("Invalid artifact id", 400)

        try:
            limit = int(request.query.get("limit", DEFAULT_HISTORY_LIMIT))
        except ValueError:
            return error_response("limit must be an integer", 400)
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))

        with self._database.transaction_scope() as session:
            attempts = DeliveryHistoryRepository(session).list_by_artifact(artifact_id, limit=limit)
            data = [
                {
                    "id": attempt.id,
                    "artifact_id": attempt.report_id,
                    "delivery_format": attempt.delivery_format,
                    "recipients": list(attempt.recipients or []),
                    "status": attempt.status,
                    "error_message": attempt.error_message,
                    "file_size": attempt.file_size,
                    "is_test": attempt.is_test,
                    "delivered_at": attempt.delivered_at,
                }
                for attempt in attempts
            ]
        return json_response({"status": "ok", "data": data})

    # --------------------------------------------------------
    # DELIVERY
    # --------------------------------------------------------

    async def deliver_artifact(self, request: web.Request) -> web.Response:
        """POST /artifacts/{artifact_id}/deliver"""
        artifact_id = _parse_uuid(request.match_info.get("artifact_id"))
        if artifact_id is None:
            return error_response("Invalid artifact id", 400)

        outcome = await self._scheduler.trigger(artifact_id)
        if outcome.reason == "not_found":
            return error_response(f"Artifact {artifact_id} not found", 404)
        return json_response({"status": "ok", "data": outcome.to_dict()})

    async def send_test(self, request: web.Request) -> web.Response:
        """
        POST /artifacts/{artifact_id}/test

        Body: {"recipient": "someone@example.com"}
        """
        artifact_id = _parse_uuid(request.match_info.get("artifact_id"))
        if artifact_id is None:
            return error_response("Invalid artifact id", 400)

        body = await self._read_json(request)
        recipient = body.get("recipient") if isinstance(body, dict) else None
        if not recipient:
            return error_response("recipient is required", 400)

        try:
            outcome = await self._pipeline.send_test(artifact_id, recipient)
        except NotFoundError as e:
            return error_response(e.message, 404)
        return json_response({"status": "ok", "data": outcome.to_dict()})

    # --------------------------------------------------------
    # SCHEDULE
    # --------------------------------------------------------

    async def schedule_artifact(self, request: web.Request) -> web.Response:
        """
        PUT /artifacts/{artifact_id}/schedule

        Body: {"frequency": "weekly", "time": "08:30", "dayOfWeek": "friday", ...}
        """
        artifact_id = _parse_uuid(request.match_info.get("artifact_id"))
        if artifact_id is None:
            return error_response("Invalid artifact id", 400)

        body = await self._read_json(request)
        if not isinstance(body, dict):
            return error_response("Body must be a JSON object", 400)

        try:
            summary = self._schedule_service.schedule_artifact(artifact_id, body)
        except ConfigurationError as e:
            return error_response(e.message, 400)
        except NotFoundError as e:
            return error_response(e.message, 404)
        return json_response({"status": "ok", "data": summary})

    async def unschedule_artifact(self, request: web.Request) -> web.Response:
        """DELETE /artifacts/{artifact_id}/schedule"""
        artifact_id = _parse_uuid(request.match_info.get("artifact_id"))
        if artifact_id is None:
            return error_response("Invalid artifact id", 400)

        try:
            removed = self._schedule_service.unschedule_artifact(artifact_id)
        except NotFoundError as e:
            return error_response(e.message, 404)
        return json_response({"status": "ok", "data": {"binding_removed": removed}})

    async def pause_job(self, request: web.Request) -> web.Response:
        """POST /artifacts/{artifact_id}/schedule/pause"""
        artifact_id = _parse_uuid(request.match_info.get("artifact_id"))
        if artifact_id is None:
            return error_response("Invalid artifact id", 400)

        try:
            summary = self._schedule_service.pause_job(artifact_id)
        except NotFoundError as e:
            return error_response(e.message, 404)
        return json_response({"status": "ok", "data": summary})

    async def resume_job(self, request: web.Request) -> web.Response:
        """POST /artifacts/{artifact_id}/schedule/resume"""
        artifact_id = _parse_uuid(request.match_info.get("artifact_id"))
        if artifact_id is None:
            return error_response("Invalid artifact id", 400)

        try:
            summary = self._schedule_service.resume_job(artifact_id)
        except NotFoundError as e:
            return error_response(e.message, 404)
        except ConfigurationError as e:
            return error_response(e.message, 400)
        return json_response({"status": "ok", "data": summary})

    # --------------------------------------------------------
    # RULES
    # --------------------------------------------------------

    async def list_rules(self, request: web.Request) -> web.Response:
        """
        GET /metrics/{metric_id}/rules

        All threshold rules of a metric, active or not.
        """
        metric_id = _parse_uuid(request.match_info.get("metric_id"))
        if metric_id is None:
            return error_response("Invalid metric id", 400)

        with self._database.transaction_scope() as session:
            if MetricRepository(session).get(metric_id) is None:
                return error_response(f"Metric {metric_id} not found", 404)
            rules = ThresholdRuleRepository(session).list_for_metric(metric_id)
            data = [_rule_to_dict(rule) for rule in rules]
        return json_response({"status": "ok", "data": data})

    async def update_rule(self, request: web.Request) -> web.Response:
        """
        PATCH /rules/{rule_id}

        Body: {"active": false}
        """
        rule_id = _parse_uuid(request.match_info.get("rule_id"))
        if rule_id is None:
            return error_response("Invalid rule id", 400)

        body = await self._read_json(request)
        active = body.get("active") if isinstance(body, dict) else None
        if not isinstance(active, bool):
            return error_response("active must be a boolean", 400)

        with self._database.transaction_scope() as session:
            rules = ThresholdRuleRepository(session)
            rule = rules.get(rule_id)
            if rule is None:
                return error_response(f"Rule {rule_id} not found", 404)
            rules.set_active(rule, active)
            data = _rule_to_dict(rule)

        logger.info(f"Rule {rule_id} {'activated' if active else 'deactivated'}")
        return json_response({"status": "ok", "data": data})

    async def rule_history(self, request: web.Request) -> web.Response:
        """
        GET /rules/{rule_id}/history

        Query params:
        - limit: Max number of triggers (default 100)
        """
        rule_id = _parse_uuid(request.match_info.get("rule_id"))
        if rule_id is None:
            return error_response("Invalid rule id", 400)

        try:
            limit = int(request.query.get("limit", DEFAULT_TRIGGER_LIMIT))
        except ValueError:
            return error_response("limit must be an integer", 400)
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))

        with self._database.transaction_scope() as session:
            if ThresholdRuleRepository(session).get(rule_id) is None:
                return error_response(f"Rule {rule_id} not found", 404)
            triggers = AlertTriggerRepository(session)
            data = {
                "total": triggers.count_for_rule(rule_id),
                "history": [
                    {
                        "id": trigger.id,
                        "metric_id": trigger.kpi_id,
                        "actual_value": trigger.actual_value,
                        "threshold": trigger.threshold,
                        "message": trigger.message,
                        "triggered_at": trigger.triggered_at,
                    }
                    for trigger in triggers.list_for_rule(rule_id, limit=limit)
                ],
            }
        return json_response({"status": "ok", "data": data})

    # --------------------------------------------------------
    # METRICS
    # --------------------------------------------------------

    async def evaluate_metrics(self, request: web.Request) -> web.Response:
        """
        POST /metrics/evaluate

        Body: {"entries": [{"metric_id": "...", "value": 12.5, "baseline": 10}]}

        Malformed entries are rejected as a whole (400); unknown
        metrics are reported per entry.
        """
        body = await self._read_json(request)
        entries = body.get("entries") if isinstance(body, dict) else None
        if not isinstance(entries, list):
            return error_response("entries must be a list", 400)

        try:
            readings = [MetricReading.from_dict(entry) for entry in entries]
        except (TypeError, ValueError, AttributeError) as e:
            return error_response(f"Invalid entry: {e}", 400)

        results = self._evaluator.evaluate_many(readings)
        return json_response({"status": "ok", "data": [result.to_dict() for result in results]})

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    @staticmethod
    async def _read_json(request: web.Request) -> Any:
        try:
            return await request.json()
        except (json.JSONDecodeError, ValueError):
            return None


# ============================================================
# ROUTER FACTORY
# ============================================================

def create_engine_app(
    database: Database,
    scheduler: Scheduler,
    pipeline: DeliveryPipeline,
    schedule_service: ScheduleService,
    evaluator: AlertEvaluator,
    cron_secret: Optional[str] = None,
) -> web.Application:
    """
    Create the engine API application.

    Returns an aiohttp Application with all routes configured.
    """
    api = EngineAPI(
        database=database,
        scheduler=scheduler,
        pipeline=pipeline,
        schedule_service=schedule_service,
        evaluator=evaluator,
        cron_secret=cron_secret,
    )

    app = web.Application()

    app.router.add_get("/health", api.health)
    app.router.add_get("/status", api.get_status)
    app.router.add_post("/cron/tick", api.cron_tick)
    app.router.add_get("/jobs", api.list_jobs)
    app.router.add_get("/artifacts/{artifact_id}/deliveries", api.list_deliveries)
    app.router.add_post("/artifacts/{artifact_id}/deliver", api.deliver_artifact)
    app.router.add_post("/artifacts/{artifact_id}/test", api.send_test)
    app.router.add_put("/artifacts/{artifact_id}/schedule", api.schedule_artifact)
    app.router.add_delete("/artifacts/{artifact_id}/schedule", api.unschedule_artifact)
    app.router.add_post("/artifacts/{artifact_id}/schedule/pause", api.pause_job)
    app.router.add_post("/artifacts/{artifact_id}/schedule/resume", api.resume_job)
    app.router.add_get("/metrics/{metric_id}/rules", api.list_rules)
    app.router.add_patch("/rules/{rule_id}", api.update_rule)
    app.router.add_get("/rules/{rule_id}/history", api.rule_history)
    app.router.add_post("/metrics/evaluate", api.evaluate_metrics)

    return app
