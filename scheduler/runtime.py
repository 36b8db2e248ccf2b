"""
Scheduler - Runtime.

============================================================
RESPONSIBILITY
============================================================
Composition root of the delivery engine.

- Builds storage, collaborators, pipeline, scheduler, alert
  sweep and API in one place
- Runs them (single tick, loop, optional HTTP server) and
  tears them down in reverse order
- Installs signal handlers for graceful shutdown

Nothing else in the engine constructs these objects; they are
passed by reference to whoever needs them.

============================================================
"""

import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional

from aiohttp import web

from alerting.evaluator import AlertEvaluator
from alerting.sweep import AlertSweep, MetricReader, log_notification_handler
from api.routes import create_engine_app
from core.clock import ClockProtocol, SystemClock
from core.exceptions import ShutdownError
from delivery.collaborators import (
    ArtifactRenderer,
    DeliveryTransport,
    OutboxTransport,
    UnconfiguredRenderer,
)
from delivery.due_set import DueSetResolver
from delivery.pipeline import DeliveryPipeline
from delivery.schedule import ScheduleService
from storage.database import Database, DatabaseConfig

from .core import Scheduler
from .models import SchedulerConfig


logger = logging.getLogger(__name__)

DEFAULT_OUTBOX_DIR = "data/outbox"


@dataclass
class Engine:
    """Every long-lived object of one engine process."""

    config: SchedulerConfig
    database: Database
    pipeline: DeliveryPipeline
    schedule_service: ScheduleService
    scheduler: Scheduler
    evaluator: AlertEvaluator
    sweep: Optional[AlertSweep] = None
    cron_secret: Optional[str] = None

    def create_api_app(self) -> web.Application:
        return create_engine_app(
            database=self.database,
            scheduler=self.scheduler,
            pipeline=self.pipeline,
            schedule_service=self.schedule_service,
            evaluator=self.evaluator,
            cron_secret=self.cron_secret,
        )


def build_engine(
    config: SchedulerConfig,
    database: Optional[Database] = None,
    renderer: Optional[ArtifactRenderer] = None,
    transport: Optional[DeliveryTransport] = None,
    metric_reader: Optional[MetricReader] = None,
    clock: Optional[ClockProtocol] = None,
    cron_secret: Optional[str] = None,
) -> Engine:
    """
    Wire the engine.

    Collaborators left unset fall back to development defaults:
    an UnconfiguredRenderer and an OutboxTransport writing under
    OUTBOX_DIR. Without a metric reader the alert sweep is off.
    """
    clock = clock or SystemClock()
    database = database or Database(DatabaseConfig.from_env())

    if renderer is None:
        logger.warning("No renderer configured: every delivery will fail until one is wired in")
        renderer = UnconfiguredRenderer()
    if transport is None:
        transport = OutboxTransport(os.getenv("OUTBOX_DIR", DEFAULT_OUTBOX_DIR))

    pipeline = DeliveryPipeline(
        database=database,
        renderer=renderer,
        transport=transport,
        clock=clock,
        timeout_seconds=config.delivery_timeout_seconds,
    )
    schedule_service = ScheduleService(database, clock, config.default_timezone)
    scheduler = Scheduler(
        config=config,
        database=database,
        pipeline=pipeline,
        schedule_service=schedule_service,
        resolver=DueSetResolver(),
        clock=clock,
    )
    evaluator = AlertEvaluator(database, clock)

    sweep = None
    if metric_reader is not None and config.alert_sweep_interval_seconds > 0:
        sweep = AlertSweep(
            database=database,
            evaluator=evaluator,
            reader=metric_reader,
            interval_seconds=config.alert_sweep_interval_seconds,
            notification_handlers=[log_notification_handler],
            clock=clock,
        )

    return Engine(
        config=config,
        database=database,
        pipeline=pipeline,
        schedule_service=schedule_service,
        scheduler=scheduler,
        evaluator=evaluator,
        sweep=sweep,
        cron_secret=cron_secret if cron_secret is not None else os.getenv("CRON_SECRET"),
    )


async def run_engine(
    engine: Engine,
    single_tick: bool = False,
    serve_api: bool = False,
    host: str = "0.0.0.0",
    port: int = 8080,
) -> Dict[str, Any]:
    """
    Run the engine until a signal arrives (or one tick, then exit).

    The scheduler is initialized before the HTTP server starts
    listening, so no tick can be missed at boot.
    """
    engine.database.initialize()

    if single_tick:
        result = await engine.scheduler.run_tick()
        return result.to_dict()

    stop = asyncio.Event()
    _install_signal_handlers(stop)

    runner: Optional[web.AppRunner] = None
    try:
        await engine.scheduler.init()
        if engine.sweep is not None:
            await engine.sweep.start()

        if serve_api:
            runner = web.AppRunner(engine.create_api_app())
            await runner.setup()
            await web.TCPSite(runner, host, port).start()
            logger.info(f"API listening on http://{host}:{port}")

        await stop.wait()
    finally:
        if runner is not None:
            await runner.cleanup()
        if engine.sweep is not None:
            await engine.sweep.stop()
        try:
            await engine.scheduler.shutdown()
        except ShutdownError as e:
            logger.error(f"Unclean shutdown: {e.message}")
        engine.database.dispose()

    return engine.scheduler.get_status()


def _install_signal_handlers(stop: asyncio.Event) -> None:
    """Set `stop` on SIGINT / SIGTERM."""
    if sys.platform == "win32":
        # Windows has no loop.add_signal_handler
        signal.signal(signal.SIGINT, lambda signum, frame: stop.set())
        return

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)
