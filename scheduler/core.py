"""
Scheduler - Core.

============================================================
RESPONSIBILITY
============================================================
Owns the single periodic tick that drives scheduled delivery.

On each tick:
1. Active bindings with next_run_at <= now (primary path)
2. Due-Set Resolver over all scheduled artifacts (reconciliation)
3. Union by artifact id: binding entries first, resolver
   entries appended when not already present
4. Each artifact through the Delivery Pipeline with bounded
   concurrency; one failure never stops the others
5. Bindings of binding-path artifacts are advanced

============================================================
ARCHITECTURAL POSITION
============================================================
- No business logic beyond union / dedup / dispatch
- Constructed once in the composition root and passed to
  whoever needs to trigger it (API, tests)
- Ticks never overlap; a tick that finds one in progress is
  skipped

============================================================
"""

import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID

from core.clock import ClockProtocol, SystemClock, ensure_utc
from core.exceptions import ConfigurationError, ShutdownError, StartupError
from delivery.due_set import DueSetResolver
from delivery.models import DeliveryOutcome, DeliveryStatus, interval_for
from delivery.pipeline import DeliveryPipeline
from delivery.schedule import ScheduleService
from storage.database import Database
from storage.repositories import (
    ArtifactRepository,
    DeliveryHistoryRepository,
    JobBindingRepository,
)

from .models import (
    ArtifactRunResult,
    RunSource,
    SchedulerConfig,
    TickHistory,
    TickResult,
)


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("scheduler")


# ============================================================
# SCHEDULER
# ============================================================

class Scheduler:
    """
    Process-wide delivery scheduler.

    Usage:
        scheduler = Scheduler(config, database, pipeline, schedule_service)
        await scheduler.init()
        ...
        await scheduler.shutdown()
    """

    def __init__(
        self,
        config: SchedulerConfig,
        database: Database,
        pipeline: DeliveryPipeline,
        schedule_service: ScheduleService,
        resolver: Optional[DueSetResolver] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        errors = config.validate()
        if errors:
            raise ConfigurationError(
                message=f"Invalid scheduler configuration: {', '.join(errors)}",
            )

        self._config = config
        self._database = database
        self._pipeline = pipeline
        self._schedule_service = schedule_service
        self._resolver = resolver or DueSetResolver()
        self._clock = clock or SystemClock()

        # Runtime state
        self._initialized = False
        self._shutting_down = False
        self._stop_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._timer_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._history = TickHistory()
        self._tick_counter = 0
        self._orphaned_attempts = 0

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._initialized and not self._shutting_down

    @property
    def is_ticking(self) -> bool:
        return self._tick_lock.locked()

    @property
    def history(self) -> TickHistory:
        return self._history

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def init(self) -> None:
        """
        Start the scheduler. Idempotent.

        Returns only once the timer is registered (and, with
        run_on_start, after the first tick has run), so callers
        can start accepting traffic afterwards.
        """
        if self._initialized:
            logger.debug("Scheduler already initialized")
            return

        logger.info("=== SCHEDULER STARTUP SEQUENCE ===")
        self._shutting_down = False
        self._stop_event.clear()

        try:
            self._schedule_service.prime_bindings(self._clock.now())
            self._orphaned_attempts = self._count_orphaned_attempts()
        except Exception as e:
            logger.error(f"Scheduler startup failed: {e}", exc_info=True)
            raise StartupError(
                message=f"Priming job bindings failed: {e}",
                stage="prime_bindings",
                cause=e,
            )

        self._initialized = True

        if self._config.run_on_start:
            await self.run_tick()

        self._timer_task = asyncio.create_task(self._run_loop())
        logger.info(
            f"=== SCHEDULER STARTED | interval={self._config.tick_interval_seconds}s "
            f"concurrency={self._config.max_concurrent_deliveries} ==="
        )

    def _count_orphaned_attempts(self) -> int:
        """Attempts a previous process left pending; nothing is in flight yet."""
        with self._database.transaction_scope() as session:
            orphaned = DeliveryHistoryRepository(session).list_pending()
            if orphaned:
                oldest = orphaned[0]
                logger.warning(
                    f"{len(orphaned)} delivery attempt(s) left pending by a previous run "
                    f"(oldest: artifact {oldest.report_id} at {oldest.delivered_at})"
                )
            return len(orphaned)

    async def shutdown(self) -> None:
        """
        Stop the scheduler.

        Cancels the timer, signals in-flight deliveries to stop at
        their next checkpoint, and waits up to the grace period.
        Anything still running after that is cancelled.

        Raises:
            ShutdownError: After cleanup, if runs had to be cancelled
        """
        if not self._initialized or self._shutting_down:
            return

        cancelled = 0

        logger.info("=== SCHEDULER SHUTDOWN SEQUENCE ===")
        self._shutting_down = True
        self._stop_event.set()

        current = asyncio.current_task()
        pending = {task for task in self._inflight if task is not current and not task.done()}
        if pending:
            logger.info(f"Waiting up to {self._config.shutdown_grace_seconds:g}s for {len(pending)} in-flight run(s)")
            _, still_running = await asyncio.wait(pending, timeout=self._config.shutdown_grace_seconds)
            if still_running:
                logger.error(
                    f"Grace period elapsed, cancelling {len(still_running)} in-flight run(s)"
                )
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)
                cancelled = len(still_running)

        if self._timer_task and not self._timer_task.done():
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
        self._timer_task = None

        self._initialized = False
        logger.info("=== SCHEDULER SHUTDOWN COMPLETE ===")

        if cancelled:
            raise ShutdownError(
                message=f"Cancelled {cancelled} in-flight run(s) after the grace period",
                timeout_seconds=self._config.shutdown_grace_seconds,
            )

    async def _run_loop(self) -> None:
        """Timer loop: wait one interval, tick, repeat."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._config.tick_interval_seconds,
                )
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_tick()
            except asyncio.CancelledError:
                logger.info("Scheduler loop cancelled")
                break
            except Exception as e:
                logger.error(f"Tick error: {e}", exc_info=True)

    # --------------------------------------------------------
    # Tick
    # --------------------------------------------------------

    async def run_tick(self) -> TickResult:
        """
        Run one tick.

        Returns a skipped TickResult if another tick is still in
        progress or shutdown has begun.
        """
        now = self._clock.now()
        self._tick_counter += 1
        tick_id = f"{self._config.correlation_id_prefix}_{now.strftime('%Y%m%d_%H%M%S')}_{self._tick_counter}"

        if self._tick_lock.locked() or self._stop_event.is_set():
            reason = "shutdown in progress" if self._stop_event.is_set() else "previous tick still running"
            logger.warning(f"Tick {tick_id} skipped: {reason}")
            result = TickResult(tick_id=tick_id, started_at=now, completed_at=now, skipped=True, error=reason)
            self._history.add(result)
            return result

        async with self._tick_lock:
            task = asyncio.current_task()
            self._inflight.add(task)
            try:
                result = await self._execute_tick(tick_id, now)
            finally:
                self._inflight.discard(task)

        self._history.add(result)
        return result

    async def _execute_tick(self, tick_id: str, now: datetime) -> TickResult:
        result = TickResult(tick_id=tick_id, started_at=now)

        try:
            queue, bindings_due, resolver_due, held_back = self._collect_due(now)
        except Exception as e:
            logger.error(f"Tick {tick_id}: collecting due artifacts failed: {e}", exc_info=True)
            result.error = str(e)
            result.completed_at = self._clock.now()
            return result

        result.bindings_due = bindings_due
        result.resolver_due = resolver_due
        result.held_back = held_back

        semaphore = asyncio.Semaphore(self._config.max_concurrent_deliveries)

        async def run_one(artifact_id: UUID, source: RunSource) -> ArtifactRunResult:
            async with semaphore:
                return await self._run_artifact(artifact_id, source, now)

        result.results = list(await asyncio.gather(
            *(run_one(artifact_id, source) for artifact_id, source in queue)
        ))
        result.completed_at = self._clock.now()

        logger.info(
            f"Tick {tick_id}: bindings_due={bindings_due} resolver_due={resolver_due} "
            f"held_back={held_back} union={result.union_size} succeeded={result.succeeded} "
            f"failed={result.failed} skipped={result.count(DeliveryStatus.SKIPPED)} "
            f"abandoned={result.count(DeliveryStatus.ABANDONED)} "
            f"duration={result.duration_seconds:.2f}s"
        )
        return result

    def _collect_due(self, now: datetime) -> Tuple[List[Tuple[UUID, RunSource]], int, int, int]:
        """
        Build the ordered, de-duplicated work queue.

        Reconciliation candidates whose latest attempt is younger
        than their frequency interval are held back, so a failing
        artifact is retried at most once per interval on that path.
        """
        with self._database.transaction_scope() as session:
            due_bindings = JobBindingRepository(session).list_due(now)
            scheduled = ArtifactRepository(session).list_scheduled()
            resolver_due = self._resolver.find_due(scheduled, now)
            history = DeliveryHistoryRepository(session)

            queue: List[Tuple[UUID, RunSource]] = []
            seen: Set[UUID] = set()

            for binding in due_bindings:
                if binding.report_id not in seen:
                    seen.add(binding.report_id)
                    queue.append((binding.report_id, RunSource.BINDING))

            held_back = 0
            for artifact in resolver_due:
                if artifact.id in seen:
                    continue
                latest = history.latest_for_artifact(artifact.id)
                if latest is not None:
                    since_attempt = ensure_utc(now) - ensure_utc(latest.delivered_at)
                    if since_attempt < interval_for(artifact.frequency):
                        held_back += 1
                        logger.debug(
                            f"Artifact {artifact.id} held back: last attempt "
                            f"{since_attempt.total_seconds():.0f}s ago"
                        )
                        continue
                seen.add(artifact.id)
                queue.append((artifact.id, RunSource.RECONCILIATION))

        return queue, len(due_bindings), len(resolver_due), held_back

    async def _run_artifact(
        self,
        artifact_id: UUID,
        source: RunSource,
        now: datetime,
    ) -> ArtifactRunResult:
        """Deliver one artifact, isolating any failure."""
        run = ArtifactRunResult(artifact_id=artifact_id, source=source)

        try:
            run.outcome = await self._pipeline.deliver_once(artifact_id, self._stop_event)
        except Exception as e:
            logger.error(f"Artifact {artifact_id} ({source.value}) failed: {e}", exc_info=True)
            run.error = str(e)

        # Successful deliveries advance the binding inside the pipeline
        if source == RunSource.BINDING and not run.succeeded and not self._abandoned(run.outcome):
            try:
                self._schedule_service.advance_binding(artifact_id, now)
            except Exception as e:
                logger.error(f"Advancing binding of artifact {artifact_id} failed: {e}")

        logger.info(f"Artifact {artifact_id} ({source.value}): {run.status}")
        return run

    @staticmethod
    def _abandoned(outcome: Optional[DeliveryOutcome]) -> bool:
        return outcome is not None and outcome.status == DeliveryStatus.ABANDONED

    # --------------------------------------------------------
    # Manual trigger
    # --------------------------------------------------------

    async def trigger(self, artifact_id: UUID) -> DeliveryOutcome:
        """
        Deliver one artifact now, outside the tick.

        Serialized with any tick delivery of the same artifact.
        """
        task = asyncio.current_task()
        self._inflight.add(task)
        try:
            logger.info(f"Manual trigger for artifact {artifact_id}")
            return await self._pipeline.deliver_once(artifact_id, self._stop_event)
        finally:
            self._inflight.discard(task)

    # --------------------------------------------------------
    # Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        last = self._history.last
        return {
            "running": self.is_running,
            "ticking": self.is_ticking,
            "shutting_down": self._shutting_down,
            "tick_interval_seconds": self._config.tick_interval_seconds,
            "max_concurrent_deliveries": self._config.max_concurrent_deliveries,
            "inflight": len(self._inflight),
            "orphaned_pending_attempts": self._orphaned_attempts,
            "current_time": self._clock.now().isoformat(),
            "tick_stats": self._history.get_statistics(),
            "last_tick": last.to_dict() if last else None,
        }
