"""
Alert Sweep.

============================================================
PURPOSE
============================================================
Periodic evaluation of every metric that has active rules.

Reads current values through the MetricReader collaborator,
feeds them to the Alert Evaluator, and hands every triggered
alert to the registered notification handlers.

PRINCIPLES:
- One metric's read or evaluation failure never stops the rest
- Handler failures are logged and isolated
- Notification-only, no corrective action

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from core.clock import ClockProtocol, SystemClock
from storage.database import Database
from storage.repositories import MetricRepository

from .evaluator import AlertEvaluator
from .models import EvaluationResult, MetricReading, TriggeredAlert


logger = logging.getLogger(__name__)


# Type for notification handlers
NotificationHandler = Callable[[TriggeredAlert], Awaitable[bool]]


class MetricReader(ABC):
    """Supplies current metric values to the sweep."""

    @abstractmethod
    async def read_metric_value(self, metric_id: UUID) -> float:
        """Current value of a metric."""
        pass

    async def read_baseline(self, metric_id: UUID) -> Optional[float]:
        """Baseline for percent_change rules. None disables them."""
        return None


async def log_notification_handler(alert: TriggeredAlert) -> bool:
    """Default handler: writes the alert to the log."""
    targets = ", ".join(alert.channels) or "no channels"
    logger.warning(f"[ALERT] {alert.message} -> {targets} ({len(alert.recipients)} recipient(s))")
    return True


class AlertSweep:
    """
    Runs alert evaluation as a background task.

    Usage:
        sweep = AlertSweep(database, evaluator, reader, interval_seconds=900)
        sweep.add_handler(my_handler)
        await sweep.start()
        ...
        await sweep.stop()
    """

    def __init__(
        self,
        database: Database,
        evaluator: AlertEvaluator,
        reader: MetricReader,
        interval_seconds: float = 900.0,
        notification_handlers: Optional[List[NotificationHandler]] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._database = database
        self._evaluator = evaluator
        self._reader = reader
        self._interval = interval_seconds
        self._handlers = list(notification_handlers or [])
        self._clock = clock or SystemClock()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._sweep_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def sweep_count(self) -> int:
        return self._sweep_count

    def add_handler(self, handler: NotificationHandler) -> None:
        """Add a notification handler."""
        self._handlers.append(handler)

    def remove_handler(self, handler: NotificationHandler) -> None:
        """Remove a notification handler."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    # ---------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Alert sweep started (every {self._interval:g}s)")

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Alert sweep stopped")

    async def _run(self) -> None:
        """Main run loop."""
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Alert sweep error: {e}")

            await asyncio.sleep(self._interval)

    # ---------------------------------------------------------
    # One sweep
    # ---------------------------------------------------------

    async def run_once(self) -> List[EvaluationResult]:
        """Evaluate all metrics with active rules once."""
        with self._database.transaction_scope() as session:
            metric_ids = [metric.id for metric in MetricRepository(session).list_with_active_rules()]

        read_errors: Dict[UUID, str] = {}
        readings: List[MetricReading] = []
        for metric_id in metric_ids:
            try:
                value = await self._reader.read_metric_value(metric_id)
                baseline = await self._reader.read_baseline(metric_id)
                readings.append(MetricReading(metric_id=metric_id, value=value, baseline=baseline))
            except Exception as e:
                logger.error(f"Reading metric {metric_id} failed: {e}")
                read_errors[metric_id] = f"Metric read failed: {e}"

        evaluated = {result.metric_id: result for result in self._evaluator.evaluate_many(readings)}

        results = []
        for metric_id in metric_ids:
            if metric_id in read_errors:
                results.append(EvaluationResult(
                    metric_id=metric_id,
                    error=read_errors[metric_id],
                    evaluated_at=self._clock.now(),
                ))
            else:
                results.append(evaluated[metric_id])

        triggered = [alert for result in results for alert in result.triggered_alerts]
        if triggered:
            await self._dispatch_notifications(triggered)

        self._sweep_count += 1
        logger.info(
            f"Alert sweep #{self._sweep_count}: {len(metric_ids)} metric(s), "
            f"{len(triggered)} triggered, {sum(1 for r in results if r.failed)} error(s)"
        )
        return results

    async def _dispatch_notifications(self, alerts: List[TriggeredAlert]) -> None:
        """Dispatch alerts to notification handlers."""
        for alert in alerts:
            for handler in self._handlers:
                try:
                    await handler(alert)
                except Exception as e:
                    logger.error(f"Notification handler error: {e}")
