"""
Alert Evaluator.

============================================================
PURPOSE
============================================================
Evaluates metric readings against the active threshold rules
of each metric and appends a trigger-history row for every
satisfied rule.

PRINCIPLES:
- The caller supplies the value; the evaluator never reads
  metrics itself
- Unknown metric fails the single evaluation
- Unknown conditions and missing baselines are skipped
- No deduplication or cooldown

============================================================
"""

import logging
from typing import Iterable, List, Optional
from uuid import UUID

from core.clock import ClockProtocol, SystemClock
from core.exceptions import MetricNotFoundError
from storage.database import Database
from storage.repositories import (
    AlertTriggerRepository,
    MetricRepository,
    ThresholdRuleRepository,
)

from .conditions import AlertCondition, format_message, is_satisfied
from .models import EvaluationResult, MetricReading, TriggeredAlert


logger = logging.getLogger(__name__)


class AlertEvaluator:
    """
    Threshold rule evaluation.

    Each call runs in its own transaction: trigger rows of one
    metric commit together, independent of other metrics.
    """

    def __init__(
        self,
        database: Database,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._database = database
        self._clock = clock or SystemClock()

    def evaluate(
        self,
        metric_id: UUID,
        current_value: float,
        baseline: Optional[float] = None,
    ) -> EvaluationResult:
        """
        Evaluate one reading against all active rules of a metric.

        Raises:
            MetricNotFoundError: If the metric does not exist
        """
        now = self._clock.now()

        with self._database.transaction_scope() as session:
            metric = MetricRepository(session).get(metric_id)
            if metric is None:
                raise MetricNotFoundError(metric_id)

            rules = ThresholdRuleRepository(session).list_active_for_metric(metric_id)
            result = EvaluationResult(
                metric_id=metric_id,
                metric_name=metric.name,
                current_value=current_value,
                alerts_checked=len(rules),
                evaluated_at=now,
            )
            if not rules:
                return result

            triggers = AlertTriggerRepository(session)
            for rule in rules:
                condition = AlertCondition.parse(rule.condition)
                if condition is None:
                    logger.debug(f"Skipping rule {rule.id}: unknown condition '{rule.condition}'")
                    continue

                if not is_satisfied(condition, current_value, rule.threshold, baseline):
                    continue

                message = format_message(condition, metric.name, current_value, rule.threshold)
                entry = triggers.record(
                    alert_id=rule.id,
                    kpi_id=metric_id,
                    actual_value=current_value,
                    threshold=rule.threshold,
                    message=message,
                    triggered_at=now,
                )
                result.triggered_alerts.append(TriggeredAlert(
                    alert_id=rule.id,
                    condition=condition.value,
                    threshold=rule.threshold,
                    message=message,
                    history_id=entry.id,
                    channels=list(rule.channels or []),
                    recipients=list(rule.recipients or []),
                    metric_id=metric_id,
                    metric_name=metric.name,
                    actual_value=current_value,
                    triggered_at=now,
                ))
                logger.info(f"Alert triggered: {message} (rule {rule.id})")

        return result

    def evaluate_many(self, readings: Iterable[MetricReading]) -> List[EvaluationResult]:
        """
        Evaluate readings independently.

        A failing entry is captured as {metric_id, error} in its
        own slot; the batch always returns one result per entry.
        """
        results = []
        for reading in readings:
            try:
                results.append(self.evaluate(reading.metric_id, reading.value, reading.baseline))
            except Exception as e:
                logger.error(f"Alert evaluation failed for metric {reading.metric_id}: {e}")
                results.append(EvaluationResult(
                    metric_id=reading.metric_id,
                    error=str(e),
                    evaluated_at=self._clock.now(),
                ))
        return results
