"""
Threshold Rule Store Repositories.

============================================================
PURPOSE
============================================================
Repositories for tracked metrics, their alert rules, and the
append-only trigger history.

============================================================
REPOSITORIES
============================================================
- MetricRepository: Metric lookup
- ThresholdRuleRepository: Rule storage, read-only to the evaluator
- AlertTriggerRepository: Append-only trigger log

============================================================
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from storage.models.alerting import AlertTrigger, Metric, ThresholdRule
from storage.repositories.base import BaseRepository


class MetricRepository(BaseRepository[Metric]):
    """Repository for tracked metrics."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, Metric, "MetricRepository")

    def create(self, name: str, description: Optional[str] = None) -> Metric:
        return self._add(Metric(name=name, description=description))

    def get(self, metric_id: UUID) -> Optional[Metric]:
        return self._get_by_id(metric_id)

    def list_with_active_rules(self) -> List[Metric]:
        """Metrics that have at least one active rule."""
        active_ids = (
            select(ThresholdRule.kpi_id)
            .where(ThresholdRule.active.is_(True))
            .distinct()
        )
        stmt = (
            select(Metric)
            .where(Metric.id.in_(active_ids))
            .order_by(Metric.name)
        )
        return self._execute_query(stmt)


class ThresholdRuleRepository(BaseRepository[ThresholdRule]):
    """
    Repository for threshold rules.

    ============================================================
    MUTABILITY
    ============================================================
    MUTABLE by users. The evaluator only reads.

    ============================================================
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, ThresholdRule, "ThresholdRuleRepository")

    def create(
        self,
        kpi_id: UUID,
        condition: str,
        threshold: float,
        channels: Optional[List[str]] = None,
        recipients: Optional[List[str]] = None,
        active: bool = True,
    ) -> ThresholdRule:
        entity = ThresholdRule(
            kpi_id=kpi_id,
            condition=condition,
            threshold=threshold,
            channels=list(channels or []),
            recipients=list(recipients or []),
            active=active,
        )
        return self._add(entity)

    def get(self, rule_id: UUID) -> Optional[ThresholdRule]:
        return self._get_by_id(rule_id)

    def list_for_metric(self, kpi_id: UUID) -> List[ThresholdRule]:
        """All rules of a metric, active or not, oldest first."""
        stmt = (
            select(ThresholdRule)
            .where(ThresholdRule.kpi_id == kpi_id)
            .order_by(ThresholdRule.created_at, ThresholdRule.id)
        )
        return self._execute_query(stmt)

    def list_active_for_metric(self, kpi_id: UUID) -> List[ThresholdRule]:
        stmt = (
            select(ThresholdRule)
            .where(
                ThresholdRule.kpi_id == kpi_id,
                ThresholdRule.active.is_(True),
            )
            .order_by(ThresholdRule.created_at, ThresholdRule.id)
        )
        return self._execute_query(stmt)

    def set_active(self, rule: ThresholdRule, active: bool) -> ThresholdRule:
        rule.active = active
        self._flush("set_active")
        return rule


class AlertTriggerRepository(BaseRepository[AlertTrigger]):
    """
    Repository for the trigger history.

    APPEND-ONLY. No deduplication: every satisfying evaluation
    is recorded.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, AlertTrigger, "AlertTriggerRepository")

    def record(
        self,
        alert_id: UUID,
        kpi_id: UUID,
        actual_value: float,
        threshold: float,
        message: str,
        triggered_at: datetime,
    ) -> AlertTrigger:
        entity = AlertTrigger(
            alert_id=alert_id,
            kpi_id=kpi_id,
            actual_value=actual_value,
            threshold=threshold,
            message=message,
            triggered_at=triggered_at,
        )
        return self._add(entity)

    def list_for_metric(self, kpi_id: UUID, limit: int = 100) -> List[AlertTrigger]:
        stmt = (
            select(AlertTrigger)
            .where(AlertTrigger.kpi_id == kpi_id)
            .order_by(desc(AlertTrigger.triggered_at))
            .limit(limit)
        )
        return self._execute_query(stmt)

    def list_for_rule(self, alert_id: UUID, limit: int = 100) -> List[AlertTrigger]:
        stmt = (
            select(AlertTrigger)
            .where(AlertTrigger.alert_id == alert_id)
            .order_by(desc(AlertTrigger.triggered_at))
            .limit(limit)
        )
        return self._execute_query(stmt)

    def count_for_rule(self, alert_id: UUID) -> int:
        return self._count(AlertTrigger.alert_id == alert_id)
