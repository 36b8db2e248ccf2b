"""
Tests for Threshold Alerting.

============================================================
PURPOSE
============================================================
Covers:
1. Condition semantics and messages
2. Single-metric evaluation (history rows, skips)
3. Batch evaluation with per-entry errors
4. The periodic sweep and notification dispatch

============================================================
"""

from uuid import uuid4

import pytest
from unittest.mock import AsyncMock

from alerting.conditions import AlertCondition, format_message, is_satisfied
from alerting.evaluator import AlertEvaluator
from alerting.models import MetricReading
from alerting.sweep import AlertSweep, MetricReader
from core.exceptions import MetricNotFoundError
from storage.repositories import AlertTriggerRepository

from factories import make_metric, make_rule


@pytest.fixture
def evaluator(database, clock):
    return AlertEvaluator(database, clock)


def trigger_rows(database, metric_id):
    with database.transaction_scope() as session:
        return AlertTriggerRepository(session).list_for_metric(metric_id)


# ============================================================
# CONDITION TESTS
# ============================================================

class TestConditions:
    """Tests for condition semantics."""

    @pytest.mark.parametrize("condition,value,threshold,expected", [
        (AlertCondition.ABOVE_THRESHOLD, 101, 100, True),
        (AlertCondition.ABOVE_THRESHOLD, 100, 100, False),
        (AlertCondition.ABOVE_THRESHOLD, 100.001, 100, True),
        (AlertCondition.BELOW_THRESHOLD, 99, 100, True),
        (AlertCondition.BELOW_THRESHOLD, 100, 100, False),
        (AlertCondition.EQUALS, 100, 100, True),
        (AlertCondition.EQUALS, 100.0001, 100, False),
    ])
    def test_comparisons(self, condition, value, threshold, expected):
        assert is_satisfied(condition, value, threshold) is expected

    @pytest.mark.parametrize("value,baseline,expected", [
        (120, 100, False),
        (121, 100, True),
        (79, 100, True),
        (80, 100, False),
        (500, None, False),
        (500, 0, False),
    ])
    def test_percent_change(self, value, baseline, expected):
        """Symmetric, strictly greater, needs a non-zero baseline."""
        assert is_satisfied(AlertCondition.PERCENT_CHANGE, value, 20, baseline) is expected

    def test_unknown_condition_parses_to_none(self):
        assert AlertCondition.parse("crosses_moving_average") is None
        assert AlertCondition.parse(None) is None

    def test_messages(self):
        assert format_message(AlertCondition.ABOVE_THRESHOLD, "Churn", 150.0, 100.0) == (
            'KPI "Churn" value 150 exceeded threshold 100'
        )
        assert format_message(AlertCondition.BELOW_THRESHOLD, "Churn", 2.5, 3) == (
            'KPI "Churn" value 2.5 dropped below threshold 3'
        )
        assert format_message(AlertCondition.EQUALS, "Churn", 3, 3) == (
            'KPI "Churn" value 3 equals threshold 3'
        )
        assert format_message(AlertCondition.PERCENT_CHANGE, "Churn", 130, 20) == (
            'KPI "Churn" changed by more than 20% (current: 130)'
        )


# ============================================================
# EVALUATOR TESTS
# ============================================================

class TestAlertEvaluator:
    """Tests for AlertEvaluator.evaluate."""

    def test_triggers_and_records_history(self, database, evaluator):
        metric_id = make_metric(database, "Revenue")
        above = make_rule(database, metric_id, "above_threshold", 100)
        make_rule(database, metric_id, "below_threshold", 50)

        result = evaluator.evaluate(metric_id, 150)

        assert result.alerts_checked == 2
        assert result.triggered_count == 1
        alert = result.triggered_alerts[0]
        assert alert.alert_id == above
        assert alert.message == 'KPI "Revenue" value 150 exceeded threshold 100'
        assert alert.channels == ["email"]

        rows = trigger_rows(database, metric_id)
        assert len(rows) == 1
        assert rows[0].id == alert.history_id
        assert rows[0].actual_value == 150
        assert rows[0].threshold == 100

    def test_zero_rules(self, database, evaluator):
        metric_id = make_metric(database)

        result = evaluator.evaluate(metric_id, 1)

        assert result.alerts_checked == 0
        assert result.triggered_alerts == []

    def test_inactive_rules_ignored(self, database, evaluator):
        metric_id = make_metric(database)
        make_rule(database, metric_id, "above_threshold", 1, active=False)

        result = evaluator.evaluate(metric_id, 10)

        assert result.alerts_checked == 0
        assert trigger_rows(database, metric_id) == []

    def test_unknown_condition_counted_but_skipped(self, database, evaluator):
        metric_id = make_metric(database)
        make_rule(database, metric_id, "crosses_moving_average", 1)

        result = evaluator.evaluate(metric_id, 10)

        assert result.alerts_checked == 1
        assert result.triggered_count == 0

    def test_percent_change_without_baseline(self, database, evaluator):
        metric_id = make_metric(database)
        make_rule(database, metric_id, "percent_change", 10)

        assert evaluator.evaluate(metric_id, 1000).triggered_count == 0
        assert evaluator.evaluate(metric_id, 1000, baseline=500).triggered_count == 1

    def test_no_dedup_between_evaluations(self, database, evaluator):
        metric_id = make_metric(database)
        make_rule(database, metric_id, "above_threshold", 1)

        evaluator.evaluate(metric_id, 5)
        evaluator.evaluate(metric_id, 5)

        assert len(trigger_rows(database, metric_id)) == 2

    def test_unknown_metric(self, evaluator):
        with pytest.raises(MetricNotFoundError):
            evaluator.evaluate(uuid4(), 1)

    def test_evaluate_many_isolates_errors(self, database, evaluator):
        good = make_metric(database, "Good")
        make_rule(database, good, "above_threshold", 1)
        missing = uuid4()

        results = evaluator.evaluate_many([
            MetricReading(metric_id=missing, value=5),
            MetricReading(metric_id=good, value=5),
        ])

        assert [r.metric_id for r in results] == [missing, good]
        assert results[0].failed
        assert results[0].to_dict() == {"metric_id": str(missing), "error": f"Metric {missing} not found"}
        assert results[1].triggered_count == 1


class TestMetricReading:
    """Tests for MetricReading.from_dict."""

    def test_accepts_kpi_id_alias(self):
        metric_id = uuid4()
        reading = MetricReading.from_dict({"kpiId": str(metric_id), "value": "12.5"})
        assert reading.metric_id == metric_id
        assert reading.value == 12.5
        assert reading.baseline is None

    @pytest.mark.parametrize("raw", [
        {"value": 1},
        {"metric_id": "not-a-uuid", "value": 1},
        {"metric_id": "00000000-0000-0000-0000-000000000001"},
        {"metric_id": "00000000-0000-0000-0000-000000000001", "value": float("nan")},
        {"metric_id": "00000000-0000-0000-0000-000000000001", "value": "Infinity"},
        {"metric_id": "00000000-0000-0000-0000-000000000001", "value": 1, "baseline": float("-inf")},
    ])
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValueError):
            MetricReading.from_dict(raw)


# ============================================================
# SWEEP TESTS
# ============================================================

class StaticReader(MetricReader):
    def __init__(self, values, failing=()):
        self.values = values
        self.failing = set(failing)

    async def read_metric_value(self, metric_id):
        if metric_id in self.failing:
            raise ConnectionError("warehouse unavailable")
        return self.values[metric_id]


class TestAlertSweep:
    """Tests for AlertSweep.run_once."""

    @pytest.mark.asyncio
    async def test_sweep_dispatches_triggered_alerts(self, database, evaluator, clock):
        hot = make_metric(database, "A hot")
        cold = make_metric(database, "B cold")
        make_rule(database, hot, "above_threshold", 10)
        make_rule(database, cold, "above_threshold", 10)
        handler = AsyncMock(return_value=True)

        sweep = AlertSweep(
            database, evaluator, StaticReader({hot: 50, cold: 1}),
            notification_handlers=[handler], clock=clock,
        )
        results = await sweep.run_once()

        assert [r.metric_id for r in results] == [hot, cold]
        assert results[0].triggered_count == 1
        handler.assert_awaited_once()
        assert handler.await_args.args[0].metric_id == hot
        assert sweep.sweep_count == 1

    @pytest.mark.asyncio
    async def test_read_failure_isolated(self, database, evaluator, clock):
        broken = make_metric(database, "A broken")
        fine = make_metric(database, "B fine")
        make_rule(database, broken, "above_threshold", 10)
        make_rule(database, fine, "above_threshold", 10)

        sweep = AlertSweep(database, evaluator, StaticReader({fine: 20}, failing=[broken]), clock=clock)
        results = await sweep.run_once()

        assert results[0].failed
        assert "warehouse unavailable" in results[0].error
        assert results[1].triggered_count == 1

    @pytest.mark.asyncio
    async def test_handler_failure_isolated(self, database, evaluator, clock):
        metric_id = make_metric(database)
        make_rule(database, metric_id, "above_threshold", 10)
        failing = AsyncMock(side_effect=RuntimeError("webhook down"))
        working = AsyncMock(return_value=True)

        sweep = AlertSweep(
            database, evaluator, StaticReader({metric_id: 20}),
            notification_handlers=[failing, working], clock=clock,
        )
        await sweep.run_once()

        working.assert_awaited_once()
        assert len(trigger_rows(database, metric_id)) == 1
