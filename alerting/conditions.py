"""
Alert Conditions.

============================================================
PURPOSE
============================================================
The closed set of threshold conditions a rule can use, and
their message templates.

PRINCIPLES:
- Strict comparisons (equal does not trigger above/below)
- Exact equality for `equals`, no epsilon
- percent_change never triggers without a non-zero baseline
- Rules carrying an unknown condition are skipped, not errors

============================================================
"""

from enum import Enum
from typing import Optional


class AlertCondition(str, Enum):
    """Threshold condition kinds."""

    ABOVE_THRESHOLD = "above_threshold"
    BELOW_THRESHOLD = "below_threshold"
    EQUALS = "equals"
    PERCENT_CHANGE = "percent_change"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["AlertCondition"]:
        """Return the member for a stored value, or None if unknown."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


# ============================================================
# CONDITION CHECKS
# ============================================================

def above_threshold(value: float, threshold: float) -> bool:
    return value > threshold


def below_threshold(value: float, threshold: float) -> bool:
    return value < threshold


def equals(value: float, threshold: float) -> bool:
    return value == threshold


def percent_change(value: float, threshold: float, baseline: Optional[float]) -> bool:
    """
    True when |value - baseline| / |baseline| exceeds threshold percent.

    Direction does not matter: +20% and -20% behave the same.
    """
    if baseline is None or baseline == 0:
        return False
    change = abs((value - baseline) / baseline) * 100
    return change > threshold


def is_satisfied(
    condition: AlertCondition,
    value: float,
    threshold: float,
    baseline: Optional[float] = None,
) -> bool:
    """Evaluate one condition. Every member is handled explicitly."""
    if condition is AlertCondition.ABOVE_THRESHOLD:
        return above_threshold(value, threshold)
    elif condition is AlertCondition.BELOW_THRESHOLD:
        return below_threshold(value, threshold)
    elif condition is AlertCondition.EQUALS:
        return equals(value, threshold)
    elif condition is AlertCondition.PERCENT_CHANGE:
        return percent_change(value, threshold, baseline)
    raise ValueError(f"Unhandled alert condition: {condition!r}")


# ============================================================
# MESSAGES
# ============================================================

def format_number(value: float) -> str:
    """Render 100.0 as 100 and keep real fractions."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_message(
    condition: AlertCondition,
    metric_name: str,
    value: float,
    threshold: float,
) -> str:
    """Human-readable message for a triggered condition."""
    v = format_number(value)
    t = format_number(threshold)

    if condition is AlertCondition.ABOVE_THRESHOLD:
        return f'KPI "{metric_name}" value {v} exceeded threshold {t}'
    elif condition is AlertCondition.BELOW_THRESHOLD:
        return f'KPI "{metric_name}" value {v} dropped below threshold {t}'
    elif condition is AlertCondition.EQUALS:
        return f'KPI "{metric_name}" value {v} equals threshold {t}'
    elif condition is AlertCondition.PERCENT_CHANGE:
        return f'KPI "{metric_name}" changed by more than {t}% (current: {v})'
    raise ValueError(f"Unhandled alert condition: {condition!r}")
