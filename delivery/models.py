"""
Delivery - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for scheduled delivery.

- Artifact frequencies and their reconciliation intervals
- Validated schedule configuration
- Artifact snapshots handed to collaborators
- Delivery outcomes

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID
import re

import pendulum

from core.clock import to_iso8601
from core.exceptions import InvalidScheduleError


# ============================================================
# FREQUENCY
# ============================================================

class Frequency(str, Enum):
    """How often an artifact is delivered."""

    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ON_DEMAND = "on_demand"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Frequency"]:
        """Return the member for a stored value, or None if unknown."""
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None

    @property
    def is_automatic(self) -> bool:
        """on_demand artifacts are never due automatically."""
        return self != Frequency.ON_DEMAND


FREQUENCY_INTERVALS: Dict[Frequency, timedelta] = {
    Frequency.HOURLY: timedelta(hours=1),
    Frequency.DAILY: timedelta(hours=24),
    Frequency.WEEKLY: timedelta(days=7),
    # Calendar-approximate, not exact month length
    Frequency.MONTHLY: timedelta(days=30),
}

DEFAULT_INTERVAL = FREQUENCY_INTERVALS[Frequency.DAILY]


def interval_for(frequency: Optional[str]) -> timedelta:
    """
    Reconciliation interval for a stored frequency value.

    realtime and unrecognized values fall back to the daily
    interval.
    """
    parsed = Frequency.parse(frequency)
    return FREQUENCY_INTERVALS.get(parsed, DEFAULT_INTERVAL)


# ============================================================
# SCHEDULE CONFIG
# ============================================================

WEEKDAYS_CRON: Dict[str, int] = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}

DEFAULT_TIME_OF_DAY = "09:00"
DEFAULT_DAY_OF_WEEK = "monday"
DEFAULT_DAY_OF_MONTH = 1
DEFAULT_TIMEZONE = "America/New_York"

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def validate_timezone(timezone: str) -> None:
    """
    Check an IANA zone name.

    Raises:
        InvalidScheduleError: If the IANA zone is unknown
    """
    try:
        pendulum.timezone(timezone)
    except Exception as e:
        raise InvalidScheduleError("timezone", timezone, f"unknown time zone ({e})")


@dataclass(frozen=True)
class ScheduleConfig:
    """
    Validated schedule configuration of an artifact.

    Parsed once at the boundary (from_dict); everything past
    that point can trust the fields.
    """

    frequency: Frequency = Frequency.DAILY

    time_of_day: str = DEFAULT_TIME_OF_DAY
    """HH:MM in the schedule's time zone."""

    day_of_week: str = DEFAULT_DAY_OF_WEEK
    """Lower-case weekday name, used by weekly schedules."""

    day_of_month: int = DEFAULT_DAY_OF_MONTH
    """1..31, used by monthly schedules."""

    timezone: str = DEFAULT_TIMEZONE
    """IANA time zone name."""

    @property
    def hour(self) -> int:
        return int(self.time_of_day.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time_of_day.split(":")[1])

    @classmethod
    def from_dict(
        cls,
        data: Optional[Dict[str, Any]],
        default_timezone: str = DEFAULT_TIMEZONE,
    ) -> "ScheduleConfig":
        """
        Parse and validate a raw schedule configuration.

        Accepts both the stored camelCase keys (time, dayOfWeek,
        dayOfMonth) and snake_case keys.

        Raises:
            InvalidScheduleError: On any invalid field
        """
        data = data or {}

        raw_frequency = data.get("frequency", Frequency.DAILY.value)
        frequency = Frequency.parse(raw_frequency)
        if frequency is None:
            raise InvalidScheduleError("frequency", raw_frequency, "unknown frequency")

        time_of_day = data.get("time_of_day", data.get("time")) or DEFAULT_TIME_OF_DAY
        match = _TIME_PATTERN.match(str(time_of_day).strip())
        if not match:
            raise InvalidScheduleError("time_of_day", time_of_day, "expected HH:MM")
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise InvalidScheduleError("time_of_day", time_of_day, "hour or minute out of range")

        day_of_week = data.get("day_of_week", data.get("dayOfWeek")) or DEFAULT_DAY_OF_WEEK
        day_of_week = str(day_of_week).strip().lower()
        if day_of_week not in WEEKDAYS_CRON:
            raise InvalidScheduleError("day_of_week", day_of_week, "expected a weekday name")

        raw_day = data.get("day_of_month", data.get("dayOfMonth"))
        if raw_day in (None, ""):
            day_of_month = DEFAULT_DAY_OF_MONTH
        else:
            try:
                day_of_month = int(raw_day)
            except (TypeError, ValueError):
                raise InvalidScheduleError("day_of_month", raw_day, "expected an integer")
            if not 1 <= day_of_month <= 31:
                raise InvalidScheduleError("day_of_month", raw_day, "expected 1..31")

        tz = data.get("timezone") or default_timezone
        if not isinstance(tz, str):
            raise InvalidScheduleError("timezone", tz, "timezone must be a string")
        validate_timezone(tz)

        return cls(
            frequency=frequency,
            time_of_day=f"{hour:02d}:{minute:02d}",
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            timezone=tz,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Stored (camelCase) representation."""
        return {
            "frequency": self.frequency.value,
            "time": self.time_of_day,
            "dayOfWeek": self.day_of_week,
            "dayOfMonth": self.day_of_month,
            "timezone": self.timezone,
        }


# ============================================================
# ARTIFACT SNAPSHOT
# ============================================================

@dataclass(frozen=True)
class ArtifactSnapshot:
    """
    Read-only view of an artifact taken at attempt start.

    This is what the renderer receives; it never sees ORM rows.
    """

    id: UUID
    name: str
    frequency: str
    delivery_format: str
    recipients: List[str]
    schedule_config: Optional[Dict[str, Any]] = None
    last_sent_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, artifact: Any) -> "ArtifactSnapshot":
        return cls(
            id=artifact.id,
            name=artifact.name,
            frequency=artifact.frequency,
            delivery_format=artifact.delivery_format,
            recipients=list(artifact.recipients or []),
            schedule_config=dict(artifact.schedule_config) if artifact.schedule_config else None,
            last_sent_at=artifact.last_sent_at,
        )


# ============================================================
# DELIVERY OUTCOME
# ============================================================

class DeliveryStatus(Enum):
    """Result of one deliver_once call."""

    DELIVERED = "delivered"
    """Attempt finalized as success."""

    FAILED = "failed"
    """Attempt finalized as failed (render, deliver, timeout)."""

    SKIPPED = "skipped"
    """No attempt made: artifact missing or not scheduled."""

    ABANDONED = "abandoned"
    """Stopped at a checkpoint because shutdown was requested."""


@dataclass
class DeliveryOutcome:
    """Outcome of a delivery, returned to the caller."""

    artifact_id: UUID
    status: DeliveryStatus
    attempt_id: Optional[UUID] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    file_size: Optional[int] = None
    is_test: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_id": str(self.artifact_id),
            "status": self.status.value,
            "attempt_id": str(self.attempt_id) if self.attempt_id else None,
            "error": self.error,
            "reason": self.reason,
            "file_size": self.file_size,
            "is_test": self.is_test,
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
        }
