"""
Scheduler - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the scheduler.

- Scheduler configuration (environment-driven)
- Per-artifact run results
- Tick results and a bounded tick history

============================================================
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional
from uuid import UUID
import os

from core.clock import to_iso8601
from delivery.models import DEFAULT_TIMEZONE, DeliveryOutcome, DeliveryStatus


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass
class SchedulerConfig:
    """Configuration for the scheduler."""

    tick_interval_seconds: int = 60
    """Main loop tick interval."""

    max_concurrent_deliveries: int = 4
    """Artifacts delivered in parallel within one tick."""

    delivery_timeout_seconds: float = 120.0
    """Timeout for each external render / deliver call."""

    shutdown_grace_seconds: float = 30.0
    """How long shutdown waits for in-flight deliveries."""

    run_on_start: bool = True
    """Run one tick immediately during init()."""

    default_timezone: str = DEFAULT_TIMEZONE
    """Time zone for schedules that do not name one."""

    alert_sweep_interval_seconds: int = 900
    """Alert sweep interval; 0 disables the sweep."""

    log_level: str = "INFO"
    """Logging level."""

    log_format: str = "json"
    """Log output format (json or text)."""

    correlation_id_prefix: str = "tick"
    """Prefix for correlation IDs."""

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Load configuration from environment variables."""
        return cls(
            tick_interval_seconds=int(os.getenv("TICK_INTERVAL_SECONDS", "60")),
            max_concurrent_deliveries=int(os.getenv("MAX_CONCURRENT_DELIVERIES", "4")),
            delivery_timeout_seconds=float(os.getenv("DELIVERY_TIMEOUT_SECONDS", "120")),
            shutdown_grace_seconds=float(os.getenv("SHUTDOWN_GRACE_SECONDS", "30")),
            run_on_start=os.getenv("RUN_ON_START", "true").lower() == "true",
            default_timezone=os.getenv("SCHEDULER_TIMEZONE", DEFAULT_TIMEZONE),
            alert_sweep_interval_seconds=int(os.getenv("ALERT_SWEEP_INTERVAL_SECONDS", "900")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.tick_interval_seconds < 1:
            errors.append("tick_interval_seconds must be at least 1")

        if self.max_concurrent_deliveries < 1:
            errors.append("max_concurrent_deliveries must be at least 1")

        if self.delivery_timeout_seconds <= 0:
            errors.append("delivery_timeout_seconds must be positive")

        if self.shutdown_grace_seconds < 0:
            errors.append("shutdown_grace_seconds must not be negative")

        if self.alert_sweep_interval_seconds < 0:
            errors.append("alert_sweep_interval_seconds must not be negative")

        if self.log_format not in ("json", "text"):
            errors.append("log_format must be 'json' or 'text'")

        if not self.default_timezone:
            errors.append("default_timezone must be set")

        return errors


# ============================================================
# RUN RESULTS
# ============================================================

class RunSource(Enum):
    """Why an artifact was picked up."""

    BINDING = "binding"
    """Its cron binding reached next_run_at."""

    RECONCILIATION = "reconciliation"
    """The Due-Set Resolver found it due."""

    MANUAL = "manual"
    """Triggered out-of-band."""


@dataclass
class ArtifactRunResult:
    """Result of driving one artifact within a tick."""

    artifact_id: UUID
    source: RunSource
    outcome: Optional[DeliveryOutcome] = None
    error: Optional[str] = None

    @property
    def status(self) -> str:
        if self.outcome is not None:
            return self.outcome.status.value
        return DeliveryStatus.FAILED.value

    @property
    def succeeded(self) -> bool:
        return self.outcome is not None and self.outcome.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_id": str(self.artifact_id),
            "source": self.source.value,
            "status": self.status,
            "error": self.error or (self.outcome.error if self.outcome else None),
            "attempt_id": (
                str(self.outcome.attempt_id)
                if self.outcome and self.outcome.attempt_id else None
            ),
        }


@dataclass
class TickResult:
    """Result of one scheduler tick."""

    tick_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    skipped: bool = False
    """True when the tick did not run because another was in progress."""

    bindings_due: int = 0
    resolver_due: int = 0
    held_back: int = 0
    """Reconciliation candidates inside their retry window."""

    results: List[ArtifactRunResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def union_size(self) -> int:
        return len(self.results)

    @property
    def artifact_ids(self) -> List[UUID]:
        return [result.artifact_id for result in self.results]

    @property
    def duration_seconds(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def count(self, status: DeliveryStatus) -> int:
        return sum(1 for result in self.results if result.status == status.value)

    @property
    def succeeded(self) -> int:
        return self.count(DeliveryStatus.DELIVERED)

    @property
    def failed(self) -> int:
        return self.count(DeliveryStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "tick_id": self.tick_id,
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "skipped": self.skipped,
            "duration_seconds": self.duration_seconds,
            "bindings_due": self.bindings_due,
            "resolver_due": self.resolver_due,
            "held_back": self.held_back,
            "union_size": self.union_size,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped_artifacts": self.count(DeliveryStatus.SKIPPED),
            "abandoned": self.count(DeliveryStatus.ABANDONED),
            "error": self.error,
            "results": [result.to_dict() for result in self.results],
        }


class TickHistory:
    """Bounded history of recent ticks."""

    def __init__(self, max_size: int = 100) -> None:
        self._ticks: Deque[TickResult] = deque(maxlen=max_size)
        self._total = 0

    def add(self, tick: TickResult) -> None:
        self._ticks.append(tick)
        self._total += 1

    @property
    def last(self) -> Optional[TickResult]:
        return self._ticks[-1] if self._ticks else None

    @property
    def total(self) -> int:
        return self._total

    def get_recent(self, limit: int = 10) -> List[TickResult]:
        """Get recent ticks, newest first."""
        return list(self._ticks)[-limit:][::-1]

    def get_statistics(self) -> Dict[str, Any]:
        ran = [tick for tick in self._ticks if not tick.skipped]
        return {
            "total_ticks": self._total,
            "recent_ticks": len(self._ticks),
            "skipped_ticks": len(self._ticks) - len(ran),
            "deliveries_succeeded": sum(tick.succeeded for tick in ran),
            "deliveries_failed": sum(tick.failed for tick in ran),
        }
