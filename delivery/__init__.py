"""
Delivery Package.

Decides when a scheduled artifact is due and drives its
delivery through a recorded, timeout-bounded pipeline.

Modules:
- models: Frequency, ScheduleConfig, DeliveryOutcome
- cron: Cron next-time resolution (croniter + pendulum)
- due_set: Interval-based Due-Set Resolver
- collaborators: Renderer / transport interfaces
- pipeline: DeliveryPipeline
- schedule: Binding maintenance (ScheduleService)
"""

from .models import (
    Frequency,
    FREQUENCY_INTERVALS,
    interval_for,
    ScheduleConfig,
    ArtifactSnapshot,
    DeliveryStatus,
    DeliveryOutcome,
)
from .cron import next_cron_time, validate_cron, schedule_to_cron
from .due_set import DueSetResolver
from .collaborators import (
    ArtifactRenderer,
    DeliveryTransport,
    UnconfiguredRenderer,
    OutboxTransport,
)
from .pipeline import DeliveryPipeline
from .schedule import ScheduleService, advance_binding_record


__all__ = [
    # Models
    "Frequency",
    "FREQUENCY_INTERVALS",
    "interval_for",
    "ScheduleConfig",
    "ArtifactSnapshot",
    "DeliveryStatus",
    "DeliveryOutcome",

    # Cron
    "next_cron_time",
    "validate_cron",
    "schedule_to_cron",

    # Services
    "DueSetResolver",
    "ArtifactRenderer",
    "DeliveryTransport",
    "UnconfiguredRenderer",
    "OutboxTransport",
    "DeliveryPipeline",
    "ScheduleService",
    "advance_binding_record",
]
