"""
Scheduler Package.

Owns the periodic tick that drives scheduled delivery: bindings
due + resolver due, unioned, de-duplicated and dispatched to the
Delivery Pipeline.

Modules:
- models: SchedulerConfig, tick and run results
- core: Scheduler, setup_logging
- runtime: Composition root (build_engine, run_engine)
- cli: Command-line entry point
"""

from .models import (
    SchedulerConfig,
    RunSource,
    ArtifactRunResult,
    TickResult,
    TickHistory,
)
from .core import Scheduler, setup_logging


__all__ = [
    "SchedulerConfig",
    "RunSource",
    "ArtifactRunResult",
    "TickResult",
    "TickHistory",
    "Scheduler",
    "setup_logging",
]
