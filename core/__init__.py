"""
Core Module Package.

This package contains the infrastructure components that all
other modules depend on.

Components:
- clock: Injectable time abstraction
- exceptions: Engine exception hierarchy
"""

from .clock import (
    ClockProtocol,
    SystemClock,
    MockClock,
    ensure_utc,
    to_iso8601,
    from_iso8601,
)
from .exceptions import (
    Severity,
    ErrorClassification,
    EngineException,
    ConfigurationError,
    InvalidScheduleError,
    NotFoundError,
    ArtifactNotFoundError,
    MetricNotFoundError,
    JobBindingNotFoundError,
    DeliveryError,
    RenderError,
    TransportError,
    DeliveryTimeoutError,
    DeliveryAbortedError,
    SchedulerError,
    StartupError,
    ShutdownError,
)


__all__ = [
    # Clock
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "to_iso8601",
    "from_iso8601",

    # Exceptions
    "Severity",
    "ErrorClassification",
    "EngineException",
    "ConfigurationError",
    "InvalidScheduleError",
    "NotFoundError",
    "ArtifactNotFoundError",
    "MetricNotFoundError",
    "JobBindingNotFoundError",
    "DeliveryError",
    "RenderError",
    "TransportError",
    "DeliveryTimeoutError",
    "DeliveryAbortedError",
    "SchedulerError",
    "StartupError",
    "ShutdownError",
]
