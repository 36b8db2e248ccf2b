"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy for the delivery engine.

- Separates "not found" from transient delivery failures
- Carries severity and recoverability for logging
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
EngineException (base)
├── ConfigurationError
│   └── InvalidScheduleError
├── NotFoundError
│   ├── ArtifactNotFoundError
│   ├── MetricNotFoundError
│   └── JobBindingNotFoundError
├── DeliveryError
│   ├── RenderError
│   ├── TransportError
│   ├── DeliveryTimeoutError
│   └── DeliveryAbortedError
└── SchedulerError
    ├── StartupError
    └── ShutdownError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for logging."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact deliveries."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error affects one operation only."""

    TRANSIENT = "transient"
    """Temporary error, the next due cycle may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class EngineException(Exception):
    """
    Base exception for all delivery engine errors.

    All exceptions carry:
    - severity: for logging
    - context: for debugging
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(EngineException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class InvalidScheduleError(ConfigurationError):
    """Schedule configuration or cron expression is invalid."""

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid schedule {field}: {reason}",
            config_key=field,
            actual_value=value,
            context={"reason": reason},
        )
        self.field = field
        self.reason = reason


# ============================================================
# NOT FOUND ERRORS
# ============================================================

class NotFoundError(EngineException):
    """
    Referenced entity does not exist.

    Fails the single operation; never aborts a batch.
    """

    default_severity = Severity.LOW

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            context={"entity": entity, "entity_id": str(entity_id)},
        )
        self.entity = entity
        self.entity_id = entity_id


class ArtifactNotFoundError(NotFoundError):
    """Scheduled artifact does not exist."""

    def __init__(self, artifact_id: Any):
        super().__init__("Artifact", artifact_id)


class MetricNotFoundError(NotFoundError):
    """Metric does not exist."""

    def __init__(self, metric_id: Any):
        super().__init__("Metric", metric_id)


class JobBindingNotFoundError(NotFoundError):
    """Artifact has no job binding."""

    def __init__(self, artifact_id: Any):
        super().__init__("Job binding for artifact", artifact_id)


# ============================================================
# DELIVERY ERRORS
# ============================================================

class DeliveryError(EngineException):
    """
    Base class for delivery failures.

    Recorded in delivery history as failed; retried on the next
    due cycle, never immediately.
    """

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        artifact_id: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if artifact_id is not None:
            context["artifact_id"] = str(artifact_id)

        super().__init__(message, context=context, **kwargs)
        self.artifact_id = artifact_id


class RenderError(DeliveryError):
    """Rendering the artifact failed."""


class TransportError(DeliveryError):
    """Handing rendered bytes to recipients failed."""


class DeliveryTimeoutError(DeliveryError):
    """An external render or deliver call exceeded its timeout."""

    def __init__(
        self,
        step: str,
        timeout_seconds: float,
        artifact_id: Optional[Any] = None,
    ):
        super().__init__(
            message=f"{step} timed out after {timeout_seconds:g}s",
            artifact_id=artifact_id,
            context={"step": step, "timeout_seconds": timeout_seconds},
        )
        self.step = step
        self.timeout_seconds = timeout_seconds


class DeliveryAbortedError(DeliveryError):
    """Delivery abandoned at a checkpoint because shutdown was requested."""

    default_severity = Severity.LOW


# ============================================================
# SCHEDULER ERRORS
# ============================================================

class SchedulerError(EngineException):
    """Base class for scheduler lifecycle errors."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class StartupError(SchedulerError):
    """Scheduler startup failed."""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if stage:
            context["stage"] = stage
        super().__init__(message, context=context, **kwargs)


class ShutdownError(SchedulerError):
    """Scheduler shutdown did not complete cleanly."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if timeout_seconds is not None:
            context["timeout_seconds"] = timeout_seconds
        super().__init__(message, context=context, **kwargs)


__all__ = [
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
