"""Custom exceptions for the scheduling engine.

Every error raised by the engine carries a category that decides how the
request boundary treats it:

- validation: bad input IDs or shapes, returned immediately, never retried
- constraint: no feasible candidate, returned with recommendations
- resource: collaborator unavailable or timed out, retried with backoff
- algorithm: internal invariant violated, logged as critical and surfaced
- system: processing budget exceeded or request cancelled, work discarded
"""

from datetime import datetime
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error taxonomy used by results and retry policies."""

    VALIDATION = "validation"
    CONSTRAINT = "constraint"
    RESOURCE = "resource"
    ALGORITHM = "algorithm"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    """How loudly an error should be reported."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class SchedulingError(Exception):
    """Base exception for scheduling engine errors."""

    category = ErrorCategory.SYSTEM
    severity = ErrorSeverity.ERROR
    default_code = "SCHEDULING_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.timestamp = datetime.now()
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Whether a retry policy may re-attempt the failed operation."""
        return self.category == ErrorCategory.RESOURCE

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(SchedulingError):
    """Request or domain input failed validation."""

    category = ErrorCategory.VALIDATION
    default_code = "VALIDATION_FAILED"


class UnknownEntityError(ValidationError):
    """A student, course, teacher or content ID does not resolve."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Unknown {entity_type}: '{entity_id}'",
            code=f"UNKNOWN_{entity_type.upper()}",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )


class UnknownContentError(ValidationError):
    """A prerequisite points at content that is not in the catalog."""

    def __init__(self, content_id: str, referenced_by: str | None = None):
        self.content_id = content_id
        self.referenced_by = referenced_by
        message = f"Unknown content '{content_id}'"
        if referenced_by:
            message += f" referenced as prerequisite of '{referenced_by}'"
        super().__init__(
            message,
            code="UNKNOWN_CONTENT",
            details={"content_id": content_id, "referenced_by": referenced_by},
        )


class ContentCycleError(ValidationError):
    """Prerequisite graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(
            f"Prerequisite cycle detected: {' -> '.join(cycle)}",
            code="PREREQUISITE_CYCLE",
            details={"cycle": cycle},
        )


class ConstraintError(SchedulingError):
    """No candidate satisfies the hard constraints."""

    category = ErrorCategory.CONSTRAINT
    severity = ErrorSeverity.WARNING
    default_code = "NO_FEASIBLE_CANDIDATE"


class ResourceError(SchedulingError):
    """A collaborator is unavailable or timed out."""

    category = ErrorCategory.RESOURCE
    default_code = "RESOURCE_UNAVAILABLE"


class CommitConflictError(ResourceError):
    """A booking commit lost a race against a concurrent request."""

    default_code = "COMMIT_CONFLICT"


class InvariantViolationError(SchedulingError):
    """An internal invariant was violated (e.g. negative available spots)."""

    category = ErrorCategory.ALGORITHM
    severity = ErrorSeverity.CRITICAL
    default_code = "INVARIANT_VIOLATED"


class ProcessingTimeoutError(SchedulingError):
    """Processing exceeded its wall-clock budget."""

    category = ErrorCategory.SYSTEM
    default_code = "PROCESSING_TIMEOUT"

    def __init__(self, budget_seconds: float, phase: str | None = None):
        self.budget_seconds = budget_seconds
        self.phase = phase
        message = f"Processing exceeded time budget ({budget_seconds:g}s)"
        if phase:
            message += f" during {phase}"
        super().__init__(
            message,
            details={"budget_seconds": budget_seconds, "phase": phase},
        )


class RequestCancelledError(SchedulingError):
    """Request was cancelled before completion."""

    category = ErrorCategory.SYSTEM
    severity = ErrorSeverity.WARNING
    default_code = "REQUEST_CANCELLED"

    def __init__(self, request_id: str, reason: str = "cancelled"):
        self.request_id = request_id
        super().__init__(
            f"Request '{request_id}' {reason} before completion",
            details={"request_id": request_id, "reason": reason},
        )


class DailyUpdateInProgressError(SchedulingError):
    """A daily update run is already in progress."""

    category = ErrorCategory.VALIDATION
    default_code = "DAILY_UPDATE_RUNNING"

    def __init__(self, update_id: str | None = None):
        self.update_id = update_id
        super().__init__(
            "Daily update is already running",
            details={"update_id": update_id},
        )


class RequestInProgressError(SchedulingError):
    """A synchronously submitted request has no result yet."""

    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING
    default_code = "REQUEST_IN_PROGRESS"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Request '{request_id}' is still being processed synchronously",
            details={"request_id": request_id},
        )
