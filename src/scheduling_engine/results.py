"""Output models: conflicts, resolutions, recommendations, metrics and results."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar

from .exceptions import InvariantViolationError, SchedulingError, ValidationError
from .models import (
    ScheduledClass,
    SchedulingPriority,
    SchedulingStatus,
    TimeSlot,
)


class ConflictType(str, Enum):
    """Types of scheduling conflicts."""

    TIME_OVERLAP = "time_overlap"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    TEACHER_UNAVAILABLE = "teacher_unavailable"
    STUDENT_UNAVAILABLE = "student_unavailable"
    CONTENT_MISMATCH = "content_mismatch"
    RESOURCE_CONFLICT = "resource_conflict"


class ConflictSeverity(str, Enum):
    """Conflict severity, ordered from least to most severe."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(ConflictSeverity).index(self)

    def __ge__(self, other):
        if not isinstance(other, ConflictSeverity):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other):
        if not isinstance(other, ConflictSeverity):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other):
        if not isinstance(other, ConflictSeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other):
        if not isinstance(other, ConflictSeverity):
            return NotImplemented
        return self.rank < other.rank


class ResolutionType(str, Enum):
    """Ways a conflict can be resolved."""

    RESCHEDULE = "reschedule"
    REASSIGN_TEACHER = "reassign_teacher"
    SPLIT_CLASS = "split_class"
    MERGE_CLASSES = "merge_classes"
    WAITLIST = "waitlist"
    ADJUST_CONTENT = "adjust_content"
    DEFER_SESSION = "defer_session"
    CANCEL_CONFLICTING = "cancel_conflicting"
    MANUAL_INTERVENTION = "manual_intervention"


class ResolutionStepType(str, Enum):
    NOTIFICATION = "notification"
    DATABASE_UPDATE = "database_update"
    SCHEDULE_CHANGE = "schedule_change"
    RESOURCE_ALLOCATION = "resource_allocation"
    APPROVAL_REQUIRED = "approval_required"


class RecommendationType(str, Enum):
    ALTERNATIVE_TIME = "alternative_time"
    ALTERNATIVE_TEACHER = "alternative_teacher"
    CONTENT_ADJUSTMENT = "content_adjustment"
    CLASS_FORMAT_CHANGE = "class_format_change"
    PREREQUISITE_SCHEDULING = "prerequisite_scheduling"


class RecommendedActionType(str, Enum):
    SCHEDULE_CLASS = "schedule_class"
    MODIFY_SCHEDULE = "modify_schedule"
    NOTIFY_STAKEHOLDERS = "notify_stakeholders"
    REQUEST_APPROVAL = "request_approval"
    DEFER_SCHEDULING = "defer_scheduling"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EventType(str, Enum):
    """Lifecycle events emitted by the orchestrator."""

    REQUEST_RECEIVED = "request_received"
    PROCESSING_STARTED = "processing_started"
    STATUS_CHANGED = "status_changed"
    CONFLICT_DETECTED = "conflict_detected"
    OPTIMIZATION_APPLIED = "optimization_applied"
    PROCESSING_COMPLETED = "processing_completed"
    ERROR_OCCURRED = "error_occurred"


class EventSource(str, Enum):
    API = "api"
    SCHEDULER = "scheduler"
    OPTIMIZER = "optimizer"
    CONFLICT_RESOLVER = "conflict_resolver"
    SYNC_SERVICE = "sync_service"


@dataclass(frozen=True)
class ResolutionImpact:
    """Impact assessment of a resolution.

    Satisfaction values are score deltas (new score minus old score), so they
    may be negative.
    """

    affected_students: int
    affected_teachers: int
    schedule_disruption: int  # 1-10
    resource_utilization: float = 0.0
    student_satisfaction: float = 0.0
    teacher_satisfaction: float = 0.0
    cost_implications: float | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.schedule_disruption <= 10:
            raise ValidationError(
                f"schedule_disruption must be 1-10, got {self.schedule_disruption}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "affected_students": self.affected_students,
            "affected_teachers": self.affected_teachers,
            "schedule_disruption": self.schedule_disruption,
            "resource_utilization": round(self.resource_utilization, 4),
            "student_satisfaction": round(self.student_satisfaction, 4),
            "teacher_satisfaction": round(self.teacher_satisfaction, 4),
            "cost_implications": self.cost_implications,
        }


@dataclass(frozen=True)
class ResolutionStep:
    order: int
    description: str
    type: ResolutionStepType
    estimated_duration: int  # minutes
    dependencies: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "description": self.description,
            "type": self.type.value,
            "estimated_duration": self.estimated_duration,
            "dependencies": list(self.dependencies),
        }


@dataclass(frozen=True)
class ConflictResolution:
    """A candidate resolution for one conflict.

    The payload fields describe what applying the resolution changes:
    ``class_id`` is the class being modified, ``student_ids`` the students
    moved or waitlisted, and the replacement fields the new teacher or slot.
    """

    id: str
    type: ResolutionType
    description: str
    impact: ResolutionImpact
    feasibility_score: float
    estimated_implementation_time: int  # minutes
    required_approvals: tuple[str, ...] = ()
    steps: tuple[ResolutionStep, ...] = ()
    class_id: str | None = None
    student_ids: tuple[str, ...] = ()
    replacement_teacher_id: str | None = None
    replacement_slot: TimeSlot | None = None
    content_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.feasibility_score <= 1:
            raise ValidationError(
                f"Resolution '{self.id}' feasibility must be 0-1, got {self.feasibility_score}"
            )

    def is_auto_applicable(self, threshold: float) -> bool:
        return not self.required_approvals and self.feasibility_score > threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "impact": self.impact.to_dict(),
            "feasibility_score": round(self.feasibility_score, 4),
            "estimated_implementation_time": self.estimated_implementation_time,
            "required_approvals": list(self.required_approvals),
            "steps": [s.to_dict() for s in self.steps],
            "class_id": self.class_id,
            "student_ids": list(self.student_ids),
            "replacement_teacher_id": self.replacement_teacher_id,
            "replacement_slot": self.replacement_slot.to_dict() if self.replacement_slot else None,
            "content_ids": list(self.content_ids),
        }


@dataclass(frozen=True)
class SchedulingConflict:
    """A structured conflict found in a batch of classes."""

    id: str
    type: ConflictType
    severity: ConflictSeverity
    entity_ids: tuple[str, ...]
    description: str
    class_ids: tuple[str, ...] = ()
    student_ids: tuple[str, ...] = ()
    teacher_id: str | None = None
    content_ids: tuple[str, ...] = ()
    resolutions: tuple[ConflictResolution, ...] = ()
    detected_at: datetime | None = None

    @property
    def is_blocking(self) -> bool:
        return self.severity >= ConflictSeverity.MEDIUM

    def with_resolutions(self, resolutions: list[ConflictResolution]) -> "SchedulingConflict":
        return replace(self, resolutions=tuple(resolutions))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "entity_ids": list(self.entity_ids),
            "description": self.description,
            "class_ids": list(self.class_ids),
            "student_ids": list(self.student_ids),
            "teacher_id": self.teacher_id,
            "content_ids": list(self.content_ids),
            "resolutions": [r.to_dict() for r in self.resolutions],
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
        }


@dataclass(frozen=True)
class RecommendedAction:
    type: RecommendedActionType
    class_id: str | None = None
    teacher_id: str | None = None
    time_slot: TimeSlot | None = None
    content_ids: tuple[str, ...] = ()
    deadline: datetime | None = None
    assigned_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "class_id": self.class_id,
            "teacher_id": self.teacher_id,
            "time_slot": self.time_slot.to_dict() if self.time_slot else None,
            "content_ids": list(self.content_ids),
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "assigned_to": self.assigned_to,
        }


@dataclass(frozen=True)
class SchedulingRecommendation:
    """Advice for a student or class the engine could not schedule outright."""

    id: str
    type: RecommendationType
    description: str
    confidence_score: float
    action: RecommendedAction
    priority: SchedulingPriority = SchedulingPriority.MEDIUM
    benefits: tuple[str, ...] = ()
    drawbacks: tuple[str, ...] = ()
    complexity: Complexity = Complexity.LOW
    student_ids: tuple[str, ...] = ()
    proposed_class: ScheduledClass | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence_score <= 1:
            raise ValidationError(
                f"Recommendation '{self.id}' confidence must be 0-1, got {self.confidence_score}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "confidence_score": round(self.confidence_score, 4),
            "benefits": list(self.benefits),
            "drawbacks": list(self.drawbacks),
            "complexity": self.complexity.value,
            "action": self.action.to_dict(),
            "priority": self.priority.value,
            "student_ids": list(self.student_ids),
            "proposed_class": self.proposed_class.to_dict() if self.proposed_class else None,
        }


@dataclass(frozen=True)
class SchedulingMetrics:
    """Counters collected while processing a request."""

    processing_time: float = 0.0  # seconds
    students_processed: int = 0
    candidates_generated: int = 0
    candidates_rejected: int = 0
    classes_scheduled: int = 0
    conflicts_detected: int = 0
    conflicts_resolved: int = 0
    success_rate: float = 0.0
    resource_utilization: float = 0.0
    student_satisfaction_score: float = 0.0
    teacher_satisfaction_score: float = 0.0
    iterations_performed: int = 0
    optimization_improvements: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processing_time": round(self.processing_time, 4),
            "students_processed": self.students_processed,
            "candidates_generated": self.candidates_generated,
            "candidates_rejected": self.candidates_rejected,
            "classes_scheduled": self.classes_scheduled,
            "conflicts_detected": self.conflicts_detected,
            "conflicts_resolved": self.conflicts_resolved,
            "success_rate": round(self.success_rate, 4),
            "resource_utilization": round(self.resource_utilization, 4),
            "student_satisfaction_score": round(self.student_satisfaction_score, 4),
            "teacher_satisfaction_score": round(self.teacher_satisfaction_score, 4),
            "iterations_performed": self.iterations_performed,
            "optimization_improvements": self.optimization_improvements,
        }


@dataclass(frozen=True)
class SchedulingResult:
    """Terminal output of a scheduling request."""

    request_id: str
    success: bool
    status: SchedulingStatus
    scheduled_classes: tuple[ScheduledClass, ...] = ()
    conflicts: tuple[SchedulingConflict, ...] = ()
    recommendations: tuple[SchedulingRecommendation, ...] = ()
    metrics: SchedulingMetrics = field(default_factory=SchedulingMetrics)
    error: SchedulingError | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.status.is_terminal:
            raise InvariantViolationError(
                f"Result for '{self.request_id}' has non-terminal status {self.status.value}"
            )
        if not self.success and self.error is None and not (
            self.conflicts or self.recommendations
        ):
            raise InvariantViolationError(
                f"Failed result for '{self.request_id}' carries neither an error "
                "nor conflicts and recommendations"
            )

    @property
    def processing_time(self) -> float:
        return self.metrics.processing_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "success": self.success,
            "status": self.status.value,
            "scheduled_classes": [c.to_dict() for c in self.scheduled_classes],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "metrics": self.metrics.to_dict(),
            "error": self.error.to_dict() if self.error else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class SchedulingEvent:
    """A lifecycle event; ``data`` is opaque pass-through detail."""

    id: str
    type: EventType
    source: EventSource
    timestamp: datetime
    request_id: str | None = None
    status: SchedulingStatus | None = None
    message: str = ""
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source.value,
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "status": self.status.value if self.status else None,
            "message": self.message,
            "data": dict(self.data),
        }


T = TypeVar("T")


@dataclass(frozen=True)
class ResponseMetadata:
    request_id: str
    timestamp: datetime
    processing_time: float
    version: str


@dataclass(frozen=True)
class SchedulingApiResponse(Generic[T]):
    """Envelope returned by the service boundary."""

    success: bool
    data: T | None = None
    error: SchedulingError | None = None
    metadata: ResponseMetadata | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
        metadata = None
        if self.metadata:
            metadata = {
                "request_id": self.metadata.request_id,
                "timestamp": self.metadata.timestamp.isoformat(),
                "processing_time": round(self.metadata.processing_time, 4),
                "version": self.metadata.version,
            }
        return {
            "success": self.success,
            "data": data,
            "error": self.error.to_dict() if self.error else None,
            "metadata": metadata,
        }
