"""Configuration and status records of the daily update batch."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Self

from ..constants import (
    DEFAULT_DAILY_BACKOFF_MULTIPLIER,
    DEFAULT_DAILY_MAX_RETRIES,
    DEFAULT_DAILY_RETRY_DELAY,
)
from ..exceptions import ValidationError
from ..utils import parse_time


class ComponentType(str, Enum):
    STUDENT_PROGRESS = "student_progress"
    TEACHER_AVAILABILITY = "teacher_availability"
    CLASS_SCHEDULES = "class_schedules"
    CONTENT_SYNC = "content_sync"
    PERFORMANCE_METRICS = "performance_metrics"


class ComponentState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class DailyRunState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class NotificationTrigger(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"

    @classmethod
    def for_state(cls, state: DailyRunState) -> "NotificationTrigger | None":
        return {
            DailyRunState.COMPLETED: cls.SUCCESS,
            DailyRunState.FAILED: cls.FAILURE,
            DailyRunState.PARTIAL: cls.WARNING,
        }.get(state)


@dataclass(frozen=True)
class DailyUpdateComponent:
    """
    One step of the daily batch.

    Attributes:
        name: Unique component name, referenced by ``dependencies``
        type: Which built-in handler runs the component
        priority: Lower runs first among components whose dependencies are met
        dependencies: Names of components that must complete first
        enabled: Disabled components are not run at all
        config: Handler-specific settings
    """

    name: str
    type: ComponentType
    priority: int = 1
    dependencies: tuple[str, ...] = ()
    enabled: bool = True
    config: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        try:
            component_type = ComponentType(data.get("type", data.get("name")))
        except ValueError as e:
            raise ValidationError(
                f"Unknown daily update component type: {data.get('type')!r}",
                code="UNKNOWN_COMPONENT_TYPE",
            ) from e
        return cls(
            name=data.get("name", component_type.value),
            type=component_type,
            priority=int(data.get("priority", 1)),
            dependencies=tuple(data.get("dependencies", ())),
            enabled=bool(data.get("enabled", True)),
            config=dict(data.get("config", {})),
        )


@dataclass(frozen=True)
class DailyNotificationConfig:
    type: str = "email"
    triggers: tuple[NotificationTrigger, ...] = (NotificationTrigger.FAILURE, NotificationTrigger.WARNING)
    recipients: tuple[str, ...] = ("admin",)
    template: str = "daily_update_status"
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            type=data.get("type", "email"),
            triggers=tuple(NotificationTrigger(t) for t in data.get("triggers", ("failure", "warning"))),
            recipients=tuple(data.get("recipients", ("admin",))),
            template=data.get("template", "daily_update_status"),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy: attempt n waits ``retry_delay * backoff_multiplier ** (n - 1)`` seconds."""

    max_retries: int = DEFAULT_DAILY_MAX_RETRIES
    retry_delay: float = DEFAULT_DAILY_RETRY_DELAY
    backoff_multiplier: float = DEFAULT_DAILY_BACKOFF_MULTIPLIER

    def __post_init__(self) -> None:
        if self.max_retries < 0 or self.retry_delay < 0 or self.backoff_multiplier < 1:
            raise ValidationError(
                "Retry config needs max_retries >= 0, retry_delay >= 0 and backoff_multiplier >= 1"
            )

    def delay(self, attempt: int) -> float:
        return self.retry_delay * self.backoff_multiplier ** (attempt - 1)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            max_retries=int(data.get("max_retries", DEFAULT_DAILY_MAX_RETRIES)),
            retry_delay=float(data.get("retry_delay", DEFAULT_DAILY_RETRY_DELAY)),
            backoff_multiplier=float(data.get("backoff_multiplier", DEFAULT_DAILY_BACKOFF_MULTIPLIER)),
        )


def default_components() -> tuple[DailyUpdateComponent, ...]:
    """The five built-in components in their usual dependency chain."""
    return (
        DailyUpdateComponent("student_progress", ComponentType.STUDENT_PROGRESS, priority=1),
        DailyUpdateComponent(
            "teacher_availability",
            ComponentType.TEACHER_AVAILABILITY,
            priority=2,
            dependencies=("student_progress",),
        ),
        DailyUpdateComponent(
            "class_schedules",
            ComponentType.CLASS_SCHEDULES,
            priority=3,
            dependencies=("student_progress", "teacher_availability"),
        ),
        DailyUpdateComponent("content_sync", ComponentType.CONTENT_SYNC, priority=4),
        DailyUpdateComponent(
            "performance_metrics",
            ComponentType.PERFORMANCE_METRICS,
            priority=5,
            dependencies=("student_progress", "teacher_availability", "class_schedules"),
        ),
    )


@dataclass(frozen=True)
class DailyDataUpdateConfig:
    """
    Daily batch configuration.

    ``schedule_time`` and ``timezone`` describe when an external scheduler
    should start the batch; the runner itself only executes on demand.
    """

    schedule_time: str = "02:00"
    timezone: str = "UTC"
    components: tuple[DailyUpdateComponent, ...] = field(default_factory=default_components)
    notifications: tuple[DailyNotificationConfig, ...] = (DailyNotificationConfig(),)
    retry_config: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        parse_time(self.schedule_time)
        names = [c.name for c in self.components]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValidationError(
                f"Duplicate daily update components: {', '.join(duplicates)}",
                code="DUPLICATE_COMPONENT",
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        defaults = cls()
        components = data.get("components")
        notifications = data.get("notifications")
        return cls(
            schedule_time=data.get("schedule_time", defaults.schedule_time),
            timezone=data.get("timezone", defaults.timezone),
            components=(
                tuple(DailyUpdateComponent.from_dict(c) for c in components)
                if components is not None
                else defaults.components
            ),
            notifications=(
                tuple(DailyNotificationConfig.from_dict(n) for n in notifications)
                if notifications is not None
                else defaults.notifications
            ),
            retry_config=RetryConfig.from_dict(data.get("retry_config", {})),
        )


@dataclass(frozen=True)
class ComponentOutcome:
    """What a handler reports back on success."""

    records_processed: int = 0
    metrics: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class DailyUpdateComponentStatus:
    name: str
    state: ComponentState = ComponentState.PENDING
    records_processed: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    attempts: int = 0
    processing_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.state.value,
            "records_processed": self.records_processed,
            "metrics": dict(self.metrics),
            "error": self.error,
            "attempts": self.attempts,
            "processing_time": round(self.processing_time, 4),
        }


@dataclass
class DailyUpdateMetrics:
    total_records: int = 0
    successful_updates: int = 0
    failed_updates: int = 0
    skipped_updates: int = 0
    data_quality_score: float = 0.0
    performance_improvement: float = 0.0
    system_health_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "successful_updates": self.successful_updates,
            "failed_updates": self.failed_updates,
            "skipped_updates": self.skipped_updates,
            "data_quality_score": round(self.data_quality_score, 4),
            "performance_improvement": round(self.performance_improvement, 2),
            "system_health_score": round(self.system_health_score, 4),
        }


@dataclass
class DailyUpdateStatus:
    id: str
    date: date
    state: DailyRunState
    started_at: datetime
    components: list[DailyUpdateComponentStatus] = field(default_factory=list)
    completed_at: datetime | None = None
    processing_time: float = 0.0
    metrics: DailyUpdateMetrics = field(default_factory=DailyUpdateMetrics)
    error: str | None = None

    def component(self, name: str) -> DailyUpdateComponentStatus | None:
        return next((c for c in self.components if c.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "status": self.state.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "processing_time": round(self.processing_time, 4),
            "components": [c.to_dict() for c in self.components],
            "metrics": self.metrics.to_dict(),
            "error": self.error,
        }
