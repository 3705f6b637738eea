"""Daily data update batch."""

from .handlers import (
    ClassScheduleHandler,
    ComponentHandler,
    ContentSyncHandler,
    DailyUpdateContext,
    PerformanceMetricsHandler,
    StudentProgressHandler,
    TeacherAvailabilityHandler,
    get_handler,
)
from .models import (
    ComponentOutcome,
    ComponentState,
    ComponentType,
    DailyDataUpdateConfig,
    DailyNotificationConfig,
    DailyRunState,
    DailyUpdateComponent,
    DailyUpdateComponentStatus,
    DailyUpdateMetrics,
    DailyUpdateStatus,
    NotificationTrigger,
    RetryConfig,
    default_components,
)
from .runner import DailyUpdateRunner, order_components

__all__ = [
    # Runner
    "DailyUpdateRunner",
    "order_components",
    # Configuration
    "ComponentType",
    "DailyDataUpdateConfig",
    "DailyNotificationConfig",
    "DailyUpdateComponent",
    "NotificationTrigger",
    "RetryConfig",
    "default_components",
    # Status
    "ComponentOutcome",
    "ComponentState",
    "DailyRunState",
    "DailyUpdateComponentStatus",
    "DailyUpdateMetrics",
    "DailyUpdateStatus",
    # Handlers
    "ClassScheduleHandler",
    "ComponentHandler",
    "ContentSyncHandler",
    "DailyUpdateContext",
    "PerformanceMetricsHandler",
    "StudentProgressHandler",
    "TeacherAvailabilityHandler",
    "get_handler",
]
