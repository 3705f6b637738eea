"""Scheduling Engine - class scheduling and 1-on-1 matching for course platforms.

This module groups students with compatible progress into classes of up to
nine, assigns teachers and time slots under hard constraints, ranks
candidates with weighted soft scores, selects a conflict-free set with
CP-SAT, detects and resolves conflicts, and commits the result through a
versioned booking store. It also matches single students to teachers for
1-on-1 sessions and runs a daily data update batch.

Example usage:
    from scheduling_engine import SchedulingOrchestrator, SchedulingRequest
    from scheduling_engine.config import DatasetLoader

    dataset = DatasetLoader().load("dataset.json")
    orchestrator = SchedulingOrchestrator(
        dataset.progress, dataset.schedule, dataset.schedule, dataset.catalog
    )
    request = SchedulingRequest.from_dict(
        {"id": "req-1", "course_id": "english-a1", "student_ids": ["s1", "s2"]}
    )
    result = orchestrator.process(request)

    print(f"Status: {result.status.value}")
    for scheduled in result.scheduled_classes:
        print(f"{scheduled.start_time} | {scheduled.teacher_id} | {scheduled.student_ids}")

    # Export to Excel
    from scheduling_engine.exporters import ExcelExporter
    exporter = ExcelExporter()
    exporter.export(result, "schedule.xlsx")
"""

from .daily import DailyDataUpdateConfig, DailyUpdateRunner, DailyUpdateStatus
from .exceptions import (
    CommitConflictError,
    ConstraintError,
    ContentCycleError,
    DailyUpdateInProgressError,
    ErrorCategory,
    InvariantViolationError,
    ProcessingTimeoutError,
    RequestCancelledError,
    RequestInProgressError,
    ResourceError,
    SchedulingError,
    UnknownContentError,
    UnknownEntityError,
    ValidationError,
)
from .exporters import CSVExporter, ExcelExporter, JSONExporter, get_exporter
from .matching import OneOnOneBookingRequest, OneOnOneBookingResult, OneOnOneMatcher
from .models import (
    ClassStatus,
    ClassType,
    LearningContent,
    ScheduledClass,
    SchedulingAlgorithmConfig,
    SchedulingConstraints,
    SchedulingRequest,
    SchedulingStatus,
    StudentProgress,
    TeacherAvailability,
    TimeSlot,
)
from .orchestrator import CancellationToken, SchedulingOrchestrator
from .results import SchedulingConflict, SchedulingRecommendation, SchedulingResult
from .service import SchedulingService

__version__ = "0.1.0"

__all__ = [
    # Scheduling
    "SchedulingOrchestrator",
    "SchedulingService",
    "CancellationToken",
    # 1-on-1 matching
    "OneOnOneMatcher",
    "OneOnOneBookingRequest",
    "OneOnOneBookingResult",
    # Daily batch
    "DailyUpdateRunner",
    "DailyDataUpdateConfig",
    "DailyUpdateStatus",
    # Models
    "ClassStatus",
    "ClassType",
    "LearningContent",
    "ScheduledClass",
    "SchedulingAlgorithmConfig",
    "SchedulingConstraints",
    "SchedulingRequest",
    "SchedulingStatus",
    "StudentProgress",
    "TeacherAvailability",
    "TimeSlot",
    # Results
    "SchedulingConflict",
    "SchedulingRecommendation",
    "SchedulingResult",
    # Exporters
    "JSONExporter",
    "CSVExporter",
    "ExcelExporter",
    "get_exporter",
    # Exceptions
    "SchedulingError",
    "ErrorCategory",
    "ValidationError",
    "UnknownEntityError",
    "UnknownContentError",
    "ContentCycleError",
    "ConstraintError",
    "ResourceError",
    "CommitConflictError",
    "InvariantViolationError",
    "ProcessingTimeoutError",
    "RequestCancelledError",
    "RequestInProgressError",
    "DailyUpdateInProgressError",
]
