"""Built-in handlers of the daily update components."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pandas as pd

from ..collaborators import AvailabilityStore, BookingStore, ContentCatalog, ProgressStore
from ..content import PrerequisiteGraph
from ..exceptions import CommitConflictError, ValidationError
from ..models import ClassStatus, ClassType, DateRange, SchedulingConstraints
from .models import ComponentOutcome, ComponentType, DailyUpdateComponent

logger = logging.getLogger(__name__)


@dataclass
class DailyUpdateContext:
    """Collaborators shared by every handler of one run."""

    progress_store: ProgressStore
    availability_store: AvailabilityStore
    booking_store: BookingStore
    content_catalog: ContentCatalog
    constraints: SchedulingConstraints = field(default_factory=SchedulingConstraints)
    now: datetime = field(default_factory=datetime.now)

    @property
    def booking_range(self) -> DateRange:
        return DateRange(self.now, self.now + timedelta(days=self.constraints.max_advance_booking_days))


class ComponentHandler(ABC):
    """Runs one component type; raising marks the attempt as failed."""

    @abstractmethod
    def run(self, component: DailyUpdateComponent, context: DailyUpdateContext) -> ComponentOutcome:
        pass


class StudentProgressHandler(ComponentHandler):
    """Checks every progress record against the content catalog."""

    def run(self, component: DailyUpdateComponent, context: DailyUpdateContext) -> ComponentOutcome:
        processed = 0
        inconsistent = []
        for record in context.progress_store.iter_progress():
            processed += 1
            known = {c.id for c in context.content_catalog.get_course_content(record.course_id)}
            unknown = [
                cid
                for cid in (*record.completed_content, *record.in_progress_content)
                if cid not in known
            ]
            if unknown:
                inconsistent.append(record.student_id)
                logger.warning(
                    f"Progress of '{record.student_id}' in '{record.course_id}' references "
                    f"unknown content: {', '.join(unknown)}"
                )
        return ComponentOutcome(
            records_processed=processed,
            metrics={
                "students_processed": processed,
                "inconsistent_records": len(inconsistent),
                "success_rate": (processed - len(inconsistent)) / processed * 100 if processed else 0.0,
            },
        )


class TeacherAvailabilityHandler(ComponentHandler):
    """Counts each teacher's open windows inside the booking horizon."""

    def run(self, component: DailyUpdateComponent, context: DailyUpdateContext) -> ComponentOutcome:
        date_range = context.booking_range
        teacher_ids = context.availability_store.list_teacher_ids()
        open_windows = 0
        without = []
        for teacher_id in teacher_ids:
            availability = context.availability_store.get_teacher_availability(teacher_id, date_range)
            windows = availability.candidate_slots(date_range)
            open_windows += len(windows)
            if not windows:
                without.append(teacher_id)
        if without:
            logger.info(f"Teachers without open windows: {', '.join(without)}")
        return ComponentOutcome(
            records_processed=len(teacher_ids),
            metrics={
                "teachers_processed": len(teacher_ids),
                "open_windows": open_windows,
                "teachers_without_availability": len(without),
            },
        )


class ClassScheduleHandler(ComponentHandler):
    """
    Cancels tentative group classes that can no longer reach the group minimum.

    A class qualifies when it is still ``scheduled`` (not confirmed), has
    fewer students than ``min_students_for_group_class`` and starts within
    the minimum advance-booking window, so no new student could book it.
    """

    def run(self, component: DailyUpdateComponent, context: DailyUpdateContext) -> ComponentOutcome:
        constraints = context.constraints
        cutoff = context.now + timedelta(hours=constraints.min_advance_booking_hours)
        classes = context.availability_store.get_existing_bookings(context.booking_range)
        cancelled = []
        for scheduled in classes:
            if (
                scheduled.status == ClassStatus.SCHEDULED
                and scheduled.class_type == ClassType.GROUP
                and scheduled.enrollment < constraints.min_students_for_group_class
                and scheduled.start_time < cutoff
            ):
                try:
                    context.booking_store.cancel(scheduled.id, expected_version=scheduled.version)
                except CommitConflictError as e:
                    logger.warning(f"Skipped cancelling '{scheduled.id}': {e.message}")
                    continue
                cancelled.append(scheduled.id)
        if cancelled:
            logger.info(f"Cancelled under-enrolled classes: {', '.join(cancelled)}")
        return ComponentOutcome(
            records_processed=len(classes),
            metrics={"classes_processed": len(classes), "classes_cancelled": len(cancelled)},
        )


class ContentSyncHandler(ComponentHandler):
    """Re-validates the prerequisite graph of the whole catalog."""

    def run(self, component: DailyUpdateComponent, context: DailyUpdateContext) -> ComponentOutcome:
        catalog = context.content_catalog
        contents = [c for course_id in catalog.list_course_ids() for c in catalog.get_course_content(course_id)]
        # Raises ContentCycleError or UnknownContentError
        graph = PrerequisiteGraph(contents)
        return ComponentOutcome(
            records_processed=len(graph),
            metrics={"content_items_validated": len(graph), "courses": len(catalog.list_course_ids())},
        )


class PerformanceMetricsHandler(ComponentHandler):
    """Aggregates teacher utilization over the lookback and booking horizon."""

    def run(self, component: DailyUpdateComponent, context: DailyUpdateContext) -> ComponentOutcome:
        lookback = int(component.config.get("lookback_days", 30))
        date_range = DateRange(context.now - timedelta(days=lookback), context.booking_range.end)
        rows = [
            {
                "teacher_id": c.teacher_id,
                "class_id": c.id,
                "enrollment": c.enrollment,
                "capacity": c.time_slot.capacity.max_students,
                "minutes": c.time_slot.duration,
            }
            for c in context.availability_store.get_existing_bookings(date_range)
        ]
        if not rows:
            return ComponentOutcome(records_processed=0, metrics={"teachers": 0, "classes": 0})

        df = pd.DataFrame(rows)
        df["utilization"] = df["enrollment"] / df["capacity"]
        per_teacher = (
            df.groupby("teacher_id")
            .agg(
                classes=("class_id", "count"),
                students=("enrollment", "sum"),
                teaching_minutes=("minutes", "sum"),
                utilization=("utilization", "mean"),
            )
            .reset_index()
            .sort_values("teacher_id")
        )
        return ComponentOutcome(
            records_processed=len(df),
            metrics={
                "teachers": int(per_teacher.shape[0]),
                "classes": int(df.shape[0]),
                "average_utilization": round(float(df["utilization"].mean()), 4),
                "teacher_utilization": [
                    {
                        "teacher_id": r.teacher_id,
                        "classes": int(r.classes),
                        "students": int(r.students),
                        "teaching_minutes": int(r.teaching_minutes),
                        "utilization": round(float(r.utilization), 4),
                    }
                    for r in per_teacher.itertuples(index=False)
                ],
            },
        )


HANDLERS: dict[ComponentType, type[ComponentHandler]] = {
    ComponentType.STUDENT_PROGRESS: StudentProgressHandler,
    ComponentType.TEACHER_AVAILABILITY: TeacherAvailabilityHandler,
    ComponentType.CLASS_SCHEDULES: ClassScheduleHandler,
    ComponentType.CONTENT_SYNC: ContentSyncHandler,
    ComponentType.PERFORMANCE_METRICS: PerformanceMetricsHandler,
}


def get_handler(component_type: ComponentType) -> ComponentHandler:
    """
    Get the handler for a component type.

    Raises:
        ValidationError: If no handler is registered for the type
    """
    handler_class = HANDLERS.get(component_type)
    if handler_class is None:
        raise ValidationError(f"No handler for component type '{component_type}'")
    return handler_class()
