"""Conflict detection across a batch of scheduled classes."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations
from typing import Iterable, Mapping

from .collaborators import CommitRejection, CommitRejectionReason
from .constants import HARD_MAX_STUDENTS_PER_CLASS
from .models import (
    ClassStatus,
    OverrideType,
    ScheduledClass,
    SchedulingConstraints,
    StudentProgress,
    TeacherAvailability,
    TimeSlot,
)
from .results import ConflictSeverity, ConflictType, SchedulingConflict
from .utils import make_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionContext:
    """Declared availability and progress used by the relational checks.

    Attributes:
        teacher_availability: teacher_id -> availability
        student_unavailability: student_id -> windows the student cannot attend
        progress: student_id -> progress in the course of the batch
    """

    teacher_availability: Mapping[str, TeacherAvailability] = field(default_factory=dict)
    student_unavailability: Mapping[str, tuple[TimeSlot, ...]] = field(default_factory=dict)
    progress: Mapping[str, StudentProgress] = field(default_factory=dict)
    detected_at: datetime | None = None


def capacity_limit(scheduled: ScheduledClass, constraints: SchedulingConstraints) -> int:
    """Seats of a class: the configured cap, raised by an applied class_size override up to 9."""
    limit = min(constraints.max_students_per_class, scheduled.time_slot.capacity.max_students)
    for override in scheduled.applied_overrides:
        if override.type == OverrideType.CLASS_SIZE:
            override_limit = override.max_students or HARD_MAX_STUDENTS_PER_CLASS
            limit = max(limit, min(override_limit, HARD_MAX_STUDENTS_PER_CLASS))
    return min(limit, HARD_MAX_STUDENTS_PER_CLASS)


def _collision_severity(classes: Iterable[ScheduledClass]) -> ConflictSeverity:
    if any(c.status == ClassStatus.CONFIRMED for c in classes):
        return ConflictSeverity.CRITICAL
    return ConflictSeverity.HIGH


class ConflictDetector:
    """Scans a batch of classes for relational conflicts.

    Classes are indexed per teacher and per student so that every pair that
    shares a person is compared exactly once.

    Severity rules:
    - capacity / time overlap with a confirmed class: critical
    - capacity / time overlap between tentative classes: high
    - teacher or student unavailability: medium
    - content mismatch: low
    """

    def __init__(self, constraints: SchedulingConstraints):
        self.constraints = constraints

    def detect(
        self,
        batch: Iterable[ScheduledClass],
        context: DetectionContext | None = None,
    ) -> list[SchedulingConflict]:
        """
        Detect conflicts in a batch.

        Args:
            batch: Classes to check (cancelled classes are ignored)
            context: Availability and progress data; checks that need it are
                skipped when it is missing

        Returns:
            Conflicts sorted by descending severity, then type and ID
        """
        context = context or DetectionContext()
        classes = sorted((c for c in batch if c.is_active), key=lambda c: (c.start_time, c.id))

        conflicts: dict[str, SchedulingConflict] = {}
        for conflict in (
            *self._time_overlaps(classes, context),
            *self._capacity(classes, context),
            *self._unavailability(classes, context),
            *self._content_mismatches(classes, context),
        ):
            conflicts.setdefault(conflict.id, conflict)

        result = sorted(
            conflicts.values(), key=lambda c: (-c.severity.rank, c.type.value, c.id)
        )
        if result:
            logger.debug(f"Detected {len(result)} conflicts in {len(classes)} classes")
        return result

    def _time_overlaps(
        self, classes: list[ScheduledClass], context: DetectionContext
    ) -> list[SchedulingConflict]:
        by_teacher: dict[str, list[ScheduledClass]] = defaultdict(list)
        by_student: dict[str, list[ScheduledClass]] = defaultdict(list)
        for scheduled in classes:
            by_teacher[scheduled.teacher_id].append(scheduled)
            for student_id in scheduled.student_ids:
                by_student[student_id].append(scheduled)

        conflicts = []
        limit = self.constraints.max_concurrent_classes_per_teacher
        for teacher_id, teacher_classes in by_teacher.items():
            for first, second in combinations(teacher_classes, 2):
                if not first.overlaps(second):
                    continue
                if limit > 1:
                    concurrent = [c for c in teacher_classes if c.overlaps(first) and c.overlaps(second)]
                    if len(concurrent) <= limit:
                        continue
                pair = (first, second)
                conflicts.append(
                    SchedulingConflict(
                        id=make_id("conflict", "teacher-overlap", teacher_id, first.id, second.id),
                        type=ConflictType.TIME_OVERLAP,
                        severity=_collision_severity(pair),
                        entity_ids=(teacher_id, first.id, second.id),
                        description=(
                            f"Teacher '{teacher_id}' is booked for '{first.id}' and "
                            f"'{second.id}' at overlapping times"
                        ),
                        class_ids=(first.id, second.id),
                        teacher_id=teacher_id,
                        detected_at=context.detected_at,
                    )
                )

        shared: dict[tuple[str, str], list[str]] = defaultdict(list)
        pairs: dict[tuple[str, str], tuple[ScheduledClass, ScheduledClass]] = {}
        for student_id, student_classes in by_student.items():
            for first, second in combinations(student_classes, 2):
                if first.overlaps(second):
                    key = (first.id, second.id)
                    shared[key].append(student_id)
                    pairs[key] = (first, second)

        for key, student_ids in shared.items():
            first, second = pairs[key]
            student_ids = sorted(student_ids)
            conflicts.append(
                SchedulingConflict(
                    id=make_id("conflict", "student-overlap", first.id, second.id),
                    type=ConflictType.TIME_OVERLAP,
                    severity=_collision_severity((first, second)),
                    entity_ids=(*student_ids, first.id, second.id),
                    description=(
                        f"Students {student_ids} are booked for '{first.id}' and "
                        f"'{second.id}' at overlapping times"
                    ),
                    class_ids=(first.id, second.id),
                    student_ids=tuple(student_ids),
                    detected_at=context.detected_at,
                )
            )
        return conflicts

    def _capacity(
        self, classes: list[ScheduledClass], context: DetectionContext
    ) -> list[SchedulingConflict]:
        conflicts = []
        for scheduled in classes:
            limit = capacity_limit(scheduled, self.constraints)
            enrollment = len(scheduled.student_ids)
            if enrollment <= limit:
                continue
            excess = scheduled.student_ids[limit:]
            conflicts.append(
                SchedulingConflict(
                    id=make_id("conflict", "capacity", scheduled.id),
                    type=ConflictType.CAPACITY_EXCEEDED,
                    severity=_collision_severity((scheduled,)),
                    entity_ids=(scheduled.id, *excess),
                    description=(
                        f"Class '{scheduled.id}' has {enrollment} students but only "
                        f"{limit} seats"
                    ),
                    class_ids=(scheduled.id,),
                    student_ids=tuple(excess),
                    teacher_id=scheduled.teacher_id,
                    detected_at=context.detected_at,
                )
            )
        return conflicts

    def _unavailability(
        self, classes: list[ScheduledClass], context: DetectionContext
    ) -> list[SchedulingConflict]:
        conflicts = []
        for scheduled in classes:
            availability = context.teacher_availability.get(scheduled.teacher_id)
            if availability is not None and not availability.is_available(
                scheduled.start_time, scheduled.end_time
            ):
                conflicts.append(
                    SchedulingConflict(
                        id=make_id("conflict", "teacher-unavailable", scheduled.id),
                        type=ConflictType.TEACHER_UNAVAILABLE,
                        severity=ConflictSeverity.MEDIUM,
                        entity_ids=(scheduled.teacher_id, scheduled.id),
                        description=(
                            f"Teacher '{scheduled.teacher_id}' is not available for "
                            f"'{scheduled.id}' at {scheduled.start_time:%Y-%m-%d %H:%M}"
                        ),
                        class_ids=(scheduled.id,),
                        teacher_id=scheduled.teacher_id,
                        detected_at=context.detected_at,
                    )
                )

            unavailable = sorted(
                student_id
                for student_id in scheduled.student_ids
                if any(
                    block.start_time < scheduled.end_time and scheduled.start_time < block.end_time
                    for block in context.student_unavailability.get(student_id, ())
                )
            )
            if unavailable:
                conflicts.append(
                    SchedulingConflict(
                        id=make_id("conflict", "student-unavailable", scheduled.id),
                        type=ConflictType.STUDENT_UNAVAILABLE,
                        severity=ConflictSeverity.MEDIUM,
                        entity_ids=(*unavailable, scheduled.id),
                        description=(
                            f"Students {unavailable} are unavailable for '{scheduled.id}'"
                        ),
                        class_ids=(scheduled.id,),
                        student_ids=tuple(unavailable),
                        teacher_id=scheduled.teacher_id,
                        detected_at=context.detected_at,
                    )
                )
        return conflicts

    def _content_mismatches(
        self, classes: list[ScheduledClass], context: DetectionContext
    ) -> list[SchedulingConflict]:
        conflicts = []
        for scheduled in classes:
            for student_id in scheduled.student_ids:
                progress = context.progress.get(student_id)
                if progress is None or progress.course_id != scheduled.course_id:
                    continue
                completed = set(progress.completed_content)
                repeated = [c.id for c in scheduled.content if c.id in completed]

                missing = []
                satisfied = set(completed)
                for content in scheduled.content:
                    missing.extend(p for p in content.prerequisites if p not in satisfied)
                    satisfied.add(content.id)

                if not repeated and not missing:
                    continue
                problems = []
                if repeated:
                    problems.append(f"already completed {repeated}")
                if missing:
                    problems.append(f"missing prerequisites {sorted(set(missing))}")
                conflicts.append(
                    SchedulingConflict(
                        id=make_id("conflict", "content", scheduled.id, student_id),
                        type=ConflictType.CONTENT_MISMATCH,
                        severity=ConflictSeverity.LOW,
                        entity_ids=(student_id, scheduled.id),
                        description=(
                            f"Content of '{scheduled.id}' does not fit student "
                            f"'{student_id}': {'; '.join(problems)}"
                        ),
                        class_ids=(scheduled.id,),
                        student_ids=(student_id,),
                        teacher_id=scheduled.teacher_id,
                        content_ids=tuple(repeated) + tuple(sorted(set(missing))),
                        detected_at=context.detected_at,
                    )
                )
        return conflicts


def conflict_from_rejection(
    rejection: CommitRejection, detected_at: datetime | None = None
) -> SchedulingConflict:
    """Describe a commit rejection when re-detection finds nothing more specific."""
    scheduled = rejection.scheduled_class
    conflict_type = {
        CommitRejectionReason.CAPACITY_EXCEEDED: ConflictType.CAPACITY_EXCEEDED,
        CommitRejectionReason.TEACHER_BUSY: ConflictType.TIME_OVERLAP,
        CommitRejectionReason.STUDENT_BUSY: ConflictType.TIME_OVERLAP,
        CommitRejectionReason.STALE_VERSION: ConflictType.RESOURCE_CONFLICT,
    }[rejection.reason]
    return SchedulingConflict(
        id=make_id("conflict", "commit", rejection.reason.value, scheduled.id),
        type=conflict_type,
        severity=ConflictSeverity.HIGH,
        entity_ids=(scheduled.id, *rejection.student_ids),
        description=rejection.message,
        class_ids=(scheduled.id,),
        student_ids=rejection.student_ids,
        teacher_id=scheduled.teacher_id,
        detected_at=detected_at,
    )


def blocking_conflicts(conflicts: Iterable[SchedulingConflict]) -> list[SchedulingConflict]:
    return [c for c in conflicts if c.is_blocking]
