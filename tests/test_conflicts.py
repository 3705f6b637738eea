"""Tests for conflict detection."""

from datetime import datetime, time, timedelta

import pytest

from scheduling_engine.collaborators import CommitRejection, CommitRejectionReason
from scheduling_engine.conflicts import (
    ConflictDetector,
    DetectionContext,
    blocking_conflicts,
    capacity_limit,
    conflict_from_rejection,
)
from scheduling_engine.models import (
    ClassStatus,
    Day,
    OverrideType,
    RecurringAvailability,
    ScheduledClass,
    SchedulingConstraints,
    SchedulingOverride,
    TeacherAvailability,
    TimeSlot,
)
from scheduling_engine.results import ConflictSeverity, ConflictType

WEDNESDAY = datetime(2025, 3, 5, 10, 0)


def make_class(class_id, students, start=WEDNESDAY, teacher_id="t1", content=(), **kwargs):
    return ScheduledClass(
        id=class_id,
        course_id="english-a1",
        teacher_id=teacher_id,
        student_ids=tuple(students),
        time_slot=TimeSlot(id=f"slot-{class_id}", start_time=start, end_time=start + timedelta(hours=1)),
        content=tuple(content),
        **kwargs,
    )


@pytest.fixture
def detector():
    return ConflictDetector(SchedulingConstraints())


class TestTimeOverlaps:
    """Tests for teacher and student overlap detection."""

    def test_teacher_double_booked(self, detector):
        conflicts = detector.detect([make_class("a", ["s1"]), make_class("b", ["s2"])])

        assert [c.id for c in conflicts] == ["conflict-teacher-overlap-t1-a-b"]
        assert conflicts[0].type == ConflictType.TIME_OVERLAP
        assert conflicts[0].severity == ConflictSeverity.HIGH
        assert conflicts[0].class_ids == ("a", "b")

    def test_confirmed_class_makes_it_critical(self, detector):
        conflicts = detector.detect(
            [make_class("a", ["s1"], status=ClassStatus.CONFIRMED), make_class("b", ["s2"])]
        )
        assert conflicts[0].severity == ConflictSeverity.CRITICAL

    def test_student_double_booked(self, detector):
        conflicts = detector.detect(
            [make_class("a", ["s1", "s2"]), make_class("b", ["s1", "s2"], teacher_id="t2")]
        )
        assert [c.id for c in conflicts] == ["conflict-student-overlap-a-b"]
        assert conflicts[0].student_ids == ("s1", "s2")

    def test_back_to_back_is_not_an_overlap(self, detector):
        later = make_class("b", ["s1"], start=WEDNESDAY + timedelta(hours=1))
        assert detector.detect([make_class("a", ["s1"]), later]) == []

    def test_cancelled_classes_are_ignored(self, detector):
        cancelled = make_class("b", ["s1"], status=ClassStatus.CANCELLED)
        assert detector.detect([make_class("a", ["s1"]), cancelled]) == []

    def test_concurrency_limit(self):
        detector = ConflictDetector(SchedulingConstraints(max_concurrent_classes_per_teacher=2))
        assert detector.detect([make_class("a", ["s1"]), make_class("b", ["s2"])]) == []


class TestCapacity:
    """Tests for capacity detection."""

    def test_excess_students_are_reported(self, detector):
        students = [f"s{i}" for i in range(1, 11)]
        conflicts = detector.detect([make_class("a", students)])

        assert len(conflicts) == 1
        assert conflicts[0].id == "conflict-capacity-a"
        assert conflicts[0].type == ConflictType.CAPACITY_EXCEEDED
        assert conflicts[0].student_ids == ("s10",)

    def test_capacity_limit_with_override(self):
        constraints = SchedulingConstraints(max_students_per_class=4)
        override = SchedulingOverride(type=OverrideType.CLASS_SIZE, max_students=6)
        plain = make_class("a", ["s1"])
        lifted = make_class("b", ["s1"], applied_overrides=(override,))

        assert capacity_limit(plain, constraints) == 4
        assert capacity_limit(lifted, constraints) == 6


class TestUnavailability:
    """Tests for availability detection."""

    def test_teacher_outside_availability(self, detector):
        availability = TeacherAvailability(
            teacher_id="t1",
            recurring_patterns=(RecurringAvailability(Day.THURSDAY, time(10), time(12)),),
        )
        conflicts = detector.detect(
            [make_class("a", ["s1"])], DetectionContext(teacher_availability={"t1": availability})
        )
        assert [c.id for c in conflicts] == ["conflict-teacher-unavailable-a"]
        assert conflicts[0].severity == ConflictSeverity.MEDIUM

    def test_student_unavailable(self, detector):
        leave = TimeSlot(id="leave", start_time=WEDNESDAY, end_time=WEDNESDAY + timedelta(days=1))
        conflicts = detector.detect(
            [make_class("a", ["s1", "s2"])],
            DetectionContext(student_unavailability={"s2": (leave,)}),
        )
        assert [c.id for c in conflicts] == ["conflict-student-unavailable-a"]
        assert conflicts[0].student_ids == ("s2",)


class TestContentMismatch:
    """Tests for content mismatch detection."""

    def test_completed_and_missing_content(self, detector, contents, make_progress):
        scheduled = make_class("a", ["s1", "s2"], content=contents[1:])
        progress = {
            "s1": make_progress("s1", completed=("c1", "c2"), unlearned=("c3",)),
            "s2": make_progress("s2"),
        }
        conflicts = detector.detect([scheduled], DetectionContext(progress=progress))

        assert [c.id for c in conflicts] == ["conflict-content-a-s1", "conflict-content-a-s2"]
        assert all(c.severity == ConflictSeverity.LOW for c in conflicts)
        assert conflicts[0].content_ids == ("c2",)
        assert conflicts[1].content_ids == ("c1",)

    def test_low_severity_is_not_blocking(self, detector, contents, make_progress):
        scheduled = make_class("a", ["s1"], content=contents[1:])
        conflicts = detector.detect(
            [scheduled], DetectionContext(progress={"s1": make_progress("s1")})
        )
        assert conflicts
        assert blocking_conflicts(conflicts) == []


class TestConflictFromRejection:
    """Tests for conflict_from_rejection function."""

    def test_stale_version(self):
        scheduled = make_class("a", ["s1"])
        rejection = CommitRejection(
            scheduled_class=scheduled,
            reason=CommitRejectionReason.STALE_VERSION,
            message="changed",
            student_ids=("s1",),
        )
        conflict = conflict_from_rejection(rejection)
        assert conflict.id == "conflict-commit-stale_version-a"
        assert conflict.type == ConflictType.RESOURCE_CONFLICT
        assert conflict.severity == ConflictSeverity.HIGH


class TestOrdering:
    """Tests for conflict ordering."""

    def test_sorted_by_severity(self, detector, contents, make_progress):
        classes = [
            make_class("a", ["s1"], content=contents[1:]),
            make_class("b", ["s2"]),
        ]
        conflicts = detector.detect(classes, DetectionContext(progress={"s1": make_progress("s1")}))
        severities = [c.severity for c in conflicts]
        assert severities == sorted(severities, key=lambda s: -s.rank)
        assert severities[0] == ConflictSeverity.HIGH
