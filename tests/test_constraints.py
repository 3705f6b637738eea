"""Tests for hard constraint evaluation."""

from datetime import date, datetime, timedelta

import pytest

from scheduling_engine.constraints import (
    ConstraintEvaluator,
    EvaluationContext,
    ViolationKind,
)
from scheduling_engine.models import (
    ClassCapacityConstraint,
    ClassStatus,
    OverrideType,
    ScheduledClass,
    SchedulingConstraints,
    SchedulingOverride,
    TimeSlot,
)

NOW = datetime(2025, 3, 3, 8, 0)
WEDNESDAY = datetime(2025, 3, 5, 10, 0)


def make_class(class_id, students, start=WEDNESDAY, teacher_id="t1", minutes=60, max_students=9, **kwargs):
    slot = TimeSlot(
        id=f"slot-{class_id}",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        capacity=ClassCapacityConstraint(max_students=max_students),
    )
    return ScheduledClass(
        id=class_id,
        course_id="english-a1",
        teacher_id=teacher_id,
        student_ids=tuple(students),
        time_slot=slot,
        **kwargs,
    )


@pytest.fixture
def evaluator():
    return ConstraintEvaluator(SchedulingConstraints())


class TestCapacityConstraint:
    """Tests for the capacity check."""

    def test_empty_class_is_critical(self, evaluator):
        result = evaluator.evaluate(make_class("a", []), EvaluationContext(now=NOW))
        assert not result.ok
        assert result.violations[0].critical
        assert not result.violations[0].overridable

    def test_hard_cap_cannot_be_overridden(self, evaluator):
        students = [f"s{i}" for i in range(10)]
        override = SchedulingOverride(type=OverrideType.CLASS_SIZE, max_students=12)
        result = evaluator.evaluate(
            make_class("a", students), EvaluationContext(now=NOW, overrides=(override,))
        )
        assert not result.ok
        assert result.kinds == {ViolationKind.CAPACITY}
        assert result.requires_approval

    def test_configured_limit_can_be_overridden(self):
        evaluator = ConstraintEvaluator(SchedulingConstraints(max_students_per_class=4))
        candidate = make_class("a", ["s1", "s2", "s3", "s4", "s5"])

        rejected = evaluator.evaluate(candidate, EvaluationContext(now=NOW))
        assert ViolationKind.CAPACITY in rejected.kinds

        override = SchedulingOverride(type=OverrideType.CLASS_SIZE, max_students=6, reason="demand")
        accepted = evaluator.evaluate(candidate, EvaluationContext(now=NOW, overrides=(override,)))
        assert accepted.ok
        assert accepted.applied_overrides == (override,)

    def test_confirmed_group_below_minimum(self, evaluator):
        candidate = make_class("a", ["s1"], status=ClassStatus.CONFIRMED)
        result = evaluator.evaluate(candidate, EvaluationContext(now=NOW))
        assert result.kinds == {ViolationKind.GROUP_MINIMUM}

    def test_scheduled_group_below_minimum_is_allowed(self, evaluator):
        assert evaluator.accepts(make_class("a", ["s1"]), EvaluationContext(now=NOW))


class TestTeacherLoadConstraint:
    """Tests for the teacher load check."""

    def test_overlapping_class_is_critical(self, evaluator):
        existing = make_class("existing", ["e1"], start=WEDNESDAY + timedelta(minutes=30))
        result = evaluator.evaluate(
            make_class("a", ["s1"]), EvaluationContext(now=NOW, classes=(existing,))
        )
        assert not result.ok
        # Evaluation stops at the first critical violation
        assert len(result.violations) == 1
        assert result.violations[0].kind == ViolationKind.TEACHER_LOAD

    def test_higher_concurrency_limit(self):
        evaluator = ConstraintEvaluator(SchedulingConstraints(max_concurrent_classes_per_teacher=2))
        existing = make_class("existing", ["e1"])
        assert evaluator.accepts(make_class("a", ["s1"]), EvaluationContext(now=NOW, classes=(existing,)))

    def test_cancelled_classes_are_ignored(self, evaluator):
        existing = make_class("existing", ["e1"], status=ClassStatus.CANCELLED)
        assert evaluator.accepts(make_class("a", ["s1"]), EvaluationContext(now=NOW, classes=(existing,)))

    def test_same_id_is_not_compared(self, evaluator):
        existing = make_class("a", ["e1"])
        assert evaluator.accepts(make_class("a", ["s1"]), EvaluationContext(now=NOW, classes=(existing,)))


class TestStudentLoadConstraint:
    """Tests for the student load check."""

    def test_third_class_on_the_same_day(self, evaluator):
        morning = make_class("m", ["s1"], start=datetime(2025, 3, 5, 9, 0), teacher_id="t2")
        noon = make_class("n", ["s1"], start=datetime(2025, 3, 5, 12, 0), teacher_id="t3")
        candidate = make_class("a", ["s1", "s2"], start=datetime(2025, 3, 5, 15, 0))

        result = evaluator.evaluate(candidate, EvaluationContext(now=NOW, classes=(morning, noon)))
        assert result.kinds == {ViolationKind.STUDENT_LOAD}
        assert result.violations[0].student_ids == ("s1",)

    def test_override_for_one_student(self, evaluator):
        morning = make_class("m", ["s1"], start=datetime(2025, 3, 5, 9, 0), teacher_id="t2")
        noon = make_class("n", ["s1"], start=datetime(2025, 3, 5, 12, 0), teacher_id="t3")
        candidate = make_class("a", ["s1"], start=datetime(2025, 3, 5, 15, 0))
        override = SchedulingOverride(type=OverrideType.STUDENT_LOAD, student_id="s1")

        result = evaluator.evaluate(
            candidate, EvaluationContext(now=NOW, classes=(morning, noon), overrides=(override,))
        )
        assert result.ok
        assert result.applied_overrides == (override,)


class TestBreakSpacingConstraint:
    """Tests for the break spacing check."""

    def test_teacher_needs_a_break(self, evaluator):
        existing = make_class("existing", ["e1"])
        candidate = make_class("a", ["s1"], start=WEDNESDAY + timedelta(minutes=65))
        result = evaluator.evaluate(candidate, EvaluationContext(now=NOW, classes=(existing,)))
        assert result.kinds == {ViolationKind.BREAK_SPACING}

    def test_enough_break(self, evaluator):
        existing = make_class("existing", ["e1"])
        candidate = make_class("a", ["s1"], start=WEDNESDAY + timedelta(minutes=75))
        assert evaluator.accepts(candidate, EvaluationContext(now=NOW, classes=(existing,)))

    def test_student_overlap_is_not_overridable(self, evaluator):
        existing = make_class("existing", ["s1"], teacher_id="t2")
        candidate = make_class("a", ["s1"], start=WEDNESDAY + timedelta(minutes=30))
        override = SchedulingOverride(type=OverrideType.BREAK_SPACING)

        result = evaluator.evaluate(
            candidate, EvaluationContext(now=NOW, classes=(existing,), overrides=(override,))
        )
        assert not result.ok
        assert not result.violations[0].overridable

    def test_short_student_gap_can_be_overridden(self, evaluator):
        existing = make_class("existing", ["s1"], teacher_id="t2")
        candidate = make_class("a", ["s1"], start=WEDNESDAY + timedelta(minutes=65))
        override = SchedulingOverride(type=OverrideType.BREAK_SPACING, reason="back to back")

        result = evaluator.evaluate(
            candidate, EvaluationContext(now=NOW, classes=(existing,), overrides=(override,))
        )
        assert result.ok


class TestBookingWindowConstraint:
    """Tests for the booking window check."""

    def test_too_soon(self, evaluator):
        candidate = make_class("a", ["s1"], start=datetime(2025, 3, 3, 10, 0))
        result = evaluator.evaluate(candidate, EvaluationContext(now=NOW))
        assert result.kinds == {ViolationKind.BOOKING_WINDOW}
        assert "24 hours" in result.summary

    def test_too_far_ahead(self, evaluator):
        candidate = make_class("a", ["s1"], start=datetime(2025, 4, 9, 10, 0))
        assert not evaluator.accepts(candidate, EvaluationContext(now=NOW))

    def test_weekend(self, evaluator):
        candidate = make_class("a", ["s1"], start=datetime(2025, 3, 8, 10, 0))
        result = evaluator.evaluate(candidate, EvaluationContext(now=NOW))
        assert "Saturday" in result.summary

    def test_outside_working_hours(self, evaluator):
        candidate = make_class("a", ["s1"], start=datetime(2025, 3, 5, 17, 30))
        result = evaluator.evaluate(candidate, EvaluationContext(now=NOW))
        assert "working hours" in result.summary

    def test_blocked_date(self):
        evaluator = ConstraintEvaluator(
            SchedulingConstraints(blocked_dates=frozenset({date(2025, 3, 5)}))
        )
        result = evaluator.evaluate(make_class("a", ["s1"]), EvaluationContext(now=NOW))
        assert "blocked date" in result.summary

    def test_every_problem_is_reported(self, evaluator):
        candidate = make_class("a", ["s1"], start=datetime(2025, 3, 8, 19, 0))
        result = evaluator.evaluate(candidate, EvaluationContext(now=NOW))
        assert len(result.violations) == 2


class TestEvaluationContext:
    """Tests for EvaluationContext class."""

    def test_with_classes_replaces_same_id(self):
        context = EvaluationContext(now=NOW, classes=(make_class("a", ["s1"]), make_class("b", ["s2"])))
        updated = context.with_classes([make_class("a", ["s1", "s3"])])
        by_id = {c.id: c for c in updated.classes}
        assert set(by_id) == {"a", "b"}
        assert by_id["a"].student_ids == ("s1", "s3")
