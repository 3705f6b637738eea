"""Tests for soft scoring of candidate classes."""

from datetime import datetime, time, timedelta

import pytest

from scheduling_engine.constraints import (
    ScoringContext,
    ScoringEngine,
    StudentScoringData,
    rank_candidates,
)
from scheduling_engine.models import (
    ClassCapacityConstraint,
    Day,
    RecurringAvailability,
    ScheduledClass,
    SchedulingScoringWeights,
    StudentPerformanceMetrics,
    TeacherAvailability,
    TimeSlot,
)

WEDNESDAY = datetime(2025, 3, 5, 10, 0)


def make_class(class_id, students, content, start=WEDNESDAY, teacher_id="t1"):
    slot = TimeSlot(
        id=f"slot-{class_id}",
        start_time=start,
        end_time=start + timedelta(hours=1),
        capacity=ClassCapacityConstraint(max_students=9),
    )
    return ScheduledClass(
        id=class_id,
        course_id="english-a1",
        teacher_id=teacher_id,
        student_ids=tuple(students),
        time_slot=slot,
        content=tuple(content),
    )


@pytest.fixture
def students(contents, make_progress):
    return {
        sid: StudentScoringData(progress=make_progress(sid), next_content=tuple(contents))
        for sid in ("s1", "s2")
    }


@pytest.fixture
def teacher_availability():
    return {
        "t1": TeacherAvailability(
            teacher_id="t1",
            recurring_patterns=(RecurringAvailability(Day.WEDNESDAY, time(10), time(12)),),
        )
    }


class TestScoringEngine:
    """Tests for ScoringEngine class."""

    def test_total_is_normalized(self, contents, students, teacher_availability):
        engine = ScoringEngine()
        breakdown = engine.score(
            make_class("a", ["s1", "s2"], contents[:2]),
            ScoringContext(students=students, teacher_availability=teacher_availability),
        )
        assert 0 <= breakdown.total <= 1
        for value in breakdown.as_dict().values():
            assert 0 <= value <= 1

    def test_deterministic(self, contents, students):
        engine = ScoringEngine()
        context = ScoringContext(students=students)
        candidate = make_class("a", ["s1", "s2"], contents[:2])
        assert engine.score(candidate, context) == engine.score(candidate, context)

    def test_content_progression(self, contents, students):
        only_content = SchedulingScoringWeights(
            **{name: 0.0 for name in SchedulingScoringWeights().as_dict()} | {"content_progression": 1.0}
        )
        engine = ScoringEngine(only_content)
        context = ScoringContext(students=students)

        assert engine.total(make_class("a", ["s1", "s2"], contents[:2]), context) == pytest.approx(1.0)
        # Skipping ahead covers none of the next items
        assert engine.total(make_class("b", ["s1", "s2"], contents[2:]), context) == 0.0

    def test_teacher_availability(self, contents, students, teacher_availability):
        engine = ScoringEngine()
        context = ScoringContext(students=students, teacher_availability=teacher_availability)

        inside = engine.score(make_class("a", ["s1"], contents[:1]), context)
        outside = engine.score(
            make_class("b", ["s1"], contents[:1], start=datetime(2025, 3, 6, 10, 0)), context
        )
        unknown = engine.score(make_class("c", ["s1"], contents[:1], teacher_id="t9"), context)

        assert inside.teacher_availability == 1.0
        assert outside.teacher_availability == 0.25
        assert unknown.teacher_availability == 0.5

    def test_class_size_prefers_optimal(self, contents, make_progress):
        performance = StudentPerformanceMetrics(optimal_class_size=2)
        students = {
            sid: StudentScoringData(progress=make_progress(sid, performance=performance))
            for sid in ("s1", "s2", "s3")
        }
        engine = ScoringEngine()
        context = ScoringContext(students=students)

        pair = engine.score(make_class("a", ["s1", "s2"], contents[:1]), context)
        trio = engine.score(make_class("b", ["s1", "s2", "s3"], contents[:1]), context)
        assert pair.class_size_optimization == 1.0
        assert trio.class_size_optimization == 0.5

    def test_student_preferred_times(self, contents, make_progress):
        preferred = TimeSlot(
            id="pref", start_time=datetime(2025, 2, 26, 10, 0), end_time=datetime(2025, 2, 26, 10, 30)
        )
        students = {"s1": StudentScoringData(progress=make_progress("s1", preferred_times=(preferred,)))}
        breakdown = ScoringEngine().score(
            make_class("a", ["s1"], contents[:1]), ScoringContext(students=students)
        )
        assert breakdown.student_availability == 0.5

    def test_joining_existing_class_scores_utilization(self, contents, students):
        engine = ScoringEngine()
        candidate = make_class("a", ["s1", "s2"], contents[:2])

        new = engine.score(candidate, ScoringContext(students=students))
        existing = engine.score(
            candidate, ScoringContext(students=students, existing_class_ids=frozenset({"a"}))
        )
        assert existing.resource_utilization > new.resource_utilization


class TestRankCandidates:
    """Tests for rank_candidates function."""

    def test_equal_scores_prefer_earliest(self, contents, students):
        engine = ScoringEngine()
        context = ScoringContext(students=students)
        late = make_class("late", ["s1"], contents[:1], start=datetime(2025, 3, 5, 11, 0))
        early = make_class("early", ["s1"], contents[:1])

        ranked = rank_candidates([(c, engine.score(c, context)) for c in (late, early)])
        assert [c.id for c, _ in ranked] == ["early", "late"]
