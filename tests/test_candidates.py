"""Tests for scheduling units and candidate generation."""

from datetime import datetime, timedelta

import pytest

from scheduling_engine.candidates import (
    CandidateGenerator,
    SchedulingUnit,
    build_units,
    segment_slot,
    split_unit,
)
from scheduling_engine.constraints import (
    ConstraintEvaluator,
    ScoringContext,
    ScoringEngine,
    StudentScoringData,
)
from scheduling_engine.models import (
    OverrideType,
    SchedulingConstraints,
    SchedulingOperationType,
    SchedulingOverride,
    SchedulingRequest,
    TeacherAvailability,
    TimeSlot,
)

NOW = datetime(2025, 3, 3, 8, 0)
WEDNESDAY = datetime(2025, 3, 5, 10, 0)


@pytest.fixture
def scoring_data(contents, make_progress):
    def _make(student_id, completed=()):
        progress = make_progress(
            student_id,
            completed=completed,
            unlearned=[c.id for c in contents if c.id not in completed],
        )
        next_content = tuple(c for c in contents if c.id not in completed)
        return StudentScoringData(progress=progress, next_content=next_content)

    return _make


@pytest.fixture
def make_generator(wednesday_availability, scoring_data):
    def _make(
        student_ids, existing=(), overrides=(), preferred=(), student_blocks=None, availability=None
    ):
        availability = availability or wednesday_availability
        request = SchedulingRequest(
            id="req-1",
            type=SchedulingOperationType.AUTO_SCHEDULE,
            course_id="english-a1",
            student_ids=tuple(student_ids),
            preferred_time_slots=tuple(preferred),
            manual_overrides=tuple(overrides),
        )
        constraints = SchedulingConstraints()
        students = {sid: scoring_data(sid) for sid in student_ids}
        return CandidateGenerator(
            request=request,
            evaluator=ConstraintEvaluator(constraints),
            scoring=ScoringEngine(),
            scoring_context=ScoringContext(
                students=students,
                teacher_availability={"t1": availability},
                existing_class_ids=frozenset(c.id for c in existing),
            ),
            teacher_availability={"t1": availability},
            existing=existing,
            window=constraints.booking_window(NOW),
            now=NOW,
            session_minutes=60,
            max_candidates=25,
            student_blocks=student_blocks,
        )

    return _make


def unit_for(student_ids, contents):
    return SchedulingUnit(id="unit-c1", student_ids=tuple(student_ids), content=tuple(contents[:2]))


class TestBuildUnits:
    """Tests for build_units function."""

    def test_students_on_the_same_content_are_grouped(self, scoring_data):
        students = {sid: scoring_data(sid) for sid in ("s2", "s1")}
        units, idle = build_units(students, max_group_size=9, session_minutes=60)

        assert idle == []
        assert len(units) == 1
        assert units[0].student_ids == ("s1", "s2")
        assert [c.id for c in units[0].content] == ["c1", "c2"]
        assert units[0].id == "unit-c1-s1-s2"
        assert units[0].is_group

    def test_different_next_content_splits_units(self, scoring_data):
        students = {"s1": scoring_data("s1"), "s2": scoring_data("s2", completed=("c1",))}
        units, _ = build_units(students, max_group_size=9, session_minutes=60)
        assert [u.student_ids for u in units] == [("s1",), ("s2",)]

    def test_group_size_is_respected(self, scoring_data):
        students = {sid: scoring_data(sid) for sid in ("s1", "s2", "s3")}
        units, _ = build_units(students, max_group_size=2, session_minutes=60)
        assert [u.student_ids for u in units] == [("s1", "s2"), ("s3",)]

    def test_student_with_nothing_left_is_idle(self, scoring_data):
        students = {"s1": scoring_data("s1", completed=("c1", "c2", "c3"))}
        units, idle = build_units(students, max_group_size=9, session_minutes=60)
        assert units == []
        assert idle == ["s1"]

    def test_split_unit(self, scoring_data, contents):
        students = {sid: scoring_data(sid) for sid in ("s1", "s2")}
        parts = split_unit(unit_for(["s1", "s2"], contents), students, 30)
        assert [p.student_ids for p in parts] == [("s1",), ("s2",)]
        assert [c.id for c in parts[0].content] == ["c1"]


class TestSegmentSlot:
    """Tests for segment_slot function."""

    def test_window_is_cut_into_sessions(self):
        window = TimeSlot(id="w", start_time=WEDNESDAY, end_time=WEDNESDAY + timedelta(minutes=150))
        segments = segment_slot(window, "t1", 60)
        assert [s.start_time.hour for s in segments] == [10, 11]
        assert segments[0].id == "slot-t1-202503051000"

    def test_short_window_is_kept(self):
        window = TimeSlot(id="w", start_time=WEDNESDAY, end_time=WEDNESDAY + timedelta(minutes=60))
        assert segment_slot(window, "t1", 60) == [window]


class TestCandidateGenerator:
    """Tests for CandidateGenerator class."""

    def test_new_classes_in_teacher_availability(self, make_generator, contents):
        result = make_generator(["s1", "s2"]).generate(unit_for(["s1", "s2"], contents), ["t1"])

        # Four Wednesdays in the window, two sessions each
        assert len(result.candidates) == 8
        first = result.candidates[0]
        assert first.scheduled_class.id == "class-english-a1-t1-202503051000"
        assert first.scheduled_class.student_ids == ("s1", "s2")
        assert first.scheduled_class.request_id == "req-1"
        assert first.rank == 0
        assert first.key == "unit-c1:class-english-a1-t1-202503051000"

    def test_join_existing_class(self, make_generator, make_booking, contents):
        existing = make_booking([f"e{i}" for i in range(1, 9)])
        result = make_generator(["s9"], existing=[existing]).generate(unit_for(["s9"], contents), ["t1"])

        joins = [c for c in result.candidates if c.joins_existing]
        assert len(joins) == 1
        assert joins[0].scheduled_class.id == existing.id
        assert joins[0].scheduled_class.enrollment == 9
        assert joins[0].added_student_ids == ("s9",)
        assert result.candidates[0].joins_existing

    def test_full_class_is_a_capacity_rejection(self, make_generator, make_booking, contents):
        existing = make_booking([f"e{i}" for i in range(1, 10)])
        result = make_generator(["s10"], existing=[existing]).generate(unit_for(["s10"], contents), ["t1"])

        assert [c.id for c in result.capacity_rejections] == [existing.id]
        assert all(not c.joins_existing for c in result.candidates)

    def test_prevent_override(self, make_generator, contents):
        override = SchedulingOverride(type=OverrideType.PREVENT_SCHEDULE, teacher_id="t1")
        result = make_generator(["s1"], overrides=[override]).generate(unit_for(["s1"], contents), ["t1"])
        assert result.candidates == []

    def test_force_override_ranks_first(self, make_generator, contents):
        override = SchedulingOverride(type=OverrideType.FORCE_SCHEDULE, slot_id="slot-t1-202503121100")
        result = make_generator(["s1"], overrides=[override]).generate(unit_for(["s1"], contents), ["t1"])

        assert result.candidates[0].forced
        assert result.candidates[0].scheduled_class.time_slot.id == "slot-t1-202503121100"

    def test_preferred_teacher_override(self, make_generator, contents):
        override = SchedulingOverride(type=OverrideType.PREFERRED_TEACHER, teacher_id="t9")
        result = make_generator(["s1"], overrides=[override]).generate(unit_for(["s1"], contents), ["t1"])
        # No candidate satisfies the preference, so it is ignored
        assert len(result.candidates) == 8

    def test_preferred_time_slots_restrict_slots(self, make_generator, contents):
        preferred = TimeSlot(
            id="pref",
            start_time=datetime(2025, 3, 12, 11, 0),
            end_time=datetime(2025, 3, 12, 12, 0),
        )
        result = make_generator(["s1"], preferred=[preferred]).generate(unit_for(["s1"], contents), ["t1"])
        assert [c.scheduled_class.start_time for c in result.candidates] == [datetime(2025, 3, 12, 11, 0)]

    def test_student_blocks(self, make_generator, contents):
        block = TimeSlot(id="busy", start_time=WEDNESDAY, end_time=WEDNESDAY + timedelta(hours=2))
        result = make_generator(["s1"], student_blocks={"s1": (block,)}).generate(
            unit_for(["s1"], contents), ["t1"]
        )
        assert len(result.candidates) == 6
        assert all(c.scheduled_class.start_time.day != 5 for c in result.candidates)

    def test_unknown_teacher_has_no_slots(self, make_generator, contents):
        result = make_generator(["s1"]).generate(unit_for(["s1"], contents), ["t9"])
        assert result.candidates == []
        assert result.rejected == []

    def test_content_is_fitted_to_short_slot(self, make_generator, contents):
        monday = datetime(2025, 3, 10, 10, 0)
        short_window = TeacherAvailability(
            teacher_id="t1",
            available_slots=(
                TimeSlot(id="short", start_time=monday, end_time=monday + timedelta(minutes=30)),
            ),
        )
        result = make_generator(["s1"], availability=short_window).generate(
            unit_for(["s1"], contents), ["t1"]
        )

        assert len(result.candidates) == 1
        scheduled = result.candidates[0].scheduled_class
        assert scheduled.time_slot.duration == 30
        assert scheduled.content_ids == ("c1",)
