"""Tests for CP-SAT candidate selection."""

from datetime import datetime, timedelta

import pytest

from scheduling_engine.candidates import Candidate, SchedulingUnit
from scheduling_engine.constraints import ScoreBreakdown
from scheduling_engine.exceptions import ConstraintError
from scheduling_engine.models import ClassCapacityConstraint, ScheduledClass, TimeSlot
from scheduling_engine.solver import CandidateSelector
from scheduling_engine.utils import make_id

WEDNESDAY = datetime(2025, 3, 5, 10, 0)


def breakdown(total):
    return ScoreBreakdown(
        content_progression=total,
        student_availability=total,
        teacher_availability=total,
        class_size_optimization=total,
        learning_pace_matching=total,
        skill_level_alignment=total,
        schedule_continuity=total,
        resource_utilization=total,
        total=total,
    )


def make_unit(unit_id, *student_ids):
    return SchedulingUnit(id=unit_id, student_ids=student_ids, content=())


def make_candidate(unit, start=WEDNESDAY, teacher_id="t1", score=0.5, rank=0, forced=False,
                   existing=None):
    if existing is not None:
        scheduled = existing.with_students(existing.student_ids + unit.student_ids)
    else:
        slot = TimeSlot(
            id=make_id("slot", teacher_id, start),
            start_time=start,
            end_time=start + timedelta(hours=1),
        )
        scheduled = ScheduledClass(
            id=make_id("class", "english-a1", teacher_id, start),
            course_id="english-a1",
            teacher_id=teacher_id,
            student_ids=unit.student_ids,
            time_slot=slot,
        )
    return Candidate(
        unit_id=unit.id,
        scheduled_class=scheduled,
        breakdown=breakdown(score),
        added_student_ids=unit.student_ids,
        joins_existing=existing is not None,
        forced=forced,
        rank=rank,
    )


@pytest.fixture
def selector():
    return CandidateSelector(time_limit=5.0)


class TestCandidateSelector:
    """Tests for CandidateSelector class."""

    def test_no_candidates(self, selector):
        assert selector.select([make_unit("u1", "s1")], {}) == {}

    def test_highest_score_wins(self, selector):
        unit = make_unit("u1", "s1")
        low = make_candidate(unit, score=0.4, rank=1)
        high = make_candidate(unit, start=WEDNESDAY + timedelta(hours=2), score=0.8, rank=0)

        selected = selector.select([unit], {"u1": [low, high]})
        assert selected["u1"] is high

    def test_teacher_cannot_teach_two_units_at_once(self, selector):
        u1, u2 = make_unit("u1", "s1"), make_unit("u2", "s2")
        candidates = {
            "u1": [make_candidate(u1)],
            "u2": [
                make_candidate(u2, rank=0),
                make_candidate(u2, start=WEDNESDAY + timedelta(hours=1), rank=1),
            ],
        }

        selected = selector.select([u1, u2], candidates)
        assert selected["u1"].scheduled_class.start_time == WEDNESDAY
        assert selected["u2"].scheduled_class.start_time == WEDNESDAY + timedelta(hours=1)

    def test_more_students_beat_higher_score(self, selector):
        pair, single = make_unit("pair", "s1", "s2"), make_unit("single", "s3")
        candidates = {
            "pair": [make_candidate(pair, score=0.1)],
            "single": [make_candidate(single, score=0.9)],
        }

        selected = selector.select([pair, single], candidates)
        assert set(selected) == {"pair"}

    def test_existing_class_occupies_teacher(self, selector):
        unit = make_unit("u1", "s1")
        busy = ScheduledClass(
            id="class-busy",
            course_id="other",
            teacher_id="t1",
            student_ids=("x1",),
            time_slot=TimeSlot(id="busy", start_time=WEDNESDAY, end_time=WEDNESDAY + timedelta(hours=1)),
        )
        assert selector.select([unit], {"u1": [make_candidate(unit)]}, existing=[busy]) == {}

    def test_joins_share_free_seats(self, selector):
        existing = ScheduledClass(
            id="class-existing",
            course_id="english-a1",
            teacher_id="t1",
            student_ids=tuple(f"e{i}" for i in range(8)),
            time_slot=TimeSlot(
                id="slot-existing",
                start_time=WEDNESDAY,
                end_time=WEDNESDAY + timedelta(hours=1),
                capacity=ClassCapacityConstraint(max_students=9, current_enrollment=8),
            ),
        )
        u1, u2 = make_unit("u1", "s1"), make_unit("u2", "s2")
        candidates = {
            "u1": [make_candidate(u1, existing=existing)],
            "u2": [make_candidate(u2, existing=existing)],
        }

        selected = selector.select([u1, u2], candidates, existing=[existing])
        assert len(selected) == 1

    def test_student_in_two_units_is_not_double_booked(self, selector):
        u1, u2 = make_unit("u1", "s1"), make_unit("u2", "s1")
        candidates = {
            "u1": [make_candidate(u1, teacher_id="t1")],
            "u2": [make_candidate(u2, teacher_id="t2")],
        }
        assert len(selector.select([u1, u2], candidates)) == 1

    def test_teacher_spacing(self):
        selector = CandidateSelector(time_limit=5.0, min_break_minutes=15)
        u1, u2 = make_unit("u1", "s1"), make_unit("u2", "s2")
        candidates = {
            "u1": [make_candidate(u1)],
            "u2": [make_candidate(u2, start=WEDNESDAY + timedelta(hours=1))],
        }
        assert len(selector.select([u1, u2], candidates)) == 1

    def test_forced_candidate_is_pinned(self, selector):
        unit = make_unit("u1", "s1")
        best = make_candidate(unit, score=0.9, rank=1)
        forced = make_candidate(unit, start=WEDNESDAY + timedelta(hours=3), score=0.1, rank=0, forced=True)

        assert selector.select([unit], {"u1": [forced, best]})["u1"] is forced

    def test_conflicting_forced_candidates(self, selector):
        u1, u2 = make_unit("u1", "s1"), make_unit("u2", "s2")
        candidates = {
            "u1": [make_candidate(u1, forced=True)],
            "u2": [make_candidate(u2, forced=True)],
        }
        with pytest.raises(ConstraintError) as excinfo:
            selector.select([u1, u2], candidates)
        assert excinfo.value.code == "FORCED_PLACEMENTS_CONFLICT"

    def test_deterministic(self, selector):
        units = [make_unit(f"u{i}", f"s{i}") for i in range(3)]
        candidates = {
            u.id: [make_candidate(u, start=WEDNESDAY + timedelta(hours=h), rank=h) for h in range(3)]
            for u in units
        }
        first = selector.select(units, candidates)
        second = selector.select(units, candidates)
        assert {k: c.key for k, c in first.items()} == {k: c.key for k, c in second.items()}
