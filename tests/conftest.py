"""Test fixtures for scheduling engine tests."""

from datetime import datetime, time, timedelta

import pytest

from scheduling_engine.memory import (
    InMemoryContentCatalog,
    InMemoryProgressStore,
    InMemoryScheduleStore,
)
from scheduling_engine.models import (
    ClassCapacityConstraint,
    ClassStatus,
    ClassType,
    Day,
    LearningContent,
    RecurringAvailability,
    ScheduledClass,
    SchedulingAlgorithmConfig,
    StudentProgress,
    TeacherAvailability,
    TimeSlot,
)
from scheduling_engine.notifications import RecordingNotificationDispatcher
from scheduling_engine.orchestrator import SchedulingOrchestrator
from scheduling_engine.utils import make_id

# Monday; the booking window opens Tuesday 08:00
NOW = datetime(2025, 3, 3, 8, 0)
COURSE = "english-a1"
WEDNESDAY_10 = datetime(2025, 3, 5, 10, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def contents():
    """Three 30-minute lessons, each requiring the previous one."""
    return [
        LearningContent(id="c1", course_id=COURSE, unit_number=1, lesson_number=1, title="Greetings"),
        LearningContent(
            id="c2",
            course_id=COURSE,
            unit_number=1,
            lesson_number=2,
            title="Introductions",
            prerequisites=("c1",),
        ),
        LearningContent(
            id="c3",
            course_id=COURSE,
            unit_number=1,
            lesson_number=3,
            title="Small talk",
            prerequisites=("c2",),
        ),
    ]


@pytest.fixture
def catalog(contents):
    return InMemoryContentCatalog(contents)


@pytest.fixture
def make_progress():
    """Factory for progress records in the test course."""

    def _make(student_id, completed=(), unlearned=("c1", "c2", "c3"), **kwargs):
        return StudentProgress(
            student_id=student_id,
            course_id=COURSE,
            completed_content=tuple(completed),
            unlearned_content=tuple(unlearned),
            **kwargs,
        )

    return _make


@pytest.fixture
def progress_store(catalog, make_progress):
    return InMemoryProgressStore(
        catalog, [make_progress(f"s{i}") for i in range(1, 11)]
    )


@pytest.fixture
def wednesday_availability():
    """Teacher t1 teaches every Wednesday 10:00-12:00."""
    return TeacherAvailability(
        teacher_id="t1",
        recurring_patterns=(RecurringAvailability(Day.WEDNESDAY, time(10), time(12)),),
    )


@pytest.fixture
def single_slot_availability():
    """Teacher t1 teaches only Wednesday 2025-03-05 10:00-11:00."""
    return TeacherAvailability(
        teacher_id="t1",
        available_slots=(
            TimeSlot(
                id="t1-wed",
                start_time=WEDNESDAY_10,
                end_time=WEDNESDAY_10 + timedelta(hours=1),
            ),
        ),
    )


@pytest.fixture
def schedule_store(wednesday_availability):
    return InMemoryScheduleStore(availabilities=[wednesday_availability])


@pytest.fixture
def make_booking(contents):
    """Factory for an existing group class taught by t1 on Wednesday at 10:00."""

    def _make(student_ids, start=WEDNESDAY_10, teacher_id="t1", version=1, **kwargs):
        kwargs.setdefault("content", tuple(contents[:2]))
        slot = TimeSlot(
            id=make_id("slot", teacher_id, start),
            start_time=start,
            end_time=start + timedelta(hours=1),
            capacity=ClassCapacityConstraint(max_students=9, current_enrollment=len(student_ids)),
        )
        return ScheduledClass(
            id=make_id("class", COURSE, teacher_id, start),
            course_id=COURSE,
            teacher_id=teacher_id,
            student_ids=tuple(student_ids),
            time_slot=slot,
            class_type=kwargs.pop("class_type", ClassType.GROUP),
            status=kwargs.pop("status", ClassStatus.SCHEDULED),
            version=version,
            **kwargs,
        )

    return _make


@pytest.fixture
def notifier():
    return RecordingNotificationDispatcher()


@pytest.fixture
def make_orchestrator(clock, notifier, catalog, progress_store, schedule_store):
    """Factory for an orchestrator wired to the in-memory stores."""
    created = []

    def _make(config=None, progress=None, schedule=None, content=None):
        schedule = schedule or schedule_store
        orchestrator = SchedulingOrchestrator(
            progress or progress_store,
            schedule,
            schedule,
            content or catalog,
            config=config or SchedulingAlgorithmConfig(),
            notifier=notifier,
            clock=clock,
        )
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.close()
