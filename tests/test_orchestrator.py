"""Tests for the scheduling orchestrator."""

import threading
import time

import pytest

from scheduling_engine.constraints import ConstraintEvaluator, EvaluationContext
from scheduling_engine.exceptions import ConstraintError, ErrorCategory
from scheduling_engine.memory import (
    InMemoryContentCatalog,
    InMemoryProgressStore,
    InMemoryScheduleStore,
)
from scheduling_engine.models import (
    SchedulingAlgorithmConfig,
    SchedulingRequest,
    SchedulingStatus,
)
from scheduling_engine.orchestrator import CancellationToken
from scheduling_engine.results import (
    ConflictSeverity,
    ConflictType,
    EventType,
    RecommendationType,
    ResolutionType,
)


def make_request(student_ids, request_id="req-1", **kwargs):
    return SchedulingRequest.from_dict(
        {"id": request_id, "course_id": "english-a1", "student_ids": list(student_ids), **kwargs}
    )


class SlowCatalog(InMemoryContentCatalog):
    def get_course_content(self, course_id):
        time.sleep(0.5)
        return super().get_course_content(course_id)


class FlakyProgressStore(InMemoryProgressStore):
    """Fails the first ``failures`` progress reads with a connection error."""

    def __init__(self, catalog, progress, failures):
        super().__init__(catalog, progress)
        self.failures = failures
        self.calls = 0

    def get_student_progress(self, student_id, course_id):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("progress service unreachable")
        return super().get_student_progress(student_id, course_id)


class BarrierScheduleStore(InMemoryScheduleStore):
    """Holds each commit until ``parties`` commits are waiting together."""

    def __init__(self, parties, **kwargs):
        super().__init__(**kwargs)
        self.barrier = threading.Barrier(parties, timeout=10)

    def commit(self, classes):
        self.barrier.wait()
        return super().commit(classes)


class TestHappyPath:
    """Tests for requests that book a class."""

    def test_books_first_slot(self, make_orchestrator, schedule_store):
        result = make_orchestrator().process(make_request(["s1", "s2"]))

        assert result.success
        assert result.status == SchedulingStatus.COMPLETED
        assert result.error is None
        assert [c.id for c in result.scheduled_classes] == ["class-english-a1-t1-202503051000"]
        booked = result.scheduled_classes[0]
        assert booked.student_ids == ("s1", "s2")
        assert booked.version == 1
        assert booked.confidence_score > 0
        assert booked.rationale.startswith("Score ")
        assert schedule_store.commit_count == 1

    def test_metrics(self, make_orchestrator):
        result = make_orchestrator().process(make_request(["s1", "s2"]))

        assert result.metrics.students_processed == 2
        assert result.metrics.classes_scheduled == 1
        assert result.metrics.success_rate == 1.0
        assert result.metrics.iterations_performed == 1
        assert result.metrics.candidates_generated >= 1

    def test_is_deterministic(self, make_orchestrator, wednesday_availability):
        first = make_orchestrator(
            schedule=InMemoryScheduleStore(availabilities=[wednesday_availability])
        ).process(make_request(["s1", "s2", "s3"]))
        second = make_orchestrator(
            schedule=InMemoryScheduleStore(availabilities=[wednesday_availability])
        ).process(make_request(["s1", "s2", "s3"]))

        assert [c.to_dict() for c in first.scheduled_classes] == [
            c.to_dict() for c in second.scheduled_classes
        ]

    def test_event_order(self, make_orchestrator):
        orchestrator = make_orchestrator()
        events = []
        orchestrator.add_listener(events.append)
        orchestrator.process(make_request(["s1"]))

        types = [e.type for e in events]
        assert types[:2] == [EventType.REQUEST_RECEIVED, EventType.PROCESSING_STARTED]
        assert types[-1] == EventType.PROCESSING_COMPLETED
        assert all(e.request_id == "req-1" for e in events)

    def test_failing_listener_is_ignored(self, make_orchestrator):
        orchestrator = make_orchestrator()

        def broken(event):
            raise RuntimeError("listener down")

        orchestrator.add_listener(broken)
        assert orchestrator.process(make_request(["s1"])).success

    def test_accepted_classes_pass_constraints(self, make_orchestrator, schedule_store, clock):
        orchestrator = make_orchestrator()
        first = orchestrator.process(make_request(["s1", "s2", "s3"]))
        later = {"id": "later", "start_time": "2025-03-12T10:00", "end_time": "2025-03-12T12:00"}
        second = orchestrator.process(
            make_request(["s4", "s5"], request_id="req-2", preferred_time_slots=[later])
        )
        assert first.success
        assert second.success

        evaluator = ConstraintEvaluator(SchedulingAlgorithmConfig().constraints)
        context = EvaluationContext(now=clock(), classes=tuple(schedule_store.bookings))
        for scheduled in schedule_store.bookings:
            assert evaluator.evaluate(scheduled, context).ok, scheduled.id


class TestCapacity:
    """Tests for joining existing classes."""

    def test_fills_last_seat(self, make_orchestrator, single_slot_availability, make_booking):
        store = InMemoryScheduleStore(
            availabilities=[single_slot_availability],
            bookings=[make_booking([f"e{i}" for i in range(1, 9)])],
        )
        result = make_orchestrator(schedule=store).process(make_request(["s9"]))

        assert result.success
        booked = result.scheduled_classes[0]
        assert booked.enrollment == 9
        assert "s9" in booked.student_ids
        assert booked.version == 2

    def test_full_class_is_reported(
        self, make_orchestrator, single_slot_availability, make_booking, notifier
    ):
        store = InMemoryScheduleStore(
            availabilities=[single_slot_availability],
            bookings=[make_booking([f"s{i}" for i in range(1, 10)])],
        )
        orchestrator = make_orchestrator(schedule=store)
        result = orchestrator.process(make_request(["s10"], requested_by="coordinator-1"))

        assert not result.success
        assert result.status == SchedulingStatus.COMPLETED
        assert isinstance(result.error, ConstraintError)
        assert result.recommendations[0].type == RecommendationType.CLASS_FORMAT_CHANGE
        capacity = next(c for c in result.conflicts if c.type == ConflictType.CAPACITY_EXCEEDED)
        assert capacity.severity == ConflictSeverity.HIGH
        assert ResolutionType.WAITLIST in [r.type for r in capacity.resolutions]
        assert store.commit_count == 0

        orchestrator.notifications.flush(timeout=2)
        assert len(notifier.of_kind("conflict_alert")) == 1

    def test_race_for_last_seat(self, make_orchestrator, single_slot_availability, make_booking):
        store = BarrierScheduleStore(
            2,
            availabilities=[single_slot_availability],
            bookings=[make_booking([f"e{i}" for i in range(1, 9)])],
        )
        orchestrator = make_orchestrator(schedule=store)
        results = {}

        def submit(student_id):
            results[student_id] = orchestrator.process(
                make_request([student_id], request_id=f"req-{student_id}")
            )

        threads = [threading.Thread(target=submit, args=(s,)) for s in ("s9", "s10")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        winners = [r for r in results.values() if r.success]
        losers = [r for r in results.values() if not r.success]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].scheduled_classes == []
        assert ConflictType.CAPACITY_EXCEEDED in [c.type for c in losers[0].conflicts]

        stored = store.bookings[0]
        assert stored.enrollment == 9
        assert stored.version == 2
        assert store.commit_count == 1


class TestFailures:
    """Tests for terminal failures."""

    def test_timeout(self, make_orchestrator, contents, schedule_store):
        orchestrator = make_orchestrator(
            config=SchedulingAlgorithmConfig(max_processing_time=0.2),
            content=SlowCatalog(contents),
        )
        result = orchestrator.process(make_request(["s1"]))

        assert result.status == SchedulingStatus.FAILED
        assert result.error.code == "PROCESSING_TIMEOUT"
        assert result.error.category == ErrorCategory.SYSTEM
        assert schedule_store.commit_count == 0

    def test_cancelled_before_start(self, make_orchestrator):
        token = CancellationToken()
        token.cancel()
        result = make_orchestrator().process(make_request(["s1"]), token)

        assert result.status == SchedulingStatus.CANCELLED
        assert result.error.code == "REQUEST_CANCELLED"

    def test_cancelled_while_optimizing(self, make_orchestrator, schedule_store):
        orchestrator = make_orchestrator()
        token = CancellationToken()

        def cancel_on_optimize(event):
            if event.status == SchedulingStatus.OPTIMIZING:
                token.cancel("withdrawn")

        orchestrator.add_listener(cancel_on_optimize)
        result = orchestrator.process(make_request(["s1", "s2"]), token)

        assert result.status == SchedulingStatus.CANCELLED
        assert schedule_store.bookings == []

    def test_transient_failure_is_retried(self, make_orchestrator, catalog, make_progress):
        progress = FlakyProgressStore(catalog, [make_progress("s1")], failures=1)
        orchestrator = make_orchestrator(
            config=SchedulingAlgorithmConfig(resource_retry_delay=0.01), progress=progress
        )
        result = orchestrator.process(make_request(["s1"]))

        assert result.status == SchedulingStatus.COMPLETED
        assert result.success

    def test_persistent_failure(self, make_orchestrator, catalog, make_progress):
        progress = FlakyProgressStore(catalog, [make_progress("s1")], failures=100)
        orchestrator = make_orchestrator(
            config=SchedulingAlgorithmConfig(resource_retry_delay=0.01), progress=progress
        )
        result = orchestrator.process(make_request(["s1"]))

        assert result.status == SchedulingStatus.FAILED
        assert result.error.category == ErrorCategory.RESOURCE


class TestRequestValidation:
    """Tests for rejected requests."""

    @pytest.mark.parametrize(
        "kwargs, code",
        [
            ({"student_ids": []}, "NO_STUDENTS"),
            ({"student_ids": ["s1", "s1"]}, "DUPLICATE_STUDENT"),
            ({"student_ids": ["ghost"]}, "UNKNOWN_STUDENT"),
            ({"student_ids": ["s1"], "course_id": "german-b2"}, "UNKNOWN_COURSE"),
            ({"student_ids": ["s1"], "content_to_schedule": ["c9"]}, "UNKNOWN_CONTENT"),
            ({"student_ids": ["s1"], "type": "manual_override"}, "MISSING_OVERRIDES"),
        ],
    )
    def test_codes(self, make_orchestrator, kwargs, code):
        data = {"id": "req-1", "course_id": "english-a1", **kwargs}
        result = make_orchestrator().process(SchedulingRequest.from_dict(data))

        assert result.status == SchedulingStatus.FAILED
        assert result.error.code == code
        assert result.error.category == ErrorCategory.VALIDATION

    def test_disabled_operation(self, make_orchestrator):
        orchestrator = make_orchestrator(
            config=SchedulingAlgorithmConfig(enable_content_sync=False)
        )
        result = orchestrator.process(make_request(["s1"], type="content_sync"))
        assert result.error.code == "OPERATION_DISABLED"


class TestRecommendations:
    """Tests for recommendations on unscheduled students."""

    def test_student_with_nothing_left(self, make_orchestrator, catalog, make_progress):
        progress = InMemoryProgressStore(
            catalog, [make_progress("s1", completed=("c1", "c2", "c3"), unlearned=())]
        )
        result = make_orchestrator(progress=progress).process(make_request(["s1"]))

        assert not result.success
        recommendation = result.recommendations[0]
        assert recommendation.id == "rec-req-1-idle-s1"
        assert recommendation.type == RecommendationType.CONTENT_ADJUSTMENT
        assert recommendation.student_ids == ("s1",)

    def test_no_teacher_availability(self, make_orchestrator):
        store = InMemoryScheduleStore()
        result = make_orchestrator(schedule=store).process(make_request(["s1"]))

        assert not result.success
        assert result.recommendations[0].type == RecommendationType.ALTERNATIVE_TEACHER
