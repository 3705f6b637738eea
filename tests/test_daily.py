"""Tests for the daily update batch."""

from datetime import timedelta

import pytest

from scheduling_engine.daily import (
    ComponentHandler,
    ComponentState,
    ComponentType,
    DailyDataUpdateConfig,
    DailyRunState,
    DailyUpdateComponent,
    DailyUpdateRunner,
    RetryConfig,
    order_components,
)
from scheduling_engine.exceptions import ValidationError
from scheduling_engine.memory import InMemoryScheduleStore
from scheduling_engine.models import ClassStatus


class FailingHandler(ComponentHandler):
    def __init__(self, error):
        self.error = error
        self.calls = 0

    def run(self, component, context):
        self.calls += 1
        raise self.error


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_runner(progress_store, schedule_store, catalog, notifier, clock, sleeps):
    """Factory for a runner over the shared in-memory stores."""
    created = []

    def _make(config=None, handlers=None, schedule=None):
        schedule = schedule or schedule_store
        runner = DailyUpdateRunner(
            progress_store,
            schedule,
            schedule,
            catalog,
            config=config,
            notifier=notifier,
            handlers=handlers,
            clock=clock,
            sleep=sleeps.append,
        )
        created.append(runner)
        return runner

    yield _make
    for runner in created:
        runner.close()


class TestOrderComponents:
    """Tests for dependency ordering."""

    def test_default_order(self):
        ordered = order_components(DailyDataUpdateConfig().components)
        assert [c.name for c in ordered] == [
            "student_progress",
            "teacher_availability",
            "class_schedules",
            "content_sync",
            "performance_metrics",
        ]

    def test_priority_breaks_ties(self):
        components = (
            DailyUpdateComponent("b", ComponentType.CONTENT_SYNC, priority=2),
            DailyUpdateComponent("a", ComponentType.STUDENT_PROGRESS, priority=3),
            DailyUpdateComponent("c", ComponentType.TEACHER_AVAILABILITY, priority=1),
        )
        assert [c.name for c in order_components(components)] == ["c", "b", "a"]

    def test_disabled_are_dropped(self):
        components = (
            DailyUpdateComponent("a", ComponentType.STUDENT_PROGRESS),
            DailyUpdateComponent("b", ComponentType.CONTENT_SYNC, enabled=False),
        )
        assert [c.name for c in order_components(components)] == ["a"]

    def test_cycle(self):
        components = (
            DailyUpdateComponent("a", ComponentType.STUDENT_PROGRESS, dependencies=("b",)),
            DailyUpdateComponent("b", ComponentType.CONTENT_SYNC, dependencies=("a",)),
        )
        with pytest.raises(ValidationError) as excinfo:
            order_components(components)
        assert excinfo.value.code == "DEPENDENCY_CYCLE"

    def test_unknown_dependency(self):
        components = (
            DailyUpdateComponent("a", ComponentType.STUDENT_PROGRESS, dependencies=("ghost",)),
        )
        with pytest.raises(ValidationError) as excinfo:
            order_components(components)
        assert excinfo.value.code == "UNKNOWN_DEPENDENCY"


class TestDailyUpdateConfig:
    """Tests for DailyDataUpdateConfig class."""

    def test_from_dict(self):
        config = DailyDataUpdateConfig.from_dict(
            {
                "schedule_time": "03:30",
                "components": [{"name": "content_sync", "priority": 1}],
                "retry_config": {"max_retries": 1, "retry_delay": 0.5},
            }
        )
        assert config.schedule_time == "03:30"
        assert [c.type for c in config.components] == [ComponentType.CONTENT_SYNC]
        assert config.retry_config.delay(2) == 1.0

    def test_duplicate_components(self):
        with pytest.raises(ValidationError):
            DailyDataUpdateConfig.from_dict(
                {"components": [{"name": "content_sync"}, {"name": "content_sync"}]}
            )

    def test_unknown_component_type(self):
        with pytest.raises(ValidationError) as excinfo:
            DailyDataUpdateConfig.from_dict({"components": [{"name": "weather"}]})
        assert excinfo.value.code == "UNKNOWN_COMPONENT_TYPE"


class TestDailyUpdateRunner:
    """Tests for DailyUpdateRunner class."""

    def test_default_run(self, make_runner, sleeps):
        runner = make_runner()
        status = runner.run()

        assert status.state == DailyRunState.COMPLETED
        assert [c.state for c in status.components] == [ComponentState.COMPLETED] * 5
        assert status.component("student_progress").records_processed == 10
        assert status.metrics.data_quality_score == 1.0
        assert sleeps == []
        assert not runner.is_running
        assert runner.history == [status]

    def test_retries_with_backoff(self, make_runner, sleeps, notifier):
        handler = FailingHandler(RuntimeError("progress service down"))
        runner = make_runner(handlers={ComponentType.STUDENT_PROGRESS: handler})
        status = runner.run()

        progress = status.component("student_progress")
        assert progress.state == ComponentState.FAILED
        assert progress.attempts == 4
        assert progress.error == "progress service down"
        assert sleeps == [1.0, 2.0, 4.0]

        assert status.component("teacher_availability").state == ComponentState.SKIPPED
        assert status.component("class_schedules").state == ComponentState.SKIPPED
        assert status.component("performance_metrics").state == ComponentState.SKIPPED
        assert status.component("content_sync").state == ComponentState.COMPLETED
        assert status.state == DailyRunState.PARTIAL
        assert status.metrics.failed_updates == 1
        assert status.metrics.skipped_updates == 3

        runner.notifications.flush(timeout=2)
        notices = notifier.of_kind("daily_update")
        assert len(notices) == 1
        assert notices[0].trigger == "warning"

    def test_validation_error_is_not_retried(self, make_runner, sleeps):
        handler = FailingHandler(ValidationError("bad record"))
        runner = make_runner(handlers={ComponentType.STUDENT_PROGRESS: handler})
        status = runner.run()

        assert status.component("student_progress").attempts == 1
        assert handler.calls == 1
        assert sleeps == []

    def test_everything_failing(self, make_runner):
        handler = FailingHandler(ValidationError("bad record"))
        config = DailyDataUpdateConfig(
            components=(DailyUpdateComponent("student_progress", ComponentType.STUDENT_PROGRESS),),
            retry_config=RetryConfig(max_retries=0),
        )
        status = make_runner(config=config, handlers={ComponentType.STUDENT_PROGRESS: handler}).run()
        assert status.state == DailyRunState.FAILED

    def test_cycle_fails_run(self, make_runner):
        config = DailyDataUpdateConfig(
            components=(
                DailyUpdateComponent("a", ComponentType.STUDENT_PROGRESS, dependencies=("b",)),
                DailyUpdateComponent("b", ComponentType.CONTENT_SYNC, dependencies=("a",)),
            )
        )
        status = make_runner(config=config).run()

        assert status.state == DailyRunState.FAILED
        assert "dependency cycle" in status.error

    def test_cancels_under_enrolled_class(
        self, make_runner, make_booking, now, wednesday_availability
    ):
        under = make_booking(["s1"], start=now + timedelta(hours=10))
        full = make_booking(["s1", "s2", "s3"], start=now + timedelta(hours=12))
        later = make_booking(["s4"], start=now + timedelta(days=3))
        store = InMemoryScheduleStore(
            availabilities=[wednesday_availability], bookings=[under, full, later]
        )

        status = make_runner(schedule=store).run()

        schedules = status.component("class_schedules")
        assert schedules.metrics["classes_cancelled"] == 1
        assert store.get_booking(under.id).status == ClassStatus.CANCELLED
        assert store.get_booking(full.id).status == ClassStatus.SCHEDULED
        assert store.get_booking(later.id).status == ClassStatus.SCHEDULED

    def test_performance_metrics(self, make_runner, make_booking, now, wednesday_availability):
        store = InMemoryScheduleStore(
            availabilities=[wednesday_availability],
            bookings=[make_booking(["s1", "s2", "s3"], start=now + timedelta(days=2))],
        )
        status = make_runner(schedule=store).run()

        metrics = status.component("performance_metrics").metrics
        assert metrics["teachers"] == 1
        assert metrics["teacher_utilization"][0]["students"] == 3
