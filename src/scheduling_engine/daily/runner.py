"""Daily update batch runner."""

import heapq
import logging
import threading
import time
from datetime import datetime
from typing import Callable

from ..collaborators import (
    AvailabilityStore,
    BookingStore,
    ContentCatalog,
    NotificationDispatcher,
    ProgressStore,
)
from ..exceptions import DailyUpdateInProgressError, SchedulingError, ValidationError
from ..models import SchedulingConstraints
from ..notifications import DailyUpdateNotice, NotificationHub
from ..results import EventSource, EventType, SchedulingEvent
from ..utils import make_id
from .handlers import ComponentHandler, DailyUpdateContext, get_handler
from .models import (
    ComponentState,
    ComponentType,
    DailyDataUpdateConfig,
    DailyRunState,
    DailyUpdateComponent,
    DailyUpdateComponentStatus,
    DailyUpdateMetrics,
    DailyUpdateStatus,
    NotificationTrigger,
)

logger = logging.getLogger(__name__)


def order_components(components: tuple[DailyUpdateComponent, ...]) -> list[DailyUpdateComponent]:
    """
    Order enabled components so that dependencies run first.

    Ties are broken by priority, then by name.

    Raises:
        ValidationError: On an unknown dependency or a dependency cycle
    """
    by_name = {c.name: c for c in components}
    for component in components:
        unknown = [d for d in component.dependencies if d not in by_name]
        if unknown:
            raise ValidationError(
                f"Component '{component.name}' depends on unknown components: {', '.join(unknown)}",
                code="UNKNOWN_DEPENDENCY",
            )

    in_degree = {c.name: len(set(c.dependencies)) for c in components}
    dependents: dict[str, list[str]] = {c.name: [] for c in components}
    for component in components:
        for dependency in set(component.dependencies):
            dependents[dependency].append(component.name)

    ready = [(c.priority, c.name) for c in components if in_degree[c.name] == 0]
    heapq.heapify(ready)
    order = []
    while ready:
        _, name = heapq.heappop(ready)
        order.append(by_name[name])
        for dependent in dependents[name]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (by_name[dependent].priority, dependent))

    if len(order) != len(components):
        stuck = sorted(name for name, degree in in_degree.items() if degree > 0)
        raise ValidationError(
            f"Daily update components have a dependency cycle: {', '.join(stuck)}",
            code="DEPENDENCY_CYCLE",
        )
    return [c for c in order if c.enabled]


class DailyUpdateRunner:
    """
    Runs the daily data update batch.

    Components run one at a time in dependency order. A failed attempt is
    retried with exponential backoff unless it failed validation; a
    component whose dependencies did not complete is skipped. Only one run
    may be active per runner.

    Example:
        runner = DailyUpdateRunner(progress, schedule, schedule, catalog)
        status = runner.run()
        print(status.state, status.metrics.system_health_score)
    """

    def __init__(
        self,
        progress_store: ProgressStore,
        availability_store: AvailabilityStore,
        booking_store: BookingStore,
        content_catalog: ContentCatalog,
        config: DailyDataUpdateConfig | None = None,
        constraints: SchedulingConstraints | None = None,
        notifier: NotificationDispatcher | None = None,
        handlers: dict[ComponentType, ComponentHandler] | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.progress_store = progress_store
        self.availability_store = availability_store
        self.booking_store = booking_store
        self.content_catalog = content_catalog
        self.config = config or DailyDataUpdateConfig()
        self.constraints = constraints or SchedulingConstraints()
        self.notifications = NotificationHub(notifier)
        self.handlers = dict(handlers or {})
        self.clock = clock
        self.sleep = sleep
        self.history: list[DailyUpdateStatus] = []
        self._listeners: list[Callable[[SchedulingEvent], None]] = []
        self._lock = threading.Lock()
        self._current_id: str | None = None

    def add_listener(self, listener: Callable[[SchedulingEvent], None]) -> None:
        self._listeners.append(listener)

    @property
    def current_update_id(self) -> str | None:
        return self._current_id

    @property
    def is_running(self) -> bool:
        return self._current_id is not None

    def run(self, config: DailyDataUpdateConfig | None = None) -> DailyUpdateStatus:
        """
        Execute every enabled component once.

        Args:
            config: Overrides the runner's configuration for this run

        Returns:
            DailyUpdateStatus with per-component results and aggregate metrics

        Raises:
            DailyUpdateInProgressError: If another run is active
        """
        config = config or self.config
        started_at = self.clock()
        update_id = make_id("daily-update", started_at.date(), started_at.strftime("%H%M%S%f"))
        with self._lock:
            if self._current_id is not None:
                raise DailyUpdateInProgressError(self._current_id)
            self._current_id = update_id

        status = DailyUpdateStatus(
            id=update_id,
            date=started_at.date(),
            state=DailyRunState.RUNNING,
            started_at=started_at,
        )
        began = time.monotonic()
        try:
            self._emit(EventType.PROCESSING_STARTED, update_id, f"Daily update {update_id} started")
            logger.info(f"Daily update {update_id} started")
            try:
                self._run_components(config, status)
            except SchedulingError as e:
                status.error = e.message
                logger.error(f"Daily update {update_id} aborted: {e.message}")
            status.processing_time = time.monotonic() - began
            status.completed_at = self.clock()
            self._finish(status)
            self.history.append(status)
            self._send_notices(config, status)
            event = EventType.ERROR_OCCURRED if status.state == DailyRunState.FAILED else EventType.PROCESSING_COMPLETED
            self._emit(event, update_id, f"Daily update {update_id} {status.state.value}")
            logger.info(
                f"Daily update {update_id} {status.state.value}: "
                f"{status.metrics.successful_updates} completed, "
                f"{status.metrics.failed_updates} failed, {status.metrics.skipped_updates} skipped"
            )
            return status
        finally:
            with self._lock:
                self._current_id = None

    def _run_components(self, config: DailyDataUpdateConfig, status: DailyUpdateStatus) -> None:
        context = DailyUpdateContext(
            progress_store=self.progress_store,
            availability_store=self.availability_store,
            booking_store=self.booking_store,
            content_catalog=self.content_catalog,
            constraints=self.constraints,
            now=status.started_at,
        )
        completed: set[str] = set()
        for component in order_components(config.components):
            missing = [d for d in component.dependencies if d not in completed]
            if missing:
                result = DailyUpdateComponentStatus(
                    name=component.name,
                    state=ComponentState.SKIPPED,
                    error=f"Dependencies not met: {', '.join(missing)}",
                )
                logger.warning(f"Skipping '{component.name}': {result.error}")
            else:
                result = self._run_component(component, context, config)
            status.components.append(result)
            if result.state == ComponentState.COMPLETED:
                completed.add(component.name)

    def _run_component(
        self,
        component: DailyUpdateComponent,
        context: DailyUpdateContext,
        config: DailyDataUpdateConfig,
    ) -> DailyUpdateComponentStatus:
        retry = config.retry_config
        result = DailyUpdateComponentStatus(name=component.name, state=ComponentState.RUNNING)
        handler = self.handlers.get(component.type) or get_handler(component.type)
        began = time.monotonic()
        for attempt in range(1, retry.max_retries + 2):
            result.attempts = attempt
            try:
                outcome = handler.run(component, context)
            except ValidationError as e:
                result.state = ComponentState.FAILED
                result.error = e.message
                logger.error(f"Component '{component.name}' failed validation: {e.message}")
                break
            except Exception as e:
                result.state = ComponentState.FAILED
                result.error = str(e)
                if attempt > retry.max_retries:
                    logger.error(f"Component '{component.name}' failed after {attempt} attempts: {e}")
                    break
                delay = retry.delay(attempt)
                logger.warning(
                    f"Component '{component.name}' attempt {attempt} failed: {e}; retrying in {delay:.2f}s"
                )
                self.sleep(delay)
            else:
                result.state = ComponentState.COMPLETED
                result.error = None
                result.records_processed = outcome.records_processed
                result.metrics = dict(outcome.metrics)
                logger.info(
                    f"Component '{component.name}' completed: {outcome.records_processed} records"
                )
                break
        result.processing_time = time.monotonic() - began
        return result

    def _finish(self, status: DailyUpdateStatus) -> None:
        metrics = DailyUpdateMetrics()
        for component in status.components:
            metrics.total_records += component.records_processed
            if component.state == ComponentState.COMPLETED:
                metrics.successful_updates += 1
            elif component.state == ComponentState.FAILED:
                metrics.failed_updates += 1
            elif component.state == ComponentState.SKIPPED:
                metrics.skipped_updates += 1

        operations = metrics.successful_updates + metrics.failed_updates
        metrics.data_quality_score = metrics.successful_updates / operations if operations else 1.0
        health = (
            metrics.data_quality_score,
            1.0 if metrics.failed_updates == 0 else 0.5,
            1.0 if metrics.total_records > 0 else 0.8,
        )
        metrics.system_health_score = sum(health) / len(health)

        previous = self.history[-1] if self.history else None
        if previous is not None and previous.processing_time > 0:
            metrics.performance_improvement = (
                (previous.processing_time - status.processing_time) / previous.processing_time * 100
            )
        status.metrics = metrics

        if status.error is not None or (metrics.successful_updates == 0 and metrics.failed_updates > 0):
            status.state = DailyRunState.FAILED
        elif metrics.failed_updates > 0:
            status.state = DailyRunState.PARTIAL
        else:
            status.state = DailyRunState.COMPLETED

    def _send_notices(self, config: DailyDataUpdateConfig, status: DailyUpdateStatus) -> None:
        trigger = NotificationTrigger.for_state(status.state)
        for notification in config.notifications:
            if not notification.enabled or trigger not in notification.triggers:
                continue
            self.notifications.send(
                DailyUpdateNotice(
                    title=f"Daily update {status.state.value}",
                    message=(
                        f"Daily update {status.id}: {status.metrics.successful_updates} completed, "
                        f"{status.metrics.failed_updates} failed, "
                        f"{status.metrics.skipped_updates} skipped"
                    ),
                    created_at=self.clock(),
                    recipients=notification.recipients,
                    data={"channel": notification.type, "template": notification.template},
                    update_id=status.id,
                    trigger=trigger.value,
                    status=status.state.value,
                )
            )

    def _emit(self, event_type: EventType, update_id: str, message: str) -> None:
        event = SchedulingEvent(
            id=make_id("evt", update_id, event_type.value),
            type=event_type,
            source=EventSource.SCHEDULER,
            timestamp=self.clock(),
            message=message,
            data={"update_id": update_id},
        )
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Daily update listener failed: {e}")

    def close(self) -> None:
        self.notifications.close()
