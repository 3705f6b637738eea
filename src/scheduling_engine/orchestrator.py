"""Scheduling orchestrator.

Drives one request through ``idle -> analyzing -> processing -> optimizing ->
validating -> completed``. Any phase may end in ``failed`` (an error) or
``cancelled`` (external cancellation); bookings are only written at the very
end of ``validating``, so neither path leaves partial commits behind.
"""

import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable

from .candidates import (
    Candidate,
    CandidateGenerator,
    CandidateSet,
    SchedulingUnit,
    build_units,
    split_unit,
)
from .collaborators import (
    AvailabilityStore,
    BookingStore,
    CommitRejection,
    ContentCatalog,
    NotificationDispatcher,
    ProgressStore,
)
from .conflicts import ConflictDetector, DetectionContext, conflict_from_rejection
from .constraints import (
    ConstraintEvaluator,
    EvaluationContext,
    ScoringContext,
    ScoringEngine,
    StudentScoringData,
)
from .content import next_teachable
from .exceptions import (
    ConstraintError,
    InvariantViolationError,
    ProcessingTimeoutError,
    RequestCancelledError,
    ResourceError,
    SchedulingError,
    UnknownContentError,
    ValidationError,
)
from .models import (
    DateRange,
    LearningContent,
    ScheduledClass,
    SchedulingAlgorithmConfig,
    SchedulingConstraints,
    SchedulingOperationType,
    SchedulingRequest,
    SchedulingStatus,
    StudentProgress,
    TeacherAvailability,
    TimeSlot,
)
from .notifications import ConflictAlert, NotificationHub
from .resolution import ConflictResolver, ResolutionContext
from .results import (
    Complexity,
    ConflictSeverity,
    ConflictType,
    EventSource,
    EventType,
    RecommendationType,
    RecommendedAction,
    RecommendedActionType,
    SchedulingConflict,
    SchedulingEvent,
    SchedulingMetrics,
    SchedulingRecommendation,
    SchedulingResult,
)
from .solver import CandidateSelector
from .utils import make_id

logger = logging.getLogger(__name__)

EventListener = Callable[[SchedulingEvent], None]


class CancellationToken:
    """Cooperative cancellation flag shared by a caller and a running request."""

    def __init__(self):
        self._event = threading.Event()
        self.reason = "cancelled"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(max(0.0, timeout))


@dataclass
class RequestRun:
    """Lifecycle bookkeeping of one request."""

    request: SchedulingRequest
    token: CancellationToken
    budget: float
    started_at: datetime
    started: float = field(default_factory=time.monotonic)
    status: SchedulingStatus = SchedulingStatus.IDLE

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def remaining(self) -> float:
        return self.budget - self.elapsed()

    def check(self) -> None:
        """Raise if the request was cancelled or ran out of budget."""
        if self.token.cancelled:
            raise RequestCancelledError(self.request.id, self.token.reason)
        if self.remaining() <= 0:
            raise ProcessingTimeoutError(self.budget, phase=self.status.value)


@dataclass
class RequestState:
    """Context loaded while analyzing a request."""

    constraints: SchedulingConstraints
    now: datetime
    window: DateRange
    query_range: DateRange
    teacher_ids: list[str]
    teacher_availability: dict[str, TeacherAvailability]
    existing: list[ScheduledClass]
    student_blocks: dict[str, tuple[TimeSlot, ...]]
    progress: dict[str, StudentProgress]
    unlearned: dict[str, list[LearningContent]]
    students: dict[str, StudentScoringData]

    @property
    def existing_by_id(self) -> dict[str, ScheduledClass]:
        return {c.id: c for c in self.existing}

    @property
    def scoring_context(self) -> ScoringContext:
        return ScoringContext(
            students=self.students,
            teacher_availability=self.teacher_availability,
            existing_class_ids=frozenset(c.id for c in self.existing),
        )

    @property
    def detection_context(self) -> DetectionContext:
        return DetectionContext(
            teacher_availability=self.teacher_availability,
            student_unavailability=self.student_blocks,
            progress=self.progress,
            detected_at=self.now,
        )


@dataclass
class PlanState:
    """Working state of processing and optimization."""

    evaluator: ConstraintEvaluator
    detector: ConflictDetector
    resolver: ConflictResolver
    selector: CandidateSelector
    units: list[SchedulingUnit] = field(default_factory=list)
    candidate_sets: dict[str, CandidateSet] = field(default_factory=dict)
    idle_student_ids: list[str] = field(default_factory=list)
    banned: set[str] = field(default_factory=set)
    # Replacement candidates produced by applied resolutions; None drops the unit
    resolved: dict[str, Candidate | None] = field(default_factory=dict)
    selected: dict[str, Candidate] = field(default_factory=dict)
    batch: dict[str, ScheduledClass] = field(default_factory=dict)
    contributors: dict[str, list[str]] = field(default_factory=dict)
    unit_conflicts: dict[str, list[SchedulingConflict]] = field(default_factory=dict)
    displaced: dict[str, SchedulingConflict] = field(default_factory=dict)
    informational: list[SchedulingConflict] = field(default_factory=list)
    seen: dict[str, SchedulingConflict] = field(default_factory=dict)
    iterations: int = 0
    applied: int = 0

    def add(self, candidate_set: CandidateSet) -> None:
        self.units.append(candidate_set.unit)
        self.candidate_sets[candidate_set.unit.id] = candidate_set

    def available_candidates(self) -> dict[str, list[Candidate]]:
        available = {}
        for unit in self.units:
            if unit.id in self.resolved:
                replacement = self.resolved[unit.id]
                if replacement is None:
                    available[unit.id] = []
                    continue
                if replacement.key not in self.banned:
                    available[unit.id] = [replacement]
                    continue
            available[unit.id] = [
                c for c in self.candidate_sets[unit.id].candidates if c.key not in self.banned
            ]
        return available

    def ban(self, unit_id: str, class_id: str, conflict: SchedulingConflict | None) -> None:
        self.banned.add(f"{unit_id}:{class_id}")
        if conflict is not None:
            self.unit_conflicts.setdefault(unit_id, []).append(conflict)


class SchedulingOrchestrator:
    """
    End-to-end scheduling of a request against external collaborators.

    Collaborator reads run on a worker pool and are bounded by the remaining
    processing budget; transient failures are retried with exponential
    backoff. Candidates are evaluated by the constraint evaluator, ranked by
    the scoring engine and selected with CP-SAT; conflicts are detected on
    the selected batch and auto-applicable resolutions are applied before
    the batch is validated and committed.
    """

    def __init__(
        self,
        progress_store: ProgressStore,
        availability_store: AvailabilityStore,
        booking_store: BookingStore,
        content_catalog: ContentCatalog,
        config: SchedulingAlgorithmConfig | None = None,
        notifier: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = datetime.now,
        max_workers: int = 4,
    ):
        self.progress_store = progress_store
        self.availability_store = availability_store
        self.booking_store = booking_store
        self.content_catalog = content_catalog
        self.config = config or SchedulingAlgorithmConfig()
        self.clock = clock
        self.scoring = ScoringEngine(self.config.scoring_weights)
        self.notifications = NotificationHub(notifier)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="collaborator"
        )
        self._listeners: list[EventListener] = []
        self._event_seq = itertools.count(1)

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.notifications.close()

    # Request boundary

    def process(
        self, request: SchedulingRequest, token: CancellationToken | None = None
    ) -> SchedulingResult:
        """
        Process a scheduling request to a terminal result.

        Args:
            request: Request to process
            token: Optional cancellation token shared with the caller

        Returns:
            SchedulingResult with status completed, failed or cancelled
        """
        run = RequestRun(
            request=request,
            token=token or CancellationToken(),
            budget=self.config.max_processing_time,
            started_at=self.clock(),
        )
        self._emit(run, EventType.REQUEST_RECEIVED, f"Request '{request.id}' received")
        logger.info(
            f"Processing request '{request.id}' ({request.type.value}) for "
            f"{len(request.student_ids)} students in course '{request.course_id}'"
        )
        try:
            result = self._run(run)
        except RequestCancelledError as error:
            logger.warning(f"Request '{request.id}' cancelled during {run.status.value}")
            return self._terminal(run, SchedulingStatus.CANCELLED, error)
        except InvariantViolationError as error:
            logger.critical(f"Invariant violated in request '{request.id}': {error.message}")
            return self._terminal(run, SchedulingStatus.FAILED, error)
        except SchedulingError as error:
            logger.error(
                f"Request '{request.id}' failed during {run.status.value}: "
                f"[{error.category.value}] {error.message}"
            )
            return self._terminal(run, SchedulingStatus.FAILED, error)

        self._emit(
            run,
            EventType.PROCESSING_COMPLETED,
            f"Scheduled {len(result.scheduled_classes)} classes",
            {"success": result.success, "conflicts": len(result.conflicts)},
        )
        return result

    def _terminal(
        self, run: RequestRun, status: SchedulingStatus, error: SchedulingError
    ) -> SchedulingResult:
        run.status = status
        self._emit(run, EventType.ERROR_OCCURRED, error.message, error.to_dict())
        return SchedulingResult(
            request_id=run.request.id,
            success=False,
            status=status,
            metrics=SchedulingMetrics(
                processing_time=run.elapsed(),
                students_processed=len(run.request.student_ids),
            ),
            error=error,
            started_at=run.started_at,
            completed_at=self.clock(),
        )

    def _run(self, run: RequestRun) -> SchedulingResult:
        self._transition(run, SchedulingStatus.ANALYZING)
        state = self._analyze(run)

        self._transition(run, SchedulingStatus.PROCESSING)
        plan = self._process(run, state)

        self._transition(run, SchedulingStatus.OPTIMIZING)
        self._optimize(run, state, plan)

        self._transition(run, SchedulingStatus.VALIDATING)
        committed, conflicts, recommendations = self._validate(run, state, plan)

        run.status = SchedulingStatus.COMPLETED
        return self._finish(run, state, plan, committed, conflicts, recommendations)

    def _transition(self, run: RequestRun, status: SchedulingStatus) -> None:
        run.check()
        previous, run.status = run.status, status
        logger.info(f"Request '{run.request.id}': {previous.value} -> {status.value}")
        event = (
            EventType.PROCESSING_STARTED
            if status == SchedulingStatus.ANALYZING
            else EventType.STATUS_CHANGED
        )
        self._emit(run, event, f"{previous.value} -> {status.value}")

    def _emit(
        self,
        run: RequestRun,
        event_type: EventType,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        event = SchedulingEvent(
            id=make_id("evt", run.request.id, next(self._event_seq)),
            type=event_type,
            source=EventSource.SCHEDULER,
            timestamp=self.clock(),
            request_id=run.request.id,
            status=run.status,
            message=message,
            data=data or {},
        )
        logger.debug(f"Event {event_type.value}: {message}")
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as error:
                logger.warning(f"Event listener failed on {event_type.value}: {error}")

    def _call(self, run: RequestRun, description: str, fn: Callable, *args):
        """Call a collaborator within the remaining budget, retrying transient failures."""
        delay = self.config.resource_retry_delay
        attempt = 0
        while True:
            run.check()
            future = self._executor.submit(fn, *args)
            try:
                return future.result(timeout=run.remaining())
            except (ConnectionError, TimeoutError, ResourceError) as error:
                if not future.done():
                    future.cancel()
                    raise ProcessingTimeoutError(run.budget, phase=run.status.value) from None
                attempt += 1
                if attempt > self.config.resource_retry_attempts:
                    raise ResourceError(
                        f"Loading {description} failed after {attempt} attempts: {error}",
                        details={"description": description, "attempts": attempt},
                    ) from error
                logger.warning(
                    f"Loading {description} failed (attempt {attempt}), retrying in {delay:.2f}s: {error}"
                )
                if run.token.wait(min(delay, max(run.remaining(), 0.0))):
                    raise RequestCancelledError(run.request.id, run.token.reason) from None
                delay *= self.config.backoff_multiplier

    # Analyzing

    def _validate_request(self, request: SchedulingRequest) -> None:
        if not request.course_id:
            raise ValidationError("Request must name a course", code="MISSING_COURSE")
        if not request.student_ids:
            raise ValidationError("Request must target at least one student", code="NO_STUDENTS")
        if len(set(request.student_ids)) != len(request.student_ids):
            raise ValidationError("Request lists a student more than once", code="DUPLICATE_STUDENT")
        if request.type == SchedulingOperationType.CONTENT_SYNC and not self.config.enable_content_sync:
            raise ValidationError("Content sync requests are disabled", code="OPERATION_DISABLED")
        if (
            request.type == SchedulingOperationType.CONFLICT_RESOLUTION
            and not self.config.enable_conflict_resolution
        ):
            raise ValidationError("Conflict resolution requests are disabled", code="OPERATION_DISABLED")
        if request.type == SchedulingOperationType.MANUAL_OVERRIDE and not request.manual_overrides:
            raise ValidationError(
                "Manual override requests must carry at least one override",
                code="MISSING_OVERRIDES",
            )

    def _analyze(self, run: RequestRun) -> RequestState:
        request = run.request
        self._validate_request(request)
        constraints = self.config.constraints.with_overrides(request.constraint_overrides)
        now = self.clock()
        window = constraints.booking_window(now)
        query_range = window.widened(1)

        course_content = self._call(
            run, "course content", self.content_catalog.get_course_content, request.course_id
        )
        course_ids = {c.id for c in course_content}
        for content_id in request.content_to_schedule:
            if content_id not in course_ids:
                raise UnknownContentError(content_id)

        teacher_ids = list(request.teacher_ids) or self._call(
            run, "teachers", self.availability_store.list_teacher_ids, request.course_id
        )
        availability = {
            teacher_id: self._call(
                run,
                f"availability of teacher '{teacher_id}'",
                self.availability_store.get_teacher_availability,
                teacher_id,
                query_range,
            )
            for teacher_id in teacher_ids
        }
        existing = self._call(
            run, "existing bookings", self.availability_store.get_existing_bookings, query_range
        )

        progress: dict[str, StudentProgress] = {}
        unlearned: dict[str, list[LearningContent]] = {}
        blocks: dict[str, tuple[TimeSlot, ...]] = {}
        students: dict[str, StudentScoringData] = {}
        requested = set(request.content_to_schedule)
        for student_id in request.student_ids:
            progress[student_id] = self._call(
                run,
                f"progress of student '{student_id}'",
                self.progress_store.get_student_progress,
                student_id,
                request.course_id,
            )
            unlearned[student_id] = self._call(
                run,
                f"unlearned content of student '{student_id}'",
                self.progress_store.get_unlearned_content,
                student_id,
                request.course_id,
            )
            blocks[student_id] = tuple(
                self._call(
                    run,
                    f"unavailability of student '{student_id}'",
                    self.availability_store.get_student_unavailability,
                    student_id,
                    query_range,
                )
            )
            pool = [c for c in unlearned[student_id] if not requested or c.id in requested]
            students[student_id] = StudentScoringData(
                progress=progress[student_id],
                next_content=tuple(next_teachable(pool, progress[student_id].completed_content)),
                history=tuple(c for c in existing if student_id in c.student_ids),
            )

        logger.info(
            f"Loaded {len(teacher_ids)} teachers, {len(existing)} bookings and "
            f"{len(students)} student records for request '{request.id}'"
        )
        return RequestState(
            constraints=constraints,
            now=now,
            window=window,
            query_range=query_range,
            teacher_ids=teacher_ids,
            teacher_availability=availability,
            existing=list(existing),
            student_blocks=blocks,
            progress=progress,
            unlearned=unlearned,
            students=students,
        )

    # Processing

    def _process(self, run: RequestRun, state: RequestState) -> PlanState:
        request = run.request
        evaluator = ConstraintEvaluator(state.constraints)
        plan = PlanState(
            evaluator=evaluator,
            detector=ConflictDetector(state.constraints),
            resolver=ConflictResolver(evaluator, self.scoring, state.constraints),
            selector=CandidateSelector(
                time_limit=self.config.solver_time_limit,
                max_concurrent_per_teacher=state.constraints.max_concurrent_classes_per_teacher,
                min_break_minutes=state.constraints.min_break_between_classes,
            ),
        )
        generator = CandidateGenerator(
            request=request,
            evaluator=evaluator,
            scoring=self.scoring,
            scoring_context=state.scoring_context,
            teacher_availability=state.teacher_availability,
            existing=state.existing,
            window=state.window,
            now=state.now,
            session_minutes=self.config.class_duration,
            max_candidates=self.config.max_candidates_per_unit,
            student_blocks=state.student_blocks,
        )

        units, plan.idle_student_ids = build_units(
            state.students, state.constraints.max_students_per_class, self.config.class_duration
        )
        for unit in units:
            run.check()
            candidate_set = generator.generate(unit, state.teacher_ids)
            if candidate_set.candidates or not unit.is_group:
                plan.add(candidate_set)
                continue
            logger.info(f"No feasible group slot for unit '{unit.id}', scheduling students individually")
            for single in split_unit(unit, state.students, self.config.class_duration):
                plan.add(generator.generate(single, state.teacher_ids))

        logger.info(
            f"Generated candidates for {len(plan.units)} units "
            f"({len(plan.idle_student_ids)} students with nothing to schedule)"
        )
        return plan

    # Optimizing

    def _merge(
        self, selected: dict[str, Candidate]
    ) -> tuple[dict[str, ScheduledClass], dict[str, list[str]]]:
        """Combine selections; units joining the same class share it."""
        batch: dict[str, ScheduledClass] = {}
        contributors: dict[str, list[str]] = {}
        for unit_id in sorted(selected):
            candidate = selected[unit_id]
            scheduled = candidate.scheduled_class
            if scheduled.id in batch:
                merged = batch[scheduled.id]
                students = tuple(dict.fromkeys(merged.student_ids + candidate.added_student_ids))
                overrides = tuple(dict.fromkeys(merged.applied_overrides + scheduled.applied_overrides))
                scheduled = replace(merged.with_students(students), applied_overrides=overrides)
            batch[scheduled.id] = scheduled
            contributors.setdefault(scheduled.id, []).append(unit_id)
        return batch, contributors

    def _recheck(
        self, run: RequestRun, state: RequestState, plan: PlanState, batch: dict[str, ScheduledClass]
    ) -> set[str]:
        """Re-evaluate every selection against bookings plus the rest of the batch."""
        context = EvaluationContext(
            now=state.now, classes=tuple(state.existing), overrides=run.request.manual_overrides
        ).with_classes(batch.values())
        failed = set()
        for class_id, scheduled in batch.items():
            result = plan.evaluator.evaluate(scheduled, context)
            if not result.ok:
                logger.info(f"Selected class '{class_id}' failed re-evaluation: {result.summary}")
                failed.add(class_id)
        return failed

    def _combined(self, state: RequestState, batch: dict[str, ScheduledClass]) -> list[ScheduledClass]:
        return [c for c in state.existing if c.id not in batch] + list(batch.values())

    def _resolution_context(
        self,
        run: RequestRun,
        state: RequestState,
        classes: list[ScheduledClass],
        movable_ids: set[str],
    ) -> ResolutionContext:
        return ResolutionContext(
            classes=tuple(classes),
            evaluation=EvaluationContext(now=state.now, overrides=run.request.manual_overrides),
            scoring=state.scoring_context,
            teacher_availability=state.teacher_availability,
            teacher_ids=tuple(state.teacher_ids),
            window=state.window,
            student_blocks=state.student_blocks,
            movable_ids=frozenset(movable_ids),
        )

    def _optimize(self, run: RequestRun, state: RequestState, plan: PlanState) -> None:
        request = run.request
        existing_ids = set(state.existing_by_id)
        max_iterations = (
            self.config.max_optimization_iterations
            if self.config.enable_performance_optimization
            else 1
        )

        for iteration in range(1, max_iterations + 1):
            run.check()
            plan.iterations = iteration
            selected = plan.selector.select(
                plan.units,
                plan.available_candidates(),
                state.existing,
                time_limit=max(run.remaining(), 0.01),
            )
            batch, contributors = self._merge(selected)
            plan.selected, plan.batch, plan.contributors = selected, batch, contributors

            failed = self._recheck(run, state, plan, batch)
            combined = self._combined(state, batch)
            conflicts = [
                c
                for c in plan.detector.detect(combined, state.detection_context)
                if any(cid in batch for cid in c.class_ids)
            ]
            blocking = [c for c in conflicts if c.is_blocking]
            plan.informational = [c for c in conflicts if not c.is_blocking]

            if not failed and not blocking:
                logger.info(
                    f"Request '{request.id}': {len(batch)} classes conflict-free after "
                    f"{iteration} iteration(s)"
                )
                return

            last = iteration == max_iterations
            dropped = set(failed)
            for class_id in failed:
                for unit_id in contributors[class_id]:
                    plan.ban(unit_id, class_id, None)

            movable = {cid for cid in batch if cid not in existing_ids}
            context = self._resolution_context(run, state, combined, movable)
            for conflict in blocking:
                involved = [batch[cid] for cid in conflict.class_ids if cid in batch]
                if conflict.id not in plan.seen:
                    self._emit(
                        run,
                        EventType.CONFLICT_DETECTED,
                        conflict.description,
                        {"conflict_id": conflict.id, "severity": conflict.severity.value},
                    )
                if dropped.intersection(c.id for c in involved):
                    plan.seen.setdefault(conflict.id, conflict)
                    continue
                if last:
                    plan.seen[conflict.id] = conflict
                    for scheduled in involved:
                        dropped.add(scheduled.id)
                        for unit_id in contributors[scheduled.id]:
                            plan.unit_conflicts.setdefault(unit_id, []).append(conflict)
                    continue
                dropped.update(self._handle_conflict(run, state, plan, conflict, context))

            if last:
                plan.batch = {cid: c for cid, c in batch.items() if cid not in dropped}
                plan.contributors = {
                    cid: units for cid, units in contributors.items() if cid not in dropped
                }
                logger.warning(
                    f"Request '{request.id}': iteration limit reached, "
                    f"{len(dropped)} conflicting classes left out"
                )

    def _handle_conflict(
        self,
        run: RequestRun,
        state: RequestState,
        plan: PlanState,
        conflict: SchedulingConflict,
        context: ResolutionContext,
    ) -> set[str]:
        """Auto-apply the best eligible resolution, or move the weakest class aside."""
        batch = plan.batch
        resolutions = (
            plan.resolver.resolve(conflict, context) if self.config.enable_conflict_resolution else []
        )
        conflict = conflict.with_resolutions(resolutions)
        plan.seen[conflict.id] = conflict

        auto = next(
            (
                r
                for r in resolutions
                if r.is_auto_applicable(self.config.auto_apply_threshold) and r.class_id in batch
            ),
            None,
        )
        if auto is not None:
            applied = plan.resolver.apply(auto, list(batch.values()))
            self._adopt(
                state, plan, auto.class_id, applied.classes, applied.displaced_student_ids, conflict
            )
            plan.applied += 1
            self._emit(
                run,
                EventType.OPTIMIZATION_APPLIED,
                auto.description,
                {"conflict_id": conflict.id, "resolution_id": auto.id, "type": auto.type.value},
            )
            return {auto.class_id}

        mover = plan.resolver.pick_mover(
            [batch[cid] for cid in conflict.class_ids if cid in batch], context
        )
        logger.info(f"Conflict '{conflict.id}' needs approval; dropping candidate '{mover.id}'")
        for unit_id in plan.contributors[mover.id]:
            plan.ban(unit_id, mover.id, conflict)
            plan.resolved.pop(unit_id, None)
        return {mover.id}

    def _adopt(
        self,
        state: RequestState,
        plan: PlanState,
        class_id: str,
        classes: list[ScheduledClass],
        displaced: tuple[str, ...],
        conflict: SchedulingConflict,
    ) -> None:
        """Turn an applied resolution into replacement candidates for the units involved."""
        # The target itself, or the classes it was moved or split into
        changed = [c for c in classes if c.id == class_id or c.id not in plan.batch]

        for unit_id in plan.contributors[class_id]:
            candidate = plan.selected[unit_id]
            for student_id in candidate.added_student_ids:
                if student_id in displaced:
                    plan.displaced[student_id] = conflict
            target = max(
                changed,
                key=lambda c: (
                    sum(1 for s in candidate.added_student_ids if s in c.student_ids),
                    c.id == class_id,
                ),
                default=None,
            )
            added = tuple(
                s for s in candidate.added_student_ids if target and s in target.student_ids
            )
            if not added:
                plan.resolved[unit_id] = None
                continue
            base = state.existing_by_id.get(target.id)
            base_students = base.student_ids if base else ()
            scheduled = target.with_students(tuple(dict.fromkeys(base_students + added)))
            plan.resolved[unit_id] = Candidate(
                unit_id=unit_id,
                scheduled_class=scheduled,
                breakdown=self.scoring.score(scheduled, state.scoring_context),
                added_student_ids=added,
                joins_existing=base is not None,
                forced=candidate.forced,
            )

    # Validating

    def _validate(
        self, run: RequestRun, state: RequestState, plan: PlanState
    ) -> tuple[list[ScheduledClass], list[SchedulingConflict], list[SchedulingRecommendation]]:
        """Re-read bookings, rebase, detect, then commit in a single call."""
        request = run.request
        conflicts: list[SchedulingConflict] = []
        recommendations: list[SchedulingRecommendation] = []

        fresh = self._call(
            run, "existing bookings", self.availability_store.get_existing_bookings, state.query_range
        )
        fresh_by_id = {c.id: c for c in fresh}
        existing_by_id = state.existing_by_id

        to_commit: dict[str, ScheduledClass] = {}
        for class_id, scheduled in plan.batch.items():
            base = existing_by_id.get(class_id)
            if base is not None:
                stored = fresh_by_id.get(class_id)
                added = tuple(s for s in scheduled.student_ids if s not in base.student_ids)
                if stored is None:
                    conflict = SchedulingConflict(
                        id=make_id("conflict", "vanished", class_id),
                        type=ConflictType.RESOURCE_CONFLICT,
                        severity=ConflictSeverity.HIGH,
                        entity_ids=(class_id,),
                        description=f"Class '{class_id}' was cancelled while scheduling",
                        class_ids=(class_id,),
                        student_ids=added,
                        detected_at=state.now,
                    )
                    self._downgrade(run, state, plan, scheduled, [conflict], conflicts, recommendations)
                    continue
                scheduled = replace(
                    stored.with_students(tuple(dict.fromkeys(stored.student_ids + added))),
                    applied_overrides=scheduled.applied_overrides,
                )
            to_commit[class_id] = self._finalize(plan, state, class_id, scheduled)

        combined = [c for c in fresh if c.id not in to_commit] + list(to_commit.values())
        detected = [
            c
            for c in plan.detector.detect(combined, state.detection_context)
            if any(cid in to_commit for cid in c.class_ids)
        ]
        blocked: dict[str, list[SchedulingConflict]] = {}
        for conflict in detected:
            if not conflict.is_blocking:
                conflicts.append(conflict)
                continue
            for class_id in conflict.class_ids:
                if class_id in to_commit:
                    blocked.setdefault(class_id, []).append(conflict)
        if blocked:
            context = self._resolution_context(run, state, combined, set(to_commit))
            for class_id, found in blocked.items():
                resolved = [c.with_resolutions(plan.resolver.resolve(c, context)) for c in found]
                self._downgrade(
                    run, state, plan, to_commit.pop(class_id), resolved, conflicts, recommendations
                )

        # Last chance to abort: nothing has been written yet
        run.check()
        if not to_commit:
            return [], conflicts, recommendations

        report = self.booking_store.commit(list(to_commit.values()))
        logger.info(
            f"Request '{request.id}': committed {len(report.committed)} classes, "
            f"{len(report.rejections)} rejected"
        )
        if report.rejections:
            self._handle_rejections(run, state, plan, report.rejections, conflicts, recommendations)
        return report.committed, conflicts, recommendations

    def _finalize(
        self, plan: PlanState, state: RequestState, class_id: str, scheduled: ScheduledClass
    ) -> ScheduledClass:
        breakdown = self.scoring.score(scheduled, state.scoring_context)
        alternatives = []
        selected_keys = {plan.selected[u].key for u in plan.contributors.get(class_id, []) if u in plan.selected}
        for unit_id in plan.contributors.get(class_id, []):
            for candidate in plan.candidate_sets[unit_id].candidates:
                if candidate.key in selected_keys or candidate.scheduled_class.id == class_id:
                    continue
                alternatives.append(candidate.scheduled_class)
                if len(alternatives) >= self.config.alternatives_per_class:
                    break
        origin = "joins an existing class" if class_id in state.existing_by_id else "opens a new class"
        return replace(
            scheduled,
            confidence_score=breakdown.total,
            rationale=(
                f"Score {breakdown.total:.2f} ({origin}): content {breakdown.content_progression:.2f}, "
                f"availability {breakdown.student_availability:.2f}, "
                f"class size {breakdown.class_size_optimization:.2f}"
            ),
            alternatives=tuple(alternatives[: self.config.alternatives_per_class]),
        )

    def _downgrade(
        self,
        run: RequestRun,
        state: RequestState,
        plan: PlanState,
        scheduled: ScheduledClass,
        found: list[SchedulingConflict],
        conflicts: list[SchedulingConflict],
        recommendations: list[SchedulingRecommendation],
    ) -> None:
        """Keep a conflicting class out of the commit and surface it as a recommendation."""
        conflicts.extend(found)
        base = state.existing_by_id.get(scheduled.id)
        students = tuple(
            s for s in scheduled.student_ids if s in run.request.student_ids and not (base and s in base.student_ids)
        )
        best = next((r for c in found for r in c.resolutions), None)
        recommendations.append(
            SchedulingRecommendation(
                id=make_id("rec", run.request.id, "downgrade", scheduled.id),
                type=RecommendationType.ALTERNATIVE_TIME,
                description=(
                    f"Class '{scheduled.id}' was not booked: {found[0].description}"
                    + (f". Suggested: {best.description}" if best else "")
                ),
                confidence_score=best.feasibility_score if best else 0.3,
                action=RecommendedAction(
                    type=RecommendedActionType.REQUEST_APPROVAL
                    if best is None or best.required_approvals
                    else RecommendedActionType.MODIFY_SCHEDULE,
                    class_id=scheduled.id,
                    teacher_id=scheduled.teacher_id,
                    time_slot=scheduled.time_slot,
                    content_ids=scheduled.content_ids,
                ),
                priority=run.request.priority,
                benefits=("Keeps the proposed teacher and content",),
                drawbacks=("Conflicts with bookings made meanwhile",),
                complexity=Complexity.MEDIUM,
                student_ids=students,
                proposed_class=scheduled,
            )
        )
        for unit_id in plan.contributors.get(scheduled.id, []):
            plan.unit_conflicts.setdefault(unit_id, []).extend(found)

    def _handle_rejections(
        self,
        run: RequestRun,
        state: RequestState,
        plan: PlanState,
        rejections: list[CommitRejection],
        conflicts: list[SchedulingConflict],
        recommendations: list[SchedulingRecommendation],
    ) -> None:
        """Re-detect rejected classes against fresh bookings and report the conflicts."""
        try:
            fresh = self.availability_store.get_existing_bookings(state.query_range)
        except (ConnectionError, TimeoutError, ResourceError) as error:
            logger.warning(f"Could not re-read bookings after rejected commit: {error}")
            fresh = []
        for rejection in rejections:
            scheduled = rejection.scheduled_class
            stored = next((c for c in fresh if c.id == scheduled.id), None)
            candidate = scheduled
            if stored is not None:
                base = state.existing_by_id.get(scheduled.id)
                added = tuple(
                    s for s in scheduled.student_ids if not base or s not in base.student_ids
                )
                candidate = stored.with_students(tuple(dict.fromkeys(stored.student_ids + added)))
            combined = [c for c in fresh if c.id != scheduled.id] + [candidate]
            found = [
                c
                for c in plan.detector.detect(combined, state.detection_context)
                if scheduled.id in c.class_ids and c.is_blocking
            ]
            if not found:
                found = [conflict_from_rejection(rejection, state.now)]
            context = self._resolution_context(run, state, combined, set())
            found = [c.with_resolutions(plan.resolver.resolve(c, context)) for c in found]
            self._downgrade(run, state, plan, candidate, found, conflicts, recommendations)

    # Result

    def _recommendations(
        self,
        run: RequestRun,
        state: RequestState,
        plan: PlanState,
        scheduled_students: set[str],
        downgraded: set[str],
        conflicts: list[SchedulingConflict],
    ) -> list[SchedulingRecommendation]:
        request = run.request
        recommendations = []
        for unit in plan.units:
            missing = set(unit.student_ids) - scheduled_students - downgraded - set(plan.displaced)
            if not missing:
                continue
            recommendations.append(self._unit_recommendation(run, state, plan, unit, conflicts))

        for student_id in plan.idle_student_ids:
            recommendations.append(self._idle_recommendation(run, state, student_id))

        for student_id, conflict in sorted(plan.displaced.items()):
            if student_id in scheduled_students:
                continue
            recommendations.append(
                SchedulingRecommendation(
                    id=make_id("rec", request.id, "waitlist", student_id),
                    type=RecommendationType.ALTERNATIVE_TIME,
                    description=f"Student '{student_id}' was waitlisted: {conflict.description}",
                    confidence_score=0.6,
                    action=RecommendedAction(
                        type=RecommendedActionType.NOTIFY_STAKEHOLDERS,
                        class_id=conflict.class_ids[0] if conflict.class_ids else None,
                        assigned_to=request.requested_by,
                    ),
                    priority=request.priority,
                    benefits=("Seat is offered as soon as one frees up",),
                    drawbacks=("No class until a seat frees up",),
                    student_ids=(student_id,),
                )
            )
            if conflict not in conflicts:
                conflicts.append(conflict)
        return recommendations

    def _unit_recommendation(
        self,
        run: RequestRun,
        state: RequestState,
        plan: PlanState,
        unit: SchedulingUnit,
        conflicts: list[SchedulingConflict],
    ) -> SchedulingRecommendation:
        request = run.request
        candidate_set = plan.candidate_sets[unit.id]
        remaining = [c for c in candidate_set.candidates if c.key not in plan.banned]
        rec_id = make_id("rec", request.id, unit.id)
        content_ids = tuple(c.id for c in unit.content)

        unit_conflicts = plan.unit_conflicts.get(unit.id, [])
        if unit_conflicts:
            conflict = unit_conflicts[-1]
            for found in unit_conflicts:
                if found not in conflicts:
                    conflicts.append(found)
            proposed = remaining[0].scheduled_class if remaining else None
            return SchedulingRecommendation(
                id=rec_id,
                type=RecommendationType.ALTERNATIVE_TIME,
                description=f"Could not be placed without conflict: {conflict.description}",
                confidence_score=0.5,
                action=self._action(
                    RecommendedActionType.MODIFY_SCHEDULE if proposed else RecommendedActionType.REQUEST_APPROVAL,
                    proposed,
                    content_ids,
                ),
                priority=request.priority,
                benefits=("Resolves the conflict without moving other bookings",),
                drawbacks=("Needs a coordinator to confirm the change",),
                complexity=Complexity.MEDIUM,
                student_ids=unit.student_ids,
                proposed_class=proposed,
            )

        full_classes = candidate_set.capacity_rejections
        if full_classes and not candidate_set.candidates:
            full = full_classes[0]
            context = self._resolution_context(
                run, state, [c for c in state.existing if c.id != full.id] + [full], set()
            )
            found = [
                c.with_resolutions(plan.resolver.resolve(c, context))
                for c in plan.detector.detect([full], state.detection_context)
                if c.type == ConflictType.CAPACITY_EXCEEDED
            ]
            conflicts.extend(c for c in found if c not in conflicts)
            return SchedulingRecommendation(
                id=rec_id,
                type=RecommendationType.CLASS_FORMAT_CHANGE,
                description=(
                    f"Class '{full.id}' is full ({full.time_slot.capacity.max_students} seats); "
                    "join its waitlist or open another class"
                ),
                confidence_score=0.5,
                action=self._action(RecommendedActionType.REQUEST_APPROVAL, full, content_ids),
                priority=request.priority,
                benefits=("Keeps the preferred time slot",),
                drawbacks=("No seat until another student leaves",),
                complexity=Complexity.MEDIUM,
                student_ids=unit.student_ids,
            )

        if remaining:
            proposed = remaining[0].scheduled_class
            return SchedulingRecommendation(
                id=rec_id,
                type=RecommendationType.ALTERNATIVE_TIME,
                description=(
                    "Slots were taken by other students in this request; best remaining option is "
                    f"'{proposed.teacher_id}' at {proposed.start_time:%Y-%m-%d %H:%M}"
                ),
                confidence_score=min(1.0, remaining[0].score),
                action=self._action(RecommendedActionType.SCHEDULE_CLASS, proposed, content_ids),
                priority=request.priority,
                benefits=("Satisfies every hard constraint",),
                drawbacks=("Lower score than the slots already taken",),
                complexity=Complexity.LOW,
                student_ids=unit.student_ids,
                proposed_class=proposed,
            )

        if candidate_set.rejected:
            closest, result = min(
                candidate_set.rejected,
                key=lambda pair: (len(pair[1].violations), pair[0].start_time, pair[0].id),
            )
            days = max(0, (closest.start_time.date() - state.now.date()).days)
            action_type = (
                RecommendedActionType.REQUEST_APPROVAL
                if result.requires_approval
                else RecommendedActionType.DEFER_SCHEDULING
            )
            return SchedulingRecommendation(
                id=rec_id,
                type=RecommendationType.ALTERNATIVE_TIME,
                description=(
                    f"No slot satisfies every constraint; closest option is '{closest.teacher_id}' "
                    f"in {days} days ({result.summary})"
                ),
                confidence_score=0.3,
                action=self._action(action_type, closest, content_ids),
                priority=request.priority,
                benefits=("Nearest slot with an available teacher",),
                drawbacks=tuple(v.message for v in result.violations),
                complexity=Complexity.HIGH if result.requires_approval else Complexity.MEDIUM,
                student_ids=unit.student_ids,
                proposed_class=closest,
            )

        return SchedulingRecommendation(
            id=rec_id,
            type=RecommendationType.ALTERNATIVE_TEACHER,
            description="No teacher has availability in the booking window",
            confidence_score=0.2,
            action=RecommendedAction(
                type=RecommendedActionType.DEFER_SCHEDULING,
                content_ids=content_ids,
                deadline=state.window.end,
            ),
            priority=request.priority,
            benefits=("Schedules as soon as availability opens",),
            drawbacks=("Delays the student's progress",),
            complexity=Complexity.LOW,
            student_ids=unit.student_ids,
        )

    def _idle_recommendation(
        self, run: RequestRun, state: RequestState, student_id: str
    ) -> SchedulingRecommendation:
        request = run.request
        unlearned = state.unlearned.get(student_id, [])
        if not unlearned:
            return SchedulingRecommendation(
                id=make_id("rec", request.id, "idle", student_id),
                type=RecommendationType.CONTENT_ADJUSTMENT,
                description=f"Student '{student_id}' has no unlearned content in '{request.course_id}'",
                confidence_score=0.8,
                action=RecommendedAction(type=RecommendedActionType.DEFER_SCHEDULING),
                priority=request.priority,
                benefits=("Avoids repeating completed content",),
                student_ids=(student_id,),
            )
        completed = set(state.progress[student_id].completed_content)
        blocked = [c for c in unlearned if any(p not in completed for p in c.prerequisites)]
        missing = sorted({p for c in blocked for p in c.prerequisites if p not in completed})
        return SchedulingRecommendation(
            id=make_id("rec", request.id, "idle", student_id),
            type=RecommendationType.PREREQUISITE_SCHEDULING,
            description=(
                f"Requested content for student '{student_id}' needs prerequisites first: {missing}"
            ),
            confidence_score=0.7,
            action=RecommendedAction(
                type=RecommendedActionType.DEFER_SCHEDULING,
                content_ids=tuple(missing),
            ),
            priority=request.priority,
            benefits=("Keeps the prerequisite order",),
            drawbacks=("Requested content waits",),
            complexity=Complexity.LOW,
            student_ids=(student_id,),
        )

    @staticmethod
    def _action(
        action_type: RecommendedActionType,
        scheduled: ScheduledClass | None,
        content_ids: tuple[str, ...],
    ) -> RecommendedAction:
        if scheduled is None:
            return RecommendedAction(type=action_type, content_ids=content_ids)
        return RecommendedAction(
            type=action_type,
            class_id=scheduled.id,
            teacher_id=scheduled.teacher_id,
            time_slot=scheduled.time_slot,
            content_ids=content_ids or scheduled.content_ids,
        )

    def _finish(
        self,
        run: RequestRun,
        state: RequestState,
        plan: PlanState,
        committed: list[ScheduledClass],
        conflicts: list[SchedulingConflict],
        recommendations: list[SchedulingRecommendation],
    ) -> SchedulingResult:
        request = run.request
        requested = set(request.student_ids)
        scheduled_students = {s for c in committed for s in c.student_ids if s in requested}
        downgraded = {s for r in recommendations for s in r.student_ids}
        recommendations = recommendations + self._recommendations(
            run, state, plan, scheduled_students, downgraded, conflicts
        )
        committed_ids = {c.id for c in committed}
        conflicts = conflicts + [
            c for c in plan.informational if any(cid in committed_ids for cid in c.class_ids)
        ]
        unique_conflicts = list({c.id: c for c in conflicts}.values())
        unique_conflicts.sort(key=lambda c: (-c.severity.rank, c.type.value, c.id))

        all_seen = set(plan.seen) | {c.id for c in unique_conflicts}
        final_ids = {c.id for c in unique_conflicts}
        breakdowns = [self.scoring.score(c, state.scoring_context) for c in committed]
        candidate_sets = plan.candidate_sets.values()
        metrics = SchedulingMetrics(
            processing_time=run.elapsed(),
            students_processed=len(request.student_ids),
            candidates_generated=sum(len(s.candidates) + len(s.rejected) for s in candidate_sets),
            candidates_rejected=sum(len(s.rejected) for s in candidate_sets),
            classes_scheduled=len(committed),
            conflicts_detected=len(all_seen),
            conflicts_resolved=len(all_seen - final_ids),
            success_rate=len(scheduled_students) / len(request.student_ids),
            resource_utilization=_mean(
                c.enrollment / c.time_slot.capacity.max_students for c in committed
            ),
            student_satisfaction_score=_mean(c.confidence_score for c in committed),
            teacher_satisfaction_score=_mean(b.teacher_availability for b in breakdowns),
            iterations_performed=plan.iterations,
            optimization_improvements=plan.applied,
        )

        error = None
        if not committed:
            error = ConstraintError(
                f"No class could be scheduled for request '{request.id}'",
                details={"students": list(request.student_ids)},
            )

        alerting = [c for c in unique_conflicts if c.severity >= ConflictSeverity.HIGH]
        if alerting:
            self.notifications.send(
                ConflictAlert(
                    title=f"Unresolved conflicts in request '{request.id}'",
                    message=f"{len(alerting)} conflicts need attention",
                    created_at=self.clock(),
                    recipients=(request.requested_by,) if request.requested_by else (),
                    request_id=request.id,
                    conflict_ids=tuple(c.id for c in alerting),
                    severity=max(c.severity for c in alerting).value,
                )
            )

        logger.info(
            f"Request '{request.id}' completed: {len(committed)} classes, "
            f"{len(unique_conflicts)} conflicts, {len(recommendations)} recommendations "
            f"in {metrics.processing_time:.2f}s"
        )
        return SchedulingResult(
            request_id=request.id,
            success=bool(committed),
            status=SchedulingStatus.COMPLETED,
            scheduled_classes=tuple(sorted(committed, key=lambda c: (c.start_time, c.id))),
            conflicts=tuple(unique_conflicts),
            recommendations=tuple(recommendations),
            metrics=metrics,
            error=error,
            started_at=run.started_at,
            completed_at=self.clock(),
        )


def _mean(values) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0
