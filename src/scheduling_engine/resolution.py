"""Conflict resolution: enumerate, assess and apply candidate resolutions."""

import logging
from dataclasses import dataclass, field, replace
from typing import Mapping

from .candidates import segment_slot
from .conflicts import capacity_limit
from .constants import RESOLUTION_PROFILES
from .constraints import ConstraintEvaluator, EvaluationContext, ScoringContext, ScoringEngine
from .constraints.soft import ScoreBreakdown, ranking_key
from .exceptions import ValidationError
from .models import (
    ClassStatus,
    DateRange,
    ScheduledClass,
    SchedulingConstraints,
    TeacherAvailability,
    TimeSlot,
)
from .results import (
    ConflictResolution,
    ConflictType,
    ResolutionImpact,
    ResolutionStep,
    ResolutionStepType,
    ResolutionType,
    SchedulingConflict,
)
from .utils import clamp, intervals_overlap, make_id

logger = logging.getLogger(__name__)

COORDINATOR_APPROVAL = "schedule_coordinator"
ACADEMIC_APPROVAL = "academic_coordinator"

DISRUPTION = {
    ResolutionType.RESCHEDULE: 4,
    ResolutionType.REASSIGN_TEACHER: 3,
    ResolutionType.SPLIT_CLASS: 6,
    ResolutionType.MERGE_CLASSES: 5,
    ResolutionType.WAITLIST: 2,
    ResolutionType.ADJUST_CONTENT: 1,
    ResolutionType.DEFER_SESSION: 3,
    ResolutionType.CANCEL_CONFLICTING: 8,
    ResolutionType.MANUAL_INTERVENTION: 5,
}


@dataclass(frozen=True)
class ResolutionContext:
    """Everything the resolver needs to look for alternatives.

    Attributes:
        classes: Active classes to resolve against (existing bookings and the batch)
        evaluation: Time and overrides for re-evaluating modified classes
        movable_ids: Classes this request owns; changing any other class needs approval
    """

    classes: tuple[ScheduledClass, ...]
    evaluation: EvaluationContext
    scoring: ScoringContext
    teacher_availability: Mapping[str, TeacherAvailability]
    teacher_ids: tuple[str, ...]
    window: DateRange
    student_blocks: Mapping[str, tuple[TimeSlot, ...]] = field(default_factory=dict)
    movable_ids: frozenset[str] = frozenset()

    def find(self, class_id: str) -> ScheduledClass | None:
        for scheduled in self.classes:
            if scheduled.id == class_id:
                return scheduled
        return None


@dataclass(frozen=True)
class AppliedResolution:
    classes: list[ScheduledClass]
    displaced_student_ids: tuple[str, ...] = ()


def _rekey(scheduled: ScheduledClass) -> ScheduledClass:
    """New IDs follow teacher and start time until the class is stored (version 0)."""
    if scheduled.version > 0:
        return scheduled
    return replace(
        scheduled,
        id=make_id("class", scheduled.course_id, scheduled.teacher_id, scheduled.start_time),
    )

class ConflictResolver:
    """Generates ranked resolutions for conflicts.

    Resolutions are ranked by feasibility (descending), then implementation
    time. Modified classes are re-checked with the constraint evaluator and
    their satisfaction impact comes from the scoring engine.
    """

    def __init__(
        self,
        evaluator: ConstraintEvaluator,
        scoring: ScoringEngine,
        constraints: SchedulingConstraints,
    ):
        self.evaluator = evaluator
        self.scoring = scoring
        self.constraints = constraints

    def resolve(
        self, conflict: SchedulingConflict, context: ResolutionContext
    ) -> list[ConflictResolution]:
        classes = [c for c in (context.find(cid) for cid in conflict.class_ids) if c]
        handlers = {
            ConflictType.TIME_OVERLAP: self._resolve_overlap,
            ConflictType.CAPACITY_EXCEEDED: self._resolve_capacity,
            ConflictType.TEACHER_UNAVAILABLE: self._resolve_unavailable,
            ConflictType.STUDENT_UNAVAILABLE: self._resolve_unavailable,
            ConflictType.CONTENT_MISMATCH: self._resolve_content,
            ConflictType.RESOURCE_CONFLICT: lambda *_: [],
        }
        resolutions = handlers[conflict.type](conflict, classes, context) if classes else []
        if not resolutions:
            resolutions = [self._manual(conflict, classes)]
        resolutions.sort(
            key=lambda r: (-r.feasibility_score, r.estimated_implementation_time, r.id)
        )
        logger.debug(f"Conflict '{conflict.id}': {len(resolutions)} resolutions")
        return resolutions

    # Assessment helpers

    def _approvals(
        self, classes: list[ScheduledClass], context: ResolutionContext, creates_class=False
    ) -> tuple[str, ...]:
        approvals = []
        if any(
            c.status == ClassStatus.CONFIRMED or c.id not in context.movable_ids
            for c in classes
        ):
            approvals.append(COORDINATOR_APPROVAL)
        if creates_class:
            approvals.append(ACADEMIC_APPROVAL)
        return tuple(approvals)

    def _impact(
        self,
        resolution_type: ResolutionType,
        before: ScoreBreakdown | None,
        after: ScoreBreakdown | None,
        students: int,
        teachers: int,
    ) -> ResolutionImpact:
        delta_total = after.total - before.total if before and after else 0.0
        delta_teacher = (
            after.teacher_availability - before.teacher_availability if before and after else 0.0
        )
        delta_resource = (
            after.resource_utilization - before.resource_utilization if before and after else 0.0
        )
        return ResolutionImpact(
            affected_students=students,
            affected_teachers=teachers,
            schedule_disruption=DISRUPTION[resolution_type],
            resource_utilization=delta_resource,
            student_satisfaction=delta_total,
            teacher_satisfaction=delta_teacher,
        )

    @staticmethod
    def _feasibility(resolution_type: ResolutionType, impact: ResolutionImpact) -> float:
        base, _ = RESOLUTION_PROFILES[resolution_type.value]
        return clamp(base + 0.1 * impact.student_satisfaction)

    @staticmethod
    def _steps(
        resolution_type: ResolutionType, description: str, approvals: tuple[str, ...]
    ) -> tuple[ResolutionStep, ...]:
        _, minutes = RESOLUTION_PROFILES[resolution_type.value]
        steps = []
        if approvals:
            steps.append(
                ResolutionStep(
                    order=1,
                    description=f"Obtain approval from {', '.join(approvals)}",
                    type=ResolutionStepType.APPROVAL_REQUIRED,
                    estimated_duration=max(5, minutes // 3),
                )
            )
        change_type = {
            ResolutionType.WAITLIST: ResolutionStepType.DATABASE_UPDATE,
            ResolutionType.ADJUST_CONTENT: ResolutionStepType.DATABASE_UPDATE,
            ResolutionType.SPLIT_CLASS: ResolutionStepType.RESOURCE_ALLOCATION,
        }.get(resolution_type, ResolutionStepType.SCHEDULE_CHANGE)
        steps.append(
            ResolutionStep(
                order=len(steps) + 1,
                description=description,
                type=change_type,
                estimated_duration=minutes,
                dependencies=("approval",) if approvals else (),
            )
        )
        steps.append(
            ResolutionStep(
                order=len(steps) + 1,
                description="Notify affected students and teachers",
                type=ResolutionStepType.NOTIFICATION,
                estimated_duration=5,
                dependencies=("change",),
            )
        )
        return tuple(steps)

    def _build(
        self,
        conflict: SchedulingConflict,
        resolution_type: ResolutionType,
        description: str,
        impact: ResolutionImpact,
        approvals: tuple[str, ...],
        suffix: str = "",
        **payload,
    ) -> ConflictResolution:
        _, minutes = RESOLUTION_PROFILES[resolution_type.value]
        steps = self._steps(resolution_type, description, approvals)
        return ConflictResolution(
            id=make_id("res", conflict.id, resolution_type.value, *([suffix] if suffix else [])),
            type=resolution_type,
            description=description,
            impact=impact,
            feasibility_score=self._feasibility(resolution_type, impact),
            estimated_implementation_time=sum(s.estimated_duration for s in steps) or minutes,
            required_approvals=approvals,
            steps=steps,
            **payload,
        )

    def pick_mover(
        self, classes: list[ScheduledClass], context: ResolutionContext
    ) -> ScheduledClass:
        return min(
            classes,
            key=lambda c: (
                c.id not in context.movable_ids,
                c.status == ClassStatus.CONFIRMED,
                c.confidence_score,
                c.id,
            ),
        )

    # Search helpers

    def _blocked(self, scheduled: ScheduledClass, slot: TimeSlot, context: ResolutionContext) -> bool:
        return any(
            intervals_overlap(b.start_time, b.end_time, slot.start_time, slot.end_time)
            for s in scheduled.student_ids
            for b in context.student_blocks.get(s, ())
        )

    def best_reschedule(
        self,
        scheduled: ScheduledClass,
        context: ResolutionContext,
        teacher_id: str | None = None,
        students: tuple[str, ...] | None = None,
    ) -> tuple[ScheduledClass, ScoreBreakdown] | None:
        """Best valid slot for the class (or a subset of its students) with a teacher."""
        teacher_id = teacher_id or scheduled.teacher_id
        availability = context.teacher_availability.get(teacher_id)
        if availability is None:
            return None
        base = scheduled if students is None else scheduled.with_students(students)
        options = []
        for window_slot in availability.candidate_slots(context.window):
            for slot in segment_slot(window_slot, teacher_id, scheduled.time_slot.duration):
                if slot.duration < scheduled.time_slot.duration:
                    continue
                if slot.same_interval(scheduled.time_slot) or self._blocked(base, slot, context):
                    continue
                moved = replace(
                    base,
                    teacher_id=teacher_id,
                    time_slot=replace(
                        slot,
                        capacity=base.time_slot.capacity,
                    ),
                )
                if students is not None:
                    moved = replace(moved, id=make_id("class", moved.course_id, teacher_id, slot.start_time))
                if self.evaluator.evaluate(moved, self._without(context, scheduled)).ok:
                    options.append((moved, self.scoring.score(moved, context.scoring)))
        if not options:
            return None
        return min(options, key=lambda pair: ranking_key(*pair))

    def best_reassignment(
        self,
        scheduled: ScheduledClass,
        context: ResolutionContext,
        students: tuple[str, ...] | None = None,
    ) -> tuple[ScheduledClass, ScoreBreakdown] | None:
        """Best other teacher free for the class's slot."""
        base = scheduled if students is None else scheduled.with_students(students)
        options = []
        for teacher_id in context.teacher_ids:
            if teacher_id == scheduled.teacher_id:
                continue
            availability = context.teacher_availability.get(teacher_id)
            if availability is None or not availability.is_available(
                scheduled.start_time, scheduled.end_time
            ):
                continue
            moved = replace(base, teacher_id=teacher_id)
            if students is not None:
                moved = replace(
                    moved, id=make_id("class", moved.course_id, teacher_id, moved.start_time)
                )
            if self.evaluator.evaluate(moved, self._without(context, scheduled)).ok:
                options.append((moved, self.scoring.score(moved, context.scoring)))
        if not options:
            return None
        return min(options, key=lambda pair: ranking_key(*pair))

    @staticmethod
    def _without(context: ResolutionContext, scheduled: ScheduledClass) -> EvaluationContext:
        return replace(
            context.evaluation,
            classes=tuple(c for c in context.classes if c.id != scheduled.id),
        )

    # Resolution generators

    def _move_options(
        self,
        conflict: SchedulingConflict,
        mover: ScheduledClass,
        context: ResolutionContext,
        reassign: bool,
    ) -> list[ConflictResolution]:
        resolutions = []
        before = self.scoring.score(mover, context.scoring)
        approvals = self._approvals([mover], context)

        rescheduled = self.best_reschedule(mover, context)
        if rescheduled is not None:
            moved, after = rescheduled
            resolutions.append(
                self._build(
                    conflict,
                    ResolutionType.RESCHEDULE,
                    f"Move '{mover.id}' to {moved.start_time:%Y-%m-%d %H:%M}",
                    self._impact(ResolutionType.RESCHEDULE, before, after, mover.enrollment, 1),
                    approvals,
                    class_id=mover.id,
                    replacement_slot=moved.time_slot,
                )
            )

        if reassign:
            reassigned = self.best_reassignment(mover, context)
            if reassigned is not None:
                moved, after = reassigned
                resolutions.append(
                    self._build(
                        conflict,
                        ResolutionType.REASSIGN_TEACHER,
                        f"Reassign '{mover.id}' from '{mover.teacher_id}' to '{moved.teacher_id}'",
                        self._impact(
                            ResolutionType.REASSIGN_TEACHER, before, after, mover.enrollment, 2
                        ),
                        approvals,
                        class_id=mover.id,
                        replacement_teacher_id=moved.teacher_id,
                    )
                )
        return resolutions

    def _resolve_overlap(self, conflict, classes, context) -> list[ConflictResolution]:
        mover = self.pick_mover(classes, context)
        return self._move_options(conflict, mover, context, reassign=conflict.teacher_id is not None)

    def _resolve_unavailable(self, conflict, classes, context) -> list[ConflictResolution]:
        mover = classes[0]
        return self._move_options(
            conflict,
            mover,
            context,
            reassign=conflict.type == ConflictType.TEACHER_UNAVAILABLE,
        )

    def _resolve_capacity(self, conflict, classes, context) -> list[ConflictResolution]:
        scheduled = classes[0]
        limit = capacity_limit(scheduled, self.constraints)
        excess = conflict.student_ids or scheduled.student_ids[limit:]
        resolutions = []

        waitlist_impact = self._impact(ResolutionType.WAITLIST, None, None, len(excess), 0)
        resolutions.append(
            self._build(
                conflict,
                ResolutionType.WAITLIST,
                f"Waitlist {list(excess)} for '{scheduled.id}' until a seat frees up",
                waitlist_impact,
                (),
                class_id=scheduled.id,
                student_ids=tuple(excess),
            )
        )

        minimum = self.constraints.min_students_for_group_class
        if scheduled.enrollment >= 2 * minimum:
            half = scheduled.enrollment // 2
            moving = scheduled.student_ids[half:]
            before = self.scoring.score(scheduled, context.scoring)
            placement = self.best_reassignment(scheduled, context, students=moving)
            if placement is None:
                placement = self.best_reschedule(scheduled, context, students=moving)
            if placement is not None:
                new_class, after = placement
                resolutions.append(
                    self._build(
                        conflict,
                        ResolutionType.SPLIT_CLASS,
                        (
                            f"Split '{scheduled.id}': move {len(moving)} students to a new "
                            f"class with '{new_class.teacher_id}' at "
                            f"{new_class.start_time:%Y-%m-%d %H:%M}"
                        ),
                        self._impact(
                            ResolutionType.SPLIT_CLASS, before, after, len(moving), 2
                        ),
                        self._approvals([scheduled], context, creates_class=True),
                        class_id=scheduled.id,
                        student_ids=tuple(moving),
                        replacement_teacher_id=new_class.teacher_id,
                        replacement_slot=new_class.time_slot,
                    )
                )
        return resolutions

    def _resolve_content(self, conflict, classes, context) -> list[ConflictResolution]:
        scheduled = classes[0]
        resolutions = []
        student_id = conflict.student_ids[0] if conflict.student_ids else None
        data = context.scoring.students.get(student_id) if student_id else None
        approvals = self._approvals([scheduled], context)

        if data is not None:
            satisfied = set(data.progress.completed_content)
            adjusted = []
            for content in scheduled.content:
                if content.id in satisfied:
                    continue
                if all(p in satisfied for p in content.prerequisites):
                    adjusted.append(content)
                    satisfied.add(content.id)
            if adjusted and len(adjusted) < len(scheduled.content):
                before = self.scoring.score(scheduled, context.scoring)
                after = self.scoring.score(replace(scheduled, content=tuple(adjusted)), context.scoring)
                resolutions.append(
                    self._build(
                        conflict,
                        ResolutionType.ADJUST_CONTENT,
                        f"Teach {[c.id for c in adjusted]} in '{scheduled.id}'",
                        self._impact(
                            ResolutionType.ADJUST_CONTENT, before, after, scheduled.enrollment, 1
                        ),
                        approvals,
                        class_id=scheduled.id,
                        content_ids=tuple(c.id for c in adjusted),
                    )
                )

        if student_id is not None:
            resolutions.append(
                self._build(
                    conflict,
                    ResolutionType.DEFER_SESSION,
                    f"Defer student '{student_id}' from '{scheduled.id}' to a later session",
                    self._impact(ResolutionType.DEFER_SESSION, None, None, 1, 0),
                    approvals,
                    class_id=scheduled.id,
                    student_ids=(student_id,),
                )
            )
        return resolutions

    def _manual(
        self, conflict: SchedulingConflict, classes: list[ScheduledClass]
    ) -> ConflictResolution:
        students = len({s for c in classes for s in c.student_ids}) or len(conflict.student_ids)
        teachers = len({c.teacher_id for c in classes}) or int(conflict.teacher_id is not None)
        return self._build(
            conflict,
            ResolutionType.MANUAL_INTERVENTION,
            f"Review conflict manually: {conflict.description}",
            self._impact(ResolutionType.MANUAL_INTERVENTION, None, None, students, teachers),
            (COORDINATOR_APPROVAL,),
            class_id=conflict.class_ids[0] if conflict.class_ids else None,
        )

    # Application

    def apply(
        self, resolution: ConflictResolution, classes: list[ScheduledClass]
    ) -> AppliedResolution:
        """
        Apply a resolution to a batch of classes.

        Returns:
            AppliedResolution with the new batch and any students removed from it

        Raises:
            ValidationError: For manual intervention or an unknown target class
        """
        if resolution.type == ResolutionType.MANUAL_INTERVENTION:
            raise ValidationError(
                f"Resolution '{resolution.id}' requires manual intervention",
                code="MANUAL_RESOLUTION",
            )
        target = next((c for c in classes if c.id == resolution.class_id), None)
        if target is None:
            raise ValidationError(
                f"Resolution '{resolution.id}' targets unknown class '{resolution.class_id}'"
            )

        displaced: tuple[str, ...] = ()
        added: list[ScheduledClass] = []
        if resolution.type == ResolutionType.RESCHEDULE:
            updated = _rekey(
                replace(
                    target,
                    time_slot=replace(
                        resolution.replacement_slot, capacity=target.time_slot.capacity
                    ),
                )
            )
        elif resolution.type == ResolutionType.REASSIGN_TEACHER:
            updated = _rekey(replace(target, teacher_id=resolution.replacement_teacher_id))
        elif resolution.type in (ResolutionType.WAITLIST, ResolutionType.DEFER_SESSION):
            displaced = resolution.student_ids
            updated = target.with_students(
                tuple(s for s in target.student_ids if s not in displaced)
            )
        elif resolution.type == ResolutionType.SPLIT_CLASS:
            moving = resolution.student_ids
            updated = target.with_students(tuple(s for s in target.student_ids if s not in moving))
            teacher_id = resolution.replacement_teacher_id or target.teacher_id
            slot = resolution.replacement_slot or target.time_slot
            added.append(
                replace(
                    target,
                    id=make_id("class", target.course_id, teacher_id, slot.start_time),
                    teacher_id=teacher_id,
                    time_slot=replace(slot, capacity=target.time_slot.capacity),
                    version=0,
                    alternatives=(),
                ).with_students(moving)
            )
        elif resolution.type == ResolutionType.ADJUST_CONTENT:
            updated = replace(
                target,
                content=tuple(c for c in target.content if c.id in resolution.content_ids),
            )
        elif resolution.type == ResolutionType.CANCEL_CONFLICTING:
            displaced = target.student_ids
            updated = target.transition(ClassStatus.CANCELLED)
        else:
            raise ValidationError(f"Resolution type {resolution.type.value} cannot be applied")

        batch = [updated if c.id == target.id else c for c in classes] + added
        batch = [c for c in batch if c.is_active and c.student_ids]
        logger.info(f"Applied {resolution.type.value} to '{target.id}'")
        return AppliedResolution(classes=batch, displaced_student_ids=tuple(displaced))
