"""Candidate class generation.

Students are clustered into scheduling units, and each unit gets a ranked
list of candidate classes: joining an existing class with free seats, or
opening a new class in a teacher's free availability.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Iterable, Mapping

from .constraints import (
    ConstraintEvaluator,
    EvaluationContext,
    EvaluationResult,
    ScoreBreakdown,
    ScoringContext,
    ScoringEngine,
    StudentScoringData,
)
from .constraints.soft import ranking_key
from .constraints.base import ViolationKind
from .content import fit_to_session
from .models import (
    ClassStatus,
    ClassType,
    DateRange,
    LearningContent,
    OverrideType,
    ScheduledClass,
    SchedulingOverride,
    SchedulingRequest,
    TeacherAvailability,
    TimeSlot,
)
from .utils import intervals_overlap, make_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulingUnit:
    """A student or group of students scheduled together."""

    id: str
    student_ids: tuple[str, ...]
    content: tuple[LearningContent, ...]

    @property
    def is_group(self) -> bool:
        return len(self.student_ids) > 1


@dataclass(frozen=True)
class Candidate:
    unit_id: str
    scheduled_class: ScheduledClass
    breakdown: ScoreBreakdown
    added_student_ids: tuple[str, ...]
    joins_existing: bool = False
    forced: bool = False
    rank: int = 0

    @property
    def key(self) -> str:
        return f"{self.unit_id}:{self.scheduled_class.id}"

    @property
    def score(self) -> float:
        return self.breakdown.total


@dataclass
class CandidateSet:
    """Ranked candidates of one unit plus what was rejected and why."""

    unit: SchedulingUnit
    candidates: list[Candidate] = field(default_factory=list)
    rejected: list[tuple[ScheduledClass, EvaluationResult]] = field(default_factory=list)

    @property
    def capacity_rejections(self) -> list[ScheduledClass]:
        return [
            scheduled
            for scheduled, result in self.rejected
            if ViolationKind.CAPACITY in result.kinds and scheduled.enrollment > 0
        ]


def _common_content(
    members: list[StudentScoringData], minutes: int
) -> tuple[LearningContent, ...]:
    """Content every member can be taught next, fitted to one session."""
    if not members:
        return ()
    teachable_sets = [{c.id for c in m.next_content} for m in members]
    common = set.intersection(*teachable_sets)
    satisfied = set.intersection(*(set(m.progress.completed_content) for m in members))
    sequence = []
    for content in members[0].next_content:
        if content.id not in common:
            continue
        if all(p in satisfied for p in content.prerequisites):
            sequence.append(content)
            satisfied.add(content.id)
    return tuple(fit_to_session(sequence, minutes))


def build_units(
    students: Mapping[str, StudentScoringData],
    max_group_size: int,
    session_minutes: int,
) -> tuple[list[SchedulingUnit], list[str]]:
    """
    Cluster students by their next teachable content item.

    Args:
        students: Scoring data per student, ``next_content`` already restricted
            to what the request asks for
        max_group_size: Students per unit
        session_minutes: Session length used to fit content

    Returns:
        Tuple of (units, IDs of students with nothing left to schedule)
    """
    clusters: dict[str, list[str]] = {}
    idle = []
    for student_id in sorted(students):
        data = students[student_id]
        if not data.next_content:
            idle.append(student_id)
            continue
        clusters.setdefault(data.next_content[0].id, []).append(student_id)

    units = []
    for content_id in sorted(clusters):
        members = clusters[content_id]
        for start in range(0, len(members), max_group_size):
            chunk = tuple(members[start:start + max_group_size])
            content = _common_content([students[s] for s in chunk], session_minutes)
            units.append(
                SchedulingUnit(
                    id=make_id("unit", content_id, *chunk),
                    student_ids=chunk,
                    content=content,
                )
            )
    return units, idle


def split_unit(
    unit: SchedulingUnit, students: Mapping[str, StudentScoringData], session_minutes: int
) -> list[SchedulingUnit]:
    """Per-student units for a group that could not be placed together."""
    return [
        SchedulingUnit(
            id=make_id("unit", unit.content[0].id if unit.content else "none", student_id),
            student_ids=(student_id,),
            content=tuple(fit_to_session(students[student_id].next_content, session_minutes)),
        )
        for student_id in unit.student_ids
    ]


def segment_slot(slot: TimeSlot, teacher_id: str, minutes: int) -> list[TimeSlot]:
    """Cut an availability window into consecutive sessions of ``minutes``.

    A window no longer than one session is returned unchanged.
    """
    if slot.duration <= minutes:
        return [slot]
    segments = []
    length = timedelta(minutes=minutes)
    start = slot.start_time
    while start + length <= slot.end_time:
        segments.append(
            TimeSlot(
                id=make_id("slot", teacher_id, start),
                start_time=start,
                end_time=start + length,
                capacity=slot.capacity.with_enrollment(0),
                location=slot.location,
            )
        )
        start += length
    return segments


class CandidateGenerator:
    """Generates, evaluates and ranks candidate classes for units."""

    def __init__(
        self,
        request: SchedulingRequest,
        evaluator: ConstraintEvaluator,
        scoring: ScoringEngine,
        scoring_context: ScoringContext,
        teacher_availability: Mapping[str, TeacherAvailability],
        existing: Iterable[ScheduledClass],
        window: DateRange,
        now: datetime,
        session_minutes: int,
        max_candidates: int,
        student_blocks: Mapping[str, tuple[TimeSlot, ...]] | None = None,
    ):
        self.request = request
        self.evaluator = evaluator
        self.scoring = scoring
        self.scoring_context = scoring_context
        self.teacher_availability = teacher_availability
        self.existing = [c for c in existing if c.is_active]
        self.window = window
        self.now = now
        self.session_minutes = session_minutes
        self.max_candidates = max_candidates
        self.student_blocks = student_blocks or {}
        self.context = EvaluationContext(
            now=now,
            classes=tuple(self.existing),
            overrides=request.manual_overrides,
        )
        self._existing_ids = {c.id for c in self.existing}
        self._slot_cache: dict[str, list[TimeSlot]] = {}

    def teacher_slots(self, teacher_id: str) -> list[TimeSlot]:
        """Session-length slots in the teacher's availability within the window."""
        if teacher_id not in self._slot_cache:
            availability = self.teacher_availability.get(teacher_id)
            slots = []
            if availability is not None:
                for window_slot in availability.candidate_slots(self.window):
                    slots.extend(segment_slot(window_slot, teacher_id, self.session_minutes))
            self._slot_cache[teacher_id] = [s for s in slots if self._matches_preferred(s)]
        return self._slot_cache[teacher_id]

    def _matches_preferred(self, slot: TimeSlot) -> bool:
        preferred = self.request.preferred_time_slots
        if not preferred:
            return True
        return any(slot.overlaps(p) for p in preferred)

    def _blocked(self, unit: SchedulingUnit, slot: TimeSlot) -> bool:
        return any(
            intervals_overlap(b.start_time, b.end_time, slot.start_time, slot.end_time)
            for student_id in unit.student_ids
            for b in self.student_blocks.get(student_id, ())
        )

    def new_class(self, unit: SchedulingUnit, teacher_id: str, slot: TimeSlot) -> ScheduledClass:
        base = ScheduledClass(
            id=make_id("class", self.request.course_id, teacher_id, slot.start_time),
            course_id=self.request.course_id,
            teacher_id=teacher_id,
            student_ids=(),
            time_slot=slot,
            content=tuple(fit_to_session(unit.content, slot.duration)),
            class_type=ClassType.GROUP,
            status=ClassStatus.SCHEDULED,
            request_id=self.request.id,
        )
        return base.with_students(unit.student_ids)

    def _raw_candidates(
        self, unit: SchedulingUnit, teacher_ids: list[str]
    ) -> list[tuple[ScheduledClass, tuple[str, ...], bool]]:
        raw = []
        for existing in self.existing:
            if (
                existing.course_id != self.request.course_id
                or existing.class_type != ClassType.GROUP
                or existing.teacher_id not in teacher_ids
                or any(s in existing.student_ids for s in unit.student_ids)
                or not self._matches_preferred(existing.time_slot)
                or self._blocked(unit, existing.time_slot)
            ):
                continue
            joined = existing.with_students(existing.student_ids + unit.student_ids)
            raw.append((joined, unit.student_ids, True))

        for teacher_id in teacher_ids:
            for slot in self.teacher_slots(teacher_id):
                if self._blocked(unit, slot):
                    continue
                scheduled = self.new_class(unit, teacher_id, slot)
                if scheduled.id in self._existing_ids:
                    continue
                raw.append((scheduled, unit.student_ids, False))
        return raw

    def _override_matches(self, override: SchedulingOverride, scheduled: ScheduledClass) -> bool:
        if not override.applies_to(scheduled.student_ids, scheduled.teacher_id):
            return False
        if override.teacher_id is not None and override.teacher_id != scheduled.teacher_id:
            return False
        if override.slot_id is not None and override.slot_id != scheduled.time_slot.id:
            return False
        return True

    def _overrides_for(self, unit: SchedulingUnit, override_type: OverrideType):
        return [
            o
            for o in self.request.overrides_of(override_type)
            if o.student_id is None or o.student_id in unit.student_ids
        ]

    def generate(self, unit: SchedulingUnit, teacher_ids: list[str]) -> CandidateSet:
        """
        Build the ranked candidate list of a unit.

        Candidates failing a hard constraint are recorded as rejected and never
        scored. Manual overrides narrow (prevent, preferred teacher or time) or
        pin (force) candidates.
        """
        result = CandidateSet(unit=unit)
        prevent = self._overrides_for(unit, OverrideType.PREVENT_SCHEDULE)
        force = self._overrides_for(unit, OverrideType.FORCE_SCHEDULE)

        accepted: list[tuple[ScheduledClass, ScoreBreakdown, tuple[str, ...], bool, bool]] = []
        for scheduled, added, joins in self._raw_candidates(unit, teacher_ids):
            if any(self._override_matches(o, scheduled) for o in prevent):
                continue
            evaluation = self.evaluator.evaluate(scheduled, self.context)
            if not evaluation.ok:
                result.rejected.append((scheduled, evaluation))
                continue
            if evaluation.applied_overrides:
                scheduled = replace(scheduled, applied_overrides=evaluation.applied_overrides)
            forced = any(self._override_matches(o, scheduled) for o in force)
            accepted.append(
                (scheduled, self.scoring.score(scheduled, self.scoring_context), added, joins, forced)
            )

        accepted = self._apply_preferences(unit, accepted)
        accepted.sort(key=lambda item: (not item[4], ranking_key(item[0], item[1])))

        kept = accepted[: max(self.max_candidates, sum(1 for a in accepted if a[4]))]
        result.candidates = [
            Candidate(
                unit_id=unit.id,
                scheduled_class=scheduled,
                breakdown=breakdown,
                added_student_ids=added,
                joins_existing=joins,
                forced=forced,
                rank=index,
            )
            for index, (scheduled, breakdown, added, joins, forced) in enumerate(kept)
        ]
        logger.debug(
            f"Unit '{unit.id}': {len(result.candidates)} candidates, "
            f"{len(result.rejected)} rejected"
        )
        return result

    def _apply_preferences(self, unit: SchedulingUnit, accepted: list) -> list:
        """Keep only preferred teachers or slots when any candidate satisfies them."""
        for override_type in (OverrideType.PREFERRED_TEACHER, OverrideType.PREFERRED_TIME):
            for override in self._overrides_for(unit, override_type):
                preferred = [a for a in accepted if self._override_matches(override, a[0])]
                if preferred:
                    accepted = preferred
        return accepted
