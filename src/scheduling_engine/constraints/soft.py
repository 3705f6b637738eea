"""Soft scoring of candidate classes.

Each criterion produces a sub-score clamped to [0, 1]; the total is the
weight-normalized sum, so it is also within [0, 1]. Scores are deterministic
for identical inputs.
"""

from dataclasses import dataclass, field, fields
from typing import Iterable, Mapping

from ..constants import DEFAULT_SKILL_LEVEL, NEUTRAL_SCORE, REFERENCE_LEARNING_PACE
from ..models import (
    LearningContent,
    ScheduledClass,
    SchedulingScoringWeights,
    StudentProgress,
    TeacherAvailability,
)
from ..utils import clamp, minutes_between, time_of_day_overlap


@dataclass(frozen=True)
class StudentScoringData:
    """What the scoring engine knows about one student.

    Attributes:
        progress: Progress record for the course being scheduled
        next_content: Next teachable unlearned items, in order
        history: Recent classes of the student
    """

    progress: StudentProgress
    next_content: tuple[LearningContent, ...] = ()
    history: tuple[ScheduledClass, ...] = ()


@dataclass(frozen=True)
class ScoringContext:
    students: Mapping[str, StudentScoringData] = field(default_factory=dict)
    teacher_availability: Mapping[str, TeacherAvailability] = field(default_factory=dict)
    # IDs of classes that already exist in the booking store
    existing_class_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ScoreBreakdown:
    content_progression: float
    student_availability: float
    teacher_availability: float
    class_size_optimization: float
    learning_pace_matching: float
    skill_level_alignment: float
    schedule_continuity: float
    resource_utilization: float
    total: float

    def as_dict(self) -> dict[str, float]:
        return {f.name: round(getattr(self, f.name), 4) for f in fields(self)}


class ScoringEngine:
    """Weighted soft-score of candidate classes."""

    def __init__(self, weights: SchedulingScoringWeights | None = None):
        self.weights = weights or SchedulingScoringWeights()

    def score(self, candidate: ScheduledClass, context: ScoringContext) -> ScoreBreakdown:
        students = [context.students[s] for s in candidate.student_ids if s in context.students]
        sub_scores = {
            "content_progression": self._content_progression(candidate, students),
            "student_availability": self._student_availability(candidate, students),
            "teacher_availability": self._teacher_availability(candidate, context),
            "class_size_optimization": self._class_size(candidate, students),
            "learning_pace_matching": self._learning_pace(candidate, students),
            "skill_level_alignment": self._skill_alignment(candidate, students),
            "schedule_continuity": self._continuity(candidate, students),
            "resource_utilization": self._resource_utilization(candidate, context),
        }
        sub_scores = {name: clamp(value) for name, value in sub_scores.items()}
        weights = self.weights.as_dict()
        total = sum(weights[name] * value for name, value in sub_scores.items()) / self.weights.total
        return ScoreBreakdown(**sub_scores, total=clamp(total))

    def total(self, candidate: ScheduledClass, context: ScoringContext) -> float:
        return self.score(candidate, context).total

    @staticmethod
    def _mean(values: Iterable[float]) -> float:
        values = list(values)
        if not values:
            return NEUTRAL_SCORE
        return sum(values) / len(values)

    def _content_progression(
        self, candidate: ScheduledClass, students: list[StudentScoringData]
    ) -> float:
        """Fraction of each student's next unlearned items the class covers."""
        covered = set(candidate.content_ids)
        if not covered:
            return 0.0
        per_student = []
        for data in students:
            if not data.next_content:
                per_student.append(NEUTRAL_SCORE)
                continue
            window = data.next_content[: max(1, len(covered))]
            per_student.append(sum(1 for c in window if c.id in covered) / len(window))
        return self._mean(per_student)

    def _student_availability(
        self, candidate: ScheduledClass, students: list[StudentScoringData]
    ) -> float:
        """Best overlap with each student's preferred weekly times."""
        duration = minutes_between(candidate.start_time, candidate.end_time)
        per_student = []
        for data in students:
            preferred = data.progress.preferred_times
            if not preferred:
                per_student.append(NEUTRAL_SCORE)
                continue
            best = 0.0
            for slot in preferred:
                if slot.day_of_week != candidate.time_slot.day_of_week:
                    continue
                overlap = time_of_day_overlap(
                    candidate.start_time,
                    candidate.end_time,
                    slot.start_time.time(),
                    slot.end_time.time(),
                )
                best = max(best, overlap / duration)
            per_student.append(best)
        return self._mean(per_student)

    def _teacher_availability(self, candidate: ScheduledClass, context: ScoringContext) -> float:
        availability = context.teacher_availability.get(candidate.teacher_id)
        if availability is None:
            return NEUTRAL_SCORE
        if availability.is_available(candidate.start_time, candidate.end_time):
            return 1.0
        if availability.is_blocked(candidate.start_time, candidate.end_time):
            return 0.0
        return 0.25

    def _class_size(self, candidate: ScheduledClass, students: list[StudentScoringData]) -> float:
        size = len(candidate.student_ids)
        return self._mean(
            1 / (1 + abs(size - data.progress.performance.optimal_class_size)) for data in students
        )

    def _learning_pace(self, candidate: ScheduledClass, students: list[StudentScoringData]) -> float:
        """Similarity of content density and the students' pace."""
        slot_minutes = minutes_between(candidate.start_time, candidate.end_time)
        content_minutes = sum(c.estimated_duration for c in candidate.content)
        density = clamp(content_minutes / slot_minutes) if slot_minutes else 0.0
        return self._mean(
            1 - abs(density - clamp(data.progress.learning_pace / REFERENCE_LEARNING_PACE))
            for data in students
        )

    def _skill_alignment(
        self, candidate: ScheduledClass, students: list[StudentScoringData]
    ) -> float:
        skills = [skill for content in candidate.content for skill in content.skills]
        if not skills:
            return NEUTRAL_SCORE
        per_student = []
        for data in students:
            assessments = data.progress.skill_assessments
            diffs = []
            for skill in skills:
                level = assessments.get(
                    skill.id, assessments.get(skill.category.value, DEFAULT_SKILL_LEVEL)
                )
                diffs.append(abs(level - skill.level))
            per_student.append(1 - (sum(diffs) / len(diffs)) / 9)
        return self._mean(per_student)

    def _continuity(self, candidate: ScheduledClass, students: list[StudentScoringData]) -> float:
        """Bonus for the same teacher and weekly time pattern as recent classes."""
        per_student = []
        for data in students:
            history = [c for c in data.history if c.id != candidate.id and c.is_active]
            if not history:
                per_student.append(NEUTRAL_SCORE)
                continue
            same_teacher = any(c.teacher_id == candidate.teacher_id for c in history)
            same_pattern = any(
                c.time_slot.day_of_week == candidate.time_slot.day_of_week
                and c.start_time.time() == candidate.start_time.time()
                for c in history
            )
            per_student.append(0.6 * same_teacher + 0.4 * same_pattern)
        return self._mean(per_student)

    def _resource_utilization(self, candidate: ScheduledClass, context: ScoringContext) -> float:
        fill = len(candidate.student_ids) / candidate.time_slot.capacity.max_students
        if candidate.id in context.existing_class_ids:
            return 0.5 + 0.5 * clamp(fill)
        return 0.5 * clamp(fill)


def ranking_key(candidate: ScheduledClass, breakdown: ScoreBreakdown) -> tuple:
    """Sort key: best total, then class-size fit, earliest slot, lowest ID."""
    return (
        -round(breakdown.total, 9),
        -round(breakdown.class_size_optimization, 9),
        candidate.start_time,
        candidate.id,
    )


def rank_candidates(
    scored: Iterable[tuple[ScheduledClass, ScoreBreakdown]],
) -> list[tuple[ScheduledClass, ScoreBreakdown]]:
    return sorted(scored, key=lambda pair: ranking_key(*pair))
