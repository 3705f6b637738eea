"""Data models for 1-on-1 teacher matching."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Self

from ..constants import (
    CANCELLATION_POLICY,
    DEFAULT_AUTO_CONFIRM_THRESHOLD,
    EXPERIENCE_BANDS,
    LATEST_BOOKING_HOURS_BEFORE,
    MAX_ALTERNATIVE_SLOTS,
    MAX_TEACHER_RECOMMENDATIONS,
    RESCHEDULING_POLICY,
    TEACHER_MATCHING_WEIGHTS,
)
from ..exceptions import SchedulingError, ValidationError
from ..models import ScheduledClass, SchedulingPriority, TimeSlot
from ..results import SchedulingConflict
from ..utils import parse_datetime


class ExperienceLevel(str, Enum):
    """Preferred teacher experience, in years of teaching."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def years(self) -> tuple[float, float | None]:
        return EXPERIENCE_BANDS[self.value]


class FlexibleOptionType(str, Enum):
    TIME = "time"
    TEACHER = "teacher"
    DURATION = "duration"


@dataclass(frozen=True)
class TeacherProfile:
    """A teacher as seen by the matcher."""

    teacher_id: str
    full_name: str = ""
    experience_years: float = 0.0
    specializations: tuple[str, ...] = ()
    languages_spoken: tuple[str, ...] = ("English",)
    teaching_styles: tuple[str, ...] = ()
    personality_traits: tuple[str, ...] = ()
    average_rating: float = 0.0  # 0-5
    review_count: int = 0
    course_ids: tuple[str, ...] = ()
    available_for_one_on_one: bool = True
    rate_30_min: float = 50.0
    rate_60_min: float = 90.0
    currency: str = "USD"

    def __post_init__(self) -> None:
        if not 0 <= self.average_rating <= 5:
            raise ValidationError(
                f"Teacher '{self.teacher_id}' rating must be 0-5, got {self.average_rating}"
            )
        if self.experience_years < 0:
            raise ValidationError(f"Teacher '{self.teacher_id}' has negative experience")

    @property
    def display_name(self) -> str:
        return self.full_name or self.teacher_id

    def rate_for(self, duration: int) -> float:
        return self.rate_30_min if duration <= 30 else self.rate_60_min

    def to_dict(self) -> dict[str, Any]:
        return {
            "teacher_id": self.teacher_id,
            "full_name": self.full_name,
            "experience_years": self.experience_years,
            "specializations": list(self.specializations),
            "languages_spoken": list(self.languages_spoken),
            "teaching_styles": list(self.teaching_styles),
            "personality_traits": list(self.personality_traits),
            "average_rating": self.average_rating,
            "review_count": self.review_count,
            "course_ids": list(self.course_ids),
            "available_for_one_on_one": self.available_for_one_on_one,
            "rate_30_min": self.rate_30_min,
            "rate_60_min": self.rate_60_min,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            teacher_id=data["teacher_id"],
            full_name=data.get("full_name", ""),
            experience_years=data.get("experience_years", 0.0),
            specializations=tuple(data.get("specializations", [])),
            languages_spoken=tuple(data.get("languages_spoken", ["English"])),
            teaching_styles=tuple(data.get("teaching_styles", [])),
            personality_traits=tuple(data.get("personality_traits", [])),
            average_rating=data.get("average_rating", 0.0),
            review_count=data.get("review_count", 0),
            course_ids=tuple(data.get("course_ids", [])),
            available_for_one_on_one=data.get("available_for_one_on_one", True),
            rate_30_min=data.get("rate_30_min", 50.0),
            rate_60_min=data.get("rate_60_min", 90.0),
            currency=data.get("currency", "USD"),
        )


@dataclass(frozen=True)
class TeacherSelectionPreferences:
    preferred_teacher_ids: tuple[str, ...] = ()
    experience_level: ExperienceLevel | None = None
    teaching_styles: tuple[str, ...] = ()
    personality_traits: tuple[str, ...] = ()
    language_specializations: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        level = data.get("experience_level")
        return cls(
            preferred_teacher_ids=tuple(data.get("preferred_teacher_ids", [])),
            experience_level=ExperienceLevel(level) if level else None,
            teaching_styles=tuple(data.get("teaching_styles", [])),
            personality_traits=tuple(data.get("personality_traits", [])),
            language_specializations=tuple(data.get("language_specializations", [])),
        )


@dataclass(frozen=True)
class LearningGoals:
    primary_objectives: tuple[str, ...] = ()
    skill_focus: tuple[str, ...] = ()
    improvement_areas: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            primary_objectives=tuple(data.get("primary_objectives", [])),
            skill_focus=tuple(data.get("skill_focus", [])),
            improvement_areas=tuple(data.get("improvement_areas", [])),
        )


@dataclass(frozen=True)
class FlexibilitySettings:
    """What the student accepts in place of an exact match.

    ``auto_confirm`` lets the matcher book the top recommendation without
    asking; the other flags gate which trade-offs it may make or suggest.
    """

    allow_alternative_slots: bool = True
    allow_alternative_duration: bool = False
    allow_alternative_teachers: bool = True
    auto_confirm: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            allow_alternative_slots=data.get("allow_alternative_slots", True),
            allow_alternative_duration=data.get("allow_alternative_duration", False),
            allow_alternative_teachers=data.get("allow_alternative_teachers", True),
            auto_confirm=data.get("auto_confirm", True),
        )


@dataclass(frozen=True)
class MatchingCriteria:
    preferred_time_slots: tuple[TimeSlot, ...] = ()
    teacher_preferences: TeacherSelectionPreferences = field(
        default_factory=TeacherSelectionPreferences
    )
    learning_goals: LearningGoals = field(default_factory=LearningGoals)
    urgency: SchedulingPriority = SchedulingPriority.MEDIUM
    flexibility: FlexibilitySettings = field(default_factory=FlexibilitySettings)
    time_variation_minutes: int = 60
    date_variation_days: int = 3

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        radius = data.get("max_search_radius", {})
        return cls(
            preferred_time_slots=tuple(
                TimeSlot.from_dict(s) for s in data.get("preferred_time_slots", [])
            ),
            teacher_preferences=TeacherSelectionPreferences.from_dict(
                data.get("teacher_preferences", {})
            ),
            learning_goals=LearningGoals.from_dict(data.get("learning_goals", {})),
            urgency=SchedulingPriority(data.get("urgency", "medium")),
            flexibility=FlexibilitySettings.from_dict(data.get("flexibility", {})),
            time_variation_minutes=radius.get("time_variation_minutes", 60),
            date_variation_days=radius.get("date_variation_days", 3),
        )


@dataclass(frozen=True)
class OneOnOneBookingRequest:
    id: str
    student_id: str
    course_id: str
    duration: int  # minutes
    criteria: MatchingCriteria = field(default_factory=MatchingCriteria)
    priority: SchedulingPriority = SchedulingPriority.MEDIUM
    requested_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        requested_at = data.get("requested_at")
        return cls(
            id=data["id"],
            student_id=data["student_id"],
            course_id=data["course_id"],
            duration=data["duration"],
            criteria=MatchingCriteria.from_dict(data.get("matching_criteria", {})),
            priority=SchedulingPriority(data.get("priority", "medium")),
            requested_at=parse_datetime(requested_at) if requested_at else None,
        )


@dataclass(frozen=True)
class MatchingConfig:
    """Tunables of the 1-on-1 matcher."""

    auto_confirm_threshold: float = DEFAULT_AUTO_CONFIRM_THRESHOLD
    max_recommendations: int = MAX_TEACHER_RECOMMENDATIONS
    max_alternative_slots: int = MAX_ALTERNATIVE_SLOTS
    latest_booking_hours: int = LATEST_BOOKING_HOURS_BEFORE
    weights: Mapping[str, float] = field(default_factory=lambda: dict(TEACHER_MATCHING_WEIGHTS))

    def __post_init__(self) -> None:
        unknown = set(self.weights) - set(TEACHER_MATCHING_WEIGHTS)
        if unknown:
            raise ValidationError(f"Unknown matching weights: {sorted(unknown)}")
        if any(w < 0 for w in self.weights.values()) or sum(self.weights.values()) <= 0:
            raise ValidationError("Matching weights must be non-negative and not all zero")
        if not 0 <= self.auto_confirm_threshold <= 1:
            raise ValidationError(
                f"auto_confirm_threshold must be 0-1, got {self.auto_confirm_threshold}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            auto_confirm_threshold=data.get("auto_confirm_threshold", DEFAULT_AUTO_CONFIRM_THRESHOLD),
            max_recommendations=data.get("max_recommendations", MAX_TEACHER_RECOMMENDATIONS),
            max_alternative_slots=data.get("max_alternative_slots", MAX_ALTERNATIVE_SLOTS),
            latest_booking_hours=data.get("latest_booking_hours", LATEST_BOOKING_HOURS_BEFORE),
            weights={**TEACHER_MATCHING_WEIGHTS, **data.get("weights", {})},
        )


@dataclass(frozen=True)
class TeacherScoreBreakdown:
    availability: float
    experience: float
    specialization: float
    preference: float
    performance: float
    language: float

    def as_dict(self) -> dict[str, float]:
        return {
            "availability": self.availability,
            "experience": self.experience,
            "specialization": self.specialization,
            "preference": self.preference,
            "performance": self.performance,
            "language": self.language,
        }


@dataclass(frozen=True)
class TeacherMatchingScore:
    teacher_id: str
    overall_score: float
    breakdown: TeacherScoreBreakdown
    available_slots: tuple[TimeSlot, ...]
    confidence_level: float
    matching_rationale: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "teacher_id": self.teacher_id,
            "overall_score": round(self.overall_score, 4),
            "breakdown": {k: round(v, 4) for k, v in self.breakdown.as_dict().items()},
            "available_slots": len(self.available_slots),
            "confidence_level": round(self.confidence_level, 4),
            "matching_rationale": self.matching_rationale,
        }


@dataclass(frozen=True)
class BookingPolicy:
    latest_booking_time: datetime
    cancellation_policy: str = CANCELLATION_POLICY
    rescheduling_policy: str = RESCHEDULING_POLICY


@dataclass(frozen=True)
class OneOnOneBookingRecommendation:
    id: str
    teacher_match: TeacherMatchingScore
    recommended_slot: TimeSlot
    proposed_class: ScheduledClass
    alternative_slots: tuple[TimeSlot, ...]
    confidence: float
    booking_success_probability: float
    benefits: tuple[str, ...]
    drawbacks: tuple[str, ...]
    reason: str
    policy: BookingPolicy
    matches_preferred_slot: bool = True

    @property
    def teacher_id(self) -> str:
        return self.teacher_match.teacher_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "teacher": self.teacher_match.to_dict(),
            "recommended_slot": self.recommended_slot.to_dict(),
            "alternative_slots": [s.to_dict() for s in self.alternative_slots],
            "confidence": round(self.confidence, 4),
            "booking_success_probability": round(self.booking_success_probability, 4),
            "benefits": list(self.benefits),
            "drawbacks": list(self.drawbacks),
            "reason": self.reason,
            "latest_booking_time": self.policy.latest_booking_time.isoformat(),
            "cancellation_policy": self.policy.cancellation_policy,
            "rescheduling_policy": self.policy.rescheduling_policy,
            "matches_preferred_slot": self.matches_preferred_slot,
        }


@dataclass(frozen=True)
class WaitlistOption:
    """A preferred slot the teacher covers but is already booked for."""

    teacher_id: str
    time_slot: TimeSlot
    reason: str


@dataclass(frozen=True)
class FlexibleOption:
    description: str
    type: FlexibleOptionType
    confidence_level: float


@dataclass(frozen=True)
class AlternativeBookingOptions:
    alternative_teachers: tuple[TeacherMatchingScore, ...] = ()
    alternative_time_slots: tuple[TimeSlot, ...] = ()
    alternative_durations: tuple[int, ...] = ()
    waitlist_options: tuple[WaitlistOption, ...] = ()
    flexible_options: tuple[FlexibleOption, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "alternative_teachers": [t.to_dict() for t in self.alternative_teachers],
            "alternative_time_slots": [s.to_dict() for s in self.alternative_time_slots],
            "alternative_durations": list(self.alternative_durations),
            "waitlist_options": [
                {
                    "teacher_id": w.teacher_id,
                    "time_slot": w.time_slot.to_dict(),
                    "reason": w.reason,
                }
                for w in self.waitlist_options
            ],
            "flexible_options": [
                {
                    "description": f.description,
                    "type": f.type.value,
                    "confidence_level": f.confidence_level,
                }
                for f in self.flexible_options
            ],
        }


@dataclass(frozen=True)
class MatchingMetrics:
    processing_time: float = 0.0
    teachers_evaluated: int = 0
    time_slots_considered: int = 0
    algorithm_version: str = ""


@dataclass(frozen=True)
class OneOnOneBookingResult:
    request_id: str
    success: bool
    booking: ScheduledClass | None = None
    recommendations: tuple[OneOnOneBookingRecommendation, ...] = ()
    alternatives: AlternativeBookingOptions | None = None
    conflicts: tuple[SchedulingConflict, ...] = ()
    metrics: MatchingMetrics = field(default_factory=MatchingMetrics)
    error: SchedulingError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "success": self.success,
            "booking": self.booking.to_dict() if self.booking else None,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "alternatives": self.alternatives.to_dict() if self.alternatives else None,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "metrics": {
                "processing_time": round(self.metrics.processing_time, 4),
                "teachers_evaluated": self.metrics.teachers_evaluated,
                "time_slots_considered": self.metrics.time_slots_considered,
                "algorithm_version": self.metrics.algorithm_version,
            },
            "error": self.error.to_dict() if self.error else None,
        }
