"""1-on-1 teacher matching and booking."""

from .matcher import OneOnOneMatcher
from .models import (
    AlternativeBookingOptions,
    BookingPolicy,
    ExperienceLevel,
    FlexibilitySettings,
    FlexibleOption,
    FlexibleOptionType,
    LearningGoals,
    MatchingConfig,
    MatchingCriteria,
    MatchingMetrics,
    OneOnOneBookingRecommendation,
    OneOnOneBookingRequest,
    OneOnOneBookingResult,
    TeacherMatchingScore,
    TeacherProfile,
    TeacherScoreBreakdown,
    TeacherSelectionPreferences,
    WaitlistOption,
)

__all__ = [
    "AlternativeBookingOptions",
    "BookingPolicy",
    "ExperienceLevel",
    "FlexibilitySettings",
    "FlexibleOption",
    "FlexibleOptionType",
    "LearningGoals",
    "MatchingConfig",
    "MatchingCriteria",
    "MatchingMetrics",
    "OneOnOneBookingRecommendation",
    "OneOnOneBookingRequest",
    "OneOnOneBookingResult",
    "OneOnOneMatcher",
    "TeacherMatchingScore",
    "TeacherProfile",
    "TeacherScoreBreakdown",
    "TeacherSelectionPreferences",
    "WaitlistOption",
]
