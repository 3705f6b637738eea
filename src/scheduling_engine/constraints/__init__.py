"""Hard constraint evaluation and soft scoring."""

from .base import EvaluationContext, EvaluationResult, HardConstraint, Violation, ViolationKind
from .evaluator import ConstraintEvaluator
from .hard import (
    BookingWindowConstraint,
    BreakSpacingConstraint,
    CapacityConstraint,
    StudentLoadConstraint,
    TeacherLoadConstraint,
)
from .soft import (
    ScoreBreakdown,
    ScoringContext,
    ScoringEngine,
    StudentScoringData,
    rank_candidates,
)

__all__ = [
    "BookingWindowConstraint",
    "BreakSpacingConstraint",
    "CapacityConstraint",
    "ConstraintEvaluator",
    "EvaluationContext",
    "EvaluationResult",
    "HardConstraint",
    "ScoreBreakdown",
    "ScoringContext",
    "ScoringEngine",
    "StudentLoadConstraint",
    "StudentScoringData",
    "TeacherLoadConstraint",
    "Violation",
    "ViolationKind",
    "rank_candidates",
]
