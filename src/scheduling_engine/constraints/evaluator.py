"""Constraint evaluator: runs the hard constraints against a candidate class."""

import logging

from ..models import ScheduledClass, SchedulingConstraints
from .base import EvaluationContext, EvaluationResult, HardConstraint
from .hard import HARD_CONSTRAINTS

logger = logging.getLogger(__name__)


class ConstraintEvaluator:
    """Evaluates candidates against hard constraints.

    Evaluation is pure: it depends only on the candidate, the constraints and
    the context, so candidates can be evaluated in any order or in parallel.
    """

    def __init__(self, constraints: SchedulingConstraints):
        self.constraints = constraints
        self.checks: list[HardConstraint] = [cls(constraints) for cls in HARD_CONSTRAINTS]

    def evaluate(self, candidate: ScheduledClass, context: EvaluationContext) -> EvaluationResult:
        """
        Check a candidate class.

        Stops at the first critical violation; otherwise collects every
        violation so callers can report them together.

        Args:
            candidate: Class to check
            context: Existing classes, current time and manual overrides

        Returns:
            EvaluationResult with ok=True only when no violation remains
        """
        violations = []
        applied = []
        for check in self.checks:
            found, bypassed = check.evaluate(candidate, context)
            for override in bypassed:
                if override not in applied:
                    applied.append(override)
            violations.extend(found)
            if any(v.critical for v in found):
                logger.debug(f"Candidate '{candidate.id}' failed {check.name}: {found[0].message}")
                break

        return EvaluationResult(
            ok=not violations,
            violations=tuple(violations),
            applied_overrides=tuple(applied),
        )

    def accepts(self, candidate: ScheduledClass, context: EvaluationContext) -> bool:
        return self.evaluate(candidate, context).ok
