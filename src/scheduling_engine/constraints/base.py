"""Base types for hard constraint checks."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable

from ..models import OverrideType, ScheduledClass, SchedulingConstraints, SchedulingOverride


class ViolationKind(str, Enum):
    CAPACITY = "capacity"
    GROUP_MINIMUM = "group_minimum"
    TEACHER_LOAD = "teacher_load"
    STUDENT_LOAD = "student_load"
    BREAK_SPACING = "break_spacing"
    BOOKING_WINDOW = "booking_window"


@dataclass(frozen=True)
class Violation:
    """A failed hard-constraint check.

    Attributes:
        critical: Evaluation stops at the first critical violation
        overridable: Whether a manual override of the matching type may bypass it
        requires_approval: Surfaced for human approval rather than rejected outright
    """

    kind: ViolationKind
    message: str
    critical: bool = False
    overridable: bool = True
    requires_approval: bool = False
    entity_ids: tuple[str, ...] = ()
    student_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "critical": self.critical,
            "requires_approval": self.requires_approval,
            "entity_ids": list(self.entity_ids),
        }


@dataclass(frozen=True)
class EvaluationContext:
    """State a candidate is evaluated against.

    ``classes`` holds committed bookings plus classes already accepted in the
    current batch. A candidate is never compared against a class with its own ID.
    """

    now: datetime
    classes: tuple[ScheduledClass, ...] = ()
    overrides: tuple[SchedulingOverride, ...] = ()

    def others(self, candidate: ScheduledClass) -> list[ScheduledClass]:
        return [c for c in self.classes if c.id != candidate.id and c.is_active]

    def with_classes(self, classes: Iterable[ScheduledClass]) -> "EvaluationContext":
        """Replace same-ID classes and add the rest."""
        added = {c.id: c for c in classes}
        kept = tuple(c for c in self.classes if c.id not in added)
        return replace(self, classes=kept + tuple(added.values()))


@dataclass(frozen=True)
class EvaluationResult:
    ok: bool
    violations: tuple[Violation, ...] = ()
    applied_overrides: tuple[SchedulingOverride, ...] = ()

    @property
    def requires_approval(self) -> bool:
        return any(v.requires_approval for v in self.violations)

    @property
    def kinds(self) -> set[ViolationKind]:
        return {v.kind for v in self.violations}

    @property
    def summary(self) -> str:
        return "; ".join(v.message for v in self.violations)


class HardConstraint(ABC):
    """One hard-constraint check.

    Subclasses report raw violations; the base class applies manual overrides
    of ``override_type`` to overridable ones.
    """

    name: str = "constraint"
    override_type: OverrideType | None = None

    def __init__(self, constraints: SchedulingConstraints):
        self.constraints = constraints

    @abstractmethod
    def check(self, candidate: ScheduledClass, context: EvaluationContext) -> list[Violation]:
        """Return every violation of this constraint by the candidate."""
        pass

    def evaluate(
        self, candidate: ScheduledClass, context: EvaluationContext
    ) -> tuple[list[Violation], list[SchedulingOverride]]:
        """Check the candidate and bypass violations covered by an override."""
        remaining: list[Violation] = []
        applied: list[SchedulingOverride] = []
        for violation in self.check(candidate, context):
            override = self.find_override(candidate, context, violation)
            if override is not None:
                if override not in applied:
                    applied.append(override)
                continue
            remaining.append(violation)
        return remaining, applied

    def find_override(
        self, candidate: ScheduledClass, context: EvaluationContext, violation: Violation
    ) -> SchedulingOverride | None:
        if self.override_type is None or not violation.overridable:
            return None
        for override in context.overrides:
            if override.type != self.override_type:
                continue
            if not override.applies_to(candidate.student_ids, candidate.teacher_id):
                continue
            if override.slot_id is not None and override.slot_id != candidate.time_slot.id:
                continue
            if (
                override.student_id is not None
                and violation.student_ids
                and override.student_id not in violation.student_ids
            ):
                continue
            return override
        return None


def has_override(
    overrides: Iterable[SchedulingOverride],
    override_type: OverrideType,
    candidate: ScheduledClass,
) -> SchedulingOverride | None:
    """First override of a type that applies to the candidate."""
    for override in overrides:
        if override.type == override_type and override.applies_to(
            candidate.student_ids, candidate.teacher_id
        ):
            return override
    return None

