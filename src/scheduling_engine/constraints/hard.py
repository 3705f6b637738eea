"""Hard constraint checks.

Checked in this order:
- Capacity (critical)
- Teacher load (critical)
- Student load
- Break spacing
- Booking window
"""

from datetime import timedelta

from ..constants import HARD_MAX_STUDENTS_PER_CLASS
from ..models import ClassStatus, ClassType, OverrideType, ScheduledClass
from .base import EvaluationContext, HardConstraint, Violation, ViolationKind, has_override


class CapacityConstraint(HardConstraint):
    """Enrollment within the class cap, and the group minimum for confirmed classes.

    A ``class_size`` override lifts the cap up to the global hard cap and no
    further; anything beyond it is flagged as needing approval.
    """

    name = "capacity"
    override_type = OverrideType.CLASS_SIZE

    def check(self, candidate: ScheduledClass, context: EvaluationContext) -> list[Violation]:
        enrollment = len(candidate.student_ids)
        if enrollment == 0:
            return [
                Violation(
                    kind=ViolationKind.CAPACITY,
                    message=f"Class '{candidate.id}' has no students",
                    critical=True,
                    overridable=False,
                    entity_ids=(candidate.id,),
                )
            ]

        violations = []
        limit = min(
            self.constraints.max_students_per_class,
            candidate.time_slot.capacity.max_students,
        )
        if enrollment > limit:
            override = has_override(context.overrides, OverrideType.CLASS_SIZE, candidate)
            override_limit = HARD_MAX_STUDENTS_PER_CLASS
            if override is not None and override.max_students is not None:
                override_limit = min(override.max_students, HARD_MAX_STUDENTS_PER_CLASS)
            beyond_override = enrollment > override_limit
            violations.append(
                Violation(
                    kind=ViolationKind.CAPACITY,
                    message=(
                        f"Class '{candidate.id}' has {enrollment} students, "
                        f"limit is {limit}"
                        + (f" (hard cap {HARD_MAX_STUDENTS_PER_CLASS})" if beyond_override else "")
                    ),
                    critical=True,
                    overridable=not beyond_override,
                    requires_approval=override is not None and beyond_override,
                    entity_ids=(candidate.id,),
                )
            )
            if beyond_override or override is None:
                return violations

        minimum = self.constraints.min_students_for_group_class
        if (
            candidate.class_type == ClassType.GROUP
            and candidate.status == ClassStatus.CONFIRMED
            and enrollment < minimum
        ):
            violations.append(
                Violation(
                    kind=ViolationKind.GROUP_MINIMUM,
                    message=(
                        f"Confirmed group class '{candidate.id}' has {enrollment} "
                        f"students, minimum is {minimum}"
                    ),
                    entity_ids=(candidate.id,),
                )
            )
        return violations


class TeacherLoadConstraint(HardConstraint):
    """A teacher's concurrent classes stay within the configured limit."""

    name = "teacher_load"
    override_type = OverrideType.TEACHER_LOAD

    def check(self, candidate: ScheduledClass, context: EvaluationContext) -> list[Violation]:
        overlapping = [
            c
            for c in context.others(candidate)
            if c.teacher_id == candidate.teacher_id and c.overlaps(candidate)
        ]
        limit = self.constraints.max_concurrent_classes_per_teacher
        if len(overlapping) + 1 <= limit:
            return []
        return [
            Violation(
                kind=ViolationKind.TEACHER_LOAD,
                message=(
                    f"Teacher '{candidate.teacher_id}' would teach {len(overlapping) + 1} "
                    f"classes at once (limit {limit})"
                ),
                critical=True,
                entity_ids=(candidate.teacher_id, *sorted(c.id for c in overlapping)),
            )
        ]


class StudentLoadConstraint(HardConstraint):
    """Daily class count per student."""

    name = "student_load"
    override_type = OverrideType.STUDENT_LOAD

    def check(self, candidate: ScheduledClass, context: EvaluationContext) -> list[Violation]:
        limit = self.constraints.max_classes_per_day_per_student
        day = candidate.start_time.date()
        others = context.others(candidate)
        violations = []
        for student_id in candidate.student_ids:
            same_day = sum(
                1 for c in others if student_id in c.student_ids and c.start_time.date() == day
            )
            if same_day + 1 > limit:
                violations.append(
                    Violation(
                        kind=ViolationKind.STUDENT_LOAD,
                        message=(
                            f"Student '{student_id}' would have {same_day + 1} classes on "
                            f"{day.isoformat()} (limit {limit})"
                        ),
                        entity_ids=(student_id,),
                        student_ids=(student_id,),
                    )
                )
        return violations


class BreakSpacingConstraint(HardConstraint):
    """Minimum break between consecutive classes of the same student or teacher."""

    name = "break_spacing"
    override_type = OverrideType.BREAK_SPACING

    def check(self, candidate: ScheduledClass, context: EvaluationContext) -> list[Violation]:
        min_break = self.constraints.min_break_between_classes
        others = context.others(candidate)
        violations = []

        for other in others:
            if other.teacher_id != candidate.teacher_id:
                continue
            gap = candidate.time_slot.gap_minutes(other.time_slot)
            # Overlap is the teacher load check's concern
            if 0 <= gap < min_break:
                violations.append(
                    Violation(
                        kind=ViolationKind.BREAK_SPACING,
                        message=(
                            f"Teacher '{candidate.teacher_id}' has only {gap:g} minutes "
                            f"between '{other.id}' and '{candidate.id}' (minimum {min_break})"
                        ),
                        entity_ids=(candidate.teacher_id, other.id),
                    )
                )

        for student_id in candidate.student_ids:
            for other in others:
                if student_id not in other.student_ids:
                    continue
                gap = candidate.time_slot.gap_minutes(other.time_slot)
                if gap < min_break:
                    detail = "overlaps" if gap < 0 else f"is only {gap:g} minutes from"
                    violations.append(
                        Violation(
                            kind=ViolationKind.BREAK_SPACING,
                            message=(
                                f"Student '{student_id}': '{candidate.id}' {detail} "
                                f"'{other.id}' (minimum break {min_break})"
                            ),
                            overridable=gap >= 0,
                            entity_ids=(student_id, other.id),
                            student_ids=(student_id,),
                        )
                    )
        return violations


class BookingWindowConstraint(HardConstraint):
    """Advance notice, booking horizon, blocked dates, working days and hours."""

    name = "booking_window"
    override_type = OverrideType.BOOKING_WINDOW

    def check(self, candidate: ScheduledClass, context: EvaluationContext) -> list[Violation]:
        constraints = self.constraints
        start = candidate.start_time
        end = candidate.end_time
        problems = []

        earliest = context.now + timedelta(hours=constraints.min_advance_booking_hours)
        latest = context.now + timedelta(days=constraints.max_advance_booking_days)
        if start < earliest:
            problems.append(
                f"starts less than {constraints.min_advance_booking_hours} hours from now"
            )
        if start > latest:
            problems.append(
                f"starts more than {constraints.max_advance_booking_days} days from now"
            )
        if start.date() in constraints.blocked_dates:
            problems.append(f"falls on blocked date {start.date().isoformat()}")
        if candidate.time_slot.day_of_week not in constraints.available_days:
            problems.append(f"falls on {candidate.time_slot.day_of_week.name.title()}")
        if (
            end.date() != start.date()
            or start.time() < constraints.working_hours_start
            or end.time() > constraints.working_hours_end
        ):
            problems.append(
                f"is outside working hours {constraints.working_hours_start:%H:%M}-"
                f"{constraints.working_hours_end:%H:%M}"
            )

        return [
            Violation(
                kind=ViolationKind.BOOKING_WINDOW,
                message=f"Class '{candidate.id}' {problem}",
                entity_ids=(candidate.id,),
            )
            for problem in problems
        ]


HARD_CONSTRAINTS: tuple[type[HardConstraint], ...] = (
    CapacityConstraint,
    TeacherLoadConstraint,
    StudentLoadConstraint,
    BreakSpacingConstraint,
    BookingWindowConstraint,
)
