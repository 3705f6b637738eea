"""Data models for the class scheduling engine.

All domain entities are immutable value types. Collections are tuples so that
a model handed to one component cannot be mutated behind another's back;
changes are expressed as new instances via ``dataclasses.replace``.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Mapping, Self

from .constants import (
    DEFAULT_ALTERNATIVES_PER_CLASS,
    DEFAULT_AUTO_APPLY_THRESHOLD,
    DEFAULT_AVAILABLE_DAYS,
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_CLASS_DURATION,
    DEFAULT_MAX_ADVANCE_BOOKING_DAYS,
    DEFAULT_MAX_CANDIDATES_PER_UNIT,
    DEFAULT_MAX_CLASSES_PER_DAY_PER_STUDENT,
    DEFAULT_MAX_CONCURRENT_CLASSES_PER_TEACHER,
    DEFAULT_MAX_OPTIMIZATION_ITERATIONS,
    DEFAULT_MAX_PROCESSING_TIME,
    DEFAULT_MAX_STUDENTS_PER_CLASS,
    DEFAULT_MIN_ADVANCE_BOOKING_HOURS,
    DEFAULT_MIN_BREAK_BETWEEN_CLASSES,
    DEFAULT_MIN_STUDENTS_FOR_GROUP_CLASS,
    DEFAULT_OPTIMAL_CLASS_SIZE,
    DEFAULT_RESOURCE_RETRY_ATTEMPTS,
    DEFAULT_RESOURCE_RETRY_DELAY,
    DEFAULT_SOLVER_TIME_LIMIT,
    DEFAULT_WORKING_HOURS_END,
    DEFAULT_WORKING_HOURS_START,
    ALGORITHM_VERSION,
    HARD_MAX_STUDENTS_PER_CLASS,
    SCORING_WEIGHTS,
)
from .exceptions import InvariantViolationError, ValidationError
from .utils import (
    covers,
    day_name_to_index,
    day_of_week,
    gap_minutes,
    intervals_overlap,
    iter_dates,
    make_id,
    minutes_between,
    parse_date,
    parse_datetime,
    parse_time,
)


class Day(Enum):
    """Days of the week, numbered Sunday=0 as in the booking records."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def from_datetime(cls, moment: datetime | date) -> "Day":
        return cls(day_of_week(moment))

    @classmethod
    def parse(cls, value: "int | str | Day") -> "Day":
        """Accept an index, a day name, or a Day."""
        if isinstance(value, Day):
            return value
        if isinstance(value, int):
            return cls(value)
        index = day_name_to_index(value)
        if index is None:
            raise ValidationError(f"Unknown day of week: '{value}'")
        return cls(index)


class SchedulingStatus(str, Enum):
    """Lifecycle of a scheduling request."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    OPTIMIZING = "optimizing"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SchedulingStatus.COMPLETED,
            SchedulingStatus.FAILED,
            SchedulingStatus.CANCELLED,
        )


class SchedulingOperationType(str, Enum):
    """Kind of scheduling operation requested."""

    AUTO_SCHEDULE = "auto_schedule"
    RESCHEDULE = "reschedule"
    CONFLICT_RESOLUTION = "conflict_resolution"
    OPTIMIZATION = "optimization"
    CONTENT_SYNC = "content_sync"
    MANUAL_OVERRIDE = "manual_override"


class SchedulingPriority(str, Enum):
    """Priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ClassType(str, Enum):
    """Individual (1-on-1) or group class."""

    INDIVIDUAL = "individual"
    GROUP = "group"


class ClassStatus(str, Enum):
    """Status of a scheduled class."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# One-way status transitions for scheduled classes
CLASS_STATUS_TRANSITIONS = {
    ClassStatus.SCHEDULED: {ClassStatus.CONFIRMED, ClassStatus.CANCELLED},
    ClassStatus.CONFIRMED: {ClassStatus.CANCELLED},
    ClassStatus.CANCELLED: set(),
}


class SkillCategory(str, Enum):
    """Language skill categories."""

    SPEAKING = "speaking"
    LISTENING = "listening"
    READING = "reading"
    WRITING = "writing"
    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"
    PRONUNCIATION = "pronunciation"


class OverrideType(str, Enum):
    """Manual override types.

    The last five each bypass exactly one hard constraint check.
    """

    FORCE_SCHEDULE = "force_schedule"
    PREVENT_SCHEDULE = "prevent_schedule"
    PREFERRED_TEACHER = "preferred_teacher"
    PREFERRED_TIME = "preferred_time"
    CLASS_SIZE = "class_size"
    TEACHER_LOAD = "teacher_load"
    STUDENT_LOAD = "student_load"
    BREAK_SPACING = "break_spacing"
    BOOKING_WINDOW = "booking_window"


@dataclass(frozen=True)
class ClassCapacityConstraint:
    """Seat accounting for a time slot."""

    max_students: int
    min_students: int = 1
    current_enrollment: int = 0

    def __post_init__(self) -> None:
        if self.max_students < 1:
            raise ValidationError(f"max_students must be positive, got {self.max_students}")
        if self.max_students > HARD_MAX_STUDENTS_PER_CLASS:
            raise InvariantViolationError(
                f"max_students {self.max_students} exceeds the hard cap of "
                f"{HARD_MAX_STUDENTS_PER_CLASS}",
                details={"max_students": self.max_students},
            )
        if not 1 <= self.min_students <= self.max_students:
            raise ValidationError(
                f"min_students must be between 1 and max_students ({self.max_students}), "
                f"got {self.min_students}"
            )
        if self.current_enrollment < 0:
            raise ValidationError("current_enrollment cannot be negative")
        if self.current_enrollment > self.max_students:
            raise InvariantViolationError(
                f"Negative available spots: enrollment {self.current_enrollment} "
                f"exceeds capacity {self.max_students}",
                details={
                    "max_students": self.max_students,
                    "current_enrollment": self.current_enrollment,
                },
            )

    @property
    def available_spots(self) -> int:
        return self.max_students - self.current_enrollment

    def with_enrollment(self, enrollment: int) -> "ClassCapacityConstraint":
        return replace(self, current_enrollment=enrollment)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_students": self.max_students,
            "min_students": self.min_students,
            "current_enrollment": self.current_enrollment,
            "available_spots": self.available_spots,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            max_students=data.get("max_students", HARD_MAX_STUDENTS_PER_CLASS),
            min_students=data.get("min_students", 1),
            current_enrollment=data.get("current_enrollment", 0),
        )


@dataclass(frozen=True)
class TimeSlot:
    """A bounded time interval with availability and capacity."""

    id: str
    start_time: datetime
    end_time: datetime
    capacity: ClassCapacityConstraint = field(
        default_factory=lambda: ClassCapacityConstraint(max_students=HARD_MAX_STUDENTS_PER_CLASS)
    )
    is_available: bool = True
    location: str | None = None

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise ValidationError(
                f"Time slot '{self.id}' must start before it ends "
                f"({self.start_time.isoformat()} >= {self.end_time.isoformat()})"
            )

    @property
    def duration(self) -> int:
        """Duration in minutes."""
        return int(minutes_between(self.start_time, self.end_time))

    @property
    def day_of_week(self) -> Day:
        return Day.from_datetime(self.start_time)

    @property
    def date(self) -> date:
        return self.start_time.date()

    def overlaps(self, other: "TimeSlot") -> bool:
        return intervals_overlap(self.start_time, self.end_time, other.start_time, other.end_time)

    def gap_minutes(self, other: "TimeSlot") -> float:
        return gap_minutes(self.start_time, self.end_time, other.start_time, other.end_time)

    def same_interval(self, other: "TimeSlot") -> bool:
        return self.start_time == other.start_time and self.end_time == other.end_time

    def with_enrollment(self, enrollment: int) -> "TimeSlot":
        return replace(self, capacity=self.capacity.with_enrollment(enrollment))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "day_of_week": self.day_of_week.value,
            "is_available": self.is_available,
            "capacity": self.capacity.to_dict(),
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=data["id"],
            start_time=parse_datetime(data["start_time"]),
            end_time=parse_datetime(data["end_time"]),
            capacity=ClassCapacityConstraint.from_dict(data.get("capacity", {})),
            is_available=data.get("is_available", True),
            location=data.get("location"),
        )


@dataclass(frozen=True)
class DateRange:
    """Inclusive window of datetimes used to query collaborators."""

    start: datetime
    end: datetime

    def contains(self, start: datetime, end: datetime) -> bool:
        return covers(self.start, self.end, start, end)

    def widened(self, days: int) -> "DateRange":
        return DateRange(self.start - timedelta(days=days), self.end + timedelta(days=days))


@dataclass(frozen=True)
class LearningSkill:
    """A skill exercised by a content item."""

    id: str
    name: str
    category: SkillCategory
    level: int
    weight: float = 1.0

    def __post_init__(self) -> None:
        if not 1 <= self.level <= 10:
            raise ValidationError(f"Skill '{self.id}' level must be 1-10, got {self.level}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            category=SkillCategory(data.get("category", "speaking")),
            level=data.get("level", 5),
            weight=data.get("weight", 1.0),
        )


@dataclass(frozen=True)
class LearningContent:
    """A course lesson, authored by the content catalog and read-only here."""

    id: str
    course_id: str
    unit_number: int
    lesson_number: int
    title: str = ""
    estimated_duration: int = 30  # minutes
    prerequisites: tuple[str, ...] = ()
    difficulty_level: int = 5
    is_required: bool = True
    skills: tuple[LearningSkill, ...] = ()
    learning_objectives: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 1 <= self.difficulty_level <= 10:
            raise ValidationError(
                f"Content '{self.id}' difficulty must be 1-10, got {self.difficulty_level}"
            )
        if self.estimated_duration <= 0:
            raise ValidationError(f"Content '{self.id}' must have a positive duration")
        if self.id in self.prerequisites:
            raise ValidationError(f"Content '{self.id}' cannot be its own prerequisite")

    @property
    def sort_key(self) -> tuple[int, int, str]:
        return (self.unit_number, self.lesson_number, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "unit_number": self.unit_number,
            "lesson_number": self.lesson_number,
            "title": self.title,
            "estimated_duration": self.estimated_duration,
            "prerequisites": list(self.prerequisites),
            "difficulty_level": self.difficulty_level,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=data["id"],
            course_id=data["course_id"],
            unit_number=data.get("unit_number", 1),
            lesson_number=data.get("lesson_number", 1),
            title=data.get("title", ""),
            estimated_duration=data.get("estimated_duration", 30),
            prerequisites=tuple(data.get("prerequisites", [])),
            difficulty_level=data.get("difficulty_level", 5),
            is_required=data.get("is_required", True),
            skills=tuple(LearningSkill.from_dict(s) for s in data.get("skills", [])),
            learning_objectives=tuple(data.get("learning_objectives", [])),
        )


@dataclass(frozen=True)
class StudentPerformanceMetrics:
    """Performance metrics used to tune scheduling.

    Attributes:
        attendance_rate: 0-1
        assignment_completion_rate: 0-1
        average_score: 0-100
        engagement_level: 1-10
        optimal_class_size: Preferred number of classmates including the student
    """

    attendance_rate: float = 1.0
    assignment_completion_rate: float = 1.0
    average_score: float = 0.0
    engagement_level: int = 5
    preferred_class_types: tuple[ClassType, ...] = ()
    optimal_class_size: int = DEFAULT_OPTIMAL_CLASS_SIZE
    best_performing_times: tuple[TimeSlot, ...] = ()
    challenging_topics: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for name in ("attendance_rate", "assignment_completion_rate"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ValidationError(f"{name} must be within 0-1, got {value}")
        if not 0 <= self.average_score <= 100:
            raise ValidationError(f"average_score must be within 0-100, got {self.average_score}")
        if self.optimal_class_size < 1:
            raise ValidationError("optimal_class_size must be at least 1")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            attendance_rate=data.get("attendance_rate", 1.0),
            assignment_completion_rate=data.get("assignment_completion_rate", 1.0),
            average_score=data.get("average_score", 0.0),
            engagement_level=data.get("engagement_level", 5),
            preferred_class_types=tuple(
                ClassType(t) for t in data.get("preferred_class_types", [])
            ),
            optimal_class_size=data.get("optimal_class_size", DEFAULT_OPTIMAL_CLASS_SIZE),
            best_performing_times=tuple(
                TimeSlot.from_dict(s) for s in data.get("best_performing_times", [])
            ),
            challenging_topics=tuple(data.get("challenging_topics", [])),
        )


@dataclass(frozen=True)
class StudentProgress:
    """Progress of one student in one course.

    ``completed_content``, ``in_progress_content`` and ``unlearned_content``
    partition the course content; ``unlearned_content`` keeps catalog order.
    """

    student_id: str
    course_id: str
    progress_percentage: float = 0.0
    current_unit: int = 1
    current_lesson: int = 1
    completed_content: tuple[str, ...] = ()
    in_progress_content: tuple[str, ...] = ()
    unlearned_content: tuple[str, ...] = ()
    skill_assessments: Mapping[str, float] = field(default_factory=dict)
    learning_pace: float = 2.0  # lessons per week
    preferred_times: tuple[TimeSlot, ...] = ()
    performance: StudentPerformanceMetrics = field(default_factory=StudentPerformanceMetrics)
    last_activity: datetime | None = None
    study_streak: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.progress_percentage <= 100:
            raise ValidationError(
                f"progress_percentage must be within 0-100, got {self.progress_percentage}"
            )
        if self.learning_pace < 0:
            raise ValidationError("learning_pace cannot be negative")
        completed = set(self.completed_content)
        for name in ("in_progress_content", "unlearned_content"):
            overlap = completed.intersection(getattr(self, name))
            if overlap:
                raise ValidationError(
                    f"Student '{self.student_id}' has content both completed and in "
                    f"{name}: {sorted(overlap)}"
                )
        overlap = set(self.in_progress_content).intersection(self.unlearned_content)
        if overlap:
            raise ValidationError(
                f"Student '{self.student_id}' has content both in progress and unlearned: "
                f"{sorted(overlap)}"
            )

    def has_completed(self, content_id: str) -> bool:
        return content_id in self.completed_content

    @property
    def average_skill_level(self) -> float | None:
        if not self.skill_assessments:
            return None
        return sum(self.skill_assessments.values()) / len(self.skill_assessments)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        last_activity = data.get("last_activity")
        return cls(
            student_id=data["student_id"],
            course_id=data["course_id"],
            progress_percentage=data.get("progress_percentage", 0.0),
            current_unit=data.get("current_unit", 1),
            current_lesson=data.get("current_lesson", 1),
            completed_content=tuple(data.get("completed_content", [])),
            in_progress_content=tuple(data.get("in_progress_content", [])),
            unlearned_content=tuple(data.get("unlearned_content", [])),
            skill_assessments=dict(data.get("skill_assessments", {})),
            learning_pace=data.get("learning_pace", 2.0),
            preferred_times=tuple(TimeSlot.from_dict(s) for s in data.get("preferred_times", [])),
            performance=StudentPerformanceMetrics.from_dict(data.get("performance", {})),
            last_activity=parse_datetime(last_activity) if last_activity else None,
            study_streak=data.get("study_streak", 0),
        )


@dataclass(frozen=True)
class RecurringAvailability:
    """Weekly availability pattern with an effective date range."""

    day_of_week: Day
    start: time
    end: time
    effective_from: date | None = None
    effective_until: date | None = None
    max_students: int = HARD_MAX_STUDENTS_PER_CLASS
    location: str | None = None

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError(f"Recurring window {self.start}-{self.end} is empty")

    def is_effective(self, on: date) -> bool:
        if self.effective_from and on < self.effective_from:
            return False
        if self.effective_until and on > self.effective_until:
            return False
        return True

    def window_on(self, on: date, tzinfo=None) -> tuple[datetime, datetime]:
        return (
            datetime.combine(on, self.start, tzinfo=tzinfo),
            datetime.combine(on, self.end, tzinfo=tzinfo),
        )

    def covers(self, start: datetime, end: datetime) -> bool:
        on = start.date()
        if Day.from_datetime(on) != self.day_of_week or not self.is_effective(on):
            return False
        window_start, window_end = self.window_on(on, start.tzinfo)
        return covers(window_start, window_end, start, end)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        effective_from = data.get("effective_from")
        effective_until = data.get("effective_until")
        return cls(
            day_of_week=Day.parse(data["day_of_week"]),
            start=parse_time(data["start"]),
            end=parse_time(data["end"]),
            effective_from=parse_date(effective_from) if effective_from else None,
            effective_until=parse_date(effective_until) if effective_until else None,
            max_students=data.get("max_students", HARD_MAX_STUDENTS_PER_CLASS),
            location=data.get("location"),
        )


@dataclass(frozen=True)
class TeacherAvailability:
    """Explicit slots, recurring patterns, and blocked slots of one teacher.

    Blocked slots always take precedence over any declared availability.
    """

    teacher_id: str
    available_slots: tuple[TimeSlot, ...] = ()
    recurring_patterns: tuple[RecurringAvailability, ...] = ()
    blocked_slots: tuple[TimeSlot, ...] = ()

    def is_blocked(self, start: datetime, end: datetime) -> bool:
        return any(
            intervals_overlap(b.start_time, b.end_time, start, end) for b in self.blocked_slots
        )

    def is_available(self, start: datetime, end: datetime) -> bool:
        """Check if the teacher can teach during [start, end)."""
        if self.is_blocked(start, end):
            return False
        for slot in self.available_slots:
            if slot.is_available and covers(slot.start_time, slot.end_time, start, end):
                return True
        return any(pattern.covers(start, end) for pattern in self.recurring_patterns)

    def free_windows(self, start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
        """Parts of [start, end) left once every blocked slot is removed."""
        windows = [(start, end)]
        for blocked in sorted(self.blocked_slots, key=lambda b: b.start_time):
            remaining = []
            for window_start, window_end in windows:
                if not intervals_overlap(
                    blocked.start_time, blocked.end_time, window_start, window_end
                ):
                    remaining.append((window_start, window_end))
                    continue
                if window_start < blocked.start_time:
                    remaining.append((window_start, blocked.start_time))
                if blocked.end_time < window_end:
                    remaining.append((blocked.end_time, window_end))
            windows = remaining
        return windows

    def candidate_slots(self, date_range: DateRange) -> list[TimeSlot]:
        """Expand explicit and recurring availability into bookable slots.

        Blocked slots are cut out of each window; the remaining pieces are
        returned as separate slots.
        """
        slots: dict[tuple[datetime, datetime], TimeSlot] = {}

        for slot in self.available_slots:
            if not slot.is_available:
                continue
            for start, end in self.free_windows(slot.start_time, slot.end_time):
                if not date_range.contains(start, end):
                    continue
                if (start, end) == (slot.start_time, slot.end_time):
                    slots[(start, end)] = slot
                else:
                    slots[(start, end)] = replace(
                        slot,
                        id=make_id("slot", self.teacher_id, start),
                        start_time=start,
                        end_time=end,
                    )

        tzinfo = date_range.start.tzinfo
        for on in iter_dates(date_range.start.date(), date_range.end.date()):
            for pattern in self.recurring_patterns:
                if Day.from_datetime(on) != pattern.day_of_week or not pattern.is_effective(on):
                    continue
                window_start, window_end = pattern.window_on(on, tzinfo)
                for start, end in self.free_windows(window_start, window_end):
                    if (start, end) in slots or not date_range.contains(start, end):
                        continue
                    slots[(start, end)] = TimeSlot(
                        id=make_id("slot", self.teacher_id, start),
                        start_time=start,
                        end_time=end,
                        capacity=ClassCapacityConstraint(max_students=pattern.max_students),
                        location=pattern.location,
                    )

        return sorted(slots.values(), key=lambda s: (s.start_time, s.id))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            teacher_id=data["teacher_id"],
            available_slots=tuple(TimeSlot.from_dict(s) for s in data.get("available_slots", [])),
            recurring_patterns=tuple(
                RecurringAvailability.from_dict(p) for p in data.get("recurring_patterns", [])
            ),
            blocked_slots=tuple(TimeSlot.from_dict(s) for s in data.get("blocked_slots", [])),
        )


@dataclass(frozen=True)
class ConstraintOverrides:
    """Per-request partial replacement of SchedulingConstraints."""

    max_students_per_class: int | None = None
    min_students_for_group_class: int | None = None
    max_concurrent_classes_per_teacher: int | None = None
    max_classes_per_day_per_student: int | None = None
    min_break_between_classes: int | None = None
    max_advance_booking_days: int | None = None
    min_advance_booking_hours: int | None = None
    working_hours_start: time | None = None
    working_hours_end: time | None = None
    available_days: frozenset[Day] | None = None
    blocked_dates: frozenset[date] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        values = dict(data)
        if "working_hours" in values:
            hours = values.pop("working_hours")
            values["working_hours_start"] = hours.get("start")
            values["working_hours_end"] = hours.get("end")
        for key in ("working_hours_start", "working_hours_end"):
            if values.get(key) is not None:
                values[key] = parse_time(values[key])
        if values.get("available_days") is not None:
            values["available_days"] = frozenset(Day.parse(d) for d in values["available_days"])
        if values.get("blocked_dates") is not None:
            values["blocked_dates"] = frozenset(parse_date(d) for d in values["blocked_dates"])
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValidationError(f"Unknown constraint fields: {sorted(unknown)}")
        return cls(**values)


@dataclass(frozen=True)
class SchedulingConstraints:
    """Hard constraints applied to every candidate class."""

    max_students_per_class: int = DEFAULT_MAX_STUDENTS_PER_CLASS
    min_students_for_group_class: int = DEFAULT_MIN_STUDENTS_FOR_GROUP_CLASS
    max_concurrent_classes_per_teacher: int = DEFAULT_MAX_CONCURRENT_CLASSES_PER_TEACHER
    max_classes_per_day_per_student: int = DEFAULT_MAX_CLASSES_PER_DAY_PER_STUDENT
    min_break_between_classes: int = DEFAULT_MIN_BREAK_BETWEEN_CLASSES  # minutes
    max_advance_booking_days: int = DEFAULT_MAX_ADVANCE_BOOKING_DAYS
    min_advance_booking_hours: int = DEFAULT_MIN_ADVANCE_BOOKING_HOURS
    working_hours_start: time = DEFAULT_WORKING_HOURS_START
    working_hours_end: time = DEFAULT_WORKING_HOURS_END
    available_days: frozenset[Day] = frozenset(Day(d) for d in DEFAULT_AVAILABLE_DAYS)
    blocked_dates: frozenset[date] = frozenset()

    def __post_init__(self) -> None:
        if not 1 <= self.max_students_per_class <= HARD_MAX_STUDENTS_PER_CLASS:
            raise ValidationError(
                f"max_students_per_class must be between 1 and {HARD_MAX_STUDENTS_PER_CLASS}, "
                f"got {self.max_students_per_class}"
            )
        if not 1 <= self.min_students_for_group_class <= self.max_students_per_class:
            raise ValidationError(
                "min_students_for_group_class must be between 1 and max_students_per_class"
            )
        if self.max_concurrent_classes_per_teacher < 1:
            raise ValidationError("max_concurrent_classes_per_teacher must be at least 1")
        if self.max_classes_per_day_per_student < 1:
            raise ValidationError("max_classes_per_day_per_student must be at least 1")
        if self.min_break_between_classes < 0:
            raise ValidationError("min_break_between_classes cannot be negative")
        if self.min_advance_booking_hours < 0 or self.max_advance_booking_days < 0:
            raise ValidationError("Booking window bounds cannot be negative")
        if self.working_hours_start >= self.working_hours_end:
            raise ValidationError("Working hours must start before they end")

    def with_overrides(self, overrides: ConstraintOverrides | None) -> "SchedulingConstraints":
        """Apply the non-None fields of a per-request override."""
        if overrides is None:
            return self
        changes = {
            f.name: getattr(overrides, f.name)
            for f in fields(overrides)
            if getattr(overrides, f.name) is not None
        }
        return replace(self, **changes)

    def booking_window(self, now: datetime) -> DateRange:
        return DateRange(
            start=now + timedelta(hours=self.min_advance_booking_hours),
            end=now + timedelta(days=self.max_advance_booking_days),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_students_per_class": self.max_students_per_class,
            "min_students_for_group_class": self.min_students_for_group_class,
            "max_concurrent_classes_per_teacher": self.max_concurrent_classes_per_teacher,
            "max_classes_per_day_per_student": self.max_classes_per_day_per_student,
            "min_break_between_classes": self.min_break_between_classes,
            "max_advance_booking_days": self.max_advance_booking_days,
            "min_advance_booking_hours": self.min_advance_booking_hours,
            "working_hours": {
                "start": self.working_hours_start.strftime("%H:%M"),
                "end": self.working_hours_end.strftime("%H:%M"),
            },
            "available_days": sorted(d.value for d in self.available_days),
            "blocked_dates": sorted(d.isoformat() for d in self.blocked_dates),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls().with_overrides(ConstraintOverrides.from_dict(data))


@dataclass(frozen=True)
class SchedulingScoringWeights:
    """Relative weights of the soft-score criteria."""

    content_progression: float = SCORING_WEIGHTS["content_progression"]
    student_availability: float = SCORING_WEIGHTS["student_availability"]
    teacher_availability: float = SCORING_WEIGHTS["teacher_availability"]
    class_size_optimization: float = SCORING_WEIGHTS["class_size_optimization"]
    learning_pace_matching: float = SCORING_WEIGHTS["learning_pace_matching"]
    skill_level_alignment: float = SCORING_WEIGHTS["skill_level_alignment"]
    schedule_continuity: float = SCORING_WEIGHTS["schedule_continuity"]
    resource_utilization: float = SCORING_WEIGHTS["resource_utilization"]

    def __post_init__(self) -> None:
        values = self.as_dict()
        negative = [name for name, value in values.items() if value < 0]
        if negative:
            raise ValidationError(f"Scoring weights cannot be negative: {negative}")
        if sum(values.values()) <= 0:
            raise ValidationError("At least one scoring weight must be positive")

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())

    def as_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"Unknown scoring weights: {sorted(unknown)}")
        return cls(**data)


@dataclass(frozen=True)
class SchedulingAlgorithmConfig:
    """Configuration of the scheduling orchestrator."""

    version: str = ALGORITHM_VERSION
    max_processing_time: float = DEFAULT_MAX_PROCESSING_TIME  # seconds
    enable_conflict_resolution: bool = True
    enable_content_sync: bool = True
    enable_performance_optimization: bool = True
    max_optimization_iterations: int = DEFAULT_MAX_OPTIMIZATION_ITERATIONS
    scoring_weights: SchedulingScoringWeights = field(default_factory=SchedulingScoringWeights)
    constraints: SchedulingConstraints = field(default_factory=SchedulingConstraints)
    auto_apply_threshold: float = DEFAULT_AUTO_APPLY_THRESHOLD
    max_candidates_per_unit: int = DEFAULT_MAX_CANDIDATES_PER_UNIT
    alternatives_per_class: int = DEFAULT_ALTERNATIVES_PER_CLASS
    class_duration: int = DEFAULT_CLASS_DURATION  # minutes
    solver_time_limit: float = DEFAULT_SOLVER_TIME_LIMIT
    resource_retry_attempts: int = DEFAULT_RESOURCE_RETRY_ATTEMPTS
    resource_retry_delay: float = DEFAULT_RESOURCE_RETRY_DELAY
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    def __post_init__(self) -> None:
        if self.max_processing_time <= 0:
            raise ValidationError("max_processing_time must be positive")
        if self.max_optimization_iterations < 1:
            raise ValidationError("max_optimization_iterations must be at least 1")
        if not 0 <= self.auto_apply_threshold <= 1:
            raise ValidationError("auto_apply_threshold must be within 0-1")
        if self.class_duration <= 0:
            raise ValidationError("class_duration must be positive")
        if self.max_candidates_per_unit < 1:
            raise ValidationError("max_candidates_per_unit must be at least 1")
        if self.resource_retry_attempts < 0:
            raise ValidationError("resource_retry_attempts cannot be negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        values = dict(data)
        if "scoring_weights" in values:
            values["scoring_weights"] = SchedulingScoringWeights.from_dict(values["scoring_weights"])
        if "constraints" in values:
            values["constraints"] = SchedulingConstraints.from_dict(values["constraints"])
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValidationError(f"Unknown algorithm config fields: {sorted(unknown)}")
        return cls(**values)


@dataclass(frozen=True)
class SchedulingOverride:
    """Manual override attached to a request.

    ``student_id`` / ``teacher_id`` scope the override; None means any.
    """

    type: OverrideType
    reason: str = ""
    student_id: str | None = None
    teacher_id: str | None = None
    slot_id: str | None = None
    max_students: int | None = None
    priority: SchedulingPriority = SchedulingPriority.MEDIUM
    applied_by: str | None = None
    applied_at: datetime | None = None

    def applies_to(self, student_ids: tuple[str, ...], teacher_id: str | None = None) -> bool:
        if self.student_id is not None and self.student_id not in student_ids:
            return False
        if self.teacher_id is not None and teacher_id is not None and self.teacher_id != teacher_id:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "reason": self.reason,
            "student_id": self.student_id,
            "teacher_id": self.teacher_id,
            "slot_id": self.slot_id,
            "max_students": self.max_students,
            "priority": self.priority.value,
            "applied_by": self.applied_by,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        applied_at = data.get("applied_at")
        return cls(
            type=OverrideType(data["type"]),
            reason=data.get("reason", ""),
            student_id=data.get("student_id"),
            teacher_id=data.get("teacher_id"),
            slot_id=data.get("slot_id"),
            max_students=data.get("max_students"),
            priority=SchedulingPriority(data.get("priority", "medium")),
            applied_by=data.get("applied_by"),
            applied_at=parse_datetime(applied_at) if applied_at else None,
        )


@dataclass(frozen=True)
class SchedulingRequest:
    """A scheduling request. Immutable once submitted."""

    id: str
    type: SchedulingOperationType
    course_id: str
    student_ids: tuple[str, ...]
    priority: SchedulingPriority = SchedulingPriority.MEDIUM
    preferred_time_slots: tuple[TimeSlot, ...] = ()
    content_to_schedule: tuple[str, ...] = ()
    constraint_overrides: ConstraintOverrides | None = None
    manual_overrides: tuple[SchedulingOverride, ...] = ()
    teacher_ids: tuple[str, ...] = ()
    requested_at: datetime | None = None
    requested_by: str | None = None
    # Pass-through data with no behavioral meaning
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def overrides_of(self, override_type: OverrideType) -> list[SchedulingOverride]:
        return [o for o in self.manual_overrides if o.type == override_type]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        requested_at = data.get("requested_at")
        overrides = data.get("constraints") or data.get("constraint_overrides")
        return cls(
            id=data["id"],
            type=SchedulingOperationType(data.get("type", "auto_schedule")),
            course_id=data["course_id"],
            student_ids=tuple(data.get("student_ids", [])),
            priority=SchedulingPriority(data.get("priority", "medium")),
            preferred_time_slots=tuple(
                TimeSlot.from_dict(s) for s in data.get("preferred_time_slots", [])
            ),
            content_to_schedule=tuple(data.get("content_to_schedule", [])),
            constraint_overrides=ConstraintOverrides.from_dict(overrides) if overrides else None,
            manual_overrides=tuple(
                SchedulingOverride.from_dict(o) for o in data.get("manual_overrides", [])
            ),
            teacher_ids=tuple(data.get("teacher_ids", [])),
            requested_at=parse_datetime(requested_at) if requested_at else None,
            requested_by=data.get("requested_by"),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass(frozen=True)
class ScheduledClass:
    """A class placed (or proposed) on the schedule."""

    id: str
    course_id: str
    teacher_id: str
    student_ids: tuple[str, ...]
    time_slot: TimeSlot
    content: tuple[LearningContent, ...] = ()
    class_type: ClassType = ClassType.GROUP
    status: ClassStatus = ClassStatus.SCHEDULED
    confidence_score: float = 0.0
    rationale: str = ""
    alternatives: tuple["ScheduledClass", ...] = ()
    # Overrides that bypassed a hard constraint, kept for audit
    applied_overrides: tuple[SchedulingOverride, ...] = ()
    request_id: str | None = None
    # Version of the underlying booking record (optimistic concurrency)
    version: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0 <= self.confidence_score <= 1:
            raise ValidationError(
                f"Class '{self.id}' confidence must be within 0-1, got {self.confidence_score}"
            )
        if len(set(self.student_ids)) != len(self.student_ids):
            raise ValidationError(f"Class '{self.id}' lists a student more than once")

    @property
    def start_time(self) -> datetime:
        return self.time_slot.start_time

    @property
    def end_time(self) -> datetime:
        return self.time_slot.end_time

    @property
    def enrollment(self) -> int:
        return len(self.student_ids)

    @property
    def content_ids(self) -> tuple[str, ...]:
        return tuple(c.id for c in self.content)

    @property
    def is_active(self) -> bool:
        return self.status != ClassStatus.CANCELLED

    def overlaps(self, other: "ScheduledClass") -> bool:
        return self.time_slot.overlaps(other.time_slot)

    def transition(self, status: ClassStatus) -> "ScheduledClass":
        """Move to a new status; transitions are one-way."""
        if status == self.status:
            return self
        if status not in CLASS_STATUS_TRANSITIONS[self.status]:
            raise ValidationError(
                f"Class '{self.id}' cannot move from {self.status.value} to {status.value}",
                code="INVALID_STATUS_TRANSITION",
            )
        return replace(self, status=status)

    def with_students(self, student_ids: tuple[str, ...]) -> "ScheduledClass":
        # Seat count is clamped to capacity; overbooking stays visible in student_ids
        capacity = self.time_slot.capacity
        enrollment = min(len(student_ids), capacity.max_students)
        return replace(
            self,
            student_ids=tuple(student_ids),
            time_slot=self.time_slot.with_enrollment(enrollment),
        )

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "teacher_id": self.teacher_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "confidence_score": round(self.confidence_score, 4),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "teacher_id": self.teacher_id,
            "student_ids": list(self.student_ids),
            "time_slot": self.time_slot.to_dict(),
            "content_ids": list(self.content_ids),
            "class_type": self.class_type.value,
            "status": self.status.value,
            "confidence_score": round(self.confidence_score, 4),
            "rationale": self.rationale,
            "alternatives": [a.summary() for a in self.alternatives],
            "applied_overrides": [o.to_dict() for o in self.applied_overrides],
            "request_id": self.request_id,
            "version": self.version,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        content_lookup: Mapping[str, LearningContent] | None = None,
    ) -> Self:
        """Build a class from a booking record.

        Content is stored by ID; ``content_lookup`` resolves it, and IDs
        missing from the lookup are dropped.
        """
        content_lookup = content_lookup or {}
        return cls(
            id=data["id"],
            course_id=data["course_id"],
            teacher_id=data["teacher_id"],
            student_ids=tuple(data.get("student_ids", [])),
            time_slot=TimeSlot.from_dict(data["time_slot"]),
            content=tuple(
                content_lookup[c] for c in data.get("content_ids", []) if c in content_lookup
            ),
            class_type=ClassType(data.get("class_type", "group")),
            status=ClassStatus(data.get("status", "scheduled")),
            confidence_score=data.get("confidence_score", 0.0),
            rationale=data.get("rationale", ""),
            request_id=data.get("request_id"),
            version=data.get("version", 0),
            metadata=dict(data.get("metadata", {})),
        )
