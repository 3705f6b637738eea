"""Interfaces of the external collaborators consumed by the engine.

The engine never owns persistent state. Progress, availability, bookings,
content and teacher profiles are read through these interfaces, and the
booking store is the only place where enrollment is written.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterator

from .models import (
    DateRange,
    LearningContent,
    ScheduledClass,
    StudentProgress,
    TeacherAvailability,
    TimeSlot,
)

if TYPE_CHECKING:
    from .matching.models import TeacherProfile
    from .notifications import Notification


class ProgressStore(ABC):
    """Read access to student progress."""

    @abstractmethod
    def get_student_progress(self, student_id: str, course_id: str) -> StudentProgress:
        """Return progress for a student-course pair.

        Raises:
            UnknownEntityError: If the student is not enrolled in the course
        """

    @abstractmethod
    def get_unlearned_content(self, student_id: str, course_id: str) -> list[LearningContent]:
        """Return the student's unlearned content in catalog order."""

    @abstractmethod
    def iter_progress(self) -> Iterator[StudentProgress]:
        """Iterate over every progress record."""


class AvailabilityStore(ABC):
    """Read access to teacher availability and existing bookings."""

    @abstractmethod
    def get_teacher_availability(
        self, teacher_id: str, date_range: DateRange
    ) -> TeacherAvailability:
        """Raises UnknownEntityError for an unknown teacher."""

    @abstractmethod
    def get_existing_bookings(self, date_range: DateRange) -> list[ScheduledClass]:
        """Active (non-cancelled) classes overlapping the range."""

    @abstractmethod
    def list_teacher_ids(self, course_id: str | None = None) -> list[str]:
        """Teachers qualified for a course, or all teachers."""

    @abstractmethod
    def get_student_unavailability(
        self, student_id: str, date_range: DateRange
    ) -> list[TimeSlot]:
        """Windows during which a student cannot attend (leave, blocked time)."""


class CommitRejectionReason(str, Enum):
    STALE_VERSION = "stale_version"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    TEACHER_BUSY = "teacher_busy"
    STUDENT_BUSY = "student_busy"


@dataclass(frozen=True)
class CommitRejection:
    """A class the booking store refused to commit."""

    scheduled_class: ScheduledClass
    reason: CommitRejectionReason
    message: str
    student_ids: tuple[str, ...] = ()


@dataclass
class CommitReport:
    committed: list[ScheduledClass] = field(default_factory=list)
    rejections: list[CommitRejection] = field(default_factory=list)

    @property
    def all_committed(self) -> bool:
        return not self.rejections


class BookingStore(ABC):
    """Write access to class bookings.

    ``commit`` is the critical section of the engine: it must re-read the
    stored records, check versions and capacity, and reject rather than
    overwrite anything changed by a concurrent request.
    """

    @abstractmethod
    def commit(self, classes: list[ScheduledClass]) -> CommitReport:
        """Commit new classes and enrollment changes.

        A class whose ID already exists is an update; its ``version`` must
        match the stored record.
        """

    @abstractmethod
    def cancel(self, class_id: str, expected_version: int | None = None) -> ScheduledClass:
        """Cancel a booking.

        Raises:
            UnknownEntityError: If the class does not exist
            CommitConflictError: If the stored version differs from the expected one
        """

    @abstractmethod
    def get_booking(self, class_id: str) -> ScheduledClass | None:
        """Return the stored class, or None."""


class ContentCatalog(ABC):
    """Read-only course content."""

    @abstractmethod
    def get_course_content(self, course_id: str) -> list[LearningContent]:
        """Raises UnknownEntityError for an unknown course."""

    @abstractmethod
    def get_content(self, content_id: str) -> LearningContent:
        """Raises UnknownContentError for an unknown item."""

    @abstractmethod
    def list_course_ids(self) -> list[str]:
        pass


class TeacherDirectory(ABC):
    """Teacher profiles used by 1-on-1 matching."""

    @abstractmethod
    def list_teacher_profiles(self, course_id: str | None = None) -> list["TeacherProfile"]:
        pass


class NotificationDispatcher(ABC):
    """Outbound notifications. Callers treat delivery as fire-and-forget."""

    @abstractmethod
    def notify(self, notification: "Notification") -> None:
        pass
