"""In-memory collaborator implementations used by the CLI and tests."""

import logging
import threading
from dataclasses import replace
from typing import Iterable, Iterator, Mapping

from .collaborators import (
    AvailabilityStore,
    BookingStore,
    CommitRejection,
    CommitRejectionReason,
    CommitReport,
    ContentCatalog,
    ProgressStore,
    TeacherDirectory,
)
from .constants import DEFAULT_MAX_CONCURRENT_CLASSES_PER_TEACHER
from .content import PrerequisiteGraph
from .exceptions import CommitConflictError, UnknownContentError, UnknownEntityError
from .matching.models import TeacherProfile
from .models import (
    ClassStatus,
    DateRange,
    LearningContent,
    ScheduledClass,
    StudentProgress,
    TeacherAvailability,
    TimeSlot,
)
from .utils import intervals_overlap

logger = logging.getLogger(__name__)


class InMemoryContentCatalog(ContentCatalog):
    """Content catalog validated as a prerequisite DAG on construction."""

    def __init__(self, contents: Iterable[LearningContent]):
        self.graph = PrerequisiteGraph(contents)
        self._by_course: dict[str, list[LearningContent]] = {}
        for content in self.graph.contents:
            self._by_course.setdefault(content.course_id, []).append(content)
        for items in self._by_course.values():
            items.sort(key=lambda c: c.sort_key)

    def get_course_content(self, course_id: str) -> list[LearningContent]:
        if course_id not in self._by_course:
            raise UnknownEntityError("course", course_id)
        return list(self._by_course[course_id])

    def get_content(self, content_id: str) -> LearningContent:
        return self.graph.get(content_id)

    def list_course_ids(self) -> list[str]:
        return sorted(self._by_course)


class InMemoryProgressStore(ProgressStore):
    def __init__(self, catalog: ContentCatalog, progress: Iterable[StudentProgress] = ()):
        self.catalog = catalog
        self._lock = threading.Lock()
        self._progress: dict[tuple[str, str], StudentProgress] = {}
        for record in progress:
            self.put(record)

    def put(self, record: StudentProgress) -> None:
        with self._lock:
            self._progress[(record.student_id, record.course_id)] = record

    def get_student_progress(self, student_id: str, course_id: str) -> StudentProgress:
        with self._lock:
            record = self._progress.get((student_id, course_id))
        if record is None:
            raise UnknownEntityError("student", student_id)
        return record

    def get_unlearned_content(self, student_id: str, course_id: str) -> list[LearningContent]:
        record = self.get_student_progress(student_id, course_id)
        contents = []
        for content_id in record.unlearned_content:
            try:
                contents.append(self.catalog.get_content(content_id))
            except UnknownContentError:
                logger.warning(
                    f"Student '{student_id}' lists unknown content '{content_id}', skipping"
                )
        return contents

    def iter_progress(self) -> Iterator[StudentProgress]:
        with self._lock:
            records = list(self._progress.values())
        return iter(records)


class InMemoryScheduleStore(AvailabilityStore, BookingStore):
    """Availability and bookings behind a single lock.

    Every booking record carries a version that is bumped on each write.
    Commits compare versions and re-check capacity and overlaps against the
    stored records, so a request working from a stale snapshot is rejected.
    """

    def __init__(
        self,
        availabilities: Iterable[TeacherAvailability] = (),
        bookings: Iterable[ScheduledClass] = (),
        teacher_courses: Mapping[str, Iterable[str]] | None = None,
        student_unavailability: Mapping[str, Iterable[TimeSlot]] | None = None,
        max_concurrent_per_teacher: int = DEFAULT_MAX_CONCURRENT_CLASSES_PER_TEACHER,
    ):
        self._lock = threading.RLock()
        self._availability = {a.teacher_id: a for a in availabilities}
        self._bookings: dict[str, ScheduledClass] = {}
        for booking in bookings:
            self._bookings[booking.id] = booking
        self._teacher_courses = {
            teacher_id: set(courses) for teacher_id, courses in (teacher_courses or {}).items()
        }
        self._student_unavailability = {
            student_id: list(slots)
            for student_id, slots in (student_unavailability or {}).items()
        }
        self.max_concurrent_per_teacher = max_concurrent_per_teacher
        self.commit_count = 0

    # Availability

    def set_availability(self, availability: TeacherAvailability) -> None:
        with self._lock:
            self._availability[availability.teacher_id] = availability

    def get_teacher_availability(
        self, teacher_id: str, date_range: DateRange
    ) -> TeacherAvailability:
        with self._lock:
            availability = self._availability.get(teacher_id)
        if availability is None:
            raise UnknownEntityError("teacher", teacher_id)
        return availability

    def get_existing_bookings(self, date_range: DateRange) -> list[ScheduledClass]:
        with self._lock:
            bookings = [
                b
                for b in self._bookings.values()
                if b.is_active
                and intervals_overlap(b.start_time, b.end_time, date_range.start, date_range.end)
            ]
        return sorted(bookings, key=lambda b: (b.start_time, b.id))

    def list_teacher_ids(self, course_id: str | None = None) -> list[str]:
        with self._lock:
            teacher_ids = list(self._availability)
            if course_id is not None and self._teacher_courses:
                teacher_ids = [
                    t for t in teacher_ids if course_id in self._teacher_courses.get(t, set())
                ]
        return sorted(teacher_ids)

    def get_student_unavailability(
        self, student_id: str, date_range: DateRange
    ) -> list[TimeSlot]:
        with self._lock:
            slots = list(self._student_unavailability.get(student_id, []))
        return [
            s
            for s in slots
            if intervals_overlap(s.start_time, s.end_time, date_range.start, date_range.end)
        ]

    # Bookings

    @property
    def bookings(self) -> list[ScheduledClass]:
        with self._lock:
            return sorted(self._bookings.values(), key=lambda b: (b.start_time, b.id))

    def bookings_for_request(self, request_id: str) -> list[ScheduledClass]:
        return [b for b in self.bookings if b.request_id == request_id]

    def get_booking(self, class_id: str) -> ScheduledClass | None:
        with self._lock:
            return self._bookings.get(class_id)

    def commit(self, classes: list[ScheduledClass]) -> CommitReport:
        report = CommitReport()
        with self._lock:
            for scheduled in classes:
                rejection = self._check(scheduled)
                if rejection is not None:
                    logger.info(
                        f"Commit of class '{scheduled.id}' rejected: {rejection.reason.value}"
                    )
                    report.rejections.append(rejection)
                    continue
                stored = self._bookings.get(scheduled.id)
                version = stored.version + 1 if stored else max(scheduled.version, 0) + 1
                committed = replace(scheduled, version=version)
                self._bookings[committed.id] = committed
                report.committed.append(committed)
            if report.committed:
                self.commit_count += 1
        return report

    def _check(self, scheduled: ScheduledClass) -> CommitRejection | None:
        stored = self._bookings.get(scheduled.id)
        if stored is not None and stored.version != scheduled.version:
            return CommitRejection(
                scheduled_class=scheduled,
                reason=CommitRejectionReason.STALE_VERSION,
                message=(
                    f"Class '{scheduled.id}' changed since it was read "
                    f"(version {scheduled.version}, stored {stored.version})"
                ),
                student_ids=self._new_students(scheduled, stored),
            )

        capacity = scheduled.time_slot.capacity.max_students
        if len(scheduled.student_ids) > capacity:
            return CommitRejection(
                scheduled_class=scheduled,
                reason=CommitRejectionReason.CAPACITY_EXCEEDED,
                message=(
                    f"Class '{scheduled.id}' would hold {len(scheduled.student_ids)} "
                    f"students, capacity is {capacity}"
                ),
                student_ids=self._new_students(scheduled, stored),
            )

        if not scheduled.is_active:
            return None

        others = [
            b
            for b in self._bookings.values()
            if b.id != scheduled.id and b.is_active and b.overlaps(scheduled)
        ]
        teacher_overlaps = [b for b in others if b.teacher_id == scheduled.teacher_id]
        if len(teacher_overlaps) >= self.max_concurrent_per_teacher:
            return CommitRejection(
                scheduled_class=scheduled,
                reason=CommitRejectionReason.TEACHER_BUSY,
                message=(
                    f"Teacher '{scheduled.teacher_id}' already teaches "
                    f"'{teacher_overlaps[0].id}' at that time"
                ),
                student_ids=self._new_students(scheduled, stored),
            )

        busy = sorted(
            {s for b in others for s in b.student_ids if s in scheduled.student_ids}
        )
        if busy:
            return CommitRejection(
                scheduled_class=scheduled,
                reason=CommitRejectionReason.STUDENT_BUSY,
                message=f"Students {busy} already have a class at that time",
                student_ids=tuple(busy),
            )
        return None

    @staticmethod
    def _new_students(
        scheduled: ScheduledClass, stored: ScheduledClass | None
    ) -> tuple[str, ...]:
        existing = set(stored.student_ids) if stored else set()
        return tuple(s for s in scheduled.student_ids if s not in existing)

    def cancel(self, class_id: str, expected_version: int | None = None) -> ScheduledClass:
        with self._lock:
            stored = self._bookings.get(class_id)
            if stored is None:
                raise UnknownEntityError("class", class_id)
            if expected_version is not None and stored.version != expected_version:
                raise CommitConflictError(
                    f"Class '{class_id}' changed since it was read "
                    f"(version {expected_version}, stored {stored.version})",
                    details={"class_id": class_id, "stored_version": stored.version},
                )
            cancelled = replace(stored.transition(ClassStatus.CANCELLED), version=stored.version + 1)
            self._bookings[class_id] = cancelled
        logger.info(f"Class '{class_id}' cancelled")
        return cancelled


class InMemoryTeacherDirectory(TeacherDirectory):
    def __init__(self, profiles: Iterable[TeacherProfile] = ()):
        self._profiles = {p.teacher_id: p for p in profiles}

    def list_teacher_profiles(self, course_id: str | None = None) -> list[TeacherProfile]:
        profiles = sorted(self._profiles.values(), key=lambda p: p.teacher_id)
        if course_id is None:
            return profiles
        return [p for p in profiles if not p.course_ids or course_id in p.course_ids]
