"""JSON dataset loading into the in-memory collaborators.

A dataset file is a JSON object with these keys, all optional except
``content``:

    content                  list of learning content records
    progress                 list of student progress records
    teachers                 list of teacher availability records; each may
                             carry ``course_ids`` restricting what it teaches
    profiles                 list of teacher profiles used for 1-on-1 matching
    bookings                 list of existing classes, content given by ID
    student_unavailability   mapping of student ID to busy time slots
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from ..exceptions import ValidationError
from ..matching.models import TeacherProfile
from ..memory import (
    InMemoryContentCatalog,
    InMemoryProgressStore,
    InMemoryScheduleStore,
    InMemoryTeacherDirectory,
)
from ..models import (
    LearningContent,
    ScheduledClass,
    SchedulingConstraints,
    StudentProgress,
    TeacherAvailability,
    TimeSlot,
)
from .loader import read_json

logger = logging.getLogger(__name__)


@dataclass
class Dataset:
    """In-memory collaborators built from one dataset file."""

    catalog: InMemoryContentCatalog
    progress: InMemoryProgressStore
    schedule: InMemoryScheduleStore
    directory: InMemoryTeacherDirectory

    @property
    def summary(self) -> dict[str, int]:
        return {
            "content": len(self.catalog.graph),
            "courses": len(self.catalog.list_course_ids()),
            "students": len({p.student_id for p in self.progress.iter_progress()}),
            "teachers": len(self.schedule.list_teacher_ids()),
            "profiles": len(self.directory.list_teacher_profiles()),
            "bookings": len(self.schedule.bookings),
        }


class DatasetLoader:
    """Builds the in-memory collaborators from a JSON dataset."""

    def __init__(self, constraints: SchedulingConstraints | None = None):
        self.constraints = constraints or SchedulingConstraints()

    def load(self, path: Path) -> Dataset:
        """
        Load a dataset file.

        Args:
            path: Path to the JSON dataset

        Returns:
            Dataset with catalog, progress, schedule and teacher directory

        Raises:
            ValidationError: If the file is malformed
            ContentCycleError: If content prerequisites form a cycle
            UnknownContentError: If a prerequisite does not exist
        """
        path = Path(path)
        data = read_json(path)
        if not isinstance(data, dict):
            raise ValidationError(f"{path.name} must contain a JSON object", code="INVALID_DATASET")
        dataset = self.from_dict(data)
        logger.info(f"Loaded dataset {path.name}: {dataset.summary}")
        return dataset

    def from_dict(self, data: Mapping[str, Any]) -> Dataset:
        if "content" not in data:
            raise ValidationError("Dataset has no 'content' section", code="INVALID_DATASET")
        try:
            catalog = InMemoryContentCatalog(LearningContent.from_dict(c) for c in data["content"])
            progress = InMemoryProgressStore(
                catalog, (StudentProgress.from_dict(p) for p in data.get("progress", []))
            )
            teachers = data.get("teachers", [])
            availabilities = [TeacherAvailability.from_dict(t) for t in teachers]
            teacher_courses = {t["teacher_id"]: t["course_ids"] for t in teachers if "course_ids" in t}
            lookup = {c.id: c for c in catalog.graph.contents}
            bookings = [ScheduledClass.from_dict(b, lookup) for b in data.get("bookings", [])]
            unavailability = {
                student_id: [TimeSlot.from_dict(s) for s in slots]
                for student_id, slots in data.get("student_unavailability", {}).items()
            }
            profiles = [TeacherProfile.from_dict(p) for p in data.get("profiles", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed dataset: {e}", code="INVALID_DATASET") from e

        schedule = InMemoryScheduleStore(
            availabilities=availabilities,
            bookings=bookings,
            teacher_courses=teacher_courses,
            student_unavailability=unavailability,
            max_concurrent_per_teacher=self.constraints.max_concurrent_classes_per_teacher,
        )
        return Dataset(
            catalog=catalog,
            progress=progress,
            schedule=schedule,
            directory=InMemoryTeacherDirectory(profiles),
        )
