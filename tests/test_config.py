"""Tests for configuration and dataset loading."""

import json
from datetime import datetime

import pytest

from scheduling_engine.config import ConfigLoader, DatasetLoader
from scheduling_engine.exceptions import ContentCycleError, ValidationError
from scheduling_engine.models import DateRange, Day, SchedulingAlgorithmConfig


def write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def dataset_dict():
    return {
        "content": [
            {"id": "c1", "course_id": "english-a1", "title": "Greetings"},
            {"id": "c2", "course_id": "english-a1", "lesson_number": 2, "prerequisites": ["c1"]},
        ],
        "progress": [
            {"student_id": "s1", "course_id": "english-a1", "unlearned_content": ["c1", "c2"]},
        ],
        "teachers": [
            {
                "teacher_id": "t1",
                "course_ids": ["english-a1"],
                "recurring_patterns": [{"day_of_week": "wednesday", "start": "10:00", "end": "12:00"}],
            },
        ],
        "profiles": [{"teacher_id": "t1", "experience_years": 4, "average_rating": 4.5}],
        "student_unavailability": {
            "s1": [{"id": "busy", "start_time": "2025-03-05T10:00", "end_time": "2025-03-05T11:00"}]
        },
    }


class TestConfigLoader:
    """Tests for ConfigLoader class."""

    def test_defaults_without_files(self, tmp_path):
        loader = ConfigLoader(tmp_path)

        assert loader.algorithm == SchedulingAlgorithmConfig()
        assert loader.matching.auto_confirm_threshold == 0.7
        assert len(loader.daily_update.components) == 5

    def test_loads_files(self, tmp_path):
        write_json(
            tmp_path / "algorithm.json",
            {"max_processing_time": 10, "constraints": {"max_students_per_class": 6}},
        )
        write_json(tmp_path / "matching.json", {"auto_confirm_threshold": 0.8})
        write_json(tmp_path / "daily-update.json", {"schedule_time": "04:00"})
        loader = ConfigLoader(tmp_path)

        assert loader.algorithm.max_processing_time == 10
        assert loader.algorithm.constraints.max_students_per_class == 6
        assert loader.matching.auto_confirm_threshold == 0.8
        assert loader.daily_update.schedule_time == "04:00"

    def test_unknown_field(self, tmp_path):
        write_json(tmp_path / "algorithm.json", {"turbo": True})
        with pytest.raises(ValidationError):
            ConfigLoader(tmp_path)

    def test_invalid_json(self, tmp_path):
        (tmp_path / "matching.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ValidationError) as excinfo:
            ConfigLoader(tmp_path)
        assert excinfo.value.code == "INVALID_CONFIG"

    def test_not_an_object(self, tmp_path):
        write_json(tmp_path / "algorithm.json", [1, 2])
        with pytest.raises(ValidationError) as excinfo:
            ConfigLoader(tmp_path)
        assert excinfo.value.code == "INVALID_CONFIG"


class TestDatasetLoader:
    """Tests for DatasetLoader class."""

    def test_load(self, tmp_path, dataset_dict):
        dataset = DatasetLoader().load(write_json(tmp_path / "dataset.json", dataset_dict))

        assert dataset.summary == {
            "content": 2,
            "courses": 1,
            "students": 1,
            "teachers": 1,
            "profiles": 1,
            "bookings": 0,
        }
        assert dataset.schedule.list_teacher_ids("english-a1") == ["t1"]
        assert dataset.schedule.list_teacher_ids("german-b2") == []
        availability = dataset.schedule.get_teacher_availability(
            "t1", DateRange(datetime(2025, 3, 3), datetime(2025, 3, 10))
        )
        pattern = availability.recurring_patterns[0]
        assert pattern.day_of_week == Day.WEDNESDAY

    def test_missing_content(self, dataset_dict):
        del dataset_dict["content"]
        with pytest.raises(ValidationError) as excinfo:
            DatasetLoader().from_dict(dataset_dict)
        assert excinfo.value.code == "INVALID_DATASET"

    def test_malformed_record(self, dataset_dict):
        del dataset_dict["progress"][0]["course_id"]
        with pytest.raises(ValidationError) as excinfo:
            DatasetLoader().from_dict(dataset_dict)
        assert excinfo.value.code == "INVALID_DATASET"

    def test_not_an_object(self, tmp_path):
        with pytest.raises(ValidationError) as excinfo:
            DatasetLoader().load(write_json(tmp_path / "dataset.json", []))
        assert excinfo.value.code == "INVALID_DATASET"

    def test_prerequisite_cycle(self, dataset_dict):
        dataset_dict["content"][0]["prerequisites"] = ["c2"]
        with pytest.raises(ContentCycleError):
            DatasetLoader().from_dict(dataset_dict)
