"""Tests for the prerequisite graph and content planning helpers."""

import pytest

from scheduling_engine.content import PrerequisiteGraph, fit_to_session, next_teachable
from scheduling_engine.exceptions import ContentCycleError, UnknownContentError, ValidationError
from scheduling_engine.models import LearningContent


def lesson(content_id, lesson_number, prerequisites=(), minutes=30):
    return LearningContent(
        id=content_id,
        course_id="english-a1",
        unit_number=1,
        lesson_number=lesson_number,
        prerequisites=tuple(prerequisites),
        estimated_duration=minutes,
    )


class TestPrerequisiteGraph:
    """Tests for PrerequisiteGraph class."""

    def test_topological_order_follows_prerequisites(self):
        graph = PrerequisiteGraph(
            [lesson("c3", 3, ["c2"]), lesson("c2", 2, ["c1"]), lesson("c1", 1)]
        )
        assert graph.topological_order() == ["c1", "c2", "c3"]
        assert [c.id for c in graph.contents] == ["c1", "c2", "c3"]

    def test_catalog_order_breaks_ties(self):
        graph = PrerequisiteGraph([lesson("b", 2), lesson("a", 1), lesson("c", 3, ["a"])])
        assert graph.topological_order() == ["a", "b", "c"]

    def test_duplicate_id(self):
        with pytest.raises(ValidationError):
            PrerequisiteGraph([lesson("c1", 1), lesson("c1", 2)])

    def test_dangling_prerequisite(self):
        with pytest.raises(UnknownContentError) as excinfo:
            PrerequisiteGraph([lesson("c2", 2, ["c1"])])
        assert excinfo.value.code == "UNKNOWN_CONTENT"

    def test_cycle_is_reported(self):
        with pytest.raises(ContentCycleError) as excinfo:
            PrerequisiteGraph([lesson("a", 1, ["b"]), lesson("b", 2, ["a"])])
        assert excinfo.value.code == "PREREQUISITE_CYCLE"
        assert excinfo.value.cycle == ["a", "b", "a"]

    def test_prerequisite_closure(self, contents):
        graph = PrerequisiteGraph(contents)
        assert graph.prerequisite_closure("c3") == {"c1", "c2"}
        assert graph.prerequisite_closure("c1") == set()

    def test_missing_prerequisites(self, contents):
        graph = PrerequisiteGraph(contents)
        assert graph.missing_prerequisites("c2", []) == ["c1"]
        assert graph.missing_prerequisites("c2", ["c1"]) == []

    def test_next_available(self, contents):
        graph = PrerequisiteGraph(contents)
        assert [c.id for c in graph.next_available(["c1"])] == ["c2"]
        assert graph.next_available(["c1"], candidates=["c3"]) == []

    def test_get_unknown(self, contents):
        graph = PrerequisiteGraph(contents)
        assert "c1" in graph
        assert len(graph) == 3
        with pytest.raises(UnknownContentError):
            graph.get("missing")


class TestNextTeachable:
    """Tests for next_teachable function."""

    def test_chain_is_teachable_in_order(self, contents):
        assert [c.id for c in next_teachable(contents, [])] == ["c1", "c2", "c3"]

    def test_blocked_item_is_skipped(self, contents):
        # c2 requires c1, which is neither completed nor queued first
        assert [c.id for c in next_teachable(contents[1:], [])] == []

    def test_completed_items_are_skipped(self, contents):
        assert [c.id for c in next_teachable(contents, ["c1"])] == ["c2", "c3"]


class TestFitToSession:
    """Tests for fit_to_session function."""

    def test_longest_prefix(self, contents):
        assert [c.id for c in fit_to_session(contents, 60)] == ["c1", "c2"]

    def test_at_least_one_item(self):
        long_lesson = lesson("long", 1, minutes=90)
        assert fit_to_session([long_lesson], 60) == [long_lesson]

    def test_empty(self):
        assert fit_to_session([], 60) == []
