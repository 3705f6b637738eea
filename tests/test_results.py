"""Tests for result models."""

from datetime import datetime

import pytest

from scheduling_engine.exceptions import InvariantViolationError, ValidationError
from scheduling_engine.models import SchedulingStatus
from scheduling_engine.results import (
    ConflictResolution,
    ConflictSeverity,
    ConflictType,
    RecommendationType,
    RecommendedAction,
    RecommendedActionType,
    ResolutionImpact,
    ResolutionType,
    SchedulingApiResponse,
    SchedulingConflict,
    SchedulingRecommendation,
    SchedulingResult,
)


def make_resolution(feasibility=0.9, approvals=()):
    return ConflictResolution(
        id="res-1",
        type=ResolutionType.WAITLIST,
        description="Waitlist",
        impact=ResolutionImpact(affected_students=1, affected_teachers=0, schedule_disruption=1),
        feasibility_score=feasibility,
        estimated_implementation_time=5,
        required_approvals=approvals,
    )


class TestConflictSeverity:
    """Tests for ConflictSeverity ordering."""

    def test_ordering(self):
        assert ConflictSeverity.CRITICAL > ConflictSeverity.HIGH
        assert ConflictSeverity.LOW < ConflictSeverity.MEDIUM
        assert ConflictSeverity.MEDIUM >= ConflictSeverity.MEDIUM

    def test_blocking(self):
        conflict = SchedulingConflict(
            id="c", type=ConflictType.CONTENT_MISMATCH, severity=ConflictSeverity.MEDIUM,
            entity_ids=(), description="",
        )
        assert conflict.is_blocking


class TestConflictResolution:
    """Tests for ConflictResolution class."""

    def test_auto_applicable(self):
        assert make_resolution(0.9).is_auto_applicable(0.75)
        assert not make_resolution(0.7).is_auto_applicable(0.75)
        assert not make_resolution(0.9, approvals=("schedule_coordinator",)).is_auto_applicable(0.75)

    def test_feasibility_range(self):
        with pytest.raises(ValidationError):
            make_resolution(1.5)

    def test_disruption_range(self):
        with pytest.raises(ValidationError):
            ResolutionImpact(affected_students=1, affected_teachers=0, schedule_disruption=0)


class TestSchedulingResult:
    """Tests for SchedulingResult class."""

    def test_status_must_be_terminal(self):
        with pytest.raises(InvariantViolationError):
            SchedulingResult(request_id="r", success=True, status=SchedulingStatus.PROCESSING)

    def test_failure_needs_an_explanation(self):
        with pytest.raises(InvariantViolationError):
            SchedulingResult(request_id="r", success=False, status=SchedulingStatus.COMPLETED)

    def test_failure_with_recommendations(self):
        recommendation = SchedulingRecommendation(
            id="rec-1",
            type=RecommendationType.ALTERNATIVE_TEACHER,
            description="Try another teacher",
            confidence_score=0.5,
            action=RecommendedAction(type=RecommendedActionType.REQUEST_APPROVAL),
        )
        result = SchedulingResult(
            request_id="r",
            success=False,
            status=SchedulingStatus.COMPLETED,
            recommendations=(recommendation,),
            started_at=datetime(2025, 3, 3, 8, 0),
        )
        data = result.to_dict()
        assert data["status"] == "completed"
        assert data["recommendations"][0]["action"]["type"] == "request_approval"
        assert data["started_at"] == "2025-03-03T08:00:00"

    def test_recommendation_confidence_range(self):
        with pytest.raises(ValidationError):
            SchedulingRecommendation(
                id="rec-1",
                type=RecommendationType.ALTERNATIVE_TIME,
                description="",
                confidence_score=2,
                action=RecommendedAction(type=RecommendedActionType.SCHEDULE_CLASS),
            )


class TestSchedulingApiResponse:
    """Tests for SchedulingApiResponse class."""

    def test_to_dict_serializes_data(self):
        result = SchedulingResult(request_id="r", success=True, status=SchedulingStatus.COMPLETED)
        response = SchedulingApiResponse(success=True, data=result)
        data = response.to_dict()
        assert data["data"]["request_id"] == "r"
        assert data["error"] is None
