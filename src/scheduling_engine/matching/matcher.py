"""1-on-1 teacher auto-matching.

Teachers are scored on six weighted dimensions (availability, experience,
specialization, preference, performance and language). For each of the top
teachers the best individual slot is chosen with the same constraint
evaluator and scoring engine the group scheduler uses, and the top
recommendation is booked when its success probability clears the
auto-confirm threshold and the student's flexibility settings allow it.
"""

import logging
import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable

from ..candidates import segment_slot
from ..collaborators import (
    AvailabilityStore,
    BookingStore,
    ContentCatalog,
    NotificationDispatcher,
    ProgressStore,
    TeacherDirectory,
)
from ..conflicts import conflict_from_rejection
from ..constants import ALGORITHM_VERSION, NEUTRAL_SCORE, ONE_ON_ONE_DURATIONS
from ..constraints import (
    ConstraintEvaluator,
    EvaluationContext,
    ScoreBreakdown,
    ScoringContext,
    ScoringEngine,
    StudentScoringData,
    ViolationKind,
)
from ..constraints.soft import ranking_key
from ..content import fit_to_session, next_teachable
from ..exceptions import ConstraintError, SchedulingError, ValidationError
from ..models import (
    ClassCapacityConstraint,
    ClassStatus,
    ClassType,
    DateRange,
    ScheduledClass,
    SchedulingConstraints,
    TeacherAvailability,
    TimeSlot,
)
from ..notifications import BookingConfirmation, NotificationHub
from ..utils import clamp, intervals_overlap, make_id
from .models import (
    AlternativeBookingOptions,
    BookingPolicy,
    FlexibleOption,
    FlexibleOptionType,
    MatchingConfig,
    MatchingCriteria,
    MatchingMetrics,
    OneOnOneBookingRecommendation,
    OneOnOneBookingRequest,
    OneOnOneBookingResult,
    TeacherMatchingScore,
    TeacherProfile,
    TeacherScoreBreakdown,
    TeacherSelectionPreferences,
    WaitlistOption,
)

logger = logging.getLogger(__name__)


class _TeacherSlots:
    """Feasible and fully booked individual slots of one teacher."""

    def __init__(self, availability: TeacherAvailability):
        self.availability = availability
        self.feasible: list[tuple[ScheduledClass, ScoreBreakdown]] = []
        self.booked: list[TimeSlot] = []


class OneOnOneMatcher:
    """
    Matches a single student to the best teacher and slot.

    Attributes:
        config: Matching thresholds and weights
        constraints: Hard constraints applied to every proposed session
    """

    def __init__(
        self,
        teacher_directory: TeacherDirectory,
        availability_store: AvailabilityStore,
        booking_store: BookingStore,
        progress_store: ProgressStore,
        content_catalog: ContentCatalog,
        config: MatchingConfig | None = None,
        constraints: SchedulingConstraints | None = None,
        scoring: ScoringEngine | None = None,
        notifier: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.teacher_directory = teacher_directory
        self.availability_store = availability_store
        self.booking_store = booking_store
        self.progress_store = progress_store
        self.content_catalog = content_catalog
        self.config = config or MatchingConfig()
        self.constraints = constraints or SchedulingConstraints()
        self.evaluator = ConstraintEvaluator(self.constraints)
        self.scoring = scoring or ScoringEngine()
        self.notifications = NotificationHub(notifier)
        self.clock = clock

    def book(self, request: OneOnOneBookingRequest) -> OneOnOneBookingResult:
        """
        Match and, when allowed, book a 1-on-1 session.

        Args:
            request: Booking request

        Returns:
            OneOnOneBookingResult with the booking, or ranked recommendations
            and alternative options for manual confirmation
        """
        started = time.monotonic()
        logger.info(
            f"Matching 1-on-1 request '{request.id}' for student '{request.student_id}' "
            f"({request.duration} min)"
        )
        try:
            return self._book(request, started)
        except SchedulingError as error:
            logger.error(f"1-on-1 request '{request.id}' failed: [{error.category.value}] {error.message}")
            return OneOnOneBookingResult(
                request_id=request.id,
                success=False,
                metrics=self._metrics(started, 0, 0),
                error=error,
            )

    def _book(self, request: OneOnOneBookingRequest, started: float) -> OneOnOneBookingResult:
        self._validate(request)
        now = self.clock()
        window = self.constraints.booking_window(now)
        query_range = window.widened(1)

        progress = self.progress_store.get_student_progress(request.student_id, request.course_id)
        unlearned = self.progress_store.get_unlearned_content(request.student_id, request.course_id)
        existing = [c for c in self.availability_store.get_existing_bookings(query_range) if c.is_active]
        blocks = self.availability_store.get_student_unavailability(request.student_id, query_range)
        profiles = [
            p
            for p in self.teacher_directory.list_teacher_profiles(request.course_id)
            if p.available_for_one_on_one
        ]

        student = StudentScoringData(
            progress=progress,
            next_content=tuple(next_teachable(unlearned, progress.completed_content)),
            history=tuple(c for c in existing if request.student_id in c.student_ids),
        )
        availability = {
            p.teacher_id: self.availability_store.get_teacher_availability(p.teacher_id, query_range)
            for p in profiles
        }
        scoring_context = ScoringContext(
            students={request.student_id: student},
            teacher_availability=availability,
            existing_class_ids=frozenset(c.id for c in existing),
        )
        evaluation = EvaluationContext(now=now, classes=tuple(existing))

        slots = {
            p.teacher_id: self._teacher_slots(
                request, student, availability[p.teacher_id], window, blocks, evaluation, scoring_context
            )
            for p in profiles
        }
        scores = sorted(
            (self.score_teacher(p, slots[p.teacher_id], request.criteria) for p in profiles),
            key=lambda s: (-round(s.overall_score, 9), s.teacher_id),
        )
        considered = sum(len(s.available_slots) for s in scores)
        profiles_by_id = {p.teacher_id: p for p in profiles}

        recommendations = []
        for score in scores:
            if len(recommendations) >= self.config.max_recommendations:
                break
            recommendation = self._recommend(
                request, profiles_by_id[score.teacher_id], score, slots[score.teacher_id]
            )
            if recommendation is not None:
                recommendations.append(recommendation)

        if not recommendations:
            logger.info(f"No teacher can take 1-on-1 request '{request.id}'")
            return OneOnOneBookingResult(
                request_id=request.id,
                success=False,
                alternatives=self._alternatives(request, scores, slots, []),
                metrics=self._metrics(started, len(scores), considered),
                error=ConstraintError(
                    "No suitable teachers found for the requested criteria",
                    code="NO_AVAILABLE_TEACHERS",
                    details={"teachers_evaluated": len(scores)},
                ),
            )

        top = recommendations[0]
        if self._may_auto_confirm(top, request.criteria):
            booked = replace(top.proposed_class, status=ClassStatus.CONFIRMED)
            report = self.booking_store.commit([booked])
            if report.all_committed:
                booking = report.committed[0]
                self._confirm(request, booking)
                logger.info(
                    f"1-on-1 request '{request.id}' booked with '{booking.teacher_id}' "
                    f"at {booking.start_time:%Y-%m-%d %H:%M}"
                )
                return OneOnOneBookingResult(
                    request_id=request.id,
                    success=True,
                    booking=booking,
                    recommendations=tuple(recommendations),
                    metrics=self._metrics(started, len(scores), considered),
                )
            conflicts = tuple(conflict_from_rejection(r, now) for r in report.rejections)
            logger.warning(
                f"Booking of '{booked.id}' rejected: {report.rejections[0].message}"
            )
            return OneOnOneBookingResult(
                request_id=request.id,
                success=False,
                recommendations=tuple(recommendations[1:]) or tuple(recommendations),
                alternatives=self._alternatives(request, scores, slots, recommendations),
                conflicts=conflicts,
                metrics=self._metrics(started, len(scores), considered),
            )

        logger.info(
            f"1-on-1 request '{request.id}': {len(recommendations)} recommendations "
            "returned for manual confirmation"
        )
        return OneOnOneBookingResult(
            request_id=request.id,
            success=False,
            recommendations=tuple(recommendations),
            alternatives=self._alternatives(request, scores, slots, recommendations),
            metrics=self._metrics(started, len(scores), considered),
        )

    def _validate(self, request: OneOnOneBookingRequest) -> None:
        if request.duration not in ONE_ON_ONE_DURATIONS:
            raise ValidationError(
                f"Duration must be one of {ONE_ON_ONE_DURATIONS} minutes, got {request.duration}",
                code="INVALID_DURATION",
            )
        if not request.criteria.preferred_time_slots:
            raise ValidationError(
                "At least one preferred time slot is required", code="NO_PREFERRED_SLOTS"
            )
        # Raises UnknownEntityError for an unknown course
        self.content_catalog.get_course_content(request.course_id)

    # Slots

    def _teacher_slots(
        self,
        request: OneOnOneBookingRequest,
        student: StudentScoringData,
        availability: TeacherAvailability,
        window: DateRange,
        blocks: list[TimeSlot],
        evaluation: EvaluationContext,
        scoring_context: ScoringContext,
    ) -> _TeacherSlots:
        result = _TeacherSlots(availability)
        teacher_id = availability.teacher_id
        content = tuple(fit_to_session(student.next_content, request.duration))
        for window_slot in availability.candidate_slots(window):
            for slot in segment_slot(window_slot, teacher_id, request.duration):
                if slot.duration != request.duration:
                    continue
                if any(
                    intervals_overlap(b.start_time, b.end_time, slot.start_time, slot.end_time)
                    for b in blocks
                ):
                    continue
                candidate = self._session(request, teacher_id, slot, content)
                outcome = self.evaluator.evaluate(candidate, evaluation)
                if outcome.ok:
                    result.feasible.append((candidate, self.scoring.score(candidate, scoring_context)))
                elif ViolationKind.TEACHER_LOAD in outcome.kinds:
                    result.booked.append(slot)
        result.feasible.sort(key=lambda pair: ranking_key(*pair))
        return result

    def _session(
        self,
        request: OneOnOneBookingRequest,
        teacher_id: str,
        slot: TimeSlot,
        content: tuple,
    ) -> ScheduledClass:
        return ScheduledClass(
            id=make_id("class", request.course_id, teacher_id, slot.start_time, "1on1"),
            course_id=request.course_id,
            teacher_id=teacher_id,
            student_ids=(request.student_id,),
            time_slot=replace(slot, capacity=ClassCapacityConstraint(max_students=1, current_enrollment=1)),
            content=content,
            class_type=ClassType.INDIVIDUAL,
            request_id=request.id,
        )

    @staticmethod
    def _matches(slot: TimeSlot, preferred: TimeSlot) -> bool:
        return slot.overlaps(preferred)

    @staticmethod
    def _near(slot: TimeSlot, preferred: TimeSlot, criteria: MatchingCriteria) -> bool:
        """Within the search radius: a nearby date at a nearby time of day."""
        days = abs((slot.start_time.date() - preferred.start_time.date()).days)
        if days > criteria.date_variation_days:
            return False
        slot_minutes = slot.start_time.hour * 60 + slot.start_time.minute
        preferred_minutes = preferred.start_time.hour * 60 + preferred.start_time.minute
        return abs(slot_minutes - preferred_minutes) <= criteria.time_variation_minutes

    # Teacher scoring

    def score_teacher(
        self, profile: TeacherProfile, slots: _TeacherSlots, criteria: MatchingCriteria
    ) -> TeacherMatchingScore:
        preferences = criteria.teacher_preferences
        breakdown = TeacherScoreBreakdown(
            availability=self._availability_score(slots, criteria),
            experience=self._experience_score(profile, preferences),
            specialization=self._specialization_score(profile, criteria),
            preference=self._preference_score(profile, preferences),
            performance=clamp(profile.average_rating / 5),
            language=self._language_score(profile, preferences),
        )
        weights = self.config.weights
        values = breakdown.as_dict()
        overall = sum(values[k] * weights.get(k, 0.0) for k in values) / sum(weights.values())
        return TeacherMatchingScore(
            teacher_id=profile.teacher_id,
            overall_score=overall,
            breakdown=breakdown,
            available_slots=tuple(c.time_slot for c, _ in slots.feasible),
            confidence_level=min(0.9, overall * 0.8 + 0.1),
            matching_rationale=self._rationale(profile, overall),
        )

    def _availability_score(self, slots: _TeacherSlots, criteria: MatchingCriteria) -> float:
        """Share of preferred slots the teacher can take; a nearby slot counts half."""
        if not slots.feasible:
            return 0.0
        feasible = [c.time_slot for c, _ in slots.feasible]
        total = 0.0
        for preferred in criteria.preferred_time_slots:
            if any(self._matches(s, preferred) for s in feasible):
                total += 1.0
            elif any(self._near(s, preferred, criteria) for s in feasible):
                total += 0.5
        return total / len(criteria.preferred_time_slots)

    @staticmethod
    def _experience_score(profile: TeacherProfile, preferences: TeacherSelectionPreferences) -> float:
        if preferences.experience_level is None:
            return 0.8
        low, high = preferences.experience_level.years
        years = profile.experience_years
        if years >= low and (high is None or years <= high):
            return 1.0
        if years < low:
            return max(0.0, 1 - (low - years) * 0.2)
        return max(0.7, 1 - (years - high) * 0.1)

    @staticmethod
    def _specialization_score(profile: TeacherProfile, criteria: MatchingCriteria) -> float:
        goals = [g.lower() for g in criteria.learning_goals.primary_objectives]
        if not goals:
            return 0.8
        specs = [s.lower() for s in profile.specializations]
        matched = sum(1 for goal in goals if any(s in goal or goal in s for s in specs))
        return matched / len(goals)

    @staticmethod
    def _preference_score(profile: TeacherProfile, preferences: TeacherSelectionPreferences) -> float:
        parts = []
        if profile.teacher_id in preferences.preferred_teacher_ids:
            parts.append(1.0)
        if preferences.teaching_styles:
            matched = sum(1 for s in preferences.teaching_styles if s in profile.teaching_styles)
            parts.append(matched / len(preferences.teaching_styles))
        if preferences.personality_traits:
            matched = sum(1 for t in preferences.personality_traits if t in profile.personality_traits)
            parts.append(matched / len(preferences.personality_traits))
        return sum(parts) / len(parts) if parts else NEUTRAL_SCORE

    @staticmethod
    def _language_score(profile: TeacherProfile, preferences: TeacherSelectionPreferences) -> float:
        wanted = [lang.lower() for lang in preferences.language_specializations]
        if not wanted:
            return 0.8
        spoken = [lang.lower() for lang in profile.languages_spoken]
        matched = sum(1 for lang in wanted if any(lang in s for s in spoken))
        return matched / len(wanted)

    @staticmethod
    def _rationale(profile: TeacherProfile, score: float) -> str:
        if score > 0.8:
            return (
                f"Excellent match: {profile.display_name} has {profile.experience_years:g} years "
                "of experience and specializes in your learning areas."
            )
        if score > 0.6:
            return f"Good match: {profile.display_name} meets most of your criteria and has strong reviews."
        return (
            f"Potential match: {profile.display_name} is available but may not perfectly "
            "match all preferences."
        )

    # Recommendations

    def _recommend(
        self,
        request: OneOnOneBookingRequest,
        profile: TeacherProfile,
        score: TeacherMatchingScore,
        slots: _TeacherSlots,
    ) -> OneOnOneBookingRecommendation | None:
        criteria = request.criteria
        if not slots.feasible:
            return None

        def preference_rank(pair: tuple[ScheduledClass, ScoreBreakdown]) -> int:
            slot = pair[0].time_slot
            if any(self._matches(slot, p) for p in criteria.preferred_time_slots):
                return 0
            if any(self._near(slot, p, criteria) for p in criteria.preferred_time_slots):
                return 1
            return 2

        ordered = sorted(slots.feasible, key=lambda pair: (preference_rank(pair), ranking_key(*pair)))
        best, _ = ordered[0]
        matches = preference_rank(ordered[0]) == 0
        if not matches and not criteria.flexibility.allow_alternative_slots:
            return None

        breakdown = score.breakdown
        probability = min(0.95, score.overall_score * 0.9 + 0.05)
        return OneOnOneBookingRecommendation(
            id=make_id("rec", request.id, profile.teacher_id),
            teacher_match=score,
            recommended_slot=best.time_slot,
            proposed_class=replace(
                best,
                confidence_score=clamp(score.overall_score),
                rationale=score.matching_rationale,
            ),
            alternative_slots=tuple(c.time_slot for c, _ in ordered[1 : 1 + self.config.max_alternative_slots]),
            confidence=score.confidence_level,
            booking_success_probability=probability,
            benefits=tuple(
                text
                for value, limit, text in (
                    (breakdown.experience, 0.8, "Highly experienced teacher"),
                    (breakdown.performance, 0.8, "Excellent student ratings"),
                    (breakdown.availability, 0.7, "Good availability match"),
                    (breakdown.specialization, 0.7, "Specializes in your learning goals"),
                )
                if value > limit
            ),
            drawbacks=tuple(
                text
                for value, text in (
                    (breakdown.availability, "Limited availability matching your preferences"),
                    (breakdown.experience, "Less experienced teacher"),
                    (breakdown.specialization, "May not specialize in your specific learning goals"),
                )
                if value < 0.5
            ),
            reason=score.matching_rationale,
            policy=BookingPolicy(
                latest_booking_time=best.start_time - timedelta(hours=self.config.latest_booking_hours)
            ),
            matches_preferred_slot=matches,
        )

    def _may_auto_confirm(
        self, recommendation: OneOnOneBookingRecommendation, criteria: MatchingCriteria
    ) -> bool:
        flexibility = criteria.flexibility
        if not flexibility.auto_confirm:
            return False
        if recommendation.booking_success_probability <= self.config.auto_confirm_threshold:
            return False
        if not recommendation.matches_preferred_slot and not flexibility.allow_alternative_slots:
            return False
        preferred = criteria.teacher_preferences.preferred_teacher_ids
        if preferred and recommendation.teacher_id not in preferred:
            return flexibility.allow_alternative_teachers
        return True

    def _alternatives(
        self,
        request: OneOnOneBookingRequest,
        scores: list[TeacherMatchingScore],
        slots: dict[str, _TeacherSlots],
        recommendations: list[OneOnOneBookingRecommendation],
    ) -> AlternativeBookingOptions:
        flexibility = request.criteria.flexibility
        preferred = request.criteria.preferred_time_slots

        alternative_teachers = ()
        if flexibility.allow_alternative_teachers:
            alternative_teachers = tuple(scores[1:4])

        alternative_slots: tuple[TimeSlot, ...] = ()
        if flexibility.allow_alternative_slots:
            seen: dict[str, TimeSlot] = {}
            for recommendation in recommendations:
                for slot in recommendation.alternative_slots:
                    seen.setdefault(slot.id, slot)
            alternative_slots = tuple(sorted(seen.values(), key=lambda s: (s.start_time, s.id)))[:7]

        durations = ()
        if flexibility.allow_alternative_duration:
            durations = tuple(d for d in ONE_ON_ONE_DURATIONS if d != request.duration)

        waitlist = tuple(
            WaitlistOption(
                teacher_id=teacher_id,
                time_slot=slot,
                reason="Teacher already booked at the preferred time",
            )
            for teacher_id in sorted(slots)
            for slot in slots[teacher_id].booked
            if any(slot.overlaps(p) for p in preferred)
        )

        flexible = []
        if flexibility.allow_alternative_slots:
            flexible.append(
                FlexibleOption("Consider sessions at different times of day", FlexibleOptionType.TIME, 0.8)
            )
        if flexibility.allow_alternative_teachers:
            flexible.append(
                FlexibleOption(
                    "Try different teachers with similar expertise", FlexibleOptionType.TEACHER, 0.7
                )
            )
        if flexibility.allow_alternative_duration:
            flexible.append(
                FlexibleOption(
                    f"Book a {durations[0]}-minute session instead", FlexibleOptionType.DURATION, 0.6
                )
            )
        return AlternativeBookingOptions(
            alternative_teachers=alternative_teachers,
            alternative_time_slots=alternative_slots,
            alternative_durations=durations,
            waitlist_options=waitlist,
            flexible_options=tuple(flexible),
        )

    def _confirm(self, request: OneOnOneBookingRequest, booking: ScheduledClass) -> None:
        self.notifications.send(
            BookingConfirmation(
                title="1-on-1 session booked",
                message=(
                    f"Session with '{booking.teacher_id}' on "
                    f"{booking.start_time:%Y-%m-%d %H:%M} is confirmed"
                ),
                created_at=self.clock(),
                recipients=(request.student_id, booking.teacher_id),
                class_id=booking.id,
                student_id=request.student_id,
                teacher_id=booking.teacher_id,
            )
        )

    @staticmethod
    def _metrics(started: float, teachers: int, slots: int) -> MatchingMetrics:
        return MatchingMetrics(
            processing_time=time.monotonic() - started,
            teachers_evaluated=teachers,
            time_slots_considered=slots,
            algorithm_version=ALGORITHM_VERSION,
        )

    def close(self) -> None:
        self.notifications.close()
