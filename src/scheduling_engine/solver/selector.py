"""CP-SAT selection of one candidate per scheduling unit."""

import logging
from collections import defaultdict
from typing import Mapping

from ortools.sat.python import cp_model

from ..candidates import Candidate, SchedulingUnit
from ..constants import SOLVER_SCORE_SCALE
from ..exceptions import ConstraintError
from ..models import ScheduledClass

logger = logging.getLogger(__name__)


class CandidateSelector:
    """Chooses at most one candidate per unit with CP-SAT.

    Constraints:
    - one candidate per unit, forced candidates pinned
    - a teacher's concurrent new classes stay within the remaining load
    - no student in two overlapping selections
    - joins of the same existing class stay within its free seats
    - optionally, a teacher's new classes keep the minimum break

    The objective schedules as many students as possible, then maximizes the
    integer-scaled score, with the candidate rank as a final tie-break. A
    single search worker with a fixed seed keeps results deterministic.
    """

    def __init__(
        self,
        time_limit: float,
        max_concurrent_per_teacher: int = 1,
        min_break_minutes: int = 0,
    ):
        self.time_limit = time_limit
        self.max_concurrent_per_teacher = max_concurrent_per_teacher
        self.min_break_minutes = min_break_minutes

    def select(
        self,
        units: list[SchedulingUnit],
        candidates: Mapping[str, list[Candidate]],
        existing: list[ScheduledClass] | None = None,
        time_limit: float | None = None,
    ) -> dict[str, Candidate]:
        """
        Select candidates.

        Args:
            units: Units to schedule
            candidates: Ranked candidates per unit ID
            existing: Committed classes (for teacher load and free seats)
            time_limit: Optional tighter limit in seconds

        Returns:
            Mapping of unit ID to the selected candidate (unselected units omitted)

        Raises:
            ConstraintError: If pinned candidates cannot all be selected
        """
        existing = [c for c in (existing or []) if c.is_active]
        model = cp_model.CpModel()
        x: dict[str, cp_model.IntVar] = {}
        by_key: dict[str, Candidate] = {}
        unit_sizes = {u.id: len(u.student_ids) for u in units}

        for unit in units:
            unit_vars = []
            for candidate in candidates.get(unit.id, []):
                var = model.NewBoolVar(candidate.key)
                x[candidate.key] = var
                by_key[candidate.key] = candidate
                unit_vars.append(var)
                if candidate.forced:
                    model.Add(var == 1)
            if unit_vars:
                model.AddAtMostOne(unit_vars)

        if not x:
            return {}

        self._add_teacher_load(model, x, by_key, existing)
        self._add_student_overlap(model, x, by_key)
        self._add_shared_capacity(model, x, by_key)
        if self.min_break_minutes > 0:
            self._add_teacher_spacing(model, x, by_key)

        rank_span = max((c.rank for c in by_key.values()), default=0) + 2
        unit_bonus = (SOLVER_SCORE_SCALE + 1) * rank_span + 1
        model.Maximize(
            sum(
                var
                * (
                    unit_sizes[by_key[key].unit_id] * unit_bonus
                    + round(by_key[key].score * SOLVER_SCORE_SCALE) * rank_span
                    + (rank_span - 1 - by_key[key].rank)
                )
                for key, var in x.items()
            )
        )

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = max(
            0.01, min(self.time_limit, time_limit or self.time_limit)
        )
        solver.parameters.num_workers = 1
        solver.parameters.random_seed = 0
        solver.parameters.log_search_progress = False

        status = solver.Solve(model)
        if status == cp_model.INFEASIBLE:
            raise ConstraintError(
                "Forced placements conflict with each other",
                code="FORCED_PLACEMENTS_CONFLICT",
            )
        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            logger.warning(f"Selector returned status: {solver.StatusName(status)}")
            return {}

        logger.debug(
            f"Selector {solver.StatusName(status)} with {len(x)} candidate variables"
        )
        return {
            by_key[key].unit_id: by_key[key]
            for key, var in sorted(x.items())
            if solver.Value(var)
        }

    def _add_teacher_load(self, model, x, by_key, existing) -> None:
        """At every candidate start time, new classes of a teacher fit the remaining load."""
        by_teacher: dict[str, list[str]] = defaultdict(list)
        for key, candidate in by_key.items():
            if not candidate.joins_existing:
                by_teacher[candidate.scheduled_class.teacher_id].append(key)

        for teacher_id, keys in by_teacher.items():
            for point in sorted({by_key[k].scheduled_class.start_time for k in keys}):
                covering = [
                    x[k]
                    for k in keys
                    if by_key[k].scheduled_class.start_time
                    <= point
                    < by_key[k].scheduled_class.end_time
                ]
                busy = self._busy(existing, teacher_id, point)
                allowed = max(0, self.max_concurrent_per_teacher - busy)
                if len(covering) > allowed:
                    model.Add(sum(covering) <= allowed)

    @staticmethod
    def _busy(existing: list[ScheduledClass], teacher_id: str, point) -> int:
        return sum(
            1
            for c in existing
            if c.teacher_id == teacher_id and c.start_time <= point < c.end_time
        )

    def _add_student_overlap(self, model, x, by_key) -> None:
        by_student: dict[str, list[str]] = defaultdict(list)
        for key, candidate in by_key.items():
            for student_id in candidate.added_student_ids:
                by_student[student_id].append(key)

        for student_id, keys in by_student.items():
            units = {by_key[k].unit_id for k in keys}
            if len(units) < 2:
                continue
            for point in sorted({by_key[k].scheduled_class.start_time for k in keys}):
                covering = [
                    x[k]
                    for k in keys
                    if by_key[k].scheduled_class.start_time
                    <= point
                    < by_key[k].scheduled_class.end_time
                ]
                if len(covering) > 1:
                    model.AddAtMostOne(covering)

    def _add_shared_capacity(self, model, x, by_key) -> None:
        """Several units joining the same existing class share its free seats."""
        by_class: dict[str, list[str]] = defaultdict(list)
        for key, candidate in by_key.items():
            by_class[candidate.scheduled_class.id].append(key)

        for class_id, keys in by_class.items():
            if len(keys) < 2:
                continue
            sample = by_key[keys[0]].scheduled_class
            base = len(sample.student_ids) - len(by_key[keys[0]].added_student_ids)
            free = sample.time_slot.capacity.max_students - base
            model.Add(
                sum(x[k] * len(by_key[k].added_student_ids) for k in keys) <= max(0, free)
            )

    def _add_teacher_spacing(self, model, x, by_key) -> None:
        keys = sorted(k for k, c in by_key.items() if not c.joins_existing)
        for i, first in enumerate(keys):
            a = by_key[first].scheduled_class
            for second in keys[i + 1:]:
                b = by_key[second].scheduled_class
                if a.teacher_id != b.teacher_id or a.id == b.id:
                    continue
                gap = a.time_slot.gap_minutes(b.time_slot)
                if 0 <= gap < self.min_break_minutes:
                    model.AddBoolOr([x[first].Not(), x[second].Not()])
