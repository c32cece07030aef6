"""
OR-Tools CP-SAT allocation strategy.

Places each division's blocks jointly instead of one at a time, against the
same shared occupancy index and the same hard rules as the greedy allocator.
Divisions are still processed in the stable division order, so cross-division
placement stays reproducible; the solver runs single-worker with a fixed seed.
"""

from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from ortools.sat.python import cp_model
import logging

from models.schemas import ALL_BATCH, Room
from service.constraint_model import RequiredSession
from service.slot_allocator import AllocationResult, SlotAllocator

logger = logging.getLogger(__name__)

Choice = Tuple[str, List[int], Room]  # (day, run of slot numbers, room)


class CpSatAllocator(SlotAllocator):
    """
    Constraint-based allocator using the OR-Tools CP-SAT solver.

    Every block gets at most one position; the objective maximises placed
    hours, spreading a subject over distinct days and preferring earlier days,
    slots and rooms. Blocks the solver leaves out become unplaced sessions
    exactly as in the greedy allocator.
    """

    strategy = "cp_sat"

    def _allocate_division(self, division, sessions: List[RequiredSession], result: AllocationResult) -> None:
        units = [(session, length) for session in sessions for length in session.blocks()]
        if not units:
            result.entries.setdefault(division.key, [])
            return

        choices = self._solve_division(division, units)
        if choices is None:
            logger.warning(f"CP-SAT found no solution for {division.year} {division.name} within "
                           f"{self.settings.solver_timeout_seconds}s, falling back to greedy placement")
            super()._allocate_division(division, sessions, result)
            return

        entries = result.entries.setdefault(division.key, [])
        missing: Dict[int, int] = defaultdict(int)
        for (session, length), choice in zip(units, choices):
            if choice is None:
                missing[id(session)] += length
                continue
            day, run, room = choice
            entries.append(self._commit(session, day, run, room))

        for session in sessions:
            if missing.get(id(session)):
                self._record_unplaced(result, session, missing[id(session)],
                                      "no position left for this block in the solved model")

    def _solve_division(self, division, units: List[Tuple[RequiredSession, int]]) -> Optional[List[Optional[Choice]]]:
        """Build and solve the CP-SAT model; None when the solver gives up."""
        model = cp_model.CpModel()
        solver = cp_model.CpSolver()

        # Solver parameters for deterministic behavior
        solver.parameters.random_seed = self.settings.solver_random_seed
        solver.parameters.num_workers = self.settings.solver_num_workers
        solver.parameters.max_time_in_seconds = self.settings.solver_timeout_seconds

        variables = self._create_variables(model, division, units)
        self._add_hard_constraints(model, units, variables)
        self._add_objective(model, units, variables)

        status = solver.Solve(model)
        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            return None

        return self._extract_solution(solver, variables)

    def _create_variables(self, model: cp_model.CpModel, division, units) -> List[List[Tuple]]:
        """
        One boolean per (unit, day, start slot, room) that is feasible given
        restrictions, availability and what earlier divisions already hold.
        """
        days = self.model.days
        periods = self.model.periods
        rooms_per_unit = [self.model.rooms_for(s.subject, division, s.batch) for s, _ in units]
        widest = max((len(r) for r in rooms_per_unit), default=1) or 1

        variables = []
        for u, (session, length) in enumerate(units):
            candidates = []
            for d_idx, day in enumerate(days):
                for s_idx, start in enumerate(periods):
                    run = self.model.contiguous_run(start.slot_number, length)
                    if run is None or not self._position_free(session, day, run):
                        continue
                    for r_idx, room in enumerate(rooms_per_unit[u]):
                        if not all(self.occupancy.room_free(room.name, day, slot) for slot in run):
                            continue
                        var = model.NewBoolVar(f"unit_{u}_day_{day}_slot_{run[0]}_room_{r_idx}")
                        rank = (d_idx * len(periods) + s_idx) * widest + r_idx
                        candidates.append((var, day, run, room, rank))
            variables.append(candidates)
        return variables

    def _add_hard_constraints(self, model: cp_model.CpModel, units, variables) -> None:
        groups: Dict[Tuple[str, int], Dict[str, list]] = defaultdict(lambda: defaultdict(list))
        teachers: Dict[Tuple[str, str, int], list] = defaultdict(list)
        rooms: Dict[Tuple[str, str, int], list] = defaultdict(list)
        load: Dict[str, list] = defaultdict(list)

        for (session, length), candidates in zip(units, variables):
            # 1. Each block placed at most once
            if candidates:
                model.Add(sum(c[0] for c in candidates) <= 1)
            for var, day, run, room, _ in candidates:
                for slot in run:
                    groups[(day, slot)][session.batch].append(var)
                    teachers[(session.teacher_id, day, slot)].append(var)
                    rooms[(room.name, day, slot)].append(var)
                load[session.teacher_id].append(var * length)

        # 2. No division/batch double-booking; sibling batches may run in parallel
        for batches in groups.values():
            whole = batches.get(ALL_BATCH, [])
            split = [vs for batch, vs in batches.items() if batch != ALL_BATCH]
            if not split:
                model.Add(sum(whole) <= 1)
            for vs in split:
                model.Add(sum(whole) + sum(vs) <= 1)

        # 3. No teacher double-booking
        for vs in teachers.values():
            model.Add(sum(vs) <= 1)

        # 4. No room double-booking
        for vs in rooms.values():
            model.Add(sum(vs) <= 1)

        # 6. Weekly load cap, net of what earlier divisions already assigned
        for teacher, terms in load.items():
            remaining = self.model.max_load(teacher) - self.occupancy.load(teacher)
            model.Add(sum(terms) <= max(0, remaining))

    def _add_objective(self, model: cp_model.CpModel, units, variables) -> None:
        """
        Maximise placed hours; then avoid repeating a lecture on one day;
        then prefer earlier positions.
        """
        ceiling = 1 + max((c[4] for candidates in variables for c in candidates), default=0)
        positions = len(units) * ceiling
        # one repeat outweighs every position penalty; one placed hour outweighs both
        spread_weight = positions + 1
        hour_weight = len(units) * spread_weight + positions + 1
        terms = []
        per_day: Dict[Tuple[int, str], list] = defaultdict(list)
        for (session, length), candidates in zip(units, variables):
            for var, day, _, _, rank in candidates:
                terms.append(var * (length * hour_weight - rank))
                if not session.contiguity_required:
                    per_day[(id(session), day)].append(var)
        if not terms:
            return

        repeats = []
        if self.settings.one_lecture_per_day:
            for n, ((_, day), vs) in enumerate(per_day.items()):
                excess = model.NewIntVar(0, len(vs), f"repeat_{n}_{day}")
                model.Add(excess >= sum(vs) - 1)
                repeats.append(excess)
        model.Maximize(sum(terms) - spread_weight * sum(repeats))

    def _extract_solution(self, solver: cp_model.CpSolver, variables) -> List[Optional[Choice]]:
        choices: List[Optional[Choice]] = []
        for candidates in variables:
            chosen = None
            for var, day, run, room, _ in candidates:
                if solver.Value(var) == 1:
                    chosen = (day, run, room)
                    break
            choices.append(chosen)
        return choices
