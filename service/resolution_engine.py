"""
Resolution engine: applies operator-chosen actions to detected conflicts.

Each conflict moves from `detected` to one of `ignored`, `auto_resolved`,
`manual_review` or `relax_applied`. Actions are processed independently in
ascending conflict index: one failed action is rolled back on its own and
never undoes the others.
"""

from typing import Callable, Dict, FrozenSet, List, Optional, Sequence
import logging

from config.settings import Settings, settings as default_settings
from models.schemas import (
    ALL_BATCH, Conflict, ConflictStatus, ConflictType, ConstraintOverride,
    EntryRef, OverrideRule, ResolutionAction, ResolutionOutcome, Subject,
    Timetable, TimetableEntry, UnplacedSession,
)
from service.conflict_detector import ConflictDetector
from service.constraint_model import ConstraintModel, RequiredSession
from service.errors import Unplaceable, Unresolvable
from service.occupancy import OccupancyIndex
from service.restriction_registry import RestrictionRegistry
from service.slot_allocator import SlotAllocator

logger = logging.getLogger(__name__)

WORKLOAD_ONLY = frozenset({OverrideRule.WORKLOAD})
CONTIGUITY_ONLY = frozenset({OverrideRule.CONTIGUITY})
BOTH_RULES = frozenset({OverrideRule.WORKLOAD, OverrideRule.CONTIGUITY})


class ResolutionEngine:
    """
    Works on private copies of the active timetables and unplaced sessions;
    callers read `timetables` and `unplaced` back once all actions ran.
    """

    def __init__(self, model: ConstraintModel, registry: RestrictionRegistry,
                 timetables: Sequence[Timetable], unplaced: Sequence[UnplacedSession] = (),
                 settings: Optional[Settings] = None):
        self.model = model
        self.registry = registry
        self.settings = settings or default_settings
        self.timetables: List[Timetable] = [t.model_copy(deep=True) for t in timetables]
        self.unplaced: List[UnplacedSession] = [u.model_copy() for u in unplaced]
        self.detector = ConflictDetector(model, registry)

    def detect(self) -> List[Conflict]:
        return self.detector.detect(self.timetables, self.unplaced)

    def apply(self, conflicts: List[Conflict],
              actions: Dict[int, ResolutionAction]) -> List[ResolutionOutcome]:
        """Apply each action to the conflict at its index; statuses are updated in place."""
        outcomes = []
        for index in sorted(actions):
            outcome = self._apply_one(conflicts, index, ResolutionAction(actions[index]))
            level = logging.INFO if outcome.success else logging.WARNING
            logger.log(level, f"Resolution #{index} {outcome.action.value}: {outcome.message}")
            outcomes.append(outcome)
        return outcomes

    def refreshed(self, previous: Sequence[Conflict]) -> List[Conflict]:
        """Re-detect; conflicts held for manual review stay held while unchanged."""
        held = {c.fingerprint() for c in previous if c.status == ConflictStatus.MANUAL_REVIEW}
        conflicts = self.detect()
        for conflict in conflicts:
            if conflict.fingerprint() in held:
                conflict.status = ConflictStatus.MANUAL_REVIEW
        return conflicts

    # ----------------------------
    # Dispatch
    # ----------------------------

    def _apply_one(self, conflicts: List[Conflict], index: int, action: ResolutionAction) -> ResolutionOutcome:
        if not 0 <= index < len(conflicts):
            return ResolutionOutcome(index=index, action=action, success=False,
                                     message=f"No conflict at index {index}")
        conflict = conflicts[index]
        if conflict.status != ConflictStatus.DETECTED:
            return ResolutionOutcome(index=index, action=action, success=False, status=conflict.status,
                                     message=f"Conflict already {conflict.status.value}")

        if action == ResolutionAction.IGNORE:
            conflict.status = ConflictStatus.IGNORED
            return ResolutionOutcome(index=index, action=action, success=True, status=conflict.status,
                                     message="Marked as ignored; entries unchanged")

        if action == ResolutionAction.MANUAL_REVIEW:
            conflict.status = ConflictStatus.MANUAL_REVIEW
            return ResolutionOutcome(index=index, action=action, success=True, status=conflict.status,
                                     message="Flagged for manual review")

        if action == ResolutionAction.AUTO_RESOLVE:
            handler, resolved = self._auto_resolve, ConflictStatus.AUTO_RESOLVED
        else:
            handler, resolved = self._relax, ConflictStatus.RELAX_APPLIED

        try:
            message = self._transactional(conflict, handler)
        except Unresolvable as exc:
            return ResolutionOutcome(index=index, action=action, success=False, status=conflict.status,
                                     message=exc.message, fallback=ResolutionAction.MANUAL_REVIEW)
        conflict.status = resolved
        return ResolutionOutcome(index=index, action=action, success=True, status=resolved, message=message)

    def _transactional(self, conflict: Conflict, handler: Callable[[Conflict], str]) -> str:
        """Run a mutating handler, then re-validate; roll back on any failure."""
        saved_timetables = [t.model_copy(deep=True) for t in self.timetables]
        saved_unplaced = list(self.unplaced)
        try:
            message = handler(conflict)
            remaining = {c.fingerprint() for c in self.detect()}
            if conflict.fingerprint() in remaining:
                raise Unresolvable(f"{conflict.type.value} is still present after the change")
        except Unresolvable:
            self.timetables = saved_timetables
            self.unplaced = saved_unplaced
            raise
        return message

    # ----------------------------
    # auto_resolve
    # ----------------------------

    def _auto_resolve(self, conflict: Conflict) -> str:
        allocator = self._allocator()
        if conflict.session is not None:
            return self._place_unplaced(conflict.session, allocator, frozenset())

        if conflict.type == ConflictType.WORKLOAD_EXCEEDED:
            raise Unresolvable("Moving sessions does not change a teacher's weekly load; "
                               "reassign sessions or relax the workload limit")

        if conflict.type in (ConflictType.TEACHER_CONFLICT, ConflictType.ROOM_CONFLICT):
            movers = conflict.entries[1:]
        else:
            movers = conflict.entries

        moved = []
        for ref in movers:
            entry = self._entry(ref)
            if conflict.type == ConflictType.LAB_SCHEDULING_CONFLICT:
                self._check_lab_movable(ref, entry)
            if conflict.type == ConflictType.ROOM_CONFLICT:
                rehoused = allocator.reassign_room(ref.year, ref.division, entry)
                if rehoused is not None:
                    self._timetable(ref).entries[ref.index] = rehoused
                    moved.append(f"{entry.subject} -> room {rehoused.room}")
                    continue
            relocated = self._relocate(ref, entry, allocator)
            moved.append(f"{entry.subject} -> {relocated.day} Slot {relocated.time_slot} ({relocated.room})")
        return "Moved " + ", ".join(moved)

    def _check_lab_movable(self, ref: EntryRef, entry: TimetableEntry) -> None:
        division = self.model.division(ref.year, ref.division)
        if entry.batch == ALL_BATCH and division is not None and division.batches:
            raise Unresolvable(f"Lab {entry.subject} must be split per batch; this needs a manual edit")
        subject = self.model.subjects.get(entry.subject)
        if subject is not None and entry.duration < self.model.block_size(subject):
            raise Unresolvable(f"Lab {entry.subject} is fragmented into blocks shorter than "
                               f"{self.model.block_size(subject)} slots; merge them manually")

    def _relocate(self, ref: EntryRef, entry: TimetableEntry, allocator: SlotAllocator) -> TimetableEntry:
        """Place the entry elsewhere, never at its current (day, slot)."""
        allocator.occupancy.release(ref.year, ref.division, entry, self.model.covered_slots(entry))
        session = self._session_for(ref, entry)
        try:
            # a move keeps the teacher's weekly load unchanged
            placed = allocator.place(session, entry.duration,
                                     exclude=frozenset({(entry.day, entry.time_slot)}),
                                     relax=WORKLOAD_ONLY)
        except Unplaceable as exc:
            raise Unresolvable(f"No alternate position for {entry.subject} "
                               f"({ref.year} {ref.division}): {exc.message}")
        placed = placed.model_copy(update={
            "is_lab_session": entry.is_lab_session,
            "overrides": [o.model_copy() for o in entry.overrides],
        })
        self._timetable(ref).entries[ref.index] = placed
        return placed

    def _session_for(self, ref: EntryRef, entry: TimetableEntry) -> RequiredSession:
        subject = self.model.subjects.get(entry.subject) or Subject(
            name=entry.subject,
            kind="PR" if entry.room_type == "LAB" else "TH",
            hours_per_week=entry.duration,
        )
        return RequiredSession(
            year=ref.year,
            division=ref.division,
            subject=subject,
            batch=entry.batch,
            teacher_id=entry.teacher,
            hours_remaining=entry.duration,
            contiguity_required=entry.duration > 1,
            block_size=entry.duration,
        )

    def _place_unplaced(self, record: UnplacedSession, allocator: SlotAllocator,
                        relax: FrozenSet[OverrideRule]) -> str:
        subject = self.model.subjects.get(record.subject)
        if subject is None:
            raise Unresolvable(f"Subject {record.subject} is no longer configured")
        session = RequiredSession(
            year=record.year,
            division=record.division,
            subject=subject,
            batch=record.batch,
            teacher_id=record.teacher_id,
            hours_remaining=record.hours,
            contiguity_required=record.contiguous,
            block_size=record.block_size,
        )
        split = OverrideRule.CONTIGUITY in relax and record.contiguous
        lengths = [1] * record.hours if split else session.blocks()

        placed = []
        for length in lengths:
            try:
                placed.append(allocator.place(session, length, relax=relax))
            except Unplaceable as exc:
                raise Unresolvable(f"No position for {record.subject} ({record.year} {record.division}): "
                                   f"{exc.message}")

        conflict_type = (ConflictType.LAB_SCHEDULING_CONFLICT if session.is_lab
                         else ConflictType.SCHEDULING_CONFLICT)
        excess = allocator.occupancy.load(record.teacher_id) - self.model.max_load(record.teacher_id)
        for entry in placed:
            if split:
                entry.overrides.append(ConstraintOverride(rule=OverrideRule.CONTIGUITY,
                                                          conflict_type=conflict_type))
            if OverrideRule.WORKLOAD in relax:
                # zero tolerance still marks the entry as placed under a relaxed rule
                entry.overrides.append(ConstraintOverride(rule=OverrideRule.WORKLOAD, conflict_type=conflict_type,
                                                          tolerance=max(0, excess)))

        self._timetable_for(record.year, record.division).entries.extend(placed)
        self.unplaced = [u for u in self.unplaced if u.key() != record.key()]
        return f"Placed {len(placed)} entr{'y' if len(placed) == 1 else 'ies'} for {record.subject}"

    # ----------------------------
    # relax_constraints
    # ----------------------------

    def _relax(self, conflict: Conflict) -> str:
        if conflict.session is not None:
            options = [WORKLOAD_ONLY, CONTIGUITY_ONLY, BOTH_RULES] if conflict.session.contiguous else [WORKLOAD_ONLY]
            last_error = None
            for relax in options:
                try:
                    return self._place_unplaced(conflict.session, self._allocator(), relax)
                except Unresolvable as exc:
                    last_error = exc
            raise last_error

        if conflict.type == ConflictType.WORKLOAD_EXCEEDED:
            teacher = self._entry(conflict.entries[0]).teacher
            load = sum(e.duration for t in self.timetables for e in t.entries if e.teacher == teacher)
            excess = load - self.model.max_load(teacher)
            for ref in conflict.entries:
                self._entry(ref).overrides.append(ConstraintOverride(
                    rule=OverrideRule.WORKLOAD, conflict_type=conflict.type, tolerance=excess))
            return f"Workload limit widened by {excess}h for {self.model.teacher_name(teacher)}"

        if conflict.type == ConflictType.LAB_SCHEDULING_CONFLICT:
            for ref in conflict.entries:
                self._entry(ref).overrides.append(ConstraintOverride(
                    rule=OverrideRule.CONTIGUITY, conflict_type=conflict.type))
            return "Contiguity rule lifted for the affected lab entries"

        raise Unresolvable(f"{conflict.type.value} cannot be relaxed; only workload and contiguity rules can")

    # ----------------------------
    # Helpers
    # ----------------------------

    def _allocator(self) -> SlotAllocator:
        occupancy = OccupancyIndex.from_timetables(self.timetables, self.model)
        return SlotAllocator(self.model, self.registry, occupancy, self.settings)

    def _timetable(self, ref: EntryRef) -> Timetable:
        for timetable in self.timetables:
            if timetable.scope == ref.scope:
                return timetable
        raise Unresolvable(f"No active timetable for {ref.year} {ref.division} {ref.batch}")

    def _timetable_for(self, year: str, division: str) -> Timetable:
        for timetable in self.timetables:
            if timetable.scope == (year, division, ALL_BATCH):
                return timetable
        timetable = Timetable(year=year, division=division, is_active=True)
        self.timetables.append(timetable)
        return timetable

    def _entry(self, ref: EntryRef) -> TimetableEntry:
        entries = self._timetable(ref).entries
        if not 0 <= ref.index < len(entries):
            raise Unresolvable(f"Entry {ref.index} no longer exists in {ref.year} {ref.division}")
        return entries[ref.index]
