"""
Greedy, deterministic slot allocator.

Divisions are processed in a stable order (ascending year, then division
name). Within a division, contiguous lab sessions go first, then the largest
weekly requirement, so long blocks are placed before the grid fragments.
Each block takes the first (day, slot) position, in day-then-slot order, that
satisfies:

    1. not blocked by the restriction registry for the division's year
    2. the division/batch scope is free
    3. the teacher is free across all divisions and available
    4. a room of the right type is free across all divisions
    5. contiguous blocks fit in consecutive periods without crossing a recess
    6. the teacher's weekly load stays within its maximum

With `one_lecture_per_day` on, the blocks of a non-contiguous subject first
try days the subject does not meet on yet; only blocks that cannot be spread
fall back to any free position. Blocks without a valid position are recorded as
unplaced sessions; the run never backtracks.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple
import logging

from config.settings import Settings, settings as default_settings
from models.schemas import OverrideRule, Room, TimetableEntry, UnplacedSession
from service.constraint_model import ConstraintModel, RequiredSession
from service.errors import Unplaceable
from service.occupancy import OccupancyIndex
from service.restriction_registry import RestrictionRegistry

logger = logging.getLogger(__name__)


@dataclass
class AllocationResult:
    entries: Dict[Tuple[str, str], List[TimetableEntry]] = field(default_factory=dict)
    unplaced: List[UnplacedSession] = field(default_factory=list)

    @property
    def placed_count(self) -> int:
        return sum(len(entries) for entries in self.entries.values())


def order_sessions(sessions: List[RequiredSession], order: str) -> List[RequiredSession]:
    if order == "config":
        return list(sessions)
    return sorted(sessions, key=lambda s: (not s.contiguity_required, -s.hours_remaining, s.subject.name, s.batch))


def unplaced_record(session: RequiredSession, hours: int, reason: str) -> UnplacedSession:
    return UnplacedSession(
        year=session.year,
        division=session.division,
        batch=session.batch,
        subject=session.subject.name,
        teacher_id=session.teacher_id,
        hours=hours,
        contiguous=session.contiguity_required,
        block_size=session.block_size,
        reason=reason,
    )


class SlotAllocator:
    strategy = "greedy"

    def __init__(self, model: ConstraintModel, registry: RestrictionRegistry,
                 occupancy: OccupancyIndex, settings: Optional[Settings] = None):
        self.model = model
        self.registry = registry
        self.occupancy = occupancy
        self.settings = settings or default_settings

    def allocate(self) -> AllocationResult:
        result = AllocationResult()
        for division in self.model.ordered_divisions(self.settings.division_order):
            sessions = order_sessions(self.model.required_sessions(division), self.settings.session_order)
            self._allocate_division(division, sessions, result)
        logger.info(f"{self.strategy} allocation placed {result.placed_count} entries, "
                    f"{len(result.unplaced)} sessions unplaceable")
        return result

    def _allocate_division(self, division, sessions: List[RequiredSession], result: AllocationResult) -> None:
        entries = result.entries.setdefault(division.key, [])
        for session in sessions:
            blocks = list(session.blocks())
            if self.settings.one_lecture_per_day and not session.contiguity_required:
                blocks = self._place_spread(session, blocks, entries)
            missing, reason = 0, ""
            for length in blocks:
                try:
                    entries.append(self.place(session, length))
                except Unplaceable as exc:
                    missing += length
                    reason = exc.message
            if missing:
                self._record_unplaced(result, session, missing, reason)

    def _place_spread(self, session: RequiredSession, blocks: List[int],
                      entries: List[TimetableEntry]) -> List[int]:
        """Strict pass: at most one block of the subject per day. Returns the blocks left over."""
        leftover = []
        for length in blocks:
            used = {e.day for e in entries if e.subject == session.subject.name and e.batch == session.batch}
            exclude = frozenset((day, p.slot_number) for day in used for p in self.model.periods)
            try:
                entries.append(self.place(session, length, exclude))
            except Unplaceable:
                leftover.append(length)
        return leftover

    def _record_unplaced(self, result: AllocationResult, session: RequiredSession, missing: int, reason: str) -> None:
        logger.warning(f"Unplaceable: {session.subject.name} for {session.year} {session.division} "
                       f"batch {session.batch}, {missing}h missing ({reason})")
        result.unplaced.append(unplaced_record(session, missing, reason))

    # ----------------------------
    # Single-session placement
    # ----------------------------

    def place(self, session: RequiredSession, length: int = 1,
              exclude: FrozenSet[Tuple[str, int]] = frozenset(),
              relax: FrozenSet[OverrideRule] = frozenset()) -> TimetableEntry:
        """
        Place one block of `length` slots and record it in the occupancy index.

        `exclude` removes (day, start slot) candidates; `relax` may lift the
        workload cap. Raises Unplaceable when nothing fits.
        """
        teacher = session.teacher_id
        if OverrideRule.WORKLOAD not in relax:
            cap = self.model.max_load(teacher)
            if self.occupancy.load(teacher) + length > cap:
                raise Unplaceable(f"teacher {self.model.teacher_name(teacher)} would exceed "
                                  f"the maximum load of {cap}h/week")

        division = self.model.division(session.year, session.division)
        rooms = self.model.rooms_for(session.subject, division, session.batch)
        if not rooms:
            raise Unplaceable(f"no {session.subject.required_room_type} room fits {session.subject.name}")

        for day in self.model.days:
            for start in self.model.periods:
                if (day, start.slot_number) in exclude:
                    continue
                run = self.model.contiguous_run(start.slot_number, length)
                if run is None or not self._position_free(session, day, run):
                    continue
                room = self._free_room(rooms, day, run)
                if room is None:
                    continue
                return self._commit(session, day, run, room)

        if length > 1:
            raise Unplaceable(f"no free run of {length} contiguous slots")
        raise Unplaceable("no free slot satisfies restrictions, teacher and room availability")

    def reassign_room(self, year: str, division: str, entry: TimetableEntry) -> Optional[TimetableEntry]:
        """Move an entry to another free room of the same type at the same position."""
        slots = self.model.covered_slots(entry)
        subject = self.model.subjects.get(entry.subject)
        if subject is None:
            return None
        self.occupancy.release(year, division, entry, slots)
        candidates = [r for r in self.model.rooms_for(subject, self.model.division(year, division), entry.batch)
                      if r.name != entry.room]
        room = self._free_room(candidates, entry.day, slots)
        if room is None:
            self.occupancy.occupy(year, division, entry, slots)
            return None
        moved = entry.model_copy(update={"room": room.name, "room_type": room.room_type})
        self.occupancy.occupy(year, division, moved, slots)
        return moved

    def _commit(self, session: RequiredSession, day: str, run: List[int], room: Room) -> TimetableEntry:
        entry = TimetableEntry(
            day=day,
            time_slot=run[0],
            subject=session.subject.name,
            teacher=session.teacher_id,
            room=room.name,
            room_type=room.room_type,
            batch=session.batch,
            is_lab_session=session.is_lab,
            duration=len(run),
        )
        self.occupancy.occupy(session.year, session.division, entry, run)
        return entry

    def _position_free(self, session: RequiredSession, day: str, run: List[int]) -> bool:
        for slot in run:
            if self.registry.is_blocked(slot, day, session.year):
                return False
            if not self.occupancy.group_free(session.year, session.division, session.batch, day, slot):
                return False
            if not self.occupancy.teacher_free(session.teacher_id, day, slot):
                return False
            if not self.model.teacher_available(session.teacher_id, day, slot):
                return False
        return True

    def _free_room(self, rooms: List[Room], day: str, run: List[int]) -> Optional[Room]:
        for room in rooms:
            if all(self.occupancy.room_free(room.name, day, slot) for slot in run):
                return room
        return None
