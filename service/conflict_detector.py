"""
Conflict detection over a set of timetables.

Detection is a pure read: it never mutates entries, and running it twice on
the same input yields the same list in the same order. Timetables are visited
in scope order and entries in position order; conflicts are emitted grouped
by type (scheduling, teacher, room, workload, lab).
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Sequence, Tuple
import logging

from models.schemas import (
    ALL_BATCH, Conflict, ConflictReport, ConflictStatus, ConflictType, EntryRef,
    OverrideRule, Timetable, TimetableEntry, UnplacedSession,
)
from service.constraint_model import ConstraintModel
from service.restriction_registry import RestrictionRegistry

logger = logging.getLogger(__name__)

SEVERITY: Dict[ConflictType, str] = {
    ConflictType.TEACHER_CONFLICT: "high",
    ConflictType.ROOM_CONFLICT: "high",
    ConflictType.LAB_SCHEDULING_CONFLICT: "high",
    ConflictType.SCHEDULING_CONFLICT: "medium",
    ConflictType.WORKLOAD_EXCEEDED: "low",
}

Located = Tuple[EntryRef, TimetableEntry]


def _conflict(kind: ConflictType, description: str, suggestion: str, **fields) -> Conflict:
    return Conflict(type=kind, description=description, suggestion=suggestion,
                    severity=SEVERITY[kind], **fields)


def _label(ref: EntryRef, entry: TimetableEntry) -> str:
    batch = "" if entry.batch == ALL_BATCH else f" {entry.batch}"
    return f"{entry.subject} ({ref.year} {ref.division}{batch})"


class ConflictDetector:
    def __init__(self, model: ConstraintModel, registry: RestrictionRegistry):
        self.model = model
        self.registry = registry

    def detect(self, timetables: Iterable[Timetable],
               unplaced: Sequence[UnplacedSession] = ()) -> List[Conflict]:
        located = self._locate(timetables)
        conflicts: List[Conflict] = []
        conflicts.extend(self._unplaced(unplaced, labs=False))
        conflicts.extend(self._blocked(located))
        conflicts.extend(self._collisions(located, ConflictType.TEACHER_CONFLICT))
        conflicts.extend(self._collisions(located, ConflictType.ROOM_CONFLICT))
        conflicts.extend(self._workload(located))
        conflicts.extend(self._unplaced(unplaced, labs=True))
        conflicts.extend(self._labs(located))
        logger.debug(f"Detected {len(conflicts)} conflicts over {len(located)} entries")
        return conflicts

    @staticmethod
    def _locate(timetables: Iterable[Timetable]) -> List[Located]:
        located = []
        for timetable in sorted(timetables, key=lambda t: t.scope):
            for index, entry in enumerate(timetable.entries):
                ref = EntryRef(year=timetable.year, division=timetable.division,
                               batch=timetable.batch, index=index)
                located.append((ref, entry))
        return located

    # ----------------------------
    # scheduling_conflict / lab_scheduling_conflict from the allocator
    # ----------------------------

    def _unplaced(self, unplaced: Sequence[UnplacedSession], labs: bool) -> List[Conflict]:
        conflicts = []
        for session in unplaced:
            subject = self.model.subjects.get(session.subject)
            is_lab = session.contiguous or (subject is not None and subject.kind == "PR")
            if is_lab != labs:
                continue
            batch = "" if session.batch == ALL_BATCH else f" batch {session.batch}"
            if labs:
                conflicts.append(_conflict(
                    ConflictType.LAB_SCHEDULING_CONFLICT,
                    f"Cannot schedule {session.subject} lab for {session.year} {session.division}{batch}: "
                    f"{session.hours}h unplaced ({session.reason})",
                    "Free a run of contiguous slots, add a lab room, or relax the contiguity rule",
                    session=session,
                ))
            else:
                conflicts.append(_conflict(
                    ConflictType.SCHEDULING_CONFLICT,
                    f"Cannot schedule {session.subject} for {session.year} {session.division}{batch}: "
                    f"{session.hours}h unplaced ({session.reason})",
                    "Relax constraints, reduce weekly hours, or add rooms/time slots",
                    session=session,
                ))
        return conflicts

    def _blocked(self, located: List[Located]) -> List[Conflict]:
        conflicts = []
        for ref, entry in located:
            for slot in self.model.covered_slots(entry):
                booking = self.registry.blocking_booking(slot, entry.day, ref.year)
                if booking is None:
                    continue
                conflicts.append(_conflict(
                    ConflictType.SCHEDULING_CONFLICT,
                    f"{_label(ref, entry)} on {entry.day} Slot {slot} overlaps the "
                    f"{booking.scope} booking '{booking.name}'",
                    f"Move the session; Slot {slot} is reserved for '{booking.name}'",
                    entries=[ref],
                ))
                break
        return conflicts

    # ----------------------------
    # teacher_conflict / room_conflict
    # ----------------------------

    def _collisions(self, located: List[Located], kind: ConflictType) -> List[Conflict]:
        cells: Dict[tuple, List[Located]] = defaultdict(list)
        for ref, entry in located:
            resource = entry.teacher if kind == ConflictType.TEACHER_CONFLICT else entry.room
            for slot in self.model.covered_slots(entry):
                cells[(resource, entry.day, slot)].append((ref, entry))

        conflicts = []
        seen = set()
        for (resource, day, slot), members in cells.items():
            if len(members) < 2:
                continue
            group = tuple(ref for ref, _ in members)
            if group in seen:
                continue
            seen.add(group)
            labels = " and ".join(_label(ref, entry) for ref, entry in members)
            if kind == ConflictType.TEACHER_CONFLICT:
                description = (f"Teacher {self.model.teacher_name(resource)} is double-booked on "
                               f"{day} Slot {slot}: {labels}")
                suggestion = "Move one session to a slot where the teacher is free"
            else:
                description = f"Room {resource} is double-booked on {day} Slot {slot}: {labels}"
                suggestion = "Move one session to another room of the same type or another slot"
            conflicts.append(_conflict(kind, description, suggestion, entries=list(group)))
        return conflicts

    # ----------------------------
    # workload_exceeded
    # ----------------------------

    def teacher_loads(self, located: List[Located]) -> Dict[str, List[Located]]:
        by_teacher: Dict[str, List[Located]] = defaultdict(list)
        for ref, entry in located:
            by_teacher[entry.teacher].append((ref, entry))
        return by_teacher

    def _workload(self, located: List[Located]) -> List[Conflict]:
        conflicts = []
        for teacher, members in self.teacher_loads(located).items():
            load = sum(entry.duration for _, entry in members)
            cap = self.model.max_load(teacher)
            tolerance = max((o.tolerance for _, entry in members for o in entry.overrides
                             if o.rule == OverrideRule.WORKLOAD), default=0)
            if load <= cap + tolerance:
                continue
            conflicts.append(_conflict(
                ConflictType.WORKLOAD_EXCEEDED,
                f"Teacher {self.model.teacher_name(teacher)} is assigned {load}h/week, "
                f"exceeding the maximum of {cap}h",
                "Reassign some sessions to another teacher or relax the workload limit",
                entries=[ref for ref, _ in members],
            ))
        return conflicts

    # ----------------------------
    # lab_scheduling_conflict on placed entries
    # ----------------------------

    def _labs(self, located: List[Located]) -> List[Conflict]:
        conflicts = []
        for ref, entry in located:
            if not entry.is_lab_session:
                continue
            problems = []
            division = self.model.division(ref.year, ref.division)
            if entry.batch == ALL_BATCH and division is not None and division.batches:
                problems.append(f"scheduled for the whole division although it has batches "
                                f"{', '.join(division.batches)}")
            if not entry.has_override(OverrideRule.CONTIGUITY):
                subject = self.model.subjects.get(entry.subject)
                required = self.model.block_size(subject) if subject is not None else 1
                if entry.duration < required:
                    problems.append(f"occupies {entry.duration} slot(s) but needs {required} contiguous slots")
                if self.model.contiguous_run(entry.time_slot, entry.duration) is None:
                    problems.append("spans a recess/lunch boundary or runs past the end of the day")
            if not problems:
                continue
            conflicts.append(_conflict(
                ConflictType.LAB_SCHEDULING_CONFLICT,
                f"{_label(ref, entry)} lab on {entry.day} Slot {entry.time_slot}: " + "; ".join(problems),
                "Move the lab to a contiguous block within one teaching session, per batch",
                entries=[ref],
            ))
        return conflicts


def conflict_report(conflicts: Sequence[Conflict]) -> ConflictReport:
    """Summary counts for a conflict list."""
    severity = {"high": 0, "medium": 0, "low": 0}
    types: Dict[str, int] = {}
    divisions = []
    for conflict in conflicts:
        severity[conflict.severity] += 1
        types[conflict.type.value] = types.get(conflict.type.value, 0) + 1
        keys = [f"{ref.year} {ref.division}" for ref in conflict.entries]
        if conflict.session is not None:
            keys.append(f"{conflict.session.year} {conflict.session.division}")
        for key in keys:
            if key not in divisions:
                divisions.append(key)
    return ConflictReport(
        total_conflicts=len(conflicts),
        active_conflicts=sum(1 for c in conflicts if c.status == ConflictStatus.DETECTED),
        severity_breakdown=severity,
        conflict_types=types,
        affected_divisions=divisions,
    )
