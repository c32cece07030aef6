"""
Constraint model for one generation run.

Snapshots a SchedulingConfig, validates that it is complete, and exposes the
derived, read-only view the allocator and detector work from: working days,
the slot grid, required sessions per division, room suitability, teacher
availability and load caps.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging
import math

from config.settings import Settings, settings as default_settings
from models.schemas import (
    ALL_BATCH, DAY_NAMES, Division, Room, SchedulingConfig, Subject, Teacher,
    TimeSlot, TimetableEntry,
)
from service.errors import InvalidConfiguration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequiredSession:
    """Weekly teaching requirement of one subject for one division/batch."""
    year: str
    division: str
    subject: Subject
    batch: str
    teacher_id: str
    hours_remaining: int
    contiguity_required: bool
    block_size: int = 1

    @property
    def is_lab(self) -> bool:
        return self.contiguity_required or self.subject.kind == "PR"

    def blocks(self) -> List[int]:
        """Split the weekly hours into placement units (slots per entry)."""
        if not self.contiguity_required or self.block_size <= 1:
            return [1] * self.hours_remaining
        full, rest = divmod(self.hours_remaining, self.block_size)
        return [self.block_size] * full + ([rest] if rest else [])


class ConstraintModel:
    """Pure derived data; nothing here changes after construction."""

    def __init__(self, config: SchedulingConfig, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.config = config.model_copy(deep=True)
        self._validate()

        self.days: Tuple[str, ...] = DAY_NAMES[: self.config.working_days]
        self.grid: Tuple[TimeSlot, ...] = tuple(sorted(self.config.time_slots, key=lambda s: s.slot_number))
        self.periods: Tuple[TimeSlot, ...] = tuple(s for s in self.grid if s.is_period)
        self._grid_index = {s.slot_number: i for i, s in enumerate(self.grid)}

        self.subjects: Dict[str, Subject] = {s.name: s for s in self.config.subjects}
        self.teachers: Dict[str, Teacher] = {t.teacher_id: t for t in self.config.teachers}
        self.rooms: Tuple[Room, ...] = tuple(sorted(self.config.rooms, key=lambda r: r.name))
        self.divisions: Dict[Tuple[str, str], Division] = {d.key: d for d in self.config.divisions}

    # ----------------------------
    # Validation
    # ----------------------------

    def _validate(self) -> None:
        cfg = self.config
        errors: List[str] = []

        if not 1 <= cfg.working_days <= 7:
            errors.append(f"Working days must be between 1 and 7, got {cfg.working_days}")
        if not cfg.time_slots:
            errors.append("No time slots configured")
        elif not any(s.is_period for s in cfg.time_slots):
            errors.append("Time slot grid has no teaching periods")
        numbers = [s.slot_number for s in cfg.time_slots]
        if len(numbers) != len(set(numbers)):
            errors.append("Duplicate slot numbers in time slot grid")

        for label, records in (("teachers", cfg.teachers), ("subjects", cfg.subjects),
                               ("rooms", cfg.rooms), ("divisions", cfg.divisions)):
            if not records:
                errors.append(f"No {label} provided")

        subjects = {s.name: s for s in cfg.subjects}
        teacher_ids = {t.teacher_id for t in cfg.teachers}
        divisions = {d.key: d for d in cfg.divisions}
        room_types = {r.room_type for r in cfg.rooms}

        for subject in cfg.subjects:
            if subject.hours_per_week < 0:
                errors.append(f"Subject {subject.name} has negative weekly hours")
            if subject.block_size is not None and subject.block_size < 1:
                errors.append(f"Subject {subject.name} has block size below 1")
            if cfg.rooms and subject.required_room_type not in room_types:
                errors.append(f"Subject {subject.name} ({subject.kind}) needs a {subject.required_room_type} room "
                              f"but none is configured")

        for a in cfg.assignments:
            if a.subject not in subjects:
                errors.append(f"Assignment references unknown subject {a.subject}")
            if a.teacher_id not in teacher_ids:
                errors.append(f"Subject {a.subject} assigned to unknown teacher {a.teacher_id}")
            division = divisions.get((a.year, a.division))
            if division is None:
                errors.append(f"Assignment references unknown division {a.year} {a.division}")
            elif a.batch != ALL_BATCH and a.batch not in division.batches:
                errors.append(f"Batch {a.batch} is not defined for division {a.year} {a.division}")

        if errors:
            logger.error(f"Invalid scheduling configuration: {errors}")
            raise InvalidConfiguration(errors)

    # ----------------------------
    # Divisions and sessions
    # ----------------------------

    def ordered_divisions(self, order: Optional[str] = None) -> List[Division]:
        order = order or self.settings.division_order
        divisions = list(self.config.divisions)
        if order == "config":
            return divisions
        return sorted(divisions, key=lambda d: (d.year, d.name))

    def division(self, year: str, name: str) -> Optional[Division]:
        return self.divisions.get((year, name))

    def block_size(self, subject: Subject) -> int:
        if not subject.requires_contiguity:
            return 1
        return subject.block_size or self.settings.default_lab_block_size

    def required_sessions(self, division: Division) -> List[RequiredSession]:
        """Sessions the division needs this week, in configuration order."""
        sessions = []
        for a in self.config.assignments:
            if (a.year, a.division) != division.key:
                continue
            subject = self.subjects[a.subject]
            if subject.hours_per_week <= 0:
                continue
            sessions.append(RequiredSession(
                year=division.year,
                division=division.name,
                subject=subject,
                batch=a.batch,
                teacher_id=a.teacher_id,
                hours_remaining=subject.hours_per_week,
                contiguity_required=subject.requires_contiguity,
                block_size=self.block_size(subject),
            ))
        return sessions

    # ----------------------------
    # Grid helpers
    # ----------------------------

    def contiguous_run(self, start: int, length: int) -> Optional[List[int]]:
        """
        Slot numbers of a run of `length` consecutive periods starting at `start`.

        Returns None when the run would cross a recess/lunch slot, skip a slot
        number, or run past the end of the day.
        """
        index = self._grid_index.get(start)
        if index is None:
            return None
        run = self.grid[index: index + length]
        if len(run) < length or not all(s.is_period for s in run):
            return None
        for prev, nxt in zip(run, run[1:]):
            if nxt.slot_number != prev.slot_number + 1:
                return None
        return [s.slot_number for s in run]

    def covered_slots(self, entry: TimetableEntry) -> List[int]:
        """Grid slot numbers an entry occupies, whatever their kind."""
        index = self._grid_index.get(entry.time_slot)
        if index is None:
            return [entry.time_slot]
        return [s.slot_number for s in self.grid[index: index + entry.duration]]

    # ----------------------------
    # Resources
    # ----------------------------

    def group_size(self, division: Optional[Division], batch: str) -> Optional[int]:
        if division is None or not division.strength:
            return None
        if batch == ALL_BATCH or not division.batches:
            return division.strength
        return math.ceil(division.strength / len(division.batches))

    def rooms_for(self, subject: Subject, division: Optional[Division] = None,
                  batch: str = ALL_BATCH) -> List[Room]:
        """Rooms of the right type and size, in name order."""
        size = self.group_size(division, batch)
        return [
            room for room in self.rooms
            if room.room_type == subject.required_room_type
            and (size is None or not room.capacity or room.capacity >= size)
        ]

    def teacher_available(self, teacher_id: str, day: str, slot: int) -> bool:
        teacher = self.teachers.get(teacher_id)
        if teacher is None or not teacher.availability:
            return True
        return slot in teacher.availability.get(day, [])

    def max_load(self, teacher_id: str) -> int:
        teacher = self.teachers.get(teacher_id)
        if teacher is None or teacher.max_load is None:
            return self.settings.default_teacher_max_load
        return teacher.max_load

    def teacher_name(self, teacher_id: str) -> str:
        teacher = self.teachers.get(teacher_id)
        return teacher.name if teacher else teacher_id
