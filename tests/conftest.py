"""
Shared builders for scheduling test data.
"""
import pytest

from config.settings import Settings
from models.schemas import (
    Assignment, Division, Room, SchedulingConfig, Subject, Teacher, TimeSlot,
    Timetable, TimetableEntry,
)
from service.constraint_model import ConstraintModel
from service.occupancy import OccupancyIndex
from service.restriction_registry import RestrictionRegistry
from service.slot_allocator import SlotAllocator


def weekly_grid(periods=6, recess_after=None):
    """Hourly periods from 09:00; optional recess slot after period `recess_after`."""
    slots = []
    number = 1
    hour = 9
    for period in range(1, periods + 1):
        slots.append(TimeSlot(slot_number=number, start_time=f"{hour:02d}:00",
                              end_time=f"{hour + 1:02d}:00"))
        number += 1
        hour += 1
        if recess_after == period:
            slots.append(TimeSlot(slot_number=number, start_time=f"{hour:02d}:00",
                                  end_time=f"{hour:02d}:15", kind="recess"))
            number += 1
    return slots


def minimal_config(hours=3, working_days=5, periods=6):
    """Scenario A: one division, one 3h theory subject, one teacher, one room."""
    return SchedulingConfig(
        working_days=working_days,
        time_slots=weekly_grid(periods),
        subjects=[Subject(name="Mathematics", kind="TH", hours_per_week=hours)],
        teachers=[Teacher(teacher_id="t1", name="Alice Smith", max_load=20)],
        rooms=[Room(name="CR-101", capacity=60, room_type="CR")],
        divisions=[Division(year="SE", name="A", strength=60)],
        assignments=[Assignment(subject="Mathematics", teacher_id="t1", year="SE", division="A")],
    )


def department_config():
    """Two years, three divisions, batch labs and shared teachers."""
    return SchedulingConfig(
        working_days=5,
        time_slots=weekly_grid(6, recess_after=3),
        subjects=[
            Subject(name="Data Structures", kind="TH", hours_per_week=4),
            Subject(name="DS Lab", kind="PR", hours_per_week=2),
            Subject(name="Operating Systems", kind="TH", hours_per_week=3),
            Subject(name="OS Lab", kind="PR", hours_per_week=4),
            Subject(name="Soft Skills", kind="VAP", hours_per_week=1),
        ],
        teachers=[
            Teacher(teacher_id="t1", name="Alice Smith", max_load=18),
            Teacher(teacher_id="t2", name="Bob Johnson", max_load=18),
            Teacher(teacher_id="t3", name="Chitra Rao", max_load=18),
        ],
        rooms=[
            Room(name="CR-101", capacity=70, room_type="CR"),
            Room(name="CR-102", capacity=70, room_type="CR"),
            Room(name="LAB-1", capacity=30, room_type="LAB"),
            Room(name="LAB-2", capacity=30, room_type="LAB"),
        ],
        divisions=[
            Division(year="TE", name="A", batches=["A1", "A2"], strength=60),
            Division(year="SE", name="B", batches=["A1", "A2"], strength=60),
            Division(year="SE", name="A", batches=["A1", "A2"], strength=60),
        ],
        assignments=[
            Assignment(subject="Data Structures", teacher_id="t1", year="SE", division="A"),
            Assignment(subject="Data Structures", teacher_id="t1", year="SE", division="B"),
            Assignment(subject="DS Lab", teacher_id="t2", year="SE", division="A", batch="A1"),
            Assignment(subject="DS Lab", teacher_id="t2", year="SE", division="A", batch="A2"),
            Assignment(subject="DS Lab", teacher_id="t2", year="SE", division="B", batch="A1"),
            Assignment(subject="DS Lab", teacher_id="t2", year="SE", division="B", batch="A2"),
            Assignment(subject="Operating Systems", teacher_id="t3", year="TE", division="A"),
            Assignment(subject="OS Lab", teacher_id="t3", year="TE", division="A", batch="A1"),
            Assignment(subject="OS Lab", teacher_id="t2", year="TE", division="A", batch="A2"),
            Assignment(subject="Soft Skills", teacher_id="t1", year="TE", division="A"),
        ],
    )


def two_division_config(rooms=None, teachers=None):
    """Two divisions of one year sharing teachers and rooms; no assignments."""
    return SchedulingConfig(
        working_days=5,
        time_slots=weekly_grid(6),
        subjects=[
            Subject(name="Mathematics", kind="TH", hours_per_week=3),
            Subject(name="Physics", kind="TH", hours_per_week=3),
            Subject(name="Physics Lab", kind="PR", hours_per_week=2),
        ],
        teachers=teachers or [
            Teacher(teacher_id="t1", name="Alice Smith", max_load=20),
            Teacher(teacher_id="t2", name="Bob Johnson", max_load=20),
        ],
        rooms=rooms or [
            Room(name="CR-101", capacity=60, room_type="CR"),
            Room(name="CR-102", capacity=60, room_type="CR"),
            Room(name="LAB-1", capacity=30, room_type="LAB"),
        ],
        divisions=[
            Division(year="SE", name="A"),
            Division(year="SE", name="B"),
        ],
    )


def entry(day="Monday", slot=1, subject="Mathematics", teacher="t1", room="CR-101", **fields):
    room_type = fields.pop("room_type", "LAB" if room.startswith("LAB") else "CR")
    return TimetableEntry(day=day, time_slot=slot, subject=subject, teacher=teacher,
                          room=room, room_type=room_type, **fields)


def timetable(year, division, *entries):
    return Timetable(year=year, division=division, entries=list(entries), is_active=True)


def allocator_for(config, registry=None, settings=None, occupancy=None):
    settings = settings or Settings()
    model = ConstraintModel(config, settings)
    return SlotAllocator(model, registry or RestrictionRegistry(), occupancy or OccupancyIndex(), settings)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def registry():
    return RestrictionRegistry()
