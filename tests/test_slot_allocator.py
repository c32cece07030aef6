"""
Tests for greedy slot allocation.
"""
import pytest

from conftest import allocator_for, department_config, minimal_config, two_division_config
from config.settings import Settings
from models.schemas import (
    Assignment, ConflictType, Division, OverrideRule, Restriction, Room, Teacher,
    Timetable,
)
from service.conflict_detector import ConflictDetector
from service.errors import Unplaceable


def block_slots(registry, slots):
    registry.register(Restriction(name="Blocked", scope="global", slots=slots, days=["All days"]))


def lab_only_config():
    config = two_division_config()
    config.divisions = [Division(year="SE", name="A")]
    config.assignments = [Assignment(subject="Physics Lab", teacher_id="t1", year="SE", division="A")]
    return config


def dumped(result):
    return {key: [e.model_dump() for e in entries] for key, entries in result.entries.items()}


def detect(allocator, result):
    timetables = [Timetable(year=year, division=name, entries=entries, is_active=True)
                  for (year, name), entries in result.entries.items()]
    return ConflictDetector(allocator.model, allocator.registry).detect(timetables, result.unplaced)


def test_scenario_a_places_every_hour_without_conflicts(registry):
    allocator = allocator_for(minimal_config(hours=3), registry)

    result = allocator.allocate()
    entries = result.entries[("SE", "A")]

    assert [(e.day, e.time_slot, e.room, e.teacher) for e in entries] == [
        ("Monday", 1, "CR-101", "t1"),
        ("Tuesday", 1, "CR-101", "t1"),
        ("Wednesday", 1, "CR-101", "t1"),
    ]
    assert result.unplaced == []
    assert result.placed_count == 3
    assert detect(allocator, result) == []


def test_scenario_b_never_uses_globally_blocked_slot(registry):
    block_slots(registry, [1])
    allocator = allocator_for(minimal_config(hours=8), registry)

    result = allocator.allocate()
    entries = result.entries[("SE", "A")]

    assert len(entries) == 8
    assert all(e.time_slot != 1 for e in entries)
    assert [(e.day, e.time_slot) for e in entries] == [
        ("Monday", 2), ("Tuesday", 2), ("Wednesday", 2), ("Thursday", 2), ("Friday", 2),
        ("Monday", 3), ("Monday", 4), ("Monday", 5),
    ]


def test_lectures_of_a_subject_spread_over_distinct_days(registry):
    allocator = allocator_for(minimal_config(hours=5), registry)

    entries = allocator.allocate().entries[("SE", "A")]

    assert [e.day for e in entries] == ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
    assert {e.time_slot for e in entries} == {1}


def test_spread_falls_back_to_repeating_a_day_when_days_run_out(registry):
    allocator = allocator_for(minimal_config(hours=3, working_days=2), registry)

    result = allocator.allocate()

    assert [(e.day, e.time_slot) for e in result.entries[("SE", "A")]] == [
        ("Monday", 1), ("Tuesday", 1), ("Monday", 2),
    ]
    assert result.unplaced == []


def test_packing_the_first_day_when_spreading_is_off(registry):
    allocator = allocator_for(minimal_config(hours=3), registry, Settings(one_lecture_per_day=False))

    entries = allocator.allocate().entries[("SE", "A")]

    assert [(e.day, e.time_slot) for e in entries] == [("Monday", 1), ("Monday", 2), ("Monday", 3)]


def test_year_specific_booking_only_blocks_its_year(registry):
    registry.register(Restriction(name="TE Seminar", scope="year-specific", affected_years=["TE"],
                                  slots=[1], days=["Monday"]))
    allocator = allocator_for(minimal_config(hours=1), registry)

    entries = allocator.allocate().entries[("SE", "A")]

    assert (entries[0].day, entries[0].time_slot) == ("Monday", 1)


def test_scenario_d_lab_without_contiguous_run_is_not_placed(registry):
    block_slots(registry, [2, 4, 6])
    allocator = allocator_for(lab_only_config(), registry)

    result = allocator.allocate()

    assert result.entries[("SE", "A")] == []
    assert len(result.unplaced) == 1
    unplaced = result.unplaced[0]
    assert (unplaced.subject, unplaced.hours, unplaced.contiguous) == ("Physics Lab", 2, True)
    assert "contiguous" in unplaced.reason

    conflicts = detect(allocator, result)
    assert [c.type for c in conflicts] == [ConflictType.LAB_SCHEDULING_CONFLICT]
    assert conflicts[0].session == unplaced


def test_lab_block_is_one_entry_spanning_two_slots(registry):
    allocator = allocator_for(lab_only_config(), registry)

    entries = allocator.allocate().entries[("SE", "A")]

    assert len(entries) == 1
    lab = entries[0]
    assert (lab.day, lab.time_slot, lab.duration, lab.room, lab.room_type) == ("Monday", 1, 2, "LAB-1", "LAB")
    assert lab.is_lab_session


def test_lab_block_does_not_cross_recess(registry):
    config = department_config()
    allocator = allocator_for(config, registry)

    result = allocator.allocate()

    for entries in result.entries.values():
        for e in entries:
            if e.duration > 1:
                assert allocator.model.contiguous_run(e.time_slot, e.duration) is not None


def test_workload_cap_leaves_remaining_hours_unplaced(registry):
    config = minimal_config(hours=3)
    config.teachers = [Teacher(teacher_id="t1", name="Alice Smith", max_load=2)]
    allocator = allocator_for(config, registry)

    result = allocator.allocate()

    assert len(result.entries[("SE", "A")]) == 2
    assert [(u.subject, u.hours) for u in result.unplaced] == [("Mathematics", 1)]
    assert "maximum load of 2h/week" in result.unplaced[0].reason
    conflicts = detect(allocator, result)
    assert [c.type for c in conflicts] == [ConflictType.SCHEDULING_CONFLICT]


def test_teacher_shared_between_divisions_is_never_double_booked(registry):
    config = two_division_config()
    config.assignments = [
        Assignment(subject="Mathematics", teacher_id="t1", year="SE", division="A"),
        Assignment(subject="Mathematics", teacher_id="t1", year="SE", division="B"),
    ]
    allocator = allocator_for(config, registry)

    result = allocator.allocate()

    slots_a = {(e.day, e.time_slot) for e in result.entries[("SE", "A")]}
    slots_b = {(e.day, e.time_slot) for e in result.entries[("SE", "B")]}
    assert slots_a == {("Monday", 1), ("Tuesday", 1), ("Wednesday", 1)}
    assert slots_b == {("Monday", 2), ("Tuesday", 2), ("Wednesday", 2)}


def test_sibling_batches_run_labs_in_parallel(registry):
    config = two_division_config(rooms=[
        Room(name="CR-101", capacity=60, room_type="CR"),
        Room(name="LAB-1", capacity=30, room_type="LAB"),
        Room(name="LAB-2", capacity=30, room_type="LAB"),
    ])
    config.divisions = [Division(year="SE", name="A", batches=["A1", "A2"], strength=60)]
    config.assignments = [
        Assignment(subject="Physics Lab", teacher_id="t1", year="SE", division="A", batch="A1"),
        Assignment(subject="Physics Lab", teacher_id="t2", year="SE", division="A", batch="A2"),
    ]
    allocator = allocator_for(config, registry)

    entries = allocator.allocate().entries[("SE", "A")]

    assert [(e.batch, e.day, e.time_slot, e.room) for e in entries] == [
        ("A1", "Monday", 1, "LAB-1"),
        ("A2", "Monday", 1, "LAB-2"),
    ]


def test_whole_division_session_waits_for_batches(registry):
    config = two_division_config()
    config.divisions = [Division(year="SE", name="A", batches=["A1", "A2"])]
    config.assignments = [
        Assignment(subject="Physics Lab", teacher_id="t2", year="SE", division="A", batch="A1"),
        Assignment(subject="Mathematics", teacher_id="t1", year="SE", division="A"),
    ]
    allocator = allocator_for(config, registry)

    entries = allocator.allocate().entries[("SE", "A")]

    lab = entries[0]
    lectures = entries[1:]
    assert (lab.batch, lab.time_slot, lab.duration) == ("A1", 1, 2)
    assert [(e.day, e.time_slot) for e in lectures] == [("Monday", 3), ("Tuesday", 1), ("Wednesday", 1)]


def test_department_allocation_is_complete_and_conflict_free(registry):
    allocator = allocator_for(department_config(), registry)

    result = allocator.allocate()

    assert result.unplaced == []
    assert result.placed_count == 20
    assert detect(allocator, result) == []


def test_allocation_is_deterministic(registry):
    first = allocator_for(department_config(), registry).allocate()
    second = allocator_for(department_config(), registry).allocate()

    assert dumped(first) == dumped(second)


def test_place_honours_excluded_positions(registry):
    allocator = allocator_for(minimal_config(hours=1), registry)
    session = allocator.model.required_sessions(allocator.model.division("SE", "A"))[0]

    entry = allocator.place(session, exclude=frozenset({("Monday", 1), ("Monday", 2)}))

    assert (entry.day, entry.time_slot) == ("Monday", 3)


def test_place_raises_when_grid_is_full(registry):
    block_slots(registry, [1, 2, 3, 4, 5, 6])
    allocator = allocator_for(minimal_config(hours=1), registry)
    session = allocator.model.required_sessions(allocator.model.division("SE", "A"))[0]

    with pytest.raises(Unplaceable, match="no free slot"):
        allocator.place(session)


def test_relaxed_workload_lets_placement_exceed_cap(registry):
    config = minimal_config(hours=1)
    config.teachers = [Teacher(teacher_id="t1", name="Alice Smith", max_load=0)]
    allocator = allocator_for(config, registry)
    session = allocator.model.required_sessions(allocator.model.division("SE", "A"))[0]

    with pytest.raises(Unplaceable, match="maximum load"):
        allocator.place(session)
    entry = allocator.place(session, relax=frozenset({OverrideRule.WORKLOAD}))

    assert allocator.occupancy.load("t1") == 1
    assert entry.time_slot == 1


def test_reassign_room_moves_to_free_room_of_same_type(registry):
    config = two_division_config()
    config.assignments = [Assignment(subject="Mathematics", teacher_id="t1", year="SE", division="A")]
    allocator = allocator_for(config, registry)
    placed = allocator.allocate().entries[("SE", "A")][0]

    moved = allocator.reassign_room("SE", "A", placed)

    assert moved.room == "CR-102"
    assert (moved.day, moved.time_slot) == (placed.day, placed.time_slot)
    assert allocator.occupancy.room_free("CR-101", placed.day, placed.time_slot)
    assert not allocator.occupancy.room_free("CR-102", placed.day, placed.time_slot)
