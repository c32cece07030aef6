"""
Tests for the CP-SAT allocation strategy.
"""
from conftest import department_config, entry, minimal_config, two_division_config
from config.settings import Settings
from models.schemas import (
    Assignment, Division, Restriction, Teacher, Timetable,
)
from service.conflict_detector import ConflictDetector
from service.constraint_model import ConstraintModel
from service.occupancy import OccupancyIndex
from service.ortools_solver import CpSatAllocator


def solver_for(config, registry, settings, occupancy=None):
    model = ConstraintModel(config, settings)
    return CpSatAllocator(model, registry, occupancy or OccupancyIndex(), settings)


def positions(entries):
    return {(e.day, e.time_slot) for e in entries}


def dumped(result):
    return {key: [e.model_dump() for e in entries] for key, entries in result.entries.items()}


def lab_only_config():
    config = two_division_config()
    config.divisions = [Division(year="SE", name="A")]
    config.assignments = [Assignment(subject="Physics Lab", teacher_id="t1", year="SE", division="A")]
    return config


def test_places_scenario_a_at_earliest_position_of_each_day(registry, settings):
    result = solver_for(minimal_config(hours=3), registry, settings).allocate()

    entries = result.entries[("SE", "A")]
    assert positions(entries) == {("Monday", 1), ("Tuesday", 1), ("Wednesday", 1)}
    assert {e.room for e in entries} == {"CR-101"}
    assert result.unplaced == []


def test_respects_global_restrictions(registry, settings):
    registry.register(Restriction(name="Assembly", scope="global", slots=[1], days=["All days"]))

    result = solver_for(minimal_config(hours=3), registry, settings).allocate()

    assert positions(result.entries[("SE", "A")]) == {("Monday", 2), ("Tuesday", 2), ("Wednesday", 2)}


def test_respects_preseeded_occupancy(registry, settings):
    occupancy = OccupancyIndex()
    occupancy.occupy("SE", "B", entry(teacher="t1", room="CR-999"), [1])

    result = solver_for(minimal_config(hours=3), registry, settings, occupancy).allocate()

    assert positions(result.entries[("SE", "A")]) == {("Monday", 2), ("Tuesday", 1), ("Wednesday", 1)}


def test_lab_block_stays_contiguous(registry, settings):
    result = solver_for(lab_only_config(), registry, settings).allocate()

    [lab] = result.entries[("SE", "A")]
    assert (lab.day, lab.time_slot, lab.duration, lab.room) == ("Monday", 1, 2, "LAB-1")
    assert lab.is_lab_session


def test_lab_without_contiguous_run_is_unplaced(registry, settings):
    registry.register(Restriction(name="Blocked", scope="global", slots=[2, 4, 6], days=["All days"]))

    result = solver_for(lab_only_config(), registry, settings).allocate()

    assert result.entries[("SE", "A")] == []
    assert [(u.subject, u.hours) for u in result.unplaced] == [("Physics Lab", 2)]


def test_workload_cap_limits_placed_hours(registry, settings):
    config = minimal_config(hours=3)
    config.teachers = [Teacher(teacher_id="t1", name="Alice Smith", max_load=2)]

    result = solver_for(config, registry, settings).allocate()

    assert len(result.entries[("SE", "A")]) == 2
    assert [(u.subject, u.hours) for u in result.unplaced] == [("Mathematics", 1)]


def test_department_solution_is_complete_conflict_free_and_reproducible(registry, settings):
    first_solver = solver_for(department_config(), registry, settings)
    first = first_solver.allocate()
    second = solver_for(department_config(), registry, settings).allocate()

    assert first.unplaced == []
    assert first.placed_count == 20
    timetables = [Timetable(year=year, division=name, entries=entries, is_active=True)
                  for (year, name), entries in first.entries.items()]
    assert ConflictDetector(first_solver.model, registry).detect(timetables) == []
    assert dumped(first) == dumped(second)


def test_repeats_a_day_only_when_days_run_out(registry, settings):
    result = solver_for(minimal_config(hours=3, working_days=2), registry, settings).allocate()

    assert positions(result.entries[("SE", "A")]) == {("Monday", 1), ("Monday", 2), ("Tuesday", 1)}
    assert result.unplaced == []


def test_spreading_can_be_switched_off(registry):
    settings = Settings(one_lecture_per_day=False)

    result = solver_for(minimal_config(hours=3), registry, settings).allocate()

    assert positions(result.entries[("SE", "A")]) == {("Monday", 1), ("Monday", 2), ("Monday", 3)}
