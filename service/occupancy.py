"""
Shared occupancy index for teachers, rooms and division/batch groups.

Teachers and rooms are global resources: every division-scoped placement
checks the same index. A generation pass holds the index exclusively; it is
passed by reference into the allocator, never kept as module state.
"""

from collections import Counter, defaultdict
from typing import Dict, Iterable, Tuple

from models.schemas import ALL_BATCH, Timetable, TimetableEntry


class OccupancyIndex:
    def __init__(self):
        self._teachers: Counter = Counter()        # (teacher, day, slot) -> entries
        self._rooms: Counter = Counter()           # (room, day, slot) -> entries
        self._groups: Dict[Tuple[str, str, str, int], Counter] = defaultdict(Counter)  # -> batch counts
        self._load: Counter = Counter()            # teacher -> weekly hours

    @classmethod
    def from_timetables(cls, timetables: Iterable[Timetable], model) -> "OccupancyIndex":
        index = cls()
        for timetable in timetables:
            for entry in timetable.entries:
                index.occupy(timetable.year, timetable.division, entry, model.covered_slots(entry))
        return index

    # ----------------------------
    # Queries
    # ----------------------------

    def teacher_free(self, teacher: str, day: str, slot: int) -> bool:
        return self._teachers[(teacher, day, slot)] == 0

    def room_free(self, room: str, day: str, slot: int) -> bool:
        return self._rooms[(room, day, slot)] == 0

    def group_free(self, year: str, division: str, batch: str, day: str, slot: int) -> bool:
        """
        Whole-division sessions need the cell empty; a batch session only
        collides with whole-division sessions and its own batch.
        """
        cell = self._groups.get((year, division, day, slot))
        if not cell:
            return True
        if batch == ALL_BATCH:
            return sum(cell.values()) == 0
        return cell[ALL_BATCH] == 0 and cell[batch] == 0

    def load(self, teacher: str) -> int:
        return self._load[teacher]

    # ----------------------------
    # Mutations
    # ----------------------------

    def occupy(self, year: str, division: str, entry: TimetableEntry, slots: Iterable[int]) -> None:
        for slot in slots:
            self._teachers[(entry.teacher, entry.day, slot)] += 1
            self._rooms[(entry.room, entry.day, slot)] += 1
            self._groups[(year, division, entry.day, slot)][entry.batch] += 1
        self._load[entry.teacher] += entry.duration

    def release(self, year: str, division: str, entry: TimetableEntry, slots: Iterable[int]) -> None:
        for slot in slots:
            self._teachers[(entry.teacher, entry.day, slot)] -= 1
            self._rooms[(entry.room, entry.day, slot)] -= 1
            self._groups[(year, division, entry.day, slot)][entry.batch] -= 1
        self._load[entry.teacher] -= entry.duration
