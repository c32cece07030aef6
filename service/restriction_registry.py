"""
Restriction registry: global and year-specific slot reservations.

Restrictions pre-block (slot, day) positions before scheduling begins. A
position is blocked for a year when an active global restriction covers it,
or a year-specific restriction listing that year does.
"""

from threading import Lock
from typing import Dict, List, Optional
import logging

from models.schemas import BookingEntry, Restriction
from service.errors import RestrictionConflict, RestrictionNotFound

logger = logging.getLogger(__name__)


class RestrictionRegistry:
    """In-memory registry of bookings, safe to share between requests."""

    def __init__(self, restrictions: Optional[List[Restriction]] = None):
        self._restrictions: Dict[str, Restriction] = {}
        self._sequence: Dict[str, int] = {}
        self._next_sequence = 0
        self._lock = Lock()
        for restriction in restrictions or []:
            self.register(restriction)

    # ===========================
    # Queries
    # ===========================

    def is_blocked(self, slot: int, day: str, year: str) -> bool:
        return self.blocking_booking(slot, day, year) is not None

    def blocking_booking(self, slot: int, day: str, year: str) -> Optional[Restriction]:
        """
        Return the restriction that blocks (slot, day) for a year, if any.

        Global restrictions win over year-specific ones, then higher priority,
        then the most recently created.
        """
        with self._lock:
            matches = [
                r for r in self._restrictions.values()
                if r.is_active and r.applies_to_year(year) and r.covers(slot, day)
            ]
            if not matches:
                return None
            return max(matches, key=lambda r: (r.is_global, r.priority, self._sequence[r.restriction_id]))

    def get(self, restriction_id: str) -> Restriction:
        with self._lock:
            restriction = self._restrictions.get(restriction_id)
        if restriction is None:
            raise RestrictionNotFound(restriction_id)
        return restriction

    def active(self) -> List[Restriction]:
        """Active restrictions, most recently created first."""
        with self._lock:
            items = [r for r in self._restrictions.values() if r.is_active]
            return sorted(items, key=lambda r: self._sequence[r.restriction_id], reverse=True)

    def overlapping(self, restriction: Restriction) -> List[Restriction]:
        """
        Active restrictions sharing at least one (slot, day) with the given one.

        Year-specific bookings are checked against global bookings only;
        global bookings are checked against everything.
        """
        coverage = restriction.coverage()
        overlaps = []
        for existing in self.active():
            if existing.restriction_id == restriction.restriction_id:
                continue
            if not restriction.is_global and not existing.is_global:
                continue
            if coverage & existing.coverage():
                overlaps.append(existing)
        return overlaps

    def bookings(self, scope: str = "global", year: Optional[str] = None) -> List[BookingEntry]:
        """Flatten active bookings into one entry per day/slot combination."""
        entries = []
        for restriction in self.active():
            if restriction.scope != scope:
                continue
            if year is not None and not restriction.is_global and year not in restriction.affected_years:
                continue
            for day in restriction.days:
                for slot in restriction.slots:
                    text = f"{day}, Slot {slot}: {restriction.name}"
                    if year is not None and not restriction.is_global:
                        text = f"{text} ({year})"
                    entries.append(BookingEntry(
                        restriction_id=restriction.restriction_id,
                        activity_name=restriction.name,
                        day=day,
                        slot=slot,
                        year=year if not restriction.is_global else None,
                        display_text=text,
                    ))
        return entries

    # ===========================
    # Mutations
    # ===========================

    def register(self, restriction: Restriction) -> Restriction:
        """
        Add a restriction.

        Raises RestrictionConflict when it exactly duplicates the (slot, day)
        coverage of an active global restriction without outranking it.
        """
        coverage = restriction.coverage()
        with self._lock:
            duplicates = [
                r for r in self._restrictions.values()
                if r.is_active and r.is_global
                and r.restriction_id != restriction.restriction_id
                and r.coverage() == coverage
                and restriction.priority <= r.priority
            ]
            if duplicates:
                names = ", ".join(r.name for r in duplicates)
                logger.warning(f"Rejected restriction '{restriction.name}': duplicates global booking {names}")
                raise RestrictionConflict(
                    f"Slots {sorted(restriction.slots)} are already globally booked by: {names}. "
                    f"Raise the priority above {max(r.priority for r in duplicates)} to supersede it.",
                    conflicting_ids=[r.restriction_id for r in duplicates],
                )
            self._restrictions[restriction.restriction_id] = restriction
            self._sequence[restriction.restriction_id] = self._next_sequence
            self._next_sequence += 1
        logger.info(f"Registered {restriction.scope} restriction '{restriction.name}' "
                    f"(slots={restriction.slots}, days={restriction.days}, priority={restriction.priority})")
        return restriction

    def remove(self, restriction_id: str) -> Restriction:
        """Soft-delete a restriction."""
        restriction = self.get(restriction_id)
        with self._lock:
            restriction.is_active = False
        logger.info(f"Deactivated restriction '{restriction.name}'")
        return restriction

    def remove_booking(self, restriction_id: str, day: str, slot: int) -> Restriction:
        """
        Delete a single day/slot combination of a restriction.

        Drops the day when several days remain, otherwise the slot; the
        restriction is deactivated once nothing else is left.
        """
        restriction = self.get(restriction_id)
        with self._lock:
            if len(restriction.days) * len(restriction.slots) <= 1:
                restriction.is_active = False
            elif len(restriction.days) > 1 and day in restriction.days:
                restriction.days = [d for d in restriction.days if d != day]
            elif len(restriction.slots) > 1 and slot in restriction.slots:
                restriction.slots = [s for s in restriction.slots if s != slot]
            else:
                restriction.is_active = False
        logger.info(f"Removed booking {day}, Slot {slot} from '{restriction.name}'")
        return restriction

    def snapshot(self) -> "RestrictionRegistry":
        """Independent copy used for the duration of one generation run."""
        copy = RestrictionRegistry()
        with self._lock:
            ordered = sorted(self._restrictions.values(), key=lambda r: self._sequence[r.restriction_id])
            for restriction in ordered:
                clone = restriction.model_copy(deep=True)
                copy._restrictions[clone.restriction_id] = clone
                copy._sequence[clone.restriction_id] = self._sequence[restriction.restriction_id]
            copy._next_sequence = self._next_sequence
        return copy
