"""
Versioned in-memory timetable store.

Each (year, division, batch) scope keeps its generation history; exactly one
version per scope is active. Readers always get deep copies, so a detection
pass never observes a half-written timetable.
"""

from collections import defaultdict
from threading import Lock
from typing import Dict, Iterable, List, Tuple
import logging

from models.schemas import Timetable

logger = logging.getLogger(__name__)

Scope = Tuple[str, str, str]


class TimetableStore:
    def __init__(self):
        self._versions: Dict[Scope, List[Timetable]] = defaultdict(list)
        self._lock = Lock()

    def activate(self, timetables: Iterable[Timetable]) -> List[Timetable]:
        """
        Store new versions and make them active, deactivating the previous
        active version of each scope in the same critical section.
        """
        activated = []
        with self._lock:
            for timetable in timetables:
                history = self._versions[timetable.scope]
                for previous in history:
                    previous.is_active = False
                stored = timetable.model_copy(deep=True, update={"is_active": True, "version": len(history) + 1})
                history.append(stored)
                activated.append(stored.model_copy(deep=True))
        logger.info(f"Activated {len(activated)} timetable version(s)")
        return activated

    def replace_active(self, timetables: Iterable[Timetable]) -> None:
        """Write edited entries back into the active versions (resolution edits)."""
        with self._lock:
            for timetable in timetables:
                history = self._versions[timetable.scope]
                current = next((t for t in history if t.is_active), None)
                if current is None:
                    stored = timetable.model_copy(deep=True, update={"is_active": True, "version": len(history) + 1})
                    history.append(stored)
                    continue
                current.entries = [e.model_copy(deep=True) for e in timetable.entries]

    def active(self) -> List[Timetable]:
        with self._lock:
            current = [t for history in self._versions.values() for t in history if t.is_active]
            return [t.model_copy(deep=True) for t in sorted(current, key=lambda t: t.scope)]

    def history(self, scope: Scope) -> List[Timetable]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._versions.get(scope, [])]
