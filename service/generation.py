"""
Generation orchestration.

Ties the registry, constraint model, allocator, detector and resolution
engine together and enforces the run discipline:

- at most one generation in flight per (year, division, batch) scope;
  overlapping requests are rejected, never interleaved
- teacher/room occupancy is shared across divisions, so one full
  multi-division pass holds the occupancy lock from seeding to activation
- timetables are activated only after the whole pass succeeded, and the
  model, unplaced list and conflicts that describe them are published in
  the same critical section, so a resolve never sees a mixed state
"""

from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterable, List, Optional, Set
import logging
import time

from config.settings import Settings, settings as default_settings
from models.schemas import (
    ALL_BATCH, Conflict, ConflictListResponse, GenerationResponse, ResolutionAction,
    ResolutionResponse, SchedulingConfig, Timetable, UnplacedSession,
)
from service.conflict_detector import ConflictDetector, conflict_report
from service.constraint_model import ConstraintModel
from service.errors import GenerationInProgress, InvalidConfiguration
from service.occupancy import OccupancyIndex
from service.ortools_solver import CpSatAllocator
from service.resolution_engine import ResolutionEngine
from service.restriction_registry import RestrictionRegistry
from service.slot_allocator import SlotAllocator
from service.timetable_store import Scope, TimetableStore

logger = logging.getLogger(__name__)

ALLOCATORS = {
    "greedy": SlotAllocator,
    "cp_sat": CpSatAllocator,
}


def build_allocator(model: ConstraintModel, registry: RestrictionRegistry,
                    occupancy: OccupancyIndex, settings: Settings) -> SlotAllocator:
    allocator_class = ALLOCATORS.get(settings.allocation_strategy)
    if allocator_class is None:
        raise InvalidConfiguration([f"Unknown allocation strategy '{settings.allocation_strategy}'; "
                                    f"use one of {sorted(ALLOCATORS)}"])
    return allocator_class(model, registry, occupancy, settings)


class GenerationService:
    def __init__(self, registry: Optional[RestrictionRegistry] = None,
                 store: Optional[TimetableStore] = None, settings: Optional[Settings] = None):
        self.registry = registry or RestrictionRegistry()
        self.store = store or TimetableStore()
        self.settings = settings or default_settings

        self._state_lock = Lock()
        self._occupancy_lock = Lock()
        self._in_flight: Set[Scope] = set()
        self._model: Optional[ConstraintModel] = None
        self._unplaced: List[UnplacedSession] = []
        self._conflicts: List[Conflict] = []

    # ----------------------------
    # Generation
    # ----------------------------

    def generate(self, config: SchedulingConfig) -> GenerationResponse:
        """Generate and activate timetables for every division in the config."""
        started = time.perf_counter()
        model = ConstraintModel(config, self.settings)
        scopes = {(d.year, d.name, ALL_BATCH) for d in model.config.divisions}
        self._claim(scopes)
        try:
            registry = self.registry.snapshot()
            logger.info(f"Generating timetables for {len(scopes)} division(s) "
                        f"with the {self.settings.allocation_strategy} allocator")
            with self._occupancy_lock:
                others = [t for t in self.store.active() if t.scope not in scopes]
                occupancy = OccupancyIndex.from_timetables(others, model)
                result = build_allocator(model, registry, occupancy, self.settings).allocate()
                generated_at = datetime.now(timezone.utc)
                drafts = [
                    Timetable(year=d.year, division=d.name, entries=result.entries.get(d.key, []),
                              generated_at=generated_at)
                    for d in model.ordered_divisions()
                ]
                activated = self.store.activate(drafts)

                with self._state_lock:
                    kept = [u for u in self._unplaced if (u.year, u.division, ALL_BATCH) not in scopes]
                    unplaced = kept + result.unplaced

                conflicts = ConflictDetector(model, registry).detect(self.store.active(), unplaced)
                with self._state_lock:
                    self._model = model
                    self._unplaced = unplaced
                    self._conflicts = conflicts
        finally:
            self._release(scopes)

        elapsed = time.perf_counter() - started
        logger.info(f"Generation finished in {elapsed:.3f}s: {result.placed_count} entries, "
                    f"{len(result.unplaced)} unplaced, {len(conflicts)} conflicts")
        return GenerationResponse(
            status="COMPLETED",
            strategy=self.settings.allocation_strategy,
            timetables=activated,
            unplaced=result.unplaced,
            conflicts=conflicts,
            report=conflict_report(conflicts),
            generation_time_seconds=elapsed,
        )

    def _claim(self, scopes: Iterable[Scope]) -> None:
        scopes = set(scopes)
        with self._state_lock:
            busy = scopes & self._in_flight
            if busy:
                logger.warning(f"Rejected generation: scopes already in flight {sorted(busy)}")
                raise GenerationInProgress(sorted(busy))
            self._in_flight |= scopes

    def _release(self, scopes: Iterable[Scope]) -> None:
        with self._state_lock:
            self._in_flight -= set(scopes)

    # ----------------------------
    # Detection and resolution
    # ----------------------------

    def timetables(self) -> List[Timetable]:
        return self.store.active()

    def detect(self) -> ConflictListResponse:
        """Re-run detection over the active timetables."""
        with self._state_lock:
            model = self._require_model()
            unplaced = list(self._unplaced)
            previous = list(self._conflicts)
        engine = ResolutionEngine(model, self.registry.snapshot(), self.store.active(), unplaced, self.settings)
        conflicts = engine.refreshed(previous)
        with self._state_lock:
            self._conflicts = conflicts
        return ConflictListResponse(conflicts=conflicts, report=conflict_report(conflicts))

    def resolve(self, actions: Dict[int, ResolutionAction]) -> ResolutionResponse:
        """Apply resolution actions to the current conflict list, index by index."""
        with self._occupancy_lock:
            with self._state_lock:
                model = self._require_model()
                unplaced = list(self._unplaced)
                conflicts = [c.model_copy(deep=True) for c in self._conflicts]
            engine = ResolutionEngine(model, self.registry.snapshot(), self.store.active(), unplaced, self.settings)
            outcomes = engine.apply(conflicts, actions)
            self.store.replace_active(engine.timetables)
            with self._state_lock:
                self._unplaced = engine.unplaced
                self._conflicts = conflicts
        return ResolutionResponse(outcomes=outcomes, conflicts=conflicts, report=conflict_report(conflicts))

    def _require_model(self) -> ConstraintModel:
        if self._model is None:
            raise InvalidConfiguration(["No timetable has been generated yet"])
        return self._model
