from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from models.schemas import (
    BookingEntry, ConflictListResponse, DeleteBookingRequest, GenerationResponse,
    ResolutionRequest, ResolutionResponse, Restriction, RestrictionResponse,
    SchedulingConfig, Timetable,
)
from service.generation import GenerationService

# Create a router instance
router = APIRouter()

_service = GenerationService()


def get_service() -> GenerationService:
    """Process-wide generation service; overridden in tests."""
    return _service


# ===========================
# Restrictions
# ===========================

@router.post("/restrictions", response_model=RestrictionResponse, status_code=201)
def add_restriction(restriction: Restriction, service: GenerationService = Depends(get_service)):
    """
    Register a global or year-specific booking.

    Overlaps with existing bookings are reported as warnings; an exact
    duplicate of a global booking without higher priority is rejected (409).
    """
    warnings = [
        f"Overlaps {existing.scope} booking '{existing.name}' (priority {existing.priority})"
        for existing in service.registry.overlapping(restriction)
    ]
    registered = service.registry.register(restriction)
    return RestrictionResponse(restriction=registered, warnings=warnings)


@router.get("/restrictions", response_model=List[Restriction])
def list_restrictions(service: GenerationService = Depends(get_service)):
    return service.registry.active()


@router.get("/restrictions/bookings", response_model=List[BookingEntry])
def list_bookings(
    scope: str = Query("global", pattern="^(global|year-specific)$"),
    year: Optional[str] = None,
    service: GenerationService = Depends(get_service),
):
    """Bookings flattened to one entry per day/slot, e.g. "Monday, Slot 1: Assembly"."""
    return service.registry.bookings(scope=scope, year=year)


@router.delete("/restrictions/{restriction_id}", response_model=Restriction)
def delete_restriction(restriction_id: str, service: GenerationService = Depends(get_service)):
    return service.registry.remove(restriction_id)


@router.post("/restrictions/{restriction_id}/bookings/delete", response_model=Restriction)
def delete_booking(restriction_id: str, request: DeleteBookingRequest,
                   service: GenerationService = Depends(get_service)):
    """Remove a single day/slot combination from a booking."""
    return service.registry.remove_booking(restriction_id, request.day, request.slot)


# ===========================
# Timetables and conflicts
# ===========================

@router.post("/timetables/generate", response_model=GenerationResponse)
def generate_timetables(config: SchedulingConfig, service: GenerationService = Depends(get_service)):
    """
    Generate and activate timetables for every division in the configuration.

    Unplaceable sessions do not fail the request; they come back as
    scheduling conflicts. Incomplete configuration aborts with 422.
    """
    return service.generate(config)


@router.get("/timetables", response_model=List[Timetable])
def list_timetables(service: GenerationService = Depends(get_service)):
    return service.timetables()


@router.get("/conflicts", response_model=ConflictListResponse)
def list_conflicts(service: GenerationService = Depends(get_service)):
    """Re-run conflict detection over the active timetables."""
    return service.detect()


@router.post("/conflicts/resolve", response_model=ResolutionResponse)
def resolve_conflicts(request: ResolutionRequest, service: GenerationService = Depends(get_service)):
    """Apply one resolution action per conflict index; each index succeeds or fails on its own."""
    return service.resolve(request.resolutions)
