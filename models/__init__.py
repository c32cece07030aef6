"""
Data models and Pydantic schemas for the timetable engine.
"""
from .schemas import (
    ALL_BATCH,
    ALL_DAYS,
    DAY_NAMES,
    Assignment,
    BookingEntry,
    Conflict,
    ConflictListResponse,
    ConflictReport,
    ConflictStatus,
    ConflictType,
    ConstraintOverride,
    DeleteBookingRequest,
    Division,
    EntryRef,
    GenerationResponse,
    OverrideRule,
    ResolutionAction,
    ResolutionOutcome,
    ResolutionRequest,
    ResolutionResponse,
    Restriction,
    RestrictionResponse,
    Room,
    SchedulingConfig,
    Subject,
    Teacher,
    TimeSlot,
    Timetable,
    TimetableEntry,
    UnplacedSession,
)

__all__ = [
    "ALL_BATCH",
    "ALL_DAYS",
    "DAY_NAMES",
    "Assignment",
    "BookingEntry",
    "Conflict",
    "ConflictListResponse",
    "ConflictReport",
    "ConflictStatus",
    "ConflictType",
    "ConstraintOverride",
    "DeleteBookingRequest",
    "Division",
    "EntryRef",
    "GenerationResponse",
    "OverrideRule",
    "ResolutionAction",
    "ResolutionOutcome",
    "ResolutionRequest",
    "ResolutionResponse",
    "Restriction",
    "RestrictionResponse",
    "Room",
    "SchedulingConfig",
    "Subject",
    "Teacher",
    "TimeSlot",
    "Timetable",
    "TimetableEntry",
    "UnplacedSession",
]
