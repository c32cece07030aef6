from pydantic import BaseModel, Field, model_validator
from typing import List, Dict, Optional, Literal, Tuple
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4


DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
ALL_DAYS = "All days"
ALL_BATCH = "ALL"

SubjectKind = Literal["TH", "PR", "VAP", "OE"]
RoomType = Literal["CR", "LAB"]
Batch = Literal["ALL", "A1", "A2", "A3"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===========================
# Closed variants
# ===========================

class ConflictType(str, Enum):
    TEACHER_CONFLICT = "teacher_conflict"
    ROOM_CONFLICT = "room_conflict"
    WORKLOAD_EXCEEDED = "workload_exceeded"
    SCHEDULING_CONFLICT = "scheduling_conflict"
    LAB_SCHEDULING_CONFLICT = "lab_scheduling_conflict"


class ConflictStatus(str, Enum):
    DETECTED = "detected"
    IGNORED = "ignored"
    AUTO_RESOLVED = "auto_resolved"
    MANUAL_REVIEW = "manual_review"
    RELAX_APPLIED = "relax_applied"


class ResolutionAction(str, Enum):
    IGNORE = "ignore"
    AUTO_RESOLVE = "auto_resolve"
    MANUAL_REVIEW = "manual_review"
    RELAX_CONSTRAINTS = "relax_constraints"


class OverrideRule(str, Enum):
    """Allocation rule a relax-constraints override lifts for one entry."""
    WORKLOAD = "workload"        # rule 6: teacher weekly load cap
    CONTIGUITY = "contiguity"    # rule 5: strict contiguous lab blocks


# ===========================
# Time grid
# ===========================

class TimeSlot(BaseModel):
    """One ordinal position in the weekly grid, e.g. "Slot 3"."""
    slot_number: int
    start_time: str  # HH:MM format, e.g. "09:00"
    end_time: str
    kind: Literal["period", "recess", "lunch"] = "period"

    class Config:
        frozen = True

    @property
    def is_period(self) -> bool:
        return self.kind == "period"


# ===========================
# Configuration records
# ===========================

class Subject(BaseModel):
    name: str
    kind: SubjectKind = "TH"
    hours_per_week: int
    contiguous: Optional[bool] = None   # defaults to True for PR subjects
    block_size: Optional[int] = None    # slots per contiguous block, settings default when unset

    @property
    def requires_contiguity(self) -> bool:
        if self.contiguous is not None:
            return self.contiguous
        return self.kind == "PR"

    @property
    def required_room_type(self) -> str:
        return "LAB" if self.kind == "PR" else "CR"


class Teacher(BaseModel):
    teacher_id: str
    name: str
    max_load: Optional[int] = None  # hours/week, settings default when unset
    # availability: {"Monday": [1, 2, 3], ...}; empty means always available
    availability: Dict[str, List[int]] = {}


class Room(BaseModel):
    name: str
    capacity: int = 0  # 0 means unknown
    room_type: RoomType = "CR"


class Division(BaseModel):
    year: str   # e.g. "SE", "TE", "BE"
    name: str   # e.g. "A"
    batches: List[Batch] = []
    strength: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.year, self.name)


class Assignment(BaseModel):
    """Teacher delivering a subject to one division (or one lab batch of it)."""
    subject: str
    teacher_id: str
    year: str
    division: str
    batch: Batch = ALL_BATCH


class SchedulingConfig(BaseModel):
    """Read snapshot of every configuration record a generation run needs."""
    working_days: int = 5
    time_slots: List[TimeSlot] = []
    subjects: List[Subject] = []
    teachers: List[Teacher] = []
    rooms: List[Room] = []
    divisions: List[Division] = []
    assignments: List[Assignment] = []


# ===========================
# Restrictions (bookings)
# ===========================

class Restriction(BaseModel):
    restriction_id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    scope: Literal["global", "year-specific"] = "global"
    affected_years: List[str] = []
    slots: List[int]
    days: List[str] = [ALL_DAYS]
    priority: int = Field(default=3, ge=1, le=5)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = True

    @model_validator(mode="after")
    def validate_years(self) -> "Restriction":
        if self.scope == "year-specific" and not self.affected_years:
            raise ValueError("A year-specific restriction must list at least one affected year")
        return self

    @property
    def is_global(self) -> bool:
        return self.scope == "global"

    def applies_to_year(self, year: str) -> bool:
        return self.is_global or year in self.affected_years

    def covers(self, slot: int, day: str) -> bool:
        if slot not in self.slots:
            return False
        return ALL_DAYS in self.days or day in self.days

    def coverage(self) -> frozenset:
        """Every (slot, day) pair this restriction blocks, "All days" expanded."""
        days = DAY_NAMES if ALL_DAYS in self.days else self.days
        return frozenset((slot, day) for slot in self.slots for day in days)


class BookingEntry(BaseModel):
    """One flattened day/slot combination of a restriction."""
    restriction_id: str
    activity_name: str
    day: str
    slot: int
    year: Optional[str] = None
    display_text: str


class DeleteBookingRequest(BaseModel):
    day: str
    slot: int


class RestrictionResponse(BaseModel):
    restriction: Restriction
    warnings: List[str] = []


# ===========================
# Timetable
# ===========================

class ConstraintOverride(BaseModel):
    """Audit marker left on an entry by a relax-constraints resolution."""
    rule: OverrideRule
    conflict_type: ConflictType
    tolerance: int = 0  # extra weekly hours tolerated for WORKLOAD overrides
    applied_at: datetime = Field(default_factory=_utcnow)


class TimetableEntry(BaseModel):
    day: str
    time_slot: int  # first slot number of the block
    subject: str
    teacher: str    # teacher_id
    room: str
    room_type: RoomType
    batch: Batch = ALL_BATCH
    is_lab_session: bool = False
    duration: int = Field(default=1, ge=1)  # number of grid slots
    overrides: List[ConstraintOverride] = []

    def has_override(self, rule: OverrideRule) -> bool:
        return any(o.rule == rule for o in self.overrides)


class Timetable(BaseModel):
    year: str
    division: str
    batch: Batch = ALL_BATCH
    entries: List[TimetableEntry] = []
    generated_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = False
    version: int = 0

    @property
    def scope(self) -> Tuple[str, str, str]:
        return (self.year, self.division, self.batch)


# ===========================
# Conflicts
# ===========================

class EntryRef(BaseModel):
    """Position of an entry inside the active timetable of one scope."""
    year: str
    division: str
    batch: str = ALL_BATCH
    index: int

    class Config:
        frozen = True

    @property
    def scope(self) -> Tuple[str, str, str]:
        return (self.year, self.division, self.batch)


class UnplacedSession(BaseModel):
    year: str
    division: str
    batch: str = ALL_BATCH
    subject: str
    teacher_id: str
    hours: int
    contiguous: bool = False
    block_size: int = 1
    reason: str = ""

    def key(self) -> Tuple[str, str, str, str, str]:
        return (self.year, self.division, self.batch, self.subject, self.teacher_id)


class Conflict(BaseModel):
    type: ConflictType
    description: str
    suggestion: Optional[str] = None
    severity: Literal["high", "medium", "low"] = "medium"
    entries: List[EntryRef] = []
    session: Optional[UnplacedSession] = None
    status: ConflictStatus = ConflictStatus.DETECTED

    def fingerprint(self) -> tuple:
        """Identity of the underlying condition, stable across re-detection."""
        if self.session is not None:
            return (self.type, self.session.key())
        return (self.type, tuple((e.year, e.division, e.batch, e.index) for e in self.entries))


class ConflictReport(BaseModel):
    total_conflicts: int = 0
    active_conflicts: int = 0
    severity_breakdown: Dict[str, int] = {"high": 0, "medium": 0, "low": 0}
    conflict_types: Dict[str, int] = {}
    affected_divisions: List[str] = []


# ===========================
# Request / response schemas
# ===========================

class GenerationResponse(BaseModel):
    status: str  # "COMPLETED"
    strategy: str
    timetables: List[Timetable]
    unplaced: List[UnplacedSession] = []
    conflicts: List[Conflict] = []
    report: ConflictReport = ConflictReport()
    generation_time_seconds: Optional[float] = None


class ConflictListResponse(BaseModel):
    conflicts: List[Conflict]
    report: ConflictReport


class ResolutionRequest(BaseModel):
    resolutions: Dict[int, ResolutionAction]


class ResolutionOutcome(BaseModel):
    index: int
    action: ResolutionAction
    success: bool
    status: Optional[ConflictStatus] = None
    message: str = ""
    fallback: Optional[ResolutionAction] = None


class ResolutionResponse(BaseModel):
    outcomes: List[ResolutionOutcome]
    conflicts: List[Conflict]
    report: ConflictReport
