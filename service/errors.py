"""
Exception hierarchy for the scheduling engine.

Every error carries an HTTP status code so the API layer can translate it
without knowing about individual failure modes.
"""
from typing import List, Optional


class TimetableError(Exception):
    """Base class for all engine exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: Optional[dict] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class RestrictionConflict(TimetableError):
    """Raised when a new restriction cannot be reconciled with an existing one."""
    def __init__(self, message: str, conflicting_ids: Optional[List[str]] = None):
        super().__init__(message, status_code=409, details={"conflicting_restrictions": conflicting_ids or []})


class RestrictionNotFound(TimetableError):
    def __init__(self, restriction_id: str):
        super().__init__(f"Restriction with id {restriction_id} not found", status_code=404)


class InvalidConfiguration(TimetableError):
    """Raised when configuration is incomplete; generation aborts entirely."""
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors), status_code=422, details={"errors": self.errors})


class Unplaceable(TimetableError):
    """A single session has no valid position. Recovered by the allocator."""
    def __init__(self, message: str):
        super().__init__(message, status_code=422)


class Unresolvable(TimetableError):
    """auto_resolve found no alternate position; fall back to manual review."""
    def __init__(self, message: str):
        super().__init__(message, status_code=422)


class GenerationInProgress(TimetableError):
    def __init__(self, scopes: List[tuple]):
        labels = ", ".join("/".join(scope) for scope in scopes)
        super().__init__(
            f"Generation already in progress for {labels}",
            status_code=409,
            details={"scopes": [list(scope) for scope in scopes]},
        )
