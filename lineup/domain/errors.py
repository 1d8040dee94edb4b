# lineup/domain/errors.py
"""
Failure taxonomy for the lineup client.

Every failure raised by the transport or the writers is caught at the edit
session / writer boundary and turned into a field-scoped message; nothing here
is meant to reach the presentation layer uncaught.
"""
from dataclasses import dataclass
from typing import Any, Optional


class LineupError(Exception):
    """Base class for all lineup client errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ApiError(LineupError):
    """A request/response pair failed: non-2xx status or transport error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SyncFailure(LineupError):
    pass


class TransientSyncFailure(SyncFailure):
    """One missed poll. Retried on the next tick, never surfaced."""


class PersistentSyncFailure(SyncFailure):
    """Consecutive missed polls; surfaced only as a staleness indicator."""

    def __init__(self, message: str, consecutive_failures: int):
        super().__init__(message)
        self.consecutive_failures = consecutive_failures


class SaveFailure(LineupError):
    """A single-field mutation was rejected. The local value is kept for retry."""

    def __init__(self, message: str, record_id: Optional[int] = None, field: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id
        self.field = field


class AssignmentRejected(SaveFailure):
    """An assignment was refused before any request was sent."""


class SaveInFlight(SaveFailure):
    """Another mutation for the same (record, field) has not resolved yet."""


class BulkPreviewFailure(LineupError):
    pass


class BulkCommitFailure(LineupError):
    """The batch write failed; the preview is kept so the commit can be retried."""


class BulkCommitRefused(LineupError):
    """Commit was requested without an assignable preview."""


@dataclass(frozen=True)
class ConflictDetected:
    """Warning raised when another operator changed a field we are editing."""

    record_id: int
    field: str
    local_value: Any
    remote_value: Any

    @property
    def message(self) -> str:
        return f"Another operator changed this field to {self.remote_value!r}"
