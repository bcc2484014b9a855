"""
procurement_tracker/errors.py

Error taxonomy and operation results for the request store.

- ProcurementError: failures of a store operation. Raised before any mutation
  is applied, so the store is unchanged when one is reported.
- SyncError: remote persistence failures. Never fatal to the local state;
  they travel alongside the applied value in MutationResult.sync_error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


class ProcurementError(Exception):
    """Base error for store operations."""

    status_code = 400
    error_code = "PROCUREMENT_ERROR"

    def __init__(self, message: str = "Operation failed"):
        self.message = message
        super().__init__(message)


class NotFound(ProcurementError):
    status_code = 404
    error_code = "NOT_FOUND"


class RequestNotFound(NotFound):
    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__("Request not found")


class ItemNotFound(NotFound):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__("Item not found")


class FileNotFound(NotFound):
    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__("File not found")


class ValidationError(ProcurementError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class InvalidStateTransition(ProcurementError):
    status_code = 409
    error_code = "INVALID_STATE_TRANSITION"


class ConflictError(ProcurementError):
    """The record changed between snapshot and commit (version mismatch)."""

    status_code = 409
    error_code = "CONFLICT"

    def __init__(self, request_id: str, expected: int, actual: int):
        self.request_id = request_id
        self.expected = expected
        self.actual = actual
        super().__init__("Request was modified concurrently, reload and try again")


class PermissionDenied(ProcurementError):
    status_code = 403
    error_code = "PERMISSION_DENIED"

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)


# ---------------------------------------------------------------------
# Remote persistence
# ---------------------------------------------------------------------
class SyncError(Exception):
    """Remote persistence failed; the local state is still applied."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        self.message = message
        self.original = original
        super().__init__(message)


class TableMissingError(SyncError):
    """The backend table/relation does not exist (triggers fallback data)."""


class BackendError(SyncError):
    """Any other backend failure."""


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------
@dataclass
class Notification:
    """One human-readable outcome message (flash categories)."""

    title: str
    message: str
    category: str = "success"

    def to_dict(self) -> dict:
        return {"title": self.title, "message": self.message, "category": self.category}


@dataclass
class MutationResult:
    """
    Outcome of a store operation.

    bool(result) is False when the operation was refused (error set).
    unwrap() gives the value or raises the error.
    """

    value: Any = None
    error: Optional[ProcurementError] = None
    sync_error: Optional[SyncError] = None
    notification: Optional[Notification] = field(default=None)

    def __bool__(self) -> bool:
        return self.error is None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def synced(self) -> bool:
        return self.error is None and self.sync_error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value
