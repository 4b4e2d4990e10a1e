"""
Error taxonomy for ParseMyBill.

Every error carries a human-readable message, optional details, and the
pipeline step it is attributed to so the UI can tell the user which part of
an operation failed.

    ParseMyBillError
    ├── ValidationError
    ├── AuthenticationError
    ├── ExtractionError
    ├── UploadError
    ├── PersistenceError
    │   └── OrphanedFileError
    └── NotFoundError
"""

from typing import Any, Dict, Optional


class ParseMyBillError(Exception):
    """Base exception for all ParseMyBill errors."""

    step = "request"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(ParseMyBillError):
    """Raised when required input is missing or malformed."""

    step = "validation"


class AuthenticationError(ParseMyBillError):
    """Raised when no valid session or credentials are available."""

    step = "authentication"


class ExtractionError(ParseMyBillError):
    """Raised when the model call fails or returns non-conforming data."""

    step = "extraction"


class UploadError(ParseMyBillError):
    """Raised when writing to the object store fails."""

    step = "upload"


class PersistenceError(ParseMyBillError):
    """Raised when a database read or write fails."""

    step = "save"


class OrphanedFileError(PersistenceError):
    """Raised when a record was deleted but its backing file was not.

    The database deletion is not rolled back; ``storage_path`` names the
    file left behind in the object store.
    """

    step = "delete"

    def __init__(self, record_id: str, storage_path: str, reason: Optional[str] = None):
        message = f"Invoice {record_id} was deleted but its file could not be removed (orphaned file: {storage_path})"
        super().__init__(message, {"record_id": record_id, "storage_path": storage_path, "reason": reason})
        self.record_id = record_id
        self.storage_path = storage_path


class NotFoundError(ParseMyBillError):
    """Raised when a record or stored document does not exist."""

    step = "lookup"

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}", {"kind": kind, "id": identifier})
        self.identifier = identifier


__all__ = [
    "ParseMyBillError",
    "ValidationError",
    "AuthenticationError",
    "ExtractionError",
    "UploadError",
    "PersistenceError",
    "OrphanedFileError",
    "NotFoundError",
]
