"""errors.py — Typed failures raised by the merge/aggregation engine and store.

Each error carries the HTTP status and envelope code the Lambda maps it to.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "AuthError",
    "ConcurrencyConflictError",
    "DuplicateKeyError",
    "MaintenanceError",
    "MalformedDataError",
    "MalformedInputError",
    "NotFoundError",
    "StoreError",
    "ValidationError",
]


class MaintenanceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details


class ValidationError(MaintenanceError):
    """Raised when a required field is missing or a field value is not allowed."""

    status_code = 400
    code = "INVALID_INPUT"


class MalformedInputError(ValidationError):
    """Raised when an incoming node lacks the key field of its level."""


class AuthError(MaintenanceError):
    status_code = 401
    code = "PERMISSION_DENIED"


class NotFoundError(MaintenanceError):
    status_code = 404
    code = "NOT_FOUND"


class DuplicateKeyError(MaintenanceError):
    """Raised when an insert collides with an existing key under the reject policy."""

    status_code = 409
    code = "CONFLICT"

    def __init__(self, key: Any, collection: str, parent: Optional[str] = None) -> None:
        label = collection[:1].upper() + collection[1:]
        message = f"{label} '{key}' already exists"
        message += f" in {parent}." if parent else "."
        super().__init__(message, key=key, collection=collection, parent=parent)
        self.key = key
        self.collection = collection
        self.parent = parent


class ConcurrencyConflictError(MaintenanceError):
    status_code = 409
    code = "CONFLICT"


class StoreError(MaintenanceError):
    """Raised for unexpected DynamoDB failures (anything but resource-not-found)."""


class MalformedDataError(MaintenanceError):
    """Raised when a stored document does not have the expected shape."""
