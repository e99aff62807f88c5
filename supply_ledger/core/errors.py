from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for failures the HTTP boundary maps to a stable status and code."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {key: value for key, value in details.items() if value is not None}

    def with_context(self, **context: Any) -> "LedgerError":
        for key, value in context.items():
            if value is not None:
                self.details.setdefault(key, value)
        return self

    def to_payload(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationFailed(LedgerError):
    code = "VALIDATION_ERROR"
    status_code = 422


class NotFound(LedgerError):
    code = "NOT_FOUND"
    status_code = 404


class InsufficientStock(LedgerError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, *, item_id: int, location_id: int, current: int, requested: int):
        super().__init__(
            "Not enough stock: {} available, {} requested.".format(current, requested),
            item_id=item_id,
            location_id=location_id,
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class DuplicateIdentifier(LedgerError):
    code = "DUPLICATE_IDENTIFIER"
    status_code = 409


class CrossAccountReference(LedgerError):
    code = "CROSS_ACCOUNT_REFERENCE"
    status_code = 403


class Unavailable(LedgerError):
    code = "UNAVAILABLE"
    status_code = 503


class Internal(LedgerError):
    code = "INTERNAL_ERROR"
    status_code = 500


class Unauthenticated(LedgerError):
    code = "UNAUTHENTICATED"
    status_code = 401


__all__ = [
    "CrossAccountReference",
    "DuplicateIdentifier",
    "InsufficientStock",
    "Internal",
    "LedgerError",
    "NotFound",
    "Unauthenticated",
    "Unavailable",
    "ValidationFailed",
]
