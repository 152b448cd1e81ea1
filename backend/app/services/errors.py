"""
Error taxonomy of the core services.

Domain failures are returned inside a ServiceResult (see result.py), never raised
across service boundaries. The HTTP layer maps each error class to a status code
through its http_status attribute:

- ValidationError               -> 400 (caller can fix the input)
- NotFoundError                 -> 404 (referenced entity absent)
- ConflictError                 -> 409 (operation would violate an invariant)
- AlreadyEndedError             -> 409 (allocation end_date already set)
- InvalidStateTransitionError   -> 409 (alert state machine violation)
- UnexpectedError               -> 500 (lower-layer failure, message is opaque)
"""
from typing import Any, Optional


class CoreError(Exception):
    """Base class of every error produced by the core services."""

    code = "CORE_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CoreError):
    """Malformed or out-of-range input."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(CoreError):
    """Referenced entity does not exist."""
    code = "NOT_FOUND"
    http_status = 404


class ConflictError(CoreError):
    """Operation would violate an invariant (active allocations, duplicates, ...)."""
    code = "CONFLICT"
    http_status = 409


class AlreadyEndedError(ConflictError):
    """Allocation already has an end_date."""
    code = "ALREADY_ENDED"


class InvalidStateTransitionError(ConflictError):
    """Alert transition not allowed from its current status."""
    code = "INVALID_STATE_TRANSITION"


class UnexpectedError(CoreError):
    """
    Wraps a lower-layer failure.

    The message shown to callers is always generic; the original exception is kept
    in __cause__ and logged by whoever wraps it.
    """
    code = "UNEXPECTED_ERROR"
    http_status = 500

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(message)
