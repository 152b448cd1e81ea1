"""
Explicit success/failure result returned by every core service operation.

Usage:
    result = await ledger.create(item)
    if not result.success:
        logger.warning("Allocation rejected", error=result.error.code)
        return result
    allocation = result.value

unwrap() turns a failure back into an exception; only boundaries (API handlers,
CLI) should call it.
"""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from backend.app.services.errors import CoreError

T = TypeVar("T")


class ServiceResult(Generic[T]):
    """Outcome of a service call: either a value or a CoreError."""

    def __init__(self, value: Optional[T] = None, error: Optional[CoreError] = None):
        self.value = value
        self.error = error

    @classmethod
    def ok(cls, value: Optional[T] = None) -> ServiceResult[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, error: CoreError) -> ServiceResult[T]:
        return cls(error=error)

    @property
    def success(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value

    def __repr__(self) -> str:
        if self.success:
            return f"ServiceResult.ok({self.value!r})"
        return f"ServiceResult.fail({self.error.code}: {self.error.message})"
