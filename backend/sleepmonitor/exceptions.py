"""
Errors raised by the sleep record store.

Both kinds propagate to the immediate caller; the store never retries
and never substitutes default values.
"""
from typing import Optional


class SleepStoreError(Exception):
    """Base class for all storage errors."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class StorageIOError(SleepStoreError):
    """
    The database engine rejected a statement (constraint violation,
    locked/unavailable file, failed commit). Transient from the caller's
    point of view.
    """


class DataIntegrityError(SleepStoreError):
    """
    A stored row violates the decode rules, e.g. its date is NULL or
    not convertible. Indicates corruption, not a transient failure.
    """
