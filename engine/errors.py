"""
Exception types raised by the engine.

Expected business outcomes are returned as OperationResult / LoadResult
instead; these are for faults that must abort the current operation.
"""
from typing import Optional

# Substrings that identify an expired or revoked session in store errors
SESSION_ERROR_MARKERS = (
    "Refresh Token",
    "JWT expired",
    "invalid JWT",
    "session_not_found",
)


class ProcurementError(Exception):
    """Base class for engine errors."""


class PersistenceError(ProcurementError):
    """A read or write against the backing store failed."""

    def __init__(self, table: str, operation: str, message: str) -> None:
        self.table = table
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} on {table} failed: {message}")


class ValidationError(ProcurementError):
    """Input rejected before any write."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class LoadTimeoutError(ProcurementError):
    """The top-level load did not finish within its deadline."""


class SessionExpiredError(PersistenceError):
    """The store rejected the request because the session is no longer valid."""


def is_session_error(message: Optional[str]) -> bool:
    """Return True if an error message looks like an auth/session failure."""
    if not message:
        return False
    return any(marker.lower() in message.lower() for marker in SESSION_ERROR_MARKERS)
