"""
Custom exceptions for the match event log.

Caller-input errors (unknown event type, malformed event) and failed
persistence writes raise these. Expected absence (unknown event id) and
corrupted snapshots on load never raise; they are reported through
return values instead.
"""

from __future__ import annotations

from collections.abc import Iterable


class MatchLogError(Exception):
    """Base exception for all match event log errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidEventType(MatchLogError):
    """Raised when an event type is not part of the closed enumeration."""

    def __init__(self, event_type: object):
        super().__init__(f"Invalid event type: {event_type}", {"event_type": str(event_type)})
        self.event_type = event_type


class EventValidationFailed(MatchLogError):
    """Raised when a constructed event is missing or has invalid fields."""

    def __init__(self, problems: Iterable[str]):
        self.problems = list(problems)
        super().__init__(
            f"Event validation failed: {', '.join(self.problems)}",
            {"problems": self.problems},
        )


class PersistenceWriteFailed(MatchLogError):
    """Raised when a mutation could not be persisted.

    The in-memory store is left exactly as it was before the call.
    """

    def __init__(self, operation: str, event_id: str | None = None):
        details = {"operation": operation}
        if event_id:
            details["event_id"] = event_id
        super().__init__(f"Failed to persist {operation}", details)
        self.operation = operation
        self.event_id = event_id


class StorageError(MatchLogError):
    """Raised by storage backends when a key-value operation fails."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if key:
            details["key"] = key
        if cause:
            details["cause"] = str(cause)
        message = f"Storage {operation} failed"
        if key:
            message += f" for key '{key}'"
        if cause:
            message += f": {cause}"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause


class StorageQuotaExceeded(StorageError):
    """Raised when a write would exceed the backend's capacity."""
