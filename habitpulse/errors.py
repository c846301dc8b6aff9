"""
errors.py — Domain exceptions
Request-level failures carry an HTTP status so the API layer can map them
without knowing each type. Unavailable never leaves the cache layer.
"""

from typing import Any, Optional


class HabitPulseError(Exception):
    """Base exception for all habit engine errors."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(HabitPulseError):
    """Habit, log or milestone is missing or belongs to another user."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", resource_id: Any = None):
        message = f"{resource} with id '{resource_id}' not found" if resource_id is not None else f"{resource} not found"
        super().__init__(message)


class InvalidSchedule(HabitPulseError):
    """Recurrence rule cannot be evaluated, or a date is outside the accepted range."""

    status_code = 422
    code = "INVALID_SCHEDULE"


class Conflict(HabitPulseError):
    """The record is in a state that forbids the requested change."""

    status_code = 409
    code = "CONFLICT"


class Unavailable(HabitPulseError):
    """Transient cache / remote store failure."""

    status_code = 503
    code = "UNAVAILABLE"
