"""Custom application exceptions.

Every exception carries a stable ``code`` that the error handlers expose to
clients alongside the human-readable message.
"""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    code = "AppError"

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    def details(self) -> dict[str, Any] | None:
        """Extra structured context for the error response."""
        return None


class InvalidTimeFormat(AppException):
    """Time-of-day string could not be parsed."""

    code = "InvalidTimeFormat"

    def __init__(self, value: str):
        """Initialize with 400 status code."""
        self.value = value
        super().__init__(
            f"Invalid time format: {value!r}. Use 'HH:MM' or 'H:MM AM/PM'",
            status_code=400,
        )


class ValidationFailed(AppException):
    """Missing or invalid request field."""

    code = "ValidationFailed"

    def __init__(self, message: str = "Validation failed"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class NotFound(AppException):
    """Resource not found exception."""

    code = "NotFound"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class Unauthorized(AppException):
    """Unauthorized access exception."""

    code = "Unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class Forbidden(AppException):
    """Forbidden access exception."""

    code = "Forbidden"

    def __init__(self, message: str = "Access denied"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class SchedulingConflict(AppException):
    """Requested slot overlaps an existing appointment."""

    code = "SchedulingConflict"

    def __init__(
        self,
        conflicting_time: str | None = None,
        conflicting_duration: int | None = None,
        message: str | None = None,
    ):
        """Initialize with 409 status code and the occupied slot."""
        self.conflicting_time = conflicting_time
        self.conflicting_duration = conflicting_duration
        if message is None:
            message = (
                "This time slot conflicts with an existing appointment "
                f"({conflicting_time} - {conflicting_duration} minutes)"
            )
        super().__init__(message, status_code=409)

    def details(self) -> dict[str, Any] | None:
        """Expose the conflicting slot so clients can suggest another one."""
        if self.conflicting_time is None:
            return None
        return {
            "conflicting_time": self.conflicting_time,
            "conflicting_duration": self.conflicting_duration,
        }


class PersistenceUniquenessViolation(SchedulingConflict):
    """Slot uniqueness rejected by the data store (concurrent booking)."""

    def __init__(
        self,
        conflicting_time: str | None = None,
        conflicting_duration: int | None = None,
    ):
        """Initialize with the same outward shape as SchedulingConflict."""
        super().__init__(
            conflicting_time=conflicting_time,
            conflicting_duration=conflicting_duration,
            message="This time slot was just booked by another request",
        )


class AlreadyCancelled(AppException):
    """Appointment is already cancelled."""

    code = "AlreadyCancelled"

    def __init__(self, message: str = "Appointment is already cancelled"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class InvalidStatusTransition(AppException):
    """Requested status change is not allowed from the current status."""

    code = "InvalidStatusTransition"

    def __init__(self, current: str, requested: str, message: str | None = None):
        """Initialize with 409 status code."""
        self.current = current
        self.requested = requested
        if message is None:
            message = f"Cannot change appointment status from '{current}' to '{requested}'"
        super().__init__(message, status_code=409)


class RateLimitExceeded(AppException):
    """Rate limit exceeded exception."""

    code = "RateLimitExceeded"

    def __init__(self, message: str = "Rate limit exceeded"):
        """Initialize with 429 status code."""
        super().__init__(message, status_code=429)
