"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and context."""
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found", **details: Any):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404, details=details)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden", **details: Any):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403, details=details)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict", **details: Any):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, details=details)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", **details: Any):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422, details=details)


class InvalidStateException(ConflictException):
    """A state transition was attempted from a state that forbids it."""

    def __init__(self, message: str = "Invalid state transition", **details: Any):
        super().__init__(message, **details)


class SlotUnavailableException(ConflictException):
    """The requested time slot overlaps an existing booking."""

    def __init__(self, message: str = "Time slot is not available", **details: Any):
        super().__init__(message, **details)


class DoctorNotApprovedException(ConflictException):
    """Booking attempted against a doctor whose application is not approved."""

    def __init__(self, message: str = "Doctor is not approved", **details: Any):
        super().__init__(message, **details)


class DoctorUnavailableException(ConflictException):
    """Booking attempted against a doctor who is not taking appointments."""

    def __init__(self, message: str = "Doctor is not available", **details: Any):
        super().__init__(message, **details)
