"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    # Whether a client may repeat the request after re-reading current state
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and optional context."""
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found", details: dict[str, Any] | None = None):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404, details=details)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden", details: dict[str, Any] | None = None):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403, details=details)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, details=details)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", details: dict[str, Any] | None = None):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422, details=details)


# Appointment lifecycle errors


class IllegalTransitionException(ValidationException):
    """No transition rule allows moving between the two statuses."""

    def __init__(self, appointment_id: Any, current_status: str, requested_status: str):
        """Initialize with the current and requested status for diagnostics."""
        super().__init__(
            f"Transition from '{current_status}' to '{requested_status}' is not allowed",
            details={
                "appointment_id": str(appointment_id),
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )


class MissingReasonException(ValidationException):
    """The operation requires a reason and none was supplied."""

    def __init__(
        self,
        message: str = "A reason is required for this change",
        details: dict[str, Any] | None = None,
    ):
        """Initialize with 422 status code."""
        super().__init__(message, details=details)


class InvalidStateForOperationException(ValidationException):
    """The appointment's status does not allow the requested operation."""

    def __init__(self, appointment_id: Any, current_status: str, operation: str):
        """Initialize with the blocking status."""
        super().__init__(
            f"Cannot {operation} an appointment in status '{current_status}'",
            details={
                "appointment_id": str(appointment_id),
                "current_status": current_status,
                "operation": operation,
            },
        )


class SlotUnavailableException(ValidationException):
    """The doctor already holds an active appointment at the requested time."""

    def __init__(
        self,
        message: str = "Time slot not available",
        details: dict[str, Any] | None = None,
    ):
        """Initialize with 422 status code."""
        super().__init__(message, details=details)


class VersionConflictException(ConflictException):
    """Another writer advanced the appointment's version first."""

    retryable = True

    def __init__(self, appointment_id: Any, expected_version: int):
        """Initialize with the stale version the caller supplied."""
        super().__init__(
            "This appointment changed since you loaded it. Refresh and retry.",
            details={
                "appointment_id": str(appointment_id),
                "expected_version": expected_version,
            },
        )


class IndeterminateOutcomeException(AppException):
    """The storage call did not finish; the mutation may or may not have been applied."""

    retryable = True

    def __init__(self, appointment_id: Any, operation: str):
        """Initialize with 503 status code."""
        super().__init__(
            "The outcome of the change is unknown. Refresh the appointment before retrying.",
            status_code=503,
            details={
                "appointment_id": str(appointment_id),
                "operation": operation,
            },
        )
