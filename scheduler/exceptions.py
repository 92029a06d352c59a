"""
Typed exception hierarchy for the coverage scheduler.

Every failure the core can report is a CoverageError carrying a
machine-readable error code and a details dict, so callers (an API layer,
a worker) can map them without string matching.

Usage:
    from scheduler.exceptions import ConflictingBooking, UnknownEventId

    raise UnknownEventId(event_id)
"""
from typing import Any, Dict, Optional


class CoverageError(Exception):
    """
    Base exception for all scheduler errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g. "NOT_FOUND")
        details: Additional context for debugging
    """

    error_code: str = "COVERAGE_ERROR"

    def __init__(
        self,
        message: str = "An unexpected scheduling error occurred",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ===================
# Validation Errors
# ===================


class ValidationError(CoverageError, ValueError):
    """Malformed input, rejected before anything is read or written."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details=details)


# ===================
# Not Found Errors
# ===================


class NotFoundError(CoverageError):
    error_code = "NOT_FOUND"
    entity: str = "Entity"

    def __init__(self, identifier: Any = None, *, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["entity"] = self.entity
        if identifier is not None:
            details["id"] = str(identifier)
        message = f"{self.entity} not found"
        if identifier is not None:
            message = f"{self.entity} with id '{identifier}' not found"
        self.identifier = identifier
        super().__init__(message, details=details)


class UnknownEventId(NotFoundError):
    error_code = "UNKNOWN_EVENT_ID"
    entity = "Event"


class UnknownResourceId(NotFoundError):
    error_code = "UNKNOWN_RESOURCE_ID"
    entity = "Resource"


class UnknownRequestId(NotFoundError):
    error_code = "UNKNOWN_REQUEST_ID"
    entity = "CoverageRequest"


class UnknownAssignmentId(NotFoundError):
    error_code = "UNKNOWN_ASSIGNMENT_ID"
    entity = "Assignment"


# ===================
# State Errors
# ===================


class StateError(CoverageError):
    """The entity exists but is in the wrong state for the operation."""

    error_code = "INVALID_STATE"

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        *,
        current_state: Optional[str] = None,
        allowed_states: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        if allowed_states:
            details["allowed_states"] = allowed_states
        self.current_state = current_state
        super().__init__(message, details=details)


class NotApproved(StateError):
    error_code = "NOT_APPROVED"


class TerminalState(StateError):
    error_code = "TERMINAL_STATE"


class InvalidTransition(StateError):
    error_code = "INVALID_TRANSITION"


# ===================
# Booking Errors
# ===================


class BookingError(CoverageError):
    error_code = "BOOKING_ERROR"


class NotAvailable(BookingError):
    error_code = "NOT_AVAILABLE"


class ConflictingBooking(BookingError):
    error_code = "CONFLICTING_BOOKING"


class NoActiveBooking(BookingError):
    error_code = "NO_ACTIVE_BOOKING"


class ResourceInUse(BookingError):
    error_code = "RESOURCE_IN_USE"


# ===================
# Contention Errors
# ===================


class ContentionError(CoverageError):
    error_code = "CONTENTION"


class VersionConflict(ContentionError):
    """Raised by the store when a write carries a version that is no longer current."""

    error_code = "VERSION_CONFLICT"

    def __init__(self, entity: str, identifier: str, expected: int, actual: int):
        self.entity = entity
        self.identifier = identifier
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{entity} '{identifier}' changed since it was read (read v{expected}, now v{actual})",
            details={"entity": entity, "id": identifier, "expected": expected, "actual": actual},
        )


class StaleRevision(ContentionError):
    """The caller worked from an older event revision than the stored one."""

    error_code = "STALE_REVISION"


class Contended(ContentionError):
    """Retries exhausted while racing other writers for the same entity."""

    error_code = "CONTENDED"
