"""
Custom exceptions for the Gatherly events service.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the service."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Lifecycle errors
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Admission errors
    EVENT_NOT_OPEN = "EVENT_NOT_OPEN"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    NOT_REGISTERED = "NOT_REGISTERED"
    CAPACITY_BELOW_OCCUPANCY = "CAPACITY_BELOW_OCCUPANCY"

    # Concurrency errors
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


class GatherlyError(Exception):
    """Base exception class for the Gatherly service."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        """Initialize the exception with comprehensive error information."""
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result


class ValidationError(GatherlyError):
    """Exception raised for validation errors."""

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None, **kwargs):
        kwargs.setdefault("details", {"field_errors": field_errors} if field_errors else None)
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            **kwargs
        )
        self.field_errors = field_errors or {}


class NotFoundError(GatherlyError):
    """Base exception for resource not found errors."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class EventNotFoundError(NotFoundError):
    """Exception raised when an event is not found."""

    def __init__(self, event_id: str, **kwargs):
        super().__init__(
            f"Event {event_id} not found",
            resource_type="event",
            resource_id=event_id,
            suggestions=["Check the event ID", "Browse available events"],
            **kwargs
        )


class UserNotFoundError(NotFoundError):
    """Exception raised when a user is not found."""

    def __init__(self, user_id: str, **kwargs):
        super().__init__(
            f"User {user_id} not found",
            resource_type="user",
            resource_id=user_id,
            **kwargs
        )


class AttendeeNotFoundError(NotFoundError):
    """Exception raised when a user holds no active registration for an event."""

    def __init__(self, event_id: str, user_id: str, **kwargs):
        super().__init__(
            f"User {user_id} has no active registration for event {event_id}",
            resource_type="attendee",
            resource_id=f"{event_id}:{user_id}",
            **kwargs
        )


class AuthorizationError(GatherlyError):
    """Exception raised for authorization failures."""

    def __init__(self, message: str = "Access denied", required_permission: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.FORBIDDEN,
            details={"required_permission": required_permission} if required_permission else None,
            suggestions=["Contact an administrator for access"],
            **kwargs
        )


class Unauthorized(GatherlyError):
    """Raised when the actor is neither an organizer of the event nor an admin."""

    def __init__(self, event_id: str, actor_id: str, **kwargs):
        super().__init__(
            f"User {actor_id} is not an organizer of event {event_id}",
            error_code=ErrorCode.UNAUTHORIZED,
            details={"event_id": event_id, "actor_id": actor_id},
            suggestions=["Ask an organizer of this event to add you to the team"],
            **kwargs
        )


class BusinessLogicError(GatherlyError):
    """Base exception for business logic violations."""
    pass


class InvalidTransition(BusinessLogicError):
    """Raised when a lifecycle transition is not in the allowed table."""

    def __init__(self, event_id: str, current_status: str, target_status: str, allowed: List[str], **kwargs):
        super().__init__(
            f"Event {event_id} cannot move from {current_status} to {target_status}",
            error_code=ErrorCode.INVALID_TRANSITION,
            details={
                "event_id": event_id,
                "current_status": current_status,
                "target_status": target_status,
                "allowed_targets": allowed,
            },
            **kwargs
        )


class EventNotOpen(BusinessLogicError):
    """Raised when registering for an event that is not accepting registrations."""

    def __init__(self, event_id: str, current_status: str, **kwargs):
        super().__init__(
            f"Event {event_id} is {current_status} and not open for registration",
            error_code=ErrorCode.EVENT_NOT_OPEN,
            details={"event_id": event_id, "current_status": current_status},
            suggestions=["Registration opens once the event is published"],
            **kwargs
        )


class AlreadyRegistered(BusinessLogicError):
    """Raised when the user already holds an active registration or waitlist spot."""

    def __init__(self, event_id: str, user_id: str, current_status: Optional[str] = None, **kwargs):
        super().__init__(
            f"User {user_id} is already registered for event {event_id}",
            error_code=ErrorCode.ALREADY_REGISTERED,
            details={"event_id": event_id, "user_id": user_id, "current_status": current_status},
            **kwargs
        )


class NotRegistered(BusinessLogicError):
    """Raised when cancelling a registration that does not exist or is already cancelled."""

    def __init__(self, event_id: str, user_id: str, **kwargs):
        super().__init__(
            f"User {user_id} has no active registration for event {event_id}",
            error_code=ErrorCode.NOT_REGISTERED,
            details={"event_id": event_id, "user_id": user_id},
            **kwargs
        )


class CapacityBelowOccupancy(BusinessLogicError):
    """Raised when a capacity edit would drop below the registered count."""

    def __init__(self, event_id: str, requested: int, occupancy: int, **kwargs):
        super().__init__(
            f"Capacity {requested} is below the {occupancy} attendees already registered",
            error_code=ErrorCode.CAPACITY_BELOW_OCCUPANCY,
            details={"event_id": event_id, "requested_capacity": requested, "occupancy": occupancy},
            suggestions=[f"Choose a capacity of at least {occupancy}"],
            **kwargs
        )


class ConcurrencyConflict(GatherlyError):
    """Exception raised when another writer modified the event first; always safe to retry."""

    def __init__(self, message: str, retry_after: int = 1, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.CONCURRENCY_CONFLICT,
            retry_after=retry_after,
            suggestions=["Please try again", "Wait a moment and retry"],
            **kwargs
        )


class ExternalServiceError(GatherlyError):
    """Exception raised for external service failures."""

    def __init__(self, service_name: str, message: str, status_code: Optional[int] = None, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.EXTERNAL_SERVICE_ERROR)
        kwargs.setdefault("details", {"service_name": service_name, "status_code": status_code})
        super().__init__(
            f"{service_name} service error: {message}",
            suggestions=["Try again later", "Contact support if problem persists"],
            **kwargs
        )
