"""
Domain exceptions for dispatch business logic.

Every error carries a stable machine-readable ``code``; callers branch on the
code, never on the message. Services raise these before mutating anything
where possible, and the HTTP layer renders them through a single handler.
"""
from typing import Any, Dict, Optional


class DispatchError(Exception):
    """Base exception for all dispatch domain errors"""

    status_code = 400
    default_code = "DISPATCH_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        field: Optional[str] = None,
        status_code: Optional[int] = None,
        **extra: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.field = field
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code, "field": self.field}
        body.update(self.extra)
        return body


class ValidationError(DispatchError):
    """Client input is malformed, missing or out of range"""

    default_code = "INVALID_REQUEST"


class ImmutableFieldError(ValidationError):
    """Raised when an update tries to set an identity or creation timestamp"""

    default_code = "IMMUTABLE_FIELD"


class NotFoundError(DispatchError):
    """Referenced entity does not exist"""

    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(DispatchError):
    """State-machine violation; retry against a different target, not this one"""

    default_code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """Raised when a status transition is not allowed from the current state"""

    default_code = "INVALID_TRANSITION"


class SlotNotAvailableError(ConflictError):
    """Raised when claiming a slot that is not open"""

    default_code = "SLOT_NOT_AVAILABLE"


class CapacityExceededError(ConflictError):
    """Raised when a subcontractor already holds max_daily_jobs slots on a date"""

    default_code = "MAX_DAILY_JOBS_REACHED"


class RelationshipMismatchError(ConflictError):
    """Raised when order, subcontractor and time slot do not belong together"""

    default_code = "RELATIONSHIP_MISMATCH"


class UniquenessError(DispatchError):
    """Raised when a unique identity (subcontractor email) is already taken"""

    default_code = "EMAIL_EXISTS"
