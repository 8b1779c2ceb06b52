"""
Scheduling error taxonomy.

Every failure raised by the lifecycle and calendar services is a
SchedulingError carrying a stable machine-readable code, an HTTP-equivalent
status and a message that can be shown to the user as-is.

    NotFoundError             404  APT_040 / CAL_001 / CAL_002
    IllegalTransitionError    400  APT_030 / APT_021 / APT_050 / CAL_003
    LimitExceededError        400  APT_020
    SchedulingConflictError   409  CAL_CONFLICT (details["conflicts"])
    ResourceUnavailableError  400  CAL_004

None of these are retried; the caller has to change its input first.
"""

from typing import Any


class SchedulingError(Exception):
    """
    Base exception for appointment lifecycle and calendar errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        status_code: HTTP-equivalent status
        details: Structured context for the caller
    """

    status_code: int = 400
    default_code: str = "SCHEDULING_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging and error responses."""
        payload: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code={self.error_code!r}, message={self.message!r})>"


class NotFoundError(SchedulingError):
    """Raised when an entity does not exist (or is soft-deleted) in the tenant scope."""

    status_code = 404
    default_code = "NOT_FOUND"


class IllegalTransitionError(SchedulingError):
    """Raised when an operation is not valid from the entity's current status."""

    status_code = 400
    default_code = "APT_030"


class LimitExceededError(SchedulingError):
    """Raised when the reschedule count has reached the configured maximum."""

    status_code = 400
    default_code = "APT_020"


class SchedulingConflictError(SchedulingError):
    """Raised when a proposed slot overlaps existing appointments."""

    status_code = 409
    default_code = "CAL_CONFLICT"

    def __init__(
        self,
        message: str,
        conflicts: list[dict[str, Any]],
        error_code: str | None = None,
    ):
        super().__init__(message, error_code=error_code, details={"conflicts": conflicts})

    @property
    def conflicts(self) -> list[dict[str, Any]]:
        return self.details["conflicts"]


class ResourceUnavailableError(SchedulingError):
    """Raised when a proposed slot falls inside a stylist's blocked interval."""

    status_code = 400
    default_code = "CAL_004"
