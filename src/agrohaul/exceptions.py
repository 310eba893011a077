"""Error taxonomy for the dispatch engine.

Every error is a per-request failure. Conflict errors carry the booking's
current status (and snapshot, where one was loaded) so the caller can
reconcile before deciding whether to retry.
"""

from enum import Enum
from typing import Any, Optional


class DispatchError(Exception):
    """Base class for all dispatch engine errors."""

    code = "dispatch_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Convert to a response payload."""
        return {"error": self.code, "message": self.message}


class ValidationError(DispatchError, ValueError):
    """Malformed input: bad coordinates, non-positive quantities, unknown enum."""

    code = "validation_error"


class OutOfRangeError(ValidationError):
    """A numeric input fell outside its permitted range."""

    code = "out_of_range"


class NotFoundError(DispatchError):
    """Unknown booking, vehicle or identity."""

    code = "not_found"

    def __init__(self, kind: str, ref: str):
        super().__init__(f"{kind} '{ref}' not found")
        self.kind = kind
        self.ref = ref


class AuthorizationError(DispatchError):
    """Actor is not a party to the booking or lacks the required role."""

    code = "not_authorized"


class ConflictError(DispatchError):
    """The request conflicts with the booking's current state."""

    code = "conflict"

    def __init__(self, message: str, current_status: Optional[Enum] = None, booking: Any = None):
        super().__init__(message)
        self.current_status = current_status
        self.booking = booking

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["current_status"] = (
            self.current_status.value if self.current_status is not None else None
        )
        return payload


class InvalidTransitionError(ConflictError):
    """The requested status is not reachable from the current one."""

    code = "invalid_transition"

    def __init__(self, current_status: Enum, requested_status: Enum, booking: Any = None):
        super().__init__(
            f"Cannot move booking from '{current_status.value}' to '{requested_status.value}'",
            current_status=current_status,
            booking=booking,
        )
        self.requested_status = requested_status

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["requested_status"] = self.requested_status.value
        return payload


class ClaimLossReason(str, Enum):
    """Why an accept attempt lost."""

    ALREADY_ACCEPTED = "already_accepted"
    VEHICLE_UNAVAILABLE = "vehicle_unavailable"


class ClaimLostError(ConflictError):
    """Another carrier won the booking, or the vehicle is already committed."""

    code = "claim_lost"

    def __init__(self, reason: ClaimLossReason, current_status: Optional[Enum] = None, booking: Any = None):
        super().__init__(
            f"Claim lost: {reason.value}",
            current_status=current_status,
            booking=booking,
        )
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason.value
        return payload


class DuplicateRatingError(ConflictError):
    """This party already rated this booking."""

    code = "duplicate_rating"


class AlreadyTerminalError(ConflictError):
    """The booking is already completed, cancelled or rejected."""

    code = "already_terminal"


class StaleBookingError(ConflictError):
    """A concurrent writer changed the booking between read and write."""

    code = "stale_booking"
