"""
Booking lifecycle rules.

The happy path is
pending -> accepted -> en_route_pickup -> picked_up -> en_route_delivery
-> delivered -> completed, with cancelled and rejected as absorbing states.
Nothing leaves completed, cancelled or rejected.
"""

from typing import Optional

from ..exceptions import AuthorizationError, InvalidTransitionError
from ..models import ActorContext, Booking, BookingStatus, Coordinates, Role

S = BookingStatus

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    S.PENDING: frozenset({S.ACCEPTED, S.REJECTED, S.CANCELLED}),
    S.ACCEPTED: frozenset({S.EN_ROUTE_PICKUP, S.CANCELLED}),
    S.EN_ROUTE_PICKUP: frozenset({S.PICKED_UP, S.CANCELLED}),
    S.PICKED_UP: frozenset({S.EN_ROUTE_DELIVERY}),
    S.EN_ROUTE_DELIVERY: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REJECTED: frozenset(),
}

# Moves only the bound carrier may make
CARRIER_STEPS = frozenset({S.EN_ROUTE_PICKUP, S.PICKED_UP, S.EN_ROUTE_DELIVERY, S.DELIVERED})

# Moves decided by a matcher rather than a party
MATCHER_STEPS = frozenset({S.ACCEPTED, S.REJECTED})

# Statuses in which the vehicle is on the trip
ACTIVE_TRIP_STATUSES = frozenset({S.ACCEPTED, S.EN_ROUTE_PICKUP, S.PICKED_UP, S.EN_ROUTE_DELIVERY})

RATEABLE_STATUSES = frozenset({S.DELIVERED, S.COMPLETED})


def allowed_targets(status: BookingStatus) -> frozenset[BookingStatus]:
    """Statuses reachable in one step from ``status``."""
    return TRANSITIONS[status]


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS[current]


def validate_transition(booking: Booking, target: BookingStatus) -> None:
    """
    Check ``target`` is reachable from the booking's status.

    Raises:
        InvalidTransitionError: With the current and requested status attached
    """
    if not can_transition(booking.status, target):
        raise InvalidTransitionError(booking.status, target, booking=booking)


def authorize_transition(booking: Booking, actor: ActorContext, target: BookingStatus) -> None:
    """
    Check the actor may make this move.

    Matcher decisions only get a coarse role check here; ownership of the
    vehicle is checked by the engine, which has the vehicle loaded.

    Raises:
        AuthorizationError: If the actor is not allowed to make the move
    """
    if target in CARRIER_STEPS:
        if booking.carrier_id is None or actor.actor_id != booking.carrier_id:
            raise AuthorizationError(
                f"Only the assigned carrier may move booking {booking.ref} to '{target.value}'"
            )
    elif target == S.COMPLETED:
        if not booking.is_party(actor.actor_id):
            raise AuthorizationError(f"Only a party to booking {booking.ref} may complete it")
    elif target == S.CANCELLED:
        if not (booking.is_party(actor.actor_id) or actor.is_admin):
            raise AuthorizationError(f"Only a party to booking {booking.ref} may cancel it")
    elif target in MATCHER_STEPS:
        if actor.role not in (Role.CARRIER, Role.ADMIN):
            raise AuthorizationError(
                f"Role '{actor.role.value}' may not decide on booking {booking.ref}"
            )


def apply_transition(
    booking: Booking,
    actor: ActorContext,
    target: BookingStatus,
    note: Optional[str] = None,
    location: Optional[Coordinates] = None,
) -> Booking:
    """
    Validate and apply one transition to a working copy of ``booking``.

    The caller persists the returned copy with a conditional write; the
    input booking is left untouched.
    """
    validate_transition(booking, target)
    authorize_transition(booking, actor, target)
    working = booking.model_copy(deep=True)
    working.record_status(target, actor.actor_id, note=note, location=location)
    return working
