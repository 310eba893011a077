"""
Dispatch Engine

Turns a pending transport request into a committed, tracked and priced trip.
Every operation loads the booking, validates the change against the
lifecycle rules, and persists it with a conditional write on the booking's
version. A write that loses to a concurrent writer surfaces as a conflict;
the engine never retries on the caller's behalf.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Type, TypeVar, Union

import structlog

from ..config import settings
from ..db.repository import DispatchRepository
from ..exceptions import (
    AlreadyTerminalError,
    AuthorizationError,
    ClaimLossReason,
    ClaimLostError,
    ConflictError,
    DispatchError,
    InvalidTransitionError,
    NotFoundError,
    OutOfRangeError,
    StaleBookingError,
    ValidationError,
)
from ..geo import GeoIndex
from ..geo.distance import display_km
from ..models import (
    ActorContext,
    Booking,
    BookingStatus,
    Cargo,
    Coordinates,
    Decision,
    EntityKind,
    Identity,
    Message,
    MessageType,
    Rating,
    RatingDirection,
    Role,
    RoutePoint,
    TimeWindow,
    UrgencyTier,
    Vehicle,
    VehicleType,
    generate_booking_ref,
)
from ..models.booking import utcnow
from . import state_machine
from .claims import ClaimManager, ClaimResult
from .events import DomainEvent, EventSink, EventType, LoggingEventSink
from .pricing import PricingCalculator
from .ratings import RatingAggregator, ensure_not_rated, validate_score

logger = structlog.get_logger(__name__)

E = TypeVar("E", bound=Enum)


@dataclass
class NearbyResult:
    """One entity found by a radius search."""

    kind: EntityKind
    entity: Union[Vehicle, Booking]
    distance_km: float

    @property
    def entity_id(self) -> str:
        return self.entity.id if isinstance(self.entity, Vehicle) else self.entity.ref

    @property
    def display_distance_km(self) -> float:
        return display_km(self.distance_km)


def _coerce(enum_cls: Type[E], value: Any, label: str) -> E:
    """Parse a closed-vocabulary value at the boundary."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Unknown {label} '{value}'. Expected one of: {allowed}")


class DispatchEngine:
    """
    Orchestrates bookings across the state machine, claim manager, pricing,
    rating aggregator and geo index.

    Safe to share between request threads: the only shared mutable state is
    in the repository (guarded by conditional writes) and the geo index
    (internally locked).
    """

    def __init__(
        self,
        repository: DispatchRepository,
        events: Optional[EventSink] = None,
        geo_index: Optional[GeoIndex] = None,
        pricing: Optional[PricingCalculator] = None,
    ):
        self.repository = repository
        self.events = events or LoggingEventSink()
        self.geo = geo_index or GeoIndex()
        self.pricing = pricing or PricingCalculator()
        self.claims = ClaimManager(repository, self.pricing)
        self.ratings = RatingAggregator(repository)

    # =========================================================================
    # Create
    # =========================================================================

    def create_booking(
        self,
        actor: ActorContext,
        cargo: Cargo,
        pickup: RoutePoint,
        dropoff: RoutePoint,
        vehicle_id: str,
        time_window: Optional[TimeWindow] = None,
        urgency: UrgencyTier = UrgencyTier.STANDARD,
    ) -> Booking:
        """
        Create a pending booking against a requested vehicle.

        The booking is priced at the requested vehicle's rate; the vehicle
        must be active, available and able to carry the cargo weight.

        Returns:
            The stored booking, status pending

        Raises:
            AuthorizationError: If the actor is not a requester
            NotFoundError: If the vehicle does not exist
            ValidationError: If the vehicle cannot take the cargo
        """
        if actor.role != Role.REQUESTER:
            raise AuthorizationError("Only requesters can create bookings")
        urgency = _coerce(UrgencyTier, urgency, "urgency")

        vehicle = self._load_vehicle(vehicle_id)
        if not vehicle.is_active or not vehicle.is_available:
            raise ValidationError(f"Vehicle {vehicle_id} is not available for booking")
        if not vehicle.can_carry(cargo.total_weight_kg):
            raise ValidationError(
                f"Cargo weight {cargo.total_weight_kg} kg exceeds vehicle capacity {vehicle.capacity_kg} kg"
            )

        pricing = self.pricing.quote(pickup.coordinates, dropoff.coordinates, vehicle.rate_per_km)
        booking = Booking(
            ref=generate_booking_ref(settings.BOOKING_REF_PREFIX),
            requester_id=actor.actor_id,
            requested_vehicle_id=vehicle.id,
            cargo=cargo,
            pickup=pickup,
            dropoff=dropoff,
            time_window=time_window or TimeWindow(earliest=utcnow()),
            urgency=urgency,
            pricing=pricing,
        )
        booking.record_status(BookingStatus.PENDING, actor.actor_id, note="Booking created")

        self._ensure_identity(actor.actor_id, Role.REQUESTER)
        stored = self.repository.add_booking(booking)
        self.geo.upsert(
            EntityKind.REQUEST,
            stored.ref,
            stored.pickup.coordinates.latitude,
            stored.pickup.coordinates.longitude,
        )

        logger.info(
            "Booking created",
            booking_ref=stored.ref,
            actor_id=actor.actor_id,
            vehicle_id=vehicle.id,
            distance_km=stored.pricing.display_distance_km,
            total_amount=stored.pricing.total_amount,
        )
        self._publish(
            EventType.BOOKING_CREATED,
            actor.actor_id,
            booking=stored,
            recipients=[vehicle.owner_id],
            payload={"total_amount": stored.pricing.total_amount, "currency": stored.pricing.currency},
        )
        return stored

    # =========================================================================
    # Respond (accept / reject)
    # =========================================================================

    def respond_to_booking(
        self,
        booking_ref: str,
        actor: ActorContext,
        decision: Union[Decision, str],
        vehicle_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Booking:
        """
        Accept or reject a pending booking.

        Accepting claims the booking for the actor and one of the actor's
        vehicles (the requested vehicle unless another is named). Exactly one
        of any number of concurrent accepts wins.

        Raises:
            ClaimLostError: If another carrier won or the vehicle is committed
            InvalidTransitionError: If the booking is no longer pending
            AuthorizationError: If the actor may not decide on this booking
        """
        decision = _coerce(Decision, decision, "decision")
        if decision == Decision.REJECT:
            return self._reject(booking_ref, actor, note)
        return self._accept(booking_ref, actor, vehicle_id, note)

    def _accept(
        self,
        booking_ref: str,
        actor: ActorContext,
        vehicle_id: Optional[str],
        note: Optional[str],
    ) -> Booking:
        if actor.role != Role.CARRIER:
            raise AuthorizationError("Only carriers can accept bookings")

        booking = self._load_booking(booking_ref)
        vehicle = self._load_vehicle(vehicle_id or booking.requested_vehicle_id)
        if vehicle.owner_id != actor.actor_id:
            raise AuthorizationError(f"Vehicle {vehicle.id} does not belong to {actor.actor_id}")
        if not vehicle.can_carry(booking.cargo.total_weight_kg):
            raise ValidationError(
                f"Cargo weight {booking.cargo.total_weight_kg} kg exceeds vehicle capacity {vehicle.capacity_kg} kg"
            )

        self._ensure_identity(actor.actor_id, Role.CARRIER)
        result = self.claims.try_claim(booking_ref, actor.actor_id, vehicle.id, note=note)
        if result.lost:
            raise self._claim_error(result)

        stored = result.booking
        self.geo.remove(EntityKind.REQUEST, stored.ref)
        self._log_transition(stored, actor.actor_id, BookingStatus.PENDING)
        self._publish(
            EventType.BOOKING_ACCEPTED,
            actor.actor_id,
            booking=stored,
            payload={
                "vehicle_id": stored.vehicle_id,
                "total_amount": stored.pricing.total_amount,
            },
        )
        return stored

    @staticmethod
    def _claim_error(result: ClaimResult) -> ConflictError:
        current = result.booking
        status = current.status if current else None
        if (
            result.reason == ClaimLossReason.ALREADY_ACCEPTED
            and current is not None
            and not current.is_assigned
        ):
            # Cancelled or rejected before anyone claimed it
            return InvalidTransitionError(current.status, BookingStatus.ACCEPTED, booking=current)
        return ClaimLostError(result.reason, current_status=status, booking=current)

    def _reject(self, booking_ref: str, actor: ActorContext, note: Optional[str]) -> Booking:
        booking = self._load_booking(booking_ref)
        state_machine.validate_transition(booking, BookingStatus.REJECTED)

        requested = self.repository.get_vehicle(booking.requested_vehicle_id)
        owner_id = requested.owner_id if requested else None
        if not actor.is_admin and actor.actor_id != owner_id:
            raise AuthorizationError(f"Only the requested carrier can reject booking {booking_ref}")

        working = state_machine.apply_transition(booking, actor, BookingStatus.REJECTED, note=note)
        stored = self._write(working, booking.version)
        self.geo.remove(EntityKind.REQUEST, stored.ref)

        self._log_transition(stored, actor.actor_id, booking.status)
        self._publish(EventType.BOOKING_REJECTED, actor.actor_id, booking=stored, payload={"note": note})
        return stored

    # =========================================================================
    # Advance / Cancel
    # =========================================================================

    def advance_status(
        self,
        booking_ref: str,
        actor: ActorContext,
        target: Union[BookingStatus, str],
        note: Optional[str] = None,
        location: Optional[Coordinates] = None,
    ) -> Booking:
        """
        Move a booking one step along its lifecycle.

        Accepted and rejected go through the claim path, cancelled through
        cancellation (the note is the reason). A location, when given, is
        recorded on the timeline entry and as the vehicle's live position.

        Raises:
            InvalidTransitionError: If ``target`` is not reachable
            AuthorizationError: If the actor may not make the move
            StaleBookingError: If a concurrent writer got there first
        """
        target = _coerce(BookingStatus, target, "status")
        if target == BookingStatus.CANCELLED:
            return self.cancel_booking(booking_ref, actor, note)
        if target == BookingStatus.ACCEPTED:
            return self.respond_to_booking(booking_ref, actor, Decision.ACCEPT, note=note)
        if target == BookingStatus.REJECTED:
            return self.respond_to_booking(booking_ref, actor, Decision.REJECT, note=note)

        booking = self._load_booking(booking_ref)
        working = state_machine.apply_transition(booking, actor, target, note=note, location=location)
        if location is not None:
            working.record_position(location)

        stored = self._write(working, booking.version)
        if location is not None and stored.vehicle_id:
            self._move_vehicle(stored.vehicle_id, location)
        if target == BookingStatus.COMPLETED:
            # The completion is committed; a failed settlement must not hide it
            try:
                self._settle(stored)
            except DispatchError:
                logger.exception("Settlement failed", booking_ref=stored.ref, carrier_id=stored.carrier_id)

        self._log_transition(stored, actor.actor_id, booking.status)
        self._publish(
            EventType.BOOKING_STATUS_CHANGED,
            actor.actor_id,
            booking=stored,
            payload={"from_status": booking.status.value, "to_status": target.value, "note": note},
        )
        return stored

    def cancel_booking(self, booking_ref: str, actor: ActorContext, reason: Optional[str]) -> Booking:
        """
        Cancel a booking on behalf of one of its parties.

        Cancelling an already terminal booking is reported, not re-applied.
        A committed vehicle is released.

        Raises:
            ValidationError: If no reason is given
            AlreadyTerminalError: If the booking is already terminal
            InvalidTransitionError: If the cargo has already been picked up
        """
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")
        reason = reason.strip()

        booking = self._load_booking(booking_ref)
        state_machine.authorize_transition(booking, actor, BookingStatus.CANCELLED)
        if booking.is_terminal:
            raise self._already_terminal(booking)

        working = state_machine.apply_transition(booking, actor, BookingStatus.CANCELLED, note=reason)
        working.cancellation_reason = reason

        stored = self.repository.compare_and_swap(working, booking.version)
        if stored is None:
            current = self._load_booking(booking_ref)
            if current.is_terminal:
                raise self._already_terminal(current)
            raise self._stale(current)

        if stored.vehicle_id:
            self._release(stored.vehicle_id, stored.ref)
        self.geo.remove(EntityKind.REQUEST, stored.ref)

        self._log_transition(stored, actor.actor_id, booking.status)
        self._publish(
            EventType.BOOKING_CANCELLED,
            actor.actor_id,
            booking=stored,
            payload={"from_status": booking.status.value, "reason": reason},
        )
        return stored

    # =========================================================================
    # Ratings
    # =========================================================================

    def rate_booking(
        self,
        booking_ref: str,
        actor: ActorContext,
        score: int,
        comment: Optional[str] = None,
    ) -> Rating:
        """
        Rate the other party of a delivered or completed booking.

        The requester rates the carrier (and the vehicle), the carrier rates
        the requester. Each direction can be rated once.

        Raises:
            OutOfRangeError: If the score is not in [1, 5]
            DuplicateRatingError: If this direction is already rated
            ConflictError: If the booking is not yet delivered
        """
        score = validate_score(score)
        booking = self._load_booking(booking_ref)

        if actor.actor_id == booking.requester_id:
            direction = RatingDirection.REQUESTER_TO_CARRIER
            rated_identity, rated_role = booking.carrier_id, Role.CARRIER
        elif booking.carrier_id is not None and actor.actor_id == booking.carrier_id:
            direction = RatingDirection.CARRIER_TO_REQUESTER
            rated_identity, rated_role = booking.requester_id, Role.REQUESTER
        else:
            raise AuthorizationError(f"Only a party to booking {booking_ref} may rate it")

        if booking.status not in state_machine.RATEABLE_STATUSES:
            raise ConflictError(
                f"Booking {booking_ref} cannot be rated while '{booking.status.value}'",
                current_status=booking.status,
                booking=booking,
            )
        ensure_not_rated(booking, direction)

        rating = Rating(
            score=score,
            comment=comment,
            rated_by=actor.actor_id,
            rated_identity=rated_identity,
            direction=direction,
        )
        working = booking.model_copy(deep=True)
        setattr(working.ratings, direction.value, rating)
        working.updated_at = rating.created_at

        stored = self.repository.compare_and_swap(working, booking.version)
        if stored is None:
            current = self._load_booking(booking_ref)
            ensure_not_rated(current, direction)
            raise self._stale(current)

        self._ensure_identity(rated_identity, rated_role)
        new_average = self.ratings.record_rating(rated_identity, score)
        if direction == RatingDirection.REQUESTER_TO_CARRIER and stored.vehicle_id:
            self.ratings.record_vehicle_rating(stored.vehicle_id, score)

        self._publish(
            EventType.BOOKING_RATED,
            actor.actor_id,
            booking=stored,
            recipients=[rated_identity],
            payload={"direction": direction.value, "score": score, "new_average": new_average},
        )
        return rating

    # =========================================================================
    # Nearby search
    # =========================================================================

    def find_nearby(
        self,
        kind: Union[EntityKind, str],
        point: Coordinates,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
        vehicle_type: Optional[Union[VehicleType, str]] = None,
        min_capacity_kg: Optional[float] = None,
    ) -> list[NearbyResult]:
        """
        Entities within ``radius_km`` of ``point``, nearest first.

        Vehicles must be active and available (and match the optional type
        and capacity filters); requests must still be pending.

        Raises:
            OutOfRangeError: If radius or limit fall outside their bounds
        """
        kind = _coerce(EntityKind, kind, "entity kind")
        if vehicle_type is not None:
            vehicle_type = _coerce(VehicleType, vehicle_type, "vehicle type")

        radius = settings.DEFAULT_SEARCH_RADIUS_KM if radius_km is None else radius_km
        if not 0 < radius <= settings.MAX_SEARCH_RADIUS_KM:
            raise OutOfRangeError(
                f"Radius must be in (0, {settings.MAX_SEARCH_RADIUS_KM}] km, got {radius}"
            )
        limit = settings.NEARBY_RESULT_LIMIT if limit is None else limit
        if not 1 <= limit <= settings.MAX_NEARBY_RESULT_LIMIT:
            raise OutOfRangeError(
                f"Limit must be in [1, {settings.MAX_NEARBY_RESULT_LIMIT}], got {limit}"
            )

        loaded: dict[str, Union[Vehicle, Booking]] = {}

        def keep(entity_id: str) -> bool:
            if kind == EntityKind.VEHICLE:
                entity = self.repository.get_vehicle(entity_id)
                ok = (
                    entity is not None
                    and entity.is_active
                    and entity.is_available
                    and (vehicle_type is None or entity.vehicle_type == vehicle_type)
                    and (min_capacity_kg is None or entity.capacity_kg >= min_capacity_kg)
                )
            else:
                entity = self.repository.get_booking(entity_id)
                ok = entity is not None and entity.status == BookingStatus.PENDING
            if ok:
                loaded[entity_id] = entity
            return ok

        hits = self.geo.within(kind, point.latitude, point.longitude, radius, limit, predicate=keep)
        return [NearbyResult(kind, loaded[hit.entity_id], hit.distance_km) for hit in hits]

    # =========================================================================
    # Trip updates
    # =========================================================================

    def update_charges(
        self,
        booking_ref: str,
        actor: ActorContext,
        loading: Optional[float] = None,
        unloading: Optional[float] = None,
        waiting: Optional[float] = None,
        toll: Optional[float] = None,
    ) -> Booking:
        """Change additional charges; bound carrier only, before delivery."""
        booking = self._load_booking(booking_ref)
        self._require_carrier(booking, actor)
        self._require_active_trip(booking, "Charges")

        working = booking.model_copy(deep=True)
        working.pricing = self.pricing.with_charges(
            working.pricing,
            loading=loading,
            unloading=unloading,
            waiting=waiting,
            toll=toll,
        )
        working.updated_at = utcnow()
        stored = self._write(working, booking.version)

        logger.info(
            "Charges updated",
            booking_ref=stored.ref,
            actor_id=actor.actor_id,
            total_amount=stored.pricing.total_amount,
        )
        self._publish(
            EventType.BOOKING_CHARGES_UPDATED,
            actor.actor_id,
            booking=stored,
            payload=stored.pricing.additional_charges.model_dump(),
        )
        return stored

    def record_location(
        self,
        booking_ref: str,
        actor: ActorContext,
        point: Coordinates,
        address: Optional[str] = None,
    ) -> Booking:
        """Report the carrying vehicle's position during an active trip."""
        booking = self._load_booking(booking_ref)
        self._require_carrier(booking, actor)
        self._require_active_trip(booking, "Location")

        working = booking.model_copy(deep=True)
        working.record_position(point, address)
        stored = self._write(working, booking.version)
        self._move_vehicle(stored.vehicle_id, point, address)

        self._publish(
            EventType.VEHICLE_LOCATION_UPDATED,
            actor.actor_id,
            booking=stored,
            vehicle_id=stored.vehicle_id,
            payload={"latitude": point.latitude, "longitude": point.longitude, "address": address},
        )
        return stored

    def update_vehicle_location(
        self,
        vehicle_id: str,
        actor: ActorContext,
        point: Coordinates,
        address: Optional[str] = None,
    ) -> Vehicle:
        """Move a vehicle; owner only."""
        vehicle = self._load_vehicle(vehicle_id)
        if vehicle.owner_id != actor.actor_id:
            raise AuthorizationError(f"Vehicle {vehicle_id} does not belong to {actor.actor_id}")

        updated = self._move_vehicle(vehicle_id, point, address)
        self._publish(
            EventType.VEHICLE_LOCATION_UPDATED,
            actor.actor_id,
            vehicle_id=vehicle_id,
            payload={"latitude": point.latitude, "longitude": point.longitude, "address": address},
        )
        return updated

    def post_message(
        self,
        booking_ref: str,
        actor: ActorContext,
        text: str,
        message_type: Union[MessageType, str] = MessageType.TEXT,
    ) -> Message:
        """Add a message to a live booking's conversation."""
        message_type = _coerce(MessageType, message_type, "message type")
        if not text or not text.strip():
            raise ValidationError("Message text must not be empty")

        booking = self._load_booking(booking_ref)
        if not booking.is_party(actor.actor_id):
            raise AuthorizationError(f"Only a party to booking {booking_ref} may post messages")
        if booking.is_terminal:
            raise self._already_terminal(booking)

        message = Message(sender_id=actor.actor_id, text=text.strip(), message_type=message_type)
        working = booking.model_copy(deep=True)
        working.messages.append(message)
        working.updated_at = message.timestamp
        stored = self._write(working, booking.version)

        self._publish(
            EventType.BOOKING_MESSAGE_POSTED,
            actor.actor_id,
            booking=stored,
            payload={"message_type": message_type.value},
        )
        return message

    # =========================================================================
    # Reads and registration
    # =========================================================================

    def get_booking(self, booking_ref: str, actor: ActorContext) -> Booking:
        """Load a booking for a party, the requested carrier, or an admin."""
        booking = self._load_booking(booking_ref)
        if actor.is_admin or booking.is_party(actor.actor_id):
            return booking

        requested = self.repository.get_vehicle(booking.requested_vehicle_id)
        if requested is not None and requested.owner_id == actor.actor_id:
            return booking
        raise AuthorizationError(f"Not allowed to view booking {booking_ref}")

    def register_vehicle(self, actor: ActorContext, vehicle: Vehicle) -> Vehicle:
        """Add a vehicle to the fleet, or replace its details."""
        if not actor.is_admin and (actor.role != Role.CARRIER or vehicle.owner_id != actor.actor_id):
            raise AuthorizationError("Carriers can only register their own vehicles")

        existing = self.repository.get_vehicle(vehicle.id)
        if existing is not None and existing.owner_id != vehicle.owner_id and not actor.is_admin:
            raise AuthorizationError(f"Vehicle {vehicle.id} belongs to another carrier")

        self._ensure_identity(vehicle.owner_id, Role.CARRIER)
        stored = self.repository.save_vehicle(vehicle)
        if stored.current_location is not None:
            self.geo.upsert(
                EntityKind.VEHICLE,
                stored.id,
                stored.current_location.latitude,
                stored.current_location.longitude,
            )
        logger.info("Vehicle registered", vehicle_id=stored.id, owner_id=stored.owner_id)
        return stored

    def rebuild_index(self) -> dict[str, int]:
        """Reload the geo index from the repository."""
        self.geo.clear()
        for vehicle in self.repository.list_vehicles():
            if vehicle.current_location is not None:
                self.geo.upsert(
                    EntityKind.VEHICLE,
                    vehicle.id,
                    vehicle.current_location.latitude,
                    vehicle.current_location.longitude,
                )
        for booking in self.repository.list_bookings(status=BookingStatus.PENDING):
            self.geo.upsert(
                EntityKind.REQUEST,
                booking.ref,
                booking.pickup.coordinates.latitude,
                booking.pickup.coordinates.longitude,
            )

        counts = {
            "vehicles": self.geo.count(EntityKind.VEHICLE),
            "requests": self.geo.count(EntityKind.REQUEST),
        }
        logger.info("Geo index rebuilt", **counts)
        return counts

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load_booking(self, booking_ref: str) -> Booking:
        booking = self.repository.get_booking(booking_ref)
        if booking is None:
            raise NotFoundError("Booking", booking_ref)
        return booking

    def _load_vehicle(self, vehicle_id: str) -> Vehicle:
        vehicle = self.repository.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle", vehicle_id)
        return vehicle

    def _ensure_identity(self, identity_id: str, role: Role) -> Identity:
        return self.repository.ensure_identity(Identity(id=identity_id, role=role))

    def _write(self, working: Booking, expected_version: int) -> Booking:
        """Conditional write; a lost race becomes a StaleBookingError."""
        stored = self.repository.compare_and_swap(working, expected_version)
        if stored is None:
            raise self._stale(self._load_booking(working.ref))
        return stored

    @staticmethod
    def _stale(current: Booking) -> StaleBookingError:
        return StaleBookingError(
            f"Booking {current.ref} was changed by another request",
            current_status=current.status,
            booking=current,
        )

    @staticmethod
    def _already_terminal(booking: Booking) -> AlreadyTerminalError:
        return AlreadyTerminalError(
            f"Booking {booking.ref} is already {booking.status.value}",
            current_status=booking.status,
            booking=booking,
        )

    @staticmethod
    def _require_carrier(booking: Booking, actor: ActorContext) -> None:
        if booking.carrier_id is None or actor.actor_id != booking.carrier_id:
            raise AuthorizationError(f"Only the assigned carrier may update booking {booking.ref}")

    def _require_active_trip(self, booking: Booking, what: str) -> None:
        if booking.is_terminal:
            raise self._already_terminal(booking)
        if booking.status not in state_machine.ACTIVE_TRIP_STATUSES:
            raise ConflictError(
                f"{what} can only change during an active trip, booking is '{booking.status.value}'",
                current_status=booking.status,
                booking=booking,
            )

    def _move_vehicle(self, vehicle_id: str, point: Coordinates, address: Optional[str] = None) -> Vehicle:
        def apply(vehicle: Vehicle) -> None:
            vehicle.current_location = point
            if address is not None:
                vehicle.current_address = address
            vehicle.updated_at = utcnow()

        updated = self.repository.update_vehicle(vehicle_id, apply)
        self.geo.upsert(EntityKind.VEHICLE, vehicle_id, point.latitude, point.longitude)
        return updated

    def _release(self, vehicle_id: str, booking_ref: str) -> None:
        if not self.repository.release_vehicle(vehicle_id):
            logger.warning("Vehicle to release no longer exists", vehicle_id=vehicle_id, booking_ref=booking_ref)

    def _settle(self, booking: Booking) -> None:
        """Completion side effects: free the vehicle, credit the carrier."""
        self._release(booking.vehicle_id, booking.ref)
        amount = booking.pricing.total_amount

        def credit(identity: Identity) -> None:
            identity.completed_trips += 1
            identity.earnings += amount
            identity.updated_at = utcnow()

        def count_trip(vehicle: Vehicle) -> None:
            vehicle.total_trips += 1
            vehicle.updated_at = utcnow()

        self._ensure_identity(booking.carrier_id, Role.CARRIER)
        self.repository.update_identity(booking.carrier_id, credit)
        if self.repository.get_vehicle(booking.vehicle_id) is not None:
            self.repository.update_vehicle(booking.vehicle_id, count_trip)

    @staticmethod
    def _log_transition(booking: Booking, actor_id: str, from_status: BookingStatus) -> None:
        logger.info(
            "Booking status changed",
            booking_ref=booking.ref,
            actor_id=actor_id,
            from_status=from_status.value,
            to_status=booking.status.value,
        )

    def _publish(
        self,
        event_type: EventType,
        actor_id: str,
        booking: Optional[Booking] = None,
        vehicle_id: Optional[str] = None,
        recipients: Optional[list[str]] = None,
        payload: Optional[dict] = None,
    ) -> None:
        """Emit an event; a failing sink never undoes the committed change."""
        if recipients is None:
            recipients = []
            if booking is not None:
                recipients = [
                    party for party in (booking.requester_id, booking.carrier_id)
                    if party is not None and party != actor_id
                ]

        event = DomainEvent(
            type=event_type,
            actor_id=actor_id,
            booking_ref=booking.ref if booking else None,
            vehicle_id=vehicle_id or (booking.vehicle_id if booking else None),
            recipients=recipients,
            payload=payload or {},
        )
        try:
            self.events.publish(event)
        except Exception:
            logger.exception("Event delivery failed", event_type=event_type.value, event_id=event.id)
