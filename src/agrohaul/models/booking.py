"""Booking model: one transport request and its full lifecycle record."""

from datetime import datetime, timezone
from typing import Optional
import secrets
import string
import time

from pydantic import BaseModel, Field, computed_field, model_validator

from ..geo.distance import display_km
from .enums import (
    BookingStatus,
    CargoCategory,
    MessageType,
    PaymentStatus,
    QuantityUnit,
    RatingDirection,
    UrgencyTier,
)
from .location import Coordinates, RoutePoint, TimeWindow

_REF_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def generate_booking_ref(prefix: str = "BKG") -> str:
    """Prefix + millisecond timestamp + five random upper-case alphanumerics."""
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(5))
    return f"{prefix}{int(time.time() * 1000)}{suffix}"


class CargoItem(BaseModel):
    """One line of the cargo manifest."""

    name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit: QuantityUnit


class Cargo(BaseModel):
    """What is being moved."""

    category: CargoCategory
    items: list[CargoItem] = Field(..., min_length=1)
    total_weight_kg: float = Field(..., gt=0)
    perishable: bool = False
    temperature: Optional[str] = None
    handling: Optional[str] = None
    notes: Optional[str] = None


class AdditionalCharges(BaseModel):
    """Itemized extras on top of the distance-based base amount."""

    loading: float = Field(default=0.0, ge=0)
    unloading: float = Field(default=0.0, ge=0)
    waiting: float = Field(default=0.0, ge=0)
    toll: float = Field(default=0.0, ge=0)

    @computed_field
    @property
    def total(self) -> float:
        return self.loading + self.unloading + self.waiting + self.toll


class Pricing(BaseModel):
    """Distance-based price of a booking."""

    distance_km: float = Field(..., ge=0)  # Unrounded
    rate_per_km: float = Field(..., gt=0)
    base_amount: float = Field(..., ge=0)
    additional_charges: AdditionalCharges = Field(default_factory=AdditionalCharges)
    currency: str = "INR"
    payment_status: PaymentStatus = PaymentStatus.PENDING

    @computed_field
    @property
    def total_amount(self) -> float:
        """Base amount plus every additional charge."""
        return self.base_amount + self.additional_charges.total

    @computed_field
    @property
    def display_distance_km(self) -> float:
        return display_km(self.distance_km)


class TimelineEntry(BaseModel):
    """One append-only record of a status change."""

    status: BookingStatus
    timestamp: datetime = Field(default_factory=utcnow)
    actor_id: str
    note: Optional[str] = None
    location: Optional[Coordinates] = None


class Rating(BaseModel):
    """A single rating left by one party for the other."""

    score: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    rated_by: str
    rated_identity: str
    direction: RatingDirection
    created_at: datetime = Field(default_factory=utcnow)


class BookingRatings(BaseModel):
    """At most one rating per direction."""

    requester_to_carrier: Optional[Rating] = None
    carrier_to_requester: Optional[Rating] = None

    def get(self, direction: RatingDirection) -> Optional[Rating]:
        if direction == RatingDirection.REQUESTER_TO_CARRIER:
            return self.requester_to_carrier
        return self.carrier_to_requester


class Message(BaseModel):
    """Chat line between the two parties of a booking."""

    sender_id: str
    text: str = Field(..., min_length=1)
    message_type: MessageType = MessageType.TEXT
    timestamp: datetime = Field(default_factory=utcnow)


class TrackingPoint(BaseModel):
    """A reported position of the vehicle carrying a booking."""

    coordinates: Coordinates
    address: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class Tracking(BaseModel):
    """Live position plus the trace of reported positions."""

    current_location: Optional[TrackingPoint] = None
    route: list[TrackingPoint] = Field(default_factory=list)


class Booking(BaseModel):
    """
    Complete booking model.

    Mutated only by the dispatch engine. ``version`` is bumped by the
    repository on every successful conditional write.
    """

    # Identifiers
    ref: str = Field(default_factory=generate_booking_ref)

    # Parties
    requester_id: str
    requested_vehicle_id: str
    carrier_id: Optional[str] = None
    vehicle_id: Optional[str] = None

    # Cargo and route
    cargo: Cargo
    pickup: RoutePoint
    dropoff: RoutePoint
    time_window: TimeWindow
    urgency: UrgencyTier = UrgencyTier.STANDARD

    # Pricing
    pricing: Pricing

    # Lifecycle
    status: BookingStatus = BookingStatus.PENDING
    timeline: list[TimelineEntry] = Field(default_factory=list)
    cancellation_reason: Optional[str] = None

    # Post-trip
    ratings: BookingRatings = Field(default_factory=BookingRatings)
    messages: list[Message] = Field(default_factory=list)
    tracking: Tracking = Field(default_factory=Tracking)

    # Concurrency
    version: int = 0

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Booking":
        if (self.carrier_id is None) != (self.vehicle_id is None):
            raise ValueError("carrier_id and vehicle_id must be set together")
        if self.timeline and self.timeline[-1].status != self.status:
            raise ValueError("Last timeline entry must match the current status")
        return self

    @computed_field
    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_assigned(self) -> bool:
        return self.carrier_id is not None

    def is_party(self, actor_id: str) -> bool:
        """Requester or bound carrier."""
        return actor_id == self.requester_id or (
            self.carrier_id is not None and actor_id == self.carrier_id
        )

    def record_status(
        self,
        status: BookingStatus,
        actor_id: str,
        note: Optional[str] = None,
        location: Optional[Coordinates] = None,
    ) -> TimelineEntry:
        """Set the status and append the matching timeline entry."""
        entry = TimelineEntry(status=status, actor_id=actor_id, note=note, location=location)
        self.status = status
        self.timeline.append(entry)
        self.updated_at = entry.timestamp
        return entry

    def record_position(self, coordinates: Coordinates, address: Optional[str] = None) -> TrackingPoint:
        """Move the live position and extend the route trace."""
        point = TrackingPoint(coordinates=coordinates, address=address)
        self.tracking.current_location = point
        self.tracking.route.append(point)
        self.updated_at = point.timestamp
        return point
