"""Data models for AgroHaul dispatch system."""

from .enums import (
    BookingStatus,
    CargoCategory,
    QuantityUnit,
    UrgencyTier,
    TimeSlot,
    PaymentStatus,
    VehicleType,
    Role,
    Decision,
    EntityKind,
    RatingDirection,
    MessageType,
    TERMINAL_STATUSES,
)
from .location import Coordinates, Address, ContactPerson, RoutePoint, TimeWindow
from .booking import (
    Booking,
    Cargo,
    CargoItem,
    Pricing,
    AdditionalCharges,
    TimelineEntry,
    Rating,
    BookingRatings,
    Message,
    Tracking,
    TrackingPoint,
    generate_booking_ref,
)
from .vehicle import Vehicle
from .identity import Identity, ActorContext

__all__ = [
    # Enums
    "BookingStatus",
    "CargoCategory",
    "QuantityUnit",
    "UrgencyTier",
    "TimeSlot",
    "PaymentStatus",
    "VehicleType",
    "Role",
    "Decision",
    "EntityKind",
    "RatingDirection",
    "MessageType",
    "TERMINAL_STATUSES",
    # Location
    "Coordinates",
    "Address",
    "ContactPerson",
    "RoutePoint",
    "TimeWindow",
    # Booking
    "Booking",
    "Cargo",
    "CargoItem",
    "Pricing",
    "AdditionalCharges",
    "TimelineEntry",
    "Rating",
    "BookingRatings",
    "Message",
    "Tracking",
    "TrackingPoint",
    "generate_booking_ref",
    # Vehicle / Identity
    "Vehicle",
    "Identity",
    "ActorContext",
]
