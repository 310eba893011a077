"""Enumerations for AgroHaul dispatch system."""

from enum import Enum


class BookingStatus(str, Enum):
    """Canonical booking lifecycle."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    EN_ROUTE_PICKUP = "en_route_pickup"
    PICKED_UP = "picked_up"
    EN_ROUTE_DELIVERY = "en_route_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        """No transition leaves a terminal status."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REJECTED,
})


class CargoCategory(str, Enum):
    """Kind of produce or farm goods being moved."""

    GRAINS = "grains"
    VEGETABLES = "vegetables"
    FRUITS = "fruits"
    DAIRY = "dairy"
    LIVESTOCK = "livestock"
    EQUIPMENT = "equipment"
    SEEDS = "seeds"
    FERTILIZER = "fertilizer"
    OTHER = "other"


class QuantityUnit(str, Enum):
    """Units a cargo item quantity may be expressed in."""

    KG = "kg"
    TONS = "tons"
    QUINTAL = "quintal"
    BAGS = "bags"
    BOXES = "boxes"
    LITERS = "liters"


class UrgencyTier(str, Enum):
    """How soon the requester needs the cargo moved."""

    STANDARD = "standard"
    PRIORITY = "priority"
    URGENT = "urgent"


class TimeSlot(str, Enum):
    """Preferred pickup slot within the requested day."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    FLEXIBLE = "flexible"


class PaymentStatus(str, Enum):
    """Payment progress, tracked but never settled here."""

    PENDING = "pending"
    ADVANCE_PAID = "advance_paid"
    PARTIAL_PAID = "partial_paid"
    COMPLETED = "completed"


class VehicleType(str, Enum):
    """Types of transport vehicles."""

    TRUCK = "truck"
    MINI_TRUCK = "mini_truck"
    PICKUP = "pickup"
    TRACTOR = "tractor"
    TEMPO = "tempo"
    VAN = "van"


class Role(str, Enum):
    """Role attached to an authenticated identity."""

    REQUESTER = "requester"
    CARRIER = "carrier"
    ADMIN = "admin"


class Decision(str, Enum):
    """A carrier's answer to a pending booking."""

    ACCEPT = "accept"
    REJECT = "reject"


class EntityKind(str, Enum):
    """Kinds of entity tracked in the geo index."""

    VEHICLE = "vehicle"
    REQUEST = "request"


class RatingDirection(str, Enum):
    """Which party rated which."""

    REQUESTER_TO_CARRIER = "requester_to_carrier"
    CARRIER_TO_REQUESTER = "carrier_to_requester"


class MessageType(str, Enum):
    """Kinds of message exchanged on a booking."""

    TEXT = "text"
    LOCATION = "location"
    IMAGE = "image"
