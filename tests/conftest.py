"""
Shared fixtures: an engine over the in-memory repository with a recording
event sink, a small fleet, and helpers to create and drive bookings.
"""

import pytest

from agrohaul.db import InMemoryRepository
from agrohaul.dispatch import DispatchEngine, RecordingEventSink
from agrohaul.models import (
    ActorContext,
    Address,
    BookingStatus,
    Cargo,
    CargoCategory,
    CargoItem,
    Coordinates,
    QuantityUnit,
    Role,
    RoutePoint,
    Vehicle,
    VehicleType,
)

LUCKNOW = Coordinates(latitude=26.8467, longitude=80.9462)
DELHI = Coordinates(latitude=28.6139, longitude=77.2090)

# Carrier steps from accepted to delivered, in order
TRIP_STEPS = [
    BookingStatus.EN_ROUTE_PICKUP,
    BookingStatus.PICKED_UP,
    BookingStatus.EN_ROUTE_DELIVERY,
    BookingStatus.DELIVERED,
]


def make_cargo(weight_kg: float = 1000.0, perishable: bool = False) -> Cargo:
    return Cargo(
        category=CargoCategory.GRAINS,
        items=[CargoItem(name="Wheat", quantity=weight_kg / 50, unit=QuantityUnit.BAGS)],
        total_weight_kg=weight_kg,
        perishable=perishable,
    )


def make_point(coordinates: Coordinates, city: str) -> RoutePoint:
    return RoutePoint(
        address=Address(street="Mandi Road", city=city, state="UP", pincode="226001"),
        coordinates=coordinates,
    )


def make_vehicle(
    vehicle_id: str,
    owner_id: str,
    rate_per_km: float = 15.0,
    capacity_kg: float = 5000.0,
    location: Coordinates = LUCKNOW,
    vehicle_type: VehicleType = VehicleType.TRUCK,
) -> Vehicle:
    return Vehicle(
        id=vehicle_id,
        owner_id=owner_id,
        vehicle_number=f"UP32-{vehicle_id.upper()}",
        vehicle_type=vehicle_type,
        capacity_kg=capacity_kg,
        rate_per_km=rate_per_km,
        current_location=location,
    )


# =============================================================================
# Actors
# =============================================================================

@pytest.fixture
def requester():
    return ActorContext(actor_id="farmer-1", role=Role.REQUESTER)


@pytest.fixture
def outsider():
    return ActorContext(actor_id="farmer-2", role=Role.REQUESTER)


@pytest.fixture
def carrier_a():
    return ActorContext(actor_id="carrier-a", role=Role.CARRIER)


@pytest.fixture
def carrier_b():
    return ActorContext(actor_id="carrier-b", role=Role.CARRIER)


@pytest.fixture
def admin():
    return ActorContext(actor_id="admin-1", role=Role.ADMIN)


# =============================================================================
# Engine
# =============================================================================

@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def sink():
    return RecordingEventSink()


@pytest.fixture
def engine(repo, sink):
    return DispatchEngine(repo, events=sink)


@pytest.fixture
def fleet(engine, carrier_a, carrier_b):
    """veh-a (carrier-a, 15/km) and veh-b (carrier-b, 12/km), both in Lucknow."""
    return {
        "veh-a": engine.register_vehicle(carrier_a, make_vehicle("veh-a", carrier_a.actor_id, rate_per_km=15.0)),
        "veh-b": engine.register_vehicle(carrier_b, make_vehicle("veh-b", carrier_b.actor_id, rate_per_km=12.0)),
    }


@pytest.fixture
def create_booking(engine, fleet, requester):
    """Create a Lucknow -> Delhi booking against a vehicle."""

    def create(vehicle_id: str = "veh-a", weight_kg: float = 1000.0, actor=None):
        return engine.create_booking(
            actor or requester,
            cargo=make_cargo(weight_kg),
            pickup=make_point(LUCKNOW, "Lucknow"),
            dropoff=make_point(DELHI, "New Delhi"),
            vehicle_id=vehicle_id,
        )

    return create


@pytest.fixture
def pending(create_booking):
    return create_booking()


@pytest.fixture
def accepted(engine, pending, carrier_a):
    return engine.respond_to_booking(pending.ref, carrier_a, "accept")


@pytest.fixture
def drive(engine, carrier_a):
    """Advance a booking through carrier steps up to and including ``until``."""

    def advance(booking_ref: str, until: BookingStatus, actor=None):
        booking = None
        for status in TRIP_STEPS:
            booking = engine.advance_status(booking_ref, actor or carrier_a, status)
            if status == until:
                break
        return booking

    return advance


@pytest.fixture
def delivered(accepted, drive):
    return drive(accepted.ref, BookingStatus.DELIVERED)


@pytest.fixture
def register_vehicle(engine):
    """Register a vehicle owned by ``actor``."""

    def register(actor, vehicle_id: str, **kwargs):
        return engine.register_vehicle(actor, make_vehicle(vehicle_id, actor.actor_id, **kwargs))

    return register


@pytest.fixture
def vehicle_factory():
    return make_vehicle


@pytest.fixture
def booking_inputs():
    """Cargo and route for a Lucknow -> Delhi booking."""
    return {
        "cargo": make_cargo(),
        "pickup": make_point(LUCKNOW, "Lucknow"),
        "dropoff": make_point(DELHI, "New Delhi"),
    }
