"""In-memory repository with per-entity locking."""

import threading
from collections import defaultdict
from typing import Callable, Optional

from ..exceptions import ConflictError, NotFoundError
from ..models import Booking, BookingStatus, Identity, Vehicle
from ..models.booking import utcnow
from .repository import ClaimOutcome, DispatchRepository


class _LockTable:
    """One lock per entity key, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    def __call__(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks[key]


class InMemoryRepository(DispatchRepository):
    """
    Repository kept in process memory.

    Models are deep-copied on the way in and out so callers never share
    state with the store. A claim takes the booking lock, then the vehicle
    lock; no path takes them in the other order.
    """

    def __init__(self):
        self._bookings: dict[str, Booking] = {}
        self._vehicles: dict[str, Vehicle] = {}
        self._identities: dict[str, Identity] = {}
        self._booking_locks = _LockTable()
        self._vehicle_locks = _LockTable()
        self._identity_locks = _LockTable()

    # Bookings ----------------------------------------------------------------

    def get_booking(self, ref: str) -> Optional[Booking]:
        with self._booking_locks(ref):
            booking = self._bookings.get(ref)
            return booking.model_copy(deep=True) if booking else None

    def add_booking(self, booking: Booking) -> Booking:
        with self._booking_locks(booking.ref):
            if booking.ref in self._bookings:
                raise ConflictError(f"Booking '{booking.ref}' already exists")
            stored = booking.model_copy(update={"version": 0}, deep=True)
            self._bookings[booking.ref] = stored
            return stored.model_copy(deep=True)

    def compare_and_swap(self, booking: Booking, expected_version: int) -> Optional[Booking]:
        with self._booking_locks(booking.ref):
            current = self._bookings.get(booking.ref)
            if current is None or current.version != expected_version:
                return None
            stored = booking.model_copy(update={"version": expected_version + 1}, deep=True)
            self._bookings[booking.ref] = stored
            return stored.model_copy(deep=True)

    def claim(
        self,
        booking: Booking,
        expected_version: int,
        vehicle_id: str,
    ) -> tuple[ClaimOutcome, Optional[Booking]]:
        with self._booking_locks(booking.ref):
            current = self._bookings.get(booking.ref)
            if (
                current is None
                or current.version != expected_version
                or current.status != BookingStatus.PENDING
            ):
                return ClaimOutcome.BOOKING_CHANGED, None

            with self._vehicle_locks(vehicle_id):
                vehicle = self._vehicles.get(vehicle_id)
                if vehicle is None or not vehicle.is_available or not vehicle.is_active:
                    return ClaimOutcome.VEHICLE_UNAVAILABLE, None

                self._vehicles[vehicle_id] = vehicle.model_copy(update={
                    "is_available": False,
                    "version": vehicle.version + 1,
                    "updated_at": utcnow(),
                })
                stored = booking.model_copy(update={"version": expected_version + 1}, deep=True)
                self._bookings[booking.ref] = stored
                return ClaimOutcome.WON, stored.model_copy(deep=True)

    def list_bookings(self, status: Optional[BookingStatus] = None) -> list[Booking]:
        bookings = [
            b.model_copy(deep=True)
            for b in list(self._bookings.values())
            if status is None or b.status == status
        ]
        bookings.sort(key=lambda b: b.created_at, reverse=True)
        return bookings

    # Vehicles ----------------------------------------------------------------

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._vehicle_locks(vehicle_id):
            vehicle = self._vehicles.get(vehicle_id)
            return vehicle.model_copy(deep=True) if vehicle else None

    def save_vehicle(self, vehicle: Vehicle) -> Vehicle:
        with self._vehicle_locks(vehicle.id):
            current = self._vehicles.get(vehicle.id)
            update = {"version": 0}
            if current is not None:
                # Availability of a stored vehicle only moves through claim and release
                update = {"version": current.version + 1, "is_available": current.is_available}
            stored = vehicle.model_copy(update=update, deep=True)
            self._vehicles[vehicle.id] = stored
            return stored.model_copy(deep=True)

    def update_vehicle(self, vehicle_id: str, mutate: Callable[[Vehicle], None]) -> Vehicle:
        with self._vehicle_locks(vehicle_id):
            current = self._vehicles.get(vehicle_id)
            if current is None:
                raise NotFoundError("Vehicle", vehicle_id)
            working = current.model_copy(deep=True)
            mutate(working)
            stored = working.model_copy(update={
                "is_available": current.is_available,
                "version": current.version + 1,
            })
            self._vehicles[vehicle_id] = stored
            return stored.model_copy(deep=True)

    def release_vehicle(self, vehicle_id: str) -> bool:
        with self._vehicle_locks(vehicle_id):
            current = self._vehicles.get(vehicle_id)
            if current is None:
                return False
            self._vehicles[vehicle_id] = current.model_copy(update={
                "is_available": True,
                "version": current.version + 1,
                "updated_at": utcnow(),
            })
            return True

    def list_vehicles(self, available_only: bool = False) -> list[Vehicle]:
        return [
            v.model_copy(deep=True)
            for v in list(self._vehicles.values())
            if not available_only or (v.is_available and v.is_active)
        ]

    # Identities --------------------------------------------------------------

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        with self._identity_locks(identity_id):
            identity = self._identities.get(identity_id)
            return identity.model_copy(deep=True) if identity else None

    def save_identity(self, identity: Identity) -> Identity:
        with self._identity_locks(identity.id):
            current = self._identities.get(identity.id)
            version = current.version + 1 if current else 0
            stored = identity.model_copy(update={"version": version}, deep=True)
            self._identities[identity.id] = stored
            return stored.model_copy(deep=True)

    def ensure_identity(self, identity: Identity) -> Identity:
        with self._identity_locks(identity.id):
            current = self._identities.get(identity.id)
            if current is None:
                current = identity.model_copy(update={"version": 0}, deep=True)
                self._identities[identity.id] = current
            return current.model_copy(deep=True)

    def update_identity(self, identity_id: str, mutate: Callable[[Identity], None]) -> Identity:
        with self._identity_locks(identity_id):
            current = self._identities.get(identity_id)
            if current is None:
                raise NotFoundError("Identity", identity_id)
            working = current.model_copy(deep=True)
            mutate(working)
            working.version = current.version + 1
            self._identities[identity_id] = working
            return working.model_copy(deep=True)
