"""
SQL Repository Tests

Conditional writes and the two-row claim commit over a SQLite file.
"""

import pytest

from agrohaul.db import ClaimOutcome, SqlRepository
from agrohaul.dispatch import DispatchEngine, RecordingEventSink
from agrohaul.exceptions import NotFoundError
from agrohaul.models import BookingStatus, Identity, Role


@pytest.fixture
def sql_repo(tmp_path):
    repo = SqlRepository(f"sqlite:///{tmp_path}/dispatch.db")
    repo.init_db()
    return repo


@pytest.fixture
def sql_engine(sql_repo, carrier_a, carrier_b, vehicle_factory):
    engine = DispatchEngine(sql_repo, events=RecordingEventSink())
    engine.register_vehicle(carrier_a, vehicle_factory("veh-a", carrier_a.actor_id, rate_per_km=15.0))
    engine.register_vehicle(carrier_b, vehicle_factory("veh-b", carrier_b.actor_id, rate_per_km=12.0))
    return engine


@pytest.fixture
def sql_pending(sql_engine, requester, booking_inputs):
    return sql_engine.create_booking(requester, vehicle_id="veh-a", **booking_inputs)


class TestBookings:
    def test_add_and_get(self, sql_repo, sql_pending):
        stored = sql_repo.get_booking(sql_pending.ref)

        assert stored is not None
        assert stored.version == 0
        assert stored.status == BookingStatus.PENDING
        assert stored.pricing.base_amount == pytest.approx(sql_pending.pricing.base_amount)

    def test_missing_booking(self, sql_repo):
        assert sql_repo.get_booking("BKG0000000000000NONE0") is None

    def test_compare_and_swap(self, sql_repo, sql_pending):
        working = sql_pending.model_copy(deep=True)
        working.cargo.notes = "Keep dry"

        stored = sql_repo.compare_and_swap(working, sql_pending.version)
        assert stored.version == sql_pending.version + 1

        stale = sql_repo.compare_and_swap(working, sql_pending.version)
        assert stale is None, "A second write at the old version must be refused"
        assert sql_repo.get_booking(sql_pending.ref).version == 1

    def test_list_by_status(self, sql_engine, sql_repo, sql_pending, requester, carrier_a, booking_inputs):
        other = sql_engine.create_booking(requester, vehicle_id="veh-b", **booking_inputs)
        sql_engine.respond_to_booking(sql_pending.ref, carrier_a, "accept")

        pending = sql_repo.list_bookings(status=BookingStatus.PENDING)
        assert [b.ref for b in pending] == [other.ref]
        assert len(sql_repo.list_bookings()) == 2


class TestClaim:
    def _accepted_copy(self, booking, carrier_id, vehicle_id):
        working = booking.model_copy(deep=True)
        working.carrier_id = carrier_id
        working.vehicle_id = vehicle_id
        working.record_status(BookingStatus.ACCEPTED, carrier_id)
        return working

    def test_win_flips_vehicle(self, sql_repo, sql_pending):
        working = self._accepted_copy(sql_pending, "carrier-a", "veh-a")

        outcome, stored = sql_repo.claim(working, sql_pending.version, "veh-a")

        assert outcome == ClaimOutcome.WON
        assert stored.status == BookingStatus.ACCEPTED
        assert sql_repo.get_vehicle("veh-a").is_available is False

    def test_unavailable_vehicle_rolls_back_booking(
        self, sql_engine, sql_repo, sql_pending, requester, booking_inputs
    ):
        second = sql_engine.create_booking(requester, vehicle_id="veh-b", **booking_inputs)
        sql_repo.claim(self._accepted_copy(sql_pending, "carrier-a", "veh-a"), sql_pending.version, "veh-a")

        outcome, stored = sql_repo.claim(
            self._accepted_copy(second, "carrier-a", "veh-a"), second.version, "veh-a"
        )

        assert outcome == ClaimOutcome.VEHICLE_UNAVAILABLE
        assert stored is None
        reloaded = sql_repo.get_booking(second.ref)
        assert reloaded.status == BookingStatus.PENDING, "Booking write must roll back with the vehicle"
        assert reloaded.version == second.version
        assert reloaded.carrier_id is None

    def test_changed_booking(self, sql_repo, sql_pending):
        sql_repo.claim(self._accepted_copy(sql_pending, "carrier-a", "veh-a"), sql_pending.version, "veh-a")

        outcome, _ = sql_repo.claim(
            self._accepted_copy(sql_pending, "carrier-b", "veh-b"), sql_pending.version, "veh-b"
        )

        assert outcome == ClaimOutcome.BOOKING_CHANGED
        assert sql_repo.get_vehicle("veh-b").is_available is True


class TestVehicles:
    def test_availability_column_is_authoritative(self, sql_repo, sql_engine):
        sql_repo.update_vehicle("veh-a", lambda v: setattr(v, "is_available", False))
        assert sql_repo.get_vehicle("veh-a").is_available is True, "Only claim and release flip availability"

    def test_save_keeps_committed_availability(self, sql_repo, sql_engine, sql_pending, carrier_a):
        """A replace built from a read taken before the claim must not free the vehicle"""
        stale = sql_repo.get_vehicle("veh-a")
        sql_engine.respond_to_booking(sql_pending.ref, carrier_a, "accept")

        sql_repo.save_vehicle(stale.model_copy(update={"rate_per_km": 18.0}))

        stored = sql_repo.get_vehicle("veh-a")
        assert stored.rate_per_km == 18.0
        assert stored.is_available is False

    def test_insert_takes_given_availability(self, sql_repo, vehicle_factory):
        vehicle = vehicle_factory("veh-new", "carrier-z").model_copy(update={"is_available": False})
        assert sql_repo.save_vehicle(vehicle).is_available is False

    def test_release(self,sql_repo, sql_engine, sql_pending, carrier_a):
        sql_engine.respond_to_booking(sql_pending.ref, carrier_a, "accept")
        assert sql_repo.release_vehicle("veh-a") is True
        assert sql_repo.get_vehicle("veh-a").is_available is True
        assert sql_repo.release_vehicle("veh-missing") is False

    def test_available_only_listing(self, sql_repo, sql_engine, sql_pending, carrier_a):
        sql_engine.respond_to_booking(sql_pending.ref, carrier_a, "accept")
        assert [v.id for v in sql_repo.list_vehicles(available_only=True)] == ["veh-b"]

    def test_update_missing_vehicle(self, sql_repo):
        with pytest.raises(NotFoundError):
            sql_repo.update_vehicle("veh-missing", lambda v: None)


class TestIdentities:
    def test_ensure_is_insert_if_absent(self, sql_repo):
        sql_repo.ensure_identity(Identity(id="farmer-9", role=Role.REQUESTER))
        sql_repo.update_identity("farmer-9", lambda i: setattr(i, "completed_trips", 3))

        again = sql_repo.ensure_identity(Identity(id="farmer-9", role=Role.REQUESTER))

        assert again.completed_trips == 3, "Existing counters must survive"

    def test_update_bumps_version(self, sql_repo):
        sql_repo.ensure_identity(Identity(id="carrier-9", role=Role.CARRIER))
        updated = sql_repo.update_identity("carrier-9", lambda i: setattr(i, "earnings", 100.0))

        assert updated.version == 1
        assert sql_repo.get_identity("carrier-9").earnings == 100.0

    def test_update_missing_identity(self, sql_repo):
        with pytest.raises(NotFoundError):
            sql_repo.update_identity("nobody", lambda i: None)


class TestEngineOverSql:
    def test_full_trip(self, sql_engine, sql_repo, sql_pending, requester, carrier_a):
        sql_engine.respond_to_booking(sql_pending.ref, carrier_a, "accept")
        for status in (
            BookingStatus.EN_ROUTE_PICKUP,
            BookingStatus.PICKED_UP,
            BookingStatus.EN_ROUTE_DELIVERY,
            BookingStatus.DELIVERED,
        ):
            sql_engine.advance_status(sql_pending.ref, carrier_a, status)
        completed = sql_engine.advance_status(sql_pending.ref, requester, BookingStatus.COMPLETED)
        sql_engine.rate_booking(sql_pending.ref, requester, 5)

        carrier = sql_repo.get_identity("carrier-a")
        vehicle = sql_repo.get_vehicle("veh-a")
        assert carrier.completed_trips == 1
        assert carrier.earnings == pytest.approx(completed.pricing.total_amount)
        assert carrier.rating == 5.0
        assert vehicle.is_available is True
        assert vehicle.total_trips == 1

        stats = sql_repo.get_stats()
        assert stats["bookings"]["total"] == 1
        assert stats["bookings"]["completed"] == 1
        assert stats["vehicles"]["available"] == 2

    def test_index_rebuilds_from_database(self, sql_repo, sql_pending):
        fresh = DispatchEngine(sql_repo)
        assert fresh.rebuild_index() == {"vehicles": 2, "requests": 1}
