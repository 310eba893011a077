"""
Claim Tests

At most one carrier wins a pending booking, whatever the interleaving.
Losers must not change any shared state.
"""

import threading

import pytest

from agrohaul.dispatch import ClaimManager
from agrohaul.exceptions import ClaimLossReason, ClaimLostError, InvalidTransitionError
from agrohaul.models import ActorContext, BookingStatus, Role


class TestClaimManager:
    def test_win_binds_carrier_and_vehicle(self, repo, pending):
        result = ClaimManager(repo).try_claim(pending.ref, "carrier-a", "veh-a")

        assert result.won
        assert result.booking.status == BookingStatus.ACCEPTED
        assert result.booking.carrier_id == "carrier-a"
        assert result.booking.vehicle_id == "veh-a"
        assert repo.get_vehicle("veh-a").is_available is False, "Winning vehicle must be committed"

    def test_second_claim_loses(self, repo, pending):
        manager = ClaimManager(repo)
        manager.try_claim(pending.ref, "carrier-a", "veh-a")

        result = manager.try_claim(pending.ref, "carrier-b", "veh-b")

        assert result.lost
        assert result.reason == ClaimLossReason.ALREADY_ACCEPTED
        assert result.booking.carrier_id == "carrier-a"
        assert repo.get_vehicle("veh-b").is_available is True, "Loser's vehicle must stay available"

    def test_unavailable_vehicle_leaves_booking_untouched(self, repo, create_booking):
        manager = ClaimManager(repo)
        first = create_booking()
        second = create_booking()
        manager.try_claim(first.ref, "carrier-a", "veh-a")

        result = manager.try_claim(second.ref, "carrier-a", "veh-a")

        assert result.reason == ClaimLossReason.VEHICLE_UNAVAILABLE
        stored = repo.get_booking(second.ref)
        assert stored.status == BookingStatus.PENDING
        assert stored.carrier_id is None
        assert stored.version == second.version

    def test_claim_reprices_at_winning_vehicle_rate(self, repo, pending):
        """veh-b charges 12/km against the requested 15/km"""
        result = ClaimManager(repo).try_claim(pending.ref, "carrier-b", "veh-b")

        assert result.booking.pricing.rate_per_km == 12.0
        assert result.booking.pricing.base_amount == pytest.approx(pending.pricing.distance_km * 12.0)


class TestConcurrentAccepts:
    """N carriers race to accept one booking."""

    def test_exactly_one_winner(self, engine, repo, pending, register_vehicle):
        carriers = []
        for i in range(8):
            actor = ActorContext(actor_id=f"racer-{i}", role=Role.CARRIER)
            register_vehicle(actor, f"racer-veh-{i}")
            carriers.append(actor)

        barrier = threading.Barrier(len(carriers))
        winners, losers, errors = [], [], []

        def accept(actor):
            barrier.wait()
            try:
                booking = engine.respond_to_booking(
                    pending.ref, actor, "accept", vehicle_id=f"racer-veh-{actor.actor_id.split('-')[1]}"
                )
                winners.append((actor.actor_id, booking))
            except ClaimLostError as e:
                losers.append((actor.actor_id, e))
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=accept, args=(actor,)) for actor in carriers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors, f"Unexpected errors: {errors}"
        assert len(winners) == 1, f"Expected exactly one winner, got {len(winners)}"
        assert len(losers) == len(carriers) - 1

        winner_id, _ = winners[0]
        stored = repo.get_booking(pending.ref)
        assert stored.carrier_id == winner_id
        assert stored.vehicle_id == f"racer-veh-{winner_id.split('-')[1]}"
        assert [e.status for e in stored.timeline].count(BookingStatus.ACCEPTED) == 1

        for loser_id, error in losers:
            assert error.reason == ClaimLossReason.ALREADY_ACCEPTED
            vehicle = repo.get_vehicle(f"racer-veh-{loser_id.split('-')[1]}")
            assert vehicle.is_available, f"{loser_id}'s vehicle must be untouched"

    def test_two_carriers_distinct_vehicles(self, engine, repo, pending, carrier_a, carrier_b):
        barrier = threading.Barrier(2)
        outcomes = {}

        def accept(actor, vehicle_id):
            barrier.wait()
            try:
                engine.respond_to_booking(pending.ref, actor, "accept", vehicle_id=vehicle_id)
                outcomes[actor.actor_id] = "won"
            except ClaimLostError:
                outcomes[actor.actor_id] = "lost"

        threads = [
            threading.Thread(target=accept, args=(carrier_a, "veh-a")),
            threading.Thread(target=accept, args=(carrier_b, "veh-b")),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes.values()) == ["lost", "won"]
        winner = next(cid for cid, outcome in outcomes.items() if outcome == "won")
        loser_vehicle = "veh-b" if winner == "carrier-a" else "veh-a"
        assert repo.get_booking(pending.ref).carrier_id == winner
        assert repo.get_vehicle(loser_vehicle).is_available is True


class TestAcceptErrors:
    def test_accept_after_cancel_is_invalid_transition(self, engine, pending, requester, carrier_a):
        engine.cancel_booking(pending.ref, requester, "Changed plans")
        with pytest.raises(InvalidTransitionError):
            engine.respond_to_booking(pending.ref, carrier_a, "accept")

    def test_accept_already_accepted_reports_current_state(self, engine, accepted, carrier_b):
        with pytest.raises(ClaimLostError) as exc_info:
            engine.respond_to_booking(accepted.ref, carrier_b, "accept", vehicle_id="veh-b")
        assert exc_info.value.current_status == BookingStatus.ACCEPTED
        assert exc_info.value.to_dict()["reason"] == "already_accepted"
