"""
Rating Tests

Running averages, score bounds, and one rating per direction per booking.
"""

import pytest

from agrohaul.dispatch.ratings import RatingAggregator, running_average, validate_score
from agrohaul.exceptions import ConflictError, DuplicateRatingError, OutOfRangeError
from agrohaul.models import BookingStatus, Identity, RatingDirection, Role


class TestRunningAverage:
    def test_first_rating(self):
        assert running_average(0.0, 0, 4) == 4.0

    def test_formula(self):
        """(old * count + new) / (count + 1)"""
        assert running_average(4.0, 3, 2) == pytest.approx((4.0 * 3 + 2) / 4)

    def test_stays_in_bounds(self):
        assert running_average(5.0, 1000, 5) <= 5.0


class TestScoreValidation:
    @pytest.mark.parametrize("score", [0, 6, -1, 2.5, True, "4"])
    def test_out_of_range(self, score):
        with pytest.raises(OutOfRangeError):
            validate_score(score)

    def test_whole_float_accepted(self):
        assert validate_score(3.0) == 3


class TestRatingAggregator:
    def test_record_rating_updates_identity(self, repo):
        repo.save_identity(Identity(id="carrier-x", role=Role.CARRIER))
        aggregator = RatingAggregator(repo)

        assert aggregator.record_rating("carrier-x", 5) == 5.0
        assert aggregator.record_rating("carrier-x", 3) == 4.0

        stored = repo.get_identity("carrier-x")
        assert stored.total_ratings == 2, "Count must go up by exactly one per rating"
        assert stored.rating == 4.0


class TestRateBooking:
    """Engine-level rating rules."""

    def test_requester_rates_carrier_and_vehicle(self, engine, repo, delivered, requester):
        rating = engine.rate_booking(delivered.ref, requester, 4, "On time")

        assert rating.direction == RatingDirection.REQUESTER_TO_CARRIER
        assert rating.rated_identity == "carrier-a"
        assert repo.get_identity("carrier-a").rating == 4.0
        assert repo.get_vehicle("veh-a").rating == 4.0
        assert repo.get_vehicle("veh-a").total_ratings == 1

    def test_carrier_rates_requester(self, engine, repo, delivered, carrier_a):
        engine.rate_booking(delivered.ref, carrier_a, 5)
        assert repo.get_identity("farmer-1").rating == 5.0
        assert repo.get_vehicle("veh-a").total_ratings == 0, "Carrier's rating must not touch the vehicle"

    def test_second_rating_is_duplicate_and_first_kept(self, engine, repo, delivered, requester):
        """Re-rating always fails and the stored rating does not change"""
        first = engine.rate_booking(delivered.ref, requester, 4)

        for score in (1, 4, 5):
            with pytest.raises(DuplicateRatingError):
                engine.rate_booking(delivered.ref, requester, score)

        stored = repo.get_booking(delivered.ref).ratings.requester_to_carrier
        assert stored.score == first.score == 4
        assert repo.get_identity("carrier-a").total_ratings == 1

    def test_both_directions_allowed(self, engine, delivered, requester, carrier_a):
        engine.rate_booking(delivered.ref, requester, 4)
        engine.rate_booking(delivered.ref, carrier_a, 5)
        booking = engine.get_booking(delivered.ref, requester)
        assert booking.ratings.requester_to_carrier is not None
        assert booking.ratings.carrier_to_requester is not None

    def test_rating_after_completion(self, engine, delivered, requester):
        engine.advance_status(delivered.ref, requester, BookingStatus.COMPLETED)
        assert engine.rate_booking(delivered.ref, requester, 5).score == 5

    def test_not_before_delivery(self, engine, accepted, requester):
        with pytest.raises(ConflictError) as exc_info:
            engine.rate_booking(accepted.ref, requester, 5)
        assert exc_info.value.current_status == BookingStatus.ACCEPTED

    def test_out_of_range_score(self, engine, delivered, requester):
        with pytest.raises(OutOfRangeError):
            engine.rate_booking(delivered.ref, requester, 6)

    def test_outsider_cannot_rate(self, engine, delivered, outsider):
        from agrohaul.exceptions import AuthorizationError

        with pytest.raises(AuthorizationError):
            engine.rate_booking(delivered.ref, outsider, 3)
