"""
Running rating averages for identities and vehicles.

new_average = (old_average * old_count + score) / (old_count + 1)
"""

from typing import Optional

import structlog

from ..db.repository import DispatchRepository
from ..exceptions import DuplicateRatingError, OutOfRangeError
from ..models import Booking, Identity, RatingDirection, Vehicle
from ..models.booking import utcnow

logger = structlog.get_logger(__name__)

MIN_SCORE = 1
MAX_SCORE = 5


def validate_score(score: int) -> int:
    """
    Check a rating score is an integer in [1, 5].

    Raises:
        OutOfRangeError: For anything else, including booleans and fractions
    """
    if isinstance(score, bool) or not isinstance(score, int):
        if isinstance(score, float) and score.is_integer():
            score = int(score)
        else:
            raise OutOfRangeError(f"Rating must be a whole number from {MIN_SCORE} to {MAX_SCORE}, got {score!r}")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise OutOfRangeError(f"Rating must be from {MIN_SCORE} to {MAX_SCORE}, got {score}")
    return score


def running_average(old_average: float, old_count: int, score: int) -> float:
    """Fold one score into an average over ``old_count`` scores."""
    average = (old_average * old_count + score) / (old_count + 1)
    # Float error must not push the stored value outside [0, 5]
    return min(float(MAX_SCORE), max(0.0, average))


def ensure_not_rated(booking: Booking, direction: RatingDirection) -> None:
    """Raise DuplicateRatingError if ``direction`` already carries a rating."""
    if booking.ratings.get(direction) is not None:
        raise DuplicateRatingError(
            f"Booking {booking.ref} already has a {direction.value} rating",
            current_status=booking.status,
            booking=booking,
        )


class RatingAggregator:
    """Applies new scores to the stored running averages."""

    def __init__(self, repository: DispatchRepository):
        self.repository = repository

    def record_rating(self, identity_id: str, score: int) -> float:
        """
        Fold a score into an identity's rating.

        Args:
            identity_id: Rated identity
            score: Whole number in [1, 5]

        Returns:
            The new average
        """
        score = validate_score(score)

        def apply(identity: Identity) -> None:
            identity.rating = running_average(identity.rating, identity.total_ratings, score)
            identity.total_ratings += 1
            identity.updated_at = utcnow()

        identity = self.repository.update_identity(identity_id, apply)
        logger.info(
            "Identity rated",
            identity_id=identity_id,
            score=score,
            rating=identity.rating,
            total_ratings=identity.total_ratings,
        )
        return identity.rating

    def record_vehicle_rating(self, vehicle_id: str, score: int) -> Optional[float]:
        """Fold a score into a vehicle's rating. Returns None for an unknown vehicle."""
        score = validate_score(score)

        def apply(vehicle: Vehicle) -> None:
            vehicle.rating = running_average(vehicle.rating, vehicle.total_ratings, score)
            vehicle.total_ratings += 1
            vehicle.updated_at = utcnow()

        if self.repository.get_vehicle(vehicle_id) is None:
            logger.warning("Rated vehicle no longer exists", vehicle_id=vehicle_id)
            return None
        return self.repository.update_vehicle(vehicle_id, apply).rating
