"""
Exclusive claims on pending bookings.

Any number of carriers may try to accept the same pending booking at once.
The repository's claim is a single conditional commit over the booking row
(version and status) and the vehicle row (availability), so exactly one
caller wins and losers leave no trace.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from ..config import settings
from ..db.repository import ClaimOutcome, DispatchRepository
from ..exceptions import ClaimLossReason, NotFoundError, StaleBookingError
from ..models import Booking, BookingStatus
from .pricing import PricingCalculator

logger = structlog.get_logger(__name__)


@dataclass
class ClaimResult:
    """Outcome of one claim attempt."""

    won: bool
    booking: Optional[Booking]  # Winner's booking, or the current snapshot on a loss
    reason: Optional[ClaimLossReason] = None

    @property
    def lost(self) -> bool:
        return not self.won


class ClaimManager:
    """Binds a carrier and vehicle to a pending booking, at most once."""

    def __init__(
        self,
        repository: DispatchRepository,
        pricing: Optional[PricingCalculator] = None,
        max_attempts: Optional[int] = None,
    ):
        self.repository = repository
        self.pricing = pricing or PricingCalculator()
        self.max_attempts = max_attempts or settings.CLAIM_ATTEMPTS

    def try_claim(
        self,
        booking_ref: str,
        carrier_id: str,
        vehicle_id: str,
        expected_status: BookingStatus = BookingStatus.PENDING,
        note: Optional[str] = None,
    ) -> ClaimResult:
        """
        Try to bind ``carrier_id`` and ``vehicle_id`` to a booking.

        On a win the booking moves to accepted, is re-priced at the vehicle's
        rate and the vehicle becomes unavailable, all in one commit. A write
        that only lost to a non-status change (a message, say) is re-read and
        tried again; a status change ends the attempt.

        Args:
            booking_ref: Booking to claim
            carrier_id: Claiming carrier identity
            vehicle_id: Vehicle to commit to the trip
            expected_status: Status the booking must still be in
            note: Optional timeline note

        Returns:
            ClaimResult; ``reason`` is set when the claim was lost

        Raises:
            NotFoundError: If the booking or vehicle does not exist
            StaleBookingError: If the booking kept changing under the claim
        """
        for attempt in range(1, self.max_attempts + 1):
            booking = self.repository.get_booking(booking_ref)
            if booking is None:
                raise NotFoundError("Booking", booking_ref)
            if booking.status != expected_status:
                return self._lost(ClaimLossReason.ALREADY_ACCEPTED, booking, carrier_id)

            vehicle = self.repository.get_vehicle(vehicle_id)
            if vehicle is None:
                raise NotFoundError("Vehicle", vehicle_id)
            if not vehicle.is_available or not vehicle.is_active:
                return self._lost(ClaimLossReason.VEHICLE_UNAVAILABLE, booking, carrier_id)

            working = booking.model_copy(deep=True)
            working.carrier_id = carrier_id
            working.vehicle_id = vehicle_id
            if vehicle.rate_per_km != working.pricing.rate_per_km:
                working.pricing = self.pricing.reprice(working.pricing, vehicle.rate_per_km)
            working.record_status(BookingStatus.ACCEPTED, carrier_id, note=note)

            outcome, stored = self.repository.claim(working, booking.version, vehicle_id)
            if outcome == ClaimOutcome.WON:
                logger.info(
                    "Claim won",
                    booking_ref=booking_ref,
                    carrier_id=carrier_id,
                    vehicle_id=vehicle_id,
                    attempt=attempt,
                )
                return ClaimResult(won=True, booking=stored)
            if outcome == ClaimOutcome.VEHICLE_UNAVAILABLE:
                return self._lost(
                    ClaimLossReason.VEHICLE_UNAVAILABLE,
                    self.repository.get_booking(booking_ref),
                    carrier_id,
                )

            logger.debug("Booking changed under claim, re-reading", booking_ref=booking_ref, attempt=attempt)

        current = self.repository.get_booking(booking_ref)
        raise StaleBookingError(
            f"Booking {booking_ref} kept changing during the claim",
            current_status=current.status if current else None,
            booking=current,
        )

    @staticmethod
    def _lost(reason: ClaimLossReason, booking: Optional[Booking], carrier_id: str) -> ClaimResult:
        logger.info(
            "Claim lost",
            booking_ref=booking.ref if booking else None,
            carrier_id=carrier_id,
            reason=reason.value,
            current_status=booking.status.value if booking else None,
        )
        return ClaimResult(won=False, booking=booking, reason=reason)
