"""
Distance-based pricing.

base_amount = distance_km * rate_per_km
total_amount = base_amount + loading + unloading + waiting + toll

Distance is kept unrounded on the booking; only display values are rounded.
"""

from typing import Optional

from ..config import settings
from ..exceptions import OutOfRangeError
from ..geo.distance import haversine_km
from ..models import AdditionalCharges, Coordinates, Pricing

CHARGE_FIELDS = ("loading", "unloading", "waiting", "toll")


class PricingCalculator:
    """
    Computes great-circle distance and the cost breakdown of a trip.

    Stateless apart from its configuration, so one instance is shared by
    every request.
    """

    def __init__(self, currency: Optional[str] = None, earth_radius_km: Optional[float] = None):
        self.currency = currency or settings.CURRENCY
        self.earth_radius_km = earth_radius_km or settings.EARTH_RADIUS_KM

    def distance_km(self, origin: Coordinates, destination: Coordinates) -> float:
        """Unrounded haversine distance between two points."""
        return haversine_km(
            origin.latitude,
            origin.longitude,
            destination.latitude,
            destination.longitude,
            radius_km=self.earth_radius_km,
        )

    def quote(
        self,
        pickup: Coordinates,
        dropoff: Coordinates,
        rate_per_km: float,
        charges: Optional[AdditionalCharges] = None,
    ) -> Pricing:
        """
        Price a trip between two points.

        Args:
            pickup: Pickup coordinates
            dropoff: Dropoff coordinates
            rate_per_km: Carrier rate, must be positive
            charges: Extras, all zero when omitted

        Returns:
            Pricing with unrounded distance and base amount
        """
        _check_rate(rate_per_km)
        distance = self.distance_km(pickup, dropoff)
        return Pricing(
            distance_km=distance,
            rate_per_km=rate_per_km,
            base_amount=distance * rate_per_km,
            additional_charges=charges or AdditionalCharges(),
            currency=self.currency,
        )

    def reprice(self, pricing: Pricing, rate_per_km: float) -> Pricing:
        """Same distance and charges at a different rate."""
        _check_rate(rate_per_km)
        return pricing.model_copy(update={
            "rate_per_km": rate_per_km,
            "base_amount": pricing.distance_km * rate_per_km,
        })

    def with_charges(self, pricing: Pricing, **changes: Optional[float]) -> Pricing:
        """
        Replace some of the additional charges.

        Keyword arguments left as None keep their current value.

        Raises:
            OutOfRangeError: If a charge is negative
        """
        unknown = set(changes) - set(CHARGE_FIELDS)
        if unknown:
            raise OutOfRangeError(f"Unknown charge(s): {', '.join(sorted(unknown))}")

        updates = {}
        for name, value in changes.items():
            if value is None:
                continue
            if value < 0:
                raise OutOfRangeError(f"Charge '{name}' must not be negative, got {value}")
            updates[name] = float(value)

        charges = pricing.additional_charges.model_copy(update=updates)
        return pricing.model_copy(update={"additional_charges": charges})


def _check_rate(rate_per_km: float) -> None:
    if rate_per_km is None or not rate_per_km > 0:
        raise OutOfRangeError(f"Rate per km must be positive, got {rate_per_km}")


def quote(
    pickup: Coordinates,
    dropoff: Coordinates,
    rate_per_km: float,
    charges: Optional[AdditionalCharges] = None,
) -> Pricing:
    """
    Convenience function to price a trip.

    Args:
        pickup: Pickup coordinates
        dropoff: Dropoff coordinates
        rate_per_km: Carrier rate per km

    Returns:
        Pricing breakdown
    """
    return PricingCalculator().quote(pickup, dropoff, rate_per_km, charges)
