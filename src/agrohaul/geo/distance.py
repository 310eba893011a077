"""
Great-circle distance calculations.

All distances are kilometres on a sphere of radius ``EARTH_RADIUS_KM``.
Callers keep the unrounded value for pricing and round only for display.
"""

from math import radians, cos, sin, asin, sqrt

from ..config import settings
from ..exceptions import ValidationError


def validate_coordinates(latitude: float, longitude: float) -> tuple[float, float]:
    """
    Check a latitude/longitude pair is inside the valid ranges.

    Args:
        latitude: Degrees, must lie in [-90, 90]
        longitude: Degrees, must lie in [-180, 180]

    Returns:
        The pair as floats

    Raises:
        ValidationError: If either value is out of range or not a finite number
    """
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise ValidationError(f"Coordinates must be numeric, got ({latitude!r}, {longitude!r})")

    # NaN fails both comparisons
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"Latitude {latitude} is outside [-90, 90]")
    if not -180.0 <= lon <= 180.0:
        raise ValidationError(f"Longitude {longitude} is outside [-180, 180]")
    return lat, lon


def haversine_km(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    radius_km: float | None = None,
) -> float:
    """
    Calculate great-circle distance between two points using the haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point
        radius_km: Sphere radius, defaults to the configured Earth radius

    Returns:
        Unrounded distance in kilometres
    """
    lat1, lon1 = validate_coordinates(lat1, lon1)
    lat2, lon2 = validate_coordinates(lat2, lon2)
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    r = settings.EARTH_RADIUS_KM if radius_km is None else radius_km
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push a marginally above 1 for antipodal points
    c = 2 * asin(sqrt(min(1.0, a)))
    return c * r


def display_km(distance_km: float) -> float:
    """Round a distance to two decimal places for display."""
    return round(distance_km, 2)
