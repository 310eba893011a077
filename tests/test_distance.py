"""
Distance Tests

Great-circle distance must be symmetric, zero for identical points, and
reject coordinates outside the valid ranges instead of clamping them.
"""

import math

import pytest

from agrohaul.exceptions import ValidationError
from agrohaul.geo import display_km, haversine_km, validate_coordinates
from agrohaul.models import Coordinates

LUCKNOW = (26.8467, 80.9462)
DELHI = (28.6139, 77.2090)


class TestHaversine:
    """Haversine distance on a 6371 km sphere."""

    def test_lucknow_to_delhi(self):
        """Known city pair comes out at about 417 km"""
        distance = haversine_km(*LUCKNOW, *DELHI)
        assert distance == pytest.approx(416.99, abs=0.01), f"Got {distance}"

    def test_symmetry(self):
        """Distance A->B equals B->A"""
        pairs = [
            (LUCKNOW, DELHI),
            ((0.0, 0.0), (0.0, 179.9)),
            ((-33.86, 151.21), (51.5, -0.12)),
            ((89.9, 10.0), (-89.9, -170.0)),
        ]
        for a, b in pairs:
            assert haversine_km(*a, *b) == pytest.approx(haversine_km(*b, *a)), (
                f"Asymmetric distance between {a} and {b}"
            )

    def test_identical_points_are_zero(self):
        """A point is zero km from itself"""
        for point in [LUCKNOW, (0.0, 0.0), (90.0, 0.0), (-90.0, 180.0)]:
            assert haversine_km(*point, *point) == 0.0

    def test_one_degree_of_latitude(self):
        """One degree along a meridian is R * pi / 180"""
        expected = 6371.0 * math.pi / 180
        assert haversine_km(10.0, 20.0, 11.0, 20.0) == pytest.approx(expected)

    def test_antipodal_points(self):
        """Antipodes are half the circumference apart"""
        assert haversine_km(0.0, 0.0, 0.0, 180.0) == pytest.approx(6371.0 * math.pi)

    def test_custom_radius(self):
        """Radius scales the result linearly"""
        base = haversine_km(*LUCKNOW, *DELHI)
        assert haversine_km(*LUCKNOW, *DELHI, radius_km=6371.0 * 2) == pytest.approx(base * 2)


class TestCoordinateValidation:
    """Out-of-range input is an error, never clamped."""

    @pytest.mark.parametrize("lat,lon", [
        (90.1, 0.0),
        (-90.5, 0.0),
        (0.0, 180.01),
        (0.0, -181.0),
        (float("nan"), 0.0),
        (0.0, float("inf")),
    ])
    def test_rejects_invalid(self, lat, lon):
        with pytest.raises(ValidationError):
            haversine_km(lat, lon, 0.0, 0.0)

    def test_rejects_non_numeric(self):
        with pytest.raises(ValidationError):
            validate_coordinates("north", 12.0)

    def test_accepts_boundaries(self):
        assert validate_coordinates(-90, 180) == (-90.0, 180.0)

    def test_coordinates_model_validates(self):
        """The pydantic model refuses bad coordinates too"""
        with pytest.raises(ValueError):
            Coordinates(latitude=95.0, longitude=10.0)


class TestDisplay:
    def test_two_decimal_places(self):
        assert display_km(416.992243) == 416.99
        assert display_km(0.005) in (0.0, 0.01)
