"""
In-process geospatial index of vehicle and request locations.

Algorithm for a radius query:
1. Bounding-box pre-filter. The latitude band is +/- degrees(r / R); the
   longitude half-width is asin(sin(r / R) / cos(lat)), widened to the full
   circle when the box reaches a pole. Longitude is compared modulo 360 so
   boxes crossing the antimeridian work.
2. Exact haversine distance for every point that survives the box.
3. Keep points with distance <= radius and take the ``limit`` nearest with a
   partial sort (heapq.nsmallest), ties broken by entity id.

Thousands of entities is the expected scale; a grid or R-tree could replace
step 1 without changing result ordering or radius semantics.
"""

import heapq
import threading
from dataclasses import dataclass
from math import asin, cos, degrees, pi, radians, sin
from typing import Callable, Optional

from ..config import settings
from ..exceptions import ValidationError
from ..models.enums import EntityKind
from .distance import haversine_km, validate_coordinates

# Pads the pre-filter box so float error never drops a point sitting on the radius
_BOX_PAD_DEGREES = 1e-6


@dataclass(frozen=True)
class GeoHit:
    """One entity returned by a radius query."""

    kind: EntityKind
    entity_id: str
    latitude: float
    longitude: float
    distance_km: float


@dataclass(frozen=True)
class BoundingBox:
    """Latitude band plus a longitude half-width around a centre longitude."""

    min_lat: float
    max_lat: float
    center_lon: float
    lon_half_width: float  # 180 means every longitude

    def contains(self, latitude: float, longitude: float) -> bool:
        if not self.min_lat <= latitude <= self.max_lat:
            return False
        if self.lon_half_width >= 180.0:
            return True
        delta = abs((longitude - self.center_lon + 180.0) % 360.0 - 180.0)
        return delta <= self.lon_half_width


def bounding_box(latitude: float, longitude: float, radius_km: float, earth_radius_km: float) -> BoundingBox:
    """Smallest lat/lon box guaranteed to contain the search circle."""
    angular = radius_km / earth_radius_km
    lat_delta = degrees(angular) + _BOX_PAD_DEGREES
    min_lat = latitude - lat_delta
    max_lat = latitude + lat_delta

    if angular >= pi / 2 or min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), longitude, 180.0)

    ratio = sin(angular) / cos(radians(latitude))
    if ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, longitude, 180.0)
    return BoundingBox(min_lat, max_lat, longitude, degrees(asin(ratio)) + _BOX_PAD_DEGREES)


class GeoIndex:
    """
    Point locations keyed by (kind, entity id).

    Writers and readers may run on different request threads; the internal
    lock only guards the point table, and queries work on a snapshot.
    """

    def __init__(self, earth_radius_km: Optional[float] = None):
        self.earth_radius_km = earth_radius_km or settings.EARTH_RADIUS_KM
        self._points: dict[tuple[EntityKind, str], tuple[float, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._points)

    def count(self, kind: EntityKind) -> int:
        """Number of indexed entities of one kind."""
        with self._lock:
            return sum(1 for k, _ in self._points if k == kind)

    def upsert(self, kind: EntityKind, entity_id: str, latitude: float, longitude: float) -> None:
        """Insert or move an entity."""
        lat, lon = validate_coordinates(latitude, longitude)
        with self._lock:
            self._points[(kind, entity_id)] = (lat, lon)

    def remove(self, kind: EntityKind, entity_id: str) -> bool:
        """Drop an entity. Returns False if it was not indexed."""
        with self._lock:
            return self._points.pop((kind, entity_id), None) is not None

    def get(self, kind: EntityKind, entity_id: str) -> Optional[tuple[float, float]]:
        """Current location of an entity, if indexed."""
        with self._lock:
            return self._points.get((kind, entity_id))

    def clear(self) -> None:
        with self._lock:
            self._points.clear()

    def within(
        self,
        kind: EntityKind,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int,
        predicate: Optional[Callable[[str], bool]] = None,
    ) -> list[GeoHit]:
        """
        Entities of ``kind`` within ``radius_km`` of a point, nearest first.

        Args:
            kind: Entity kind to search
            latitude: Centre latitude
            longitude: Centre longitude
            radius_km: Inclusive search radius in km
            limit: Maximum hits to return
            predicate: Optional filter on entity id, applied before the limit

        Returns:
            Hits sorted by non-decreasing distance
        """
        lat, lon = validate_coordinates(latitude, longitude)
        if radius_km < 0:
            raise ValidationError(f"Radius must not be negative, got {radius_km}")
        if limit < 1:
            raise ValidationError(f"Limit must be at least 1, got {limit}")

        box = bounding_box(lat, lon, radius_km, self.earth_radius_km)
        with self._lock:
            snapshot = [
                (entity_id, point)
                for (k, entity_id), point in self._points.items()
                if k == kind
            ]

        candidates: list[GeoHit] = []
        for entity_id, (p_lat, p_lon) in snapshot:
            if not box.contains(p_lat, p_lon):
                continue
            distance = haversine_km(lat, lon, p_lat, p_lon, radius_km=self.earth_radius_km)
            if distance > radius_km:
                continue
            if predicate is not None and not predicate(entity_id):
                continue
            candidates.append(GeoHit(kind, entity_id, p_lat, p_lon, distance))

        return heapq.nsmallest(limit, candidates, key=lambda hit: (hit.distance_km, hit.entity_id))
