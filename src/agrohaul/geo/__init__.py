"""Geospatial helpers: distance and the nearby-entity index."""

from .distance import haversine_km, validate_coordinates, display_km
from .index import GeoIndex, GeoHit

__all__ = ["haversine_km", "validate_coordinates", "display_km", "GeoIndex", "GeoHit"]
