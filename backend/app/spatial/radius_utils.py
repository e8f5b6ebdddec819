"""
radius_utils.py — Distance helpers for safe-place lookup.

Provides:
    - A validated Coordinate value type (decimal degrees)
    - Haversine great-circle distance in kilometres and metres
    - Radius check used to drop far-away place-search hits
    - Nearest-first ordering for anything carrying a distance

Haversine
=========
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Accurate to ~0.5%, which is plenty for "police station 0.5 km away".
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, TypeVar

EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius

T = TypeVar("T")


@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)

    def as_lng_lat(self) -> str:
        """Longitude-first pair, the order map APIs expect for proximity."""
        return f"{self.longitude:.6f},{self.latitude:.6f}"

    def to_dict(self) -> dict:
        return {"lat": self.latitude, "lng": self.longitude}


def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points, in kilometres.

    Examples
    --------
    >>> haversine(Coordinate(13.0827, 80.2707), Coordinate(12.9716, 77.5946))
    290.2122

    >>> haversine(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))

    return round(EARTH_RADIUS_KM * c, 4)


def haversine_m(point1: Coordinate, point2: Coordinate) -> float:
    """Great-circle distance in metres, rounded to 0.1 m."""
    return round(haversine(point1, point2) * 1000.0, 1)


def is_inside_radius(origin: Coordinate, target: Coordinate, radius_km: float) -> bool:
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")
    return haversine(origin, target) <= radius_km


def nearest_first(
    items: Iterable[T],
    distance_of: Callable[[T], Optional[float]],
) -> List[T]:
    """Sort by distance; items without a distance go last."""
    return sorted(
        items,
        key=lambda item: (distance_of(item) is None, distance_of(item) or 0.0),
    )
