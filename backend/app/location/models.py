"""
models.py — Value types for position and safe-place lookup.

Defines:
    • Position          — one immutable device fix
    • RawFix            — what a geolocation provider hands back
    • SafePlaceCategory — police / hospital / shelter
    • SafePlace         — one search hit, identified per (category, index)
    • PlaceQuery / PlaceHit — request / response of the place-search API
    • SearchStatus      — outcome of a search as shown to the user
    • SafePlaceResult   — merged, deduplicated result set
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from backend.app.spatial.radius_utils import Coordinate, nearest_first


@dataclass(frozen=True)
class RawFix:
    lat: float
    lng: float
    accuracy: float


@dataclass(frozen=True)
class Position:
    """A device fix. Immutable once captured."""
    lat: float
    lng: float
    accuracy: float
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        # validates the range
        Coordinate(self.lat, self.lng)
        if self.accuracy < 0:
            raise ValueError(f"Accuracy must be non-negative, got {self.accuracy}")

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)

    def describe(self) -> str:
        return f"{self.lat:.4f}, {self.lng:.4f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "accuracy": self.accuracy,
            "captured_at": self.captured_at.isoformat(),
        }


class SafePlaceCategory(str, Enum):
    POLICE   = "police"
    HOSPITAL = "hospital"
    SHELTER  = "shelter"


# Free-text query sent to the place-search API for each category
SEARCH_TERMS: Dict[SafePlaceCategory, str] = {
    SafePlaceCategory.POLICE:   "police station",
    SafePlaceCategory.HOSPITAL: "hospital",
    SafePlaceCategory.SHELTER:  "women shelter",
}


@dataclass(frozen=True)
class SafePlace:
    """
    One nearby safe place. Equality and hashing use ``id`` only, so a
    set of SafePlace is deduplicated by id.
    """
    id: str
    name: str = field(compare=False)
    category: SafePlaceCategory = field(compare=False)
    coordinates: Coordinate = field(compare=False)
    distance_m: Optional[float] = field(default=None, compare=False)
    address: str = field(default="", compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "coordinates": self.coordinates.to_dict(),
            "distance_m": self.distance_m,
            "distance_km": (
                round(self.distance_m / 1000.0, 1) if self.distance_m is not None else None
            ),
            "address": self.address,
        }


@dataclass(frozen=True)
class PlaceQuery:
    category: SafePlaceCategory
    query_text: str
    proximity: Coordinate
    limit: int


@dataclass(frozen=True)
class PlaceHit:
    name: str
    coordinates: Coordinate
    category: str
    address: str = ""


class SearchStatus(str, Enum):
    NOT_STARTED = "not_started"
    SEARCHING   = "searching"
    FOUND       = "found"
    EMPTY       = "empty"         # every query answered, nothing nearby
    UNAVAILABLE = "unavailable"   # every query failed


@dataclass(frozen=True)
class SafePlaceResult:
    """Merged outcome of one search. ``places`` is the deduplicated set."""
    center: Coordinate
    places: FrozenSet[SafePlace] = frozenset()
    failed_categories: Tuple[SafePlaceCategory, ...] = ()
    searched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> SearchStatus:
        return SearchStatus.FOUND if self.places else SearchStatus.EMPTY

    @property
    def partial(self) -> bool:
        return bool(self.failed_categories)

    def nearest_first(self) -> List[SafePlace]:
        return nearest_first(self.places, lambda p: p.distance_m)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "center": self.center.to_dict(),
            "status": self.status.value,
            "partial": self.partial,
            "failed_categories": [c.value for c in self.failed_categories],
            "searched_at": self.searched_at.isoformat(),
            "places": [p.to_dict() for p in self.nearest_first()],
        }
