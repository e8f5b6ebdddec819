"""
Safe Place Search.

═══════════════════════════════════════════════════════════════════════════
MAPBOX GEOCODING API
═══════════════════════════════════════════════════════════════════════════

Endpoint: https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json

Request:
- proximity=lng,lat   bias results toward the user
- limit=N             hits per query
- types=poi           points of interest only
- access_token=...    required

Response (per feature):
- center      [lng, lat]
- text        short name
- place_name  full address line

═══════════════════════════════════════════════════════════════════════════
AGGREGATION
═══════════════════════════════════════════════════════════════════════════

One query per category (police, hospital, shelter), all concurrently.

1. Per-category failure:
   - Logged and recorded in failed_categories
   - Does not fail the search
2. Every category failed:
   - SearchUnavailableError, which the caller reports as "unavailable"
     rather than "nothing nearby"
3. Identity:
   - id = "{category}-{index}", unique within one search
   - Results form a set; a duplicate id is rejected, first one wins

═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set
from urllib.parse import quote

import httpx

from backend.app.core.config import Settings
from backend.app.core.errors import ExternalServiceError, SearchUnavailableError
from backend.app.location.models import (
    SEARCH_TERMS,
    PlaceHit,
    PlaceQuery,
    SafePlace,
    SafePlaceCategory,
    SafePlaceResult,
)
from backend.app.spatial.radius_utils import Coordinate, haversine_m, is_inside_radius

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

MAPBOX_PLACES_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"
DEFAULT_LIMIT = 3
DEFAULT_CATEGORIES = (
    SafePlaceCategory.POLICE,
    SafePlaceCategory.HOSPITAL,
    SafePlaceCategory.SHELTER,
)


# ── Client ──

class PlaceSearchClient(ABC):
    """Free-text place search biased toward a point."""

    @abstractmethod
    async def search(self, query: PlaceQuery) -> List[PlaceHit]:
        ...

    async def aclose(self) -> None:
        return None


class MapboxPlaceSearchClient(PlaceSearchClient):
    """
    Place search against the Mapbox geocoding API.

    Usage:
        client = MapboxPlaceSearchClient(token)
        hits = await client.search(PlaceQuery(category, "hospital", center, 3))
        await client.aclose()
    """

    def __init__(
        self,
        access_token: Optional[str],
        *,
        base_url: str = MAPBOX_PLACES_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def search(self, query: PlaceQuery) -> List[PlaceHit]:
        if not self.access_token:
            raise ExternalServiceError("mapbox", "no access token configured")

        url = f"{self.base_url}/{quote(query.query_text)}.json"
        params = {
            "proximity": query.proximity.as_lng_lat(),
            "limit": query.limit,
            "types": "poi",
            "access_token": self.access_token,
        }

        client = await self._get_client()
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                "mapbox", f"HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ExternalServiceError("mapbox", str(e) or type(e).__name__) from e
        except ValueError as e:
            raise ExternalServiceError("mapbox", f"invalid JSON: {e}") from e

        return self._parse_features(payload, query)

    @staticmethod
    def _parse_features(payload: Dict[str, Any], query: PlaceQuery) -> List[PlaceHit]:
        hits: List[PlaceHit] = []
        for feature in payload.get("features", []):
            center = feature.get("center") or []
            if len(center) != 2:
                logger.debug("Skipping feature without center: %s", feature.get("id"))
                continue
            try:
                coordinates = Coordinate(latitude=float(center[1]), longitude=float(center[0]))
            except (TypeError, ValueError):
                logger.debug("Skipping feature with invalid center %s", center)
                continue
            hits.append(PlaceHit(
                name=feature.get("text") or feature.get("place_name") or query.query_text,
                coordinates=coordinates,
                category=query.category.value,
                address=feature.get("place_name", ""),
            ))
        return hits


def build_place_search_client(config: Settings) -> PlaceSearchClient:
    return MapboxPlaceSearchClient(
        config.MAPBOX_ACCESS_TOKEN,
        base_url=config.PLACE_SEARCH_BASE_URL,
        timeout=config.PLACE_SEARCH_TIMEOUT_SECONDS,
    )


# ── Finder ──

class SafePlaceFinder:
    """
    Nearby police stations, hospitals and shelters around one point.

    Usage:
        finder = SafePlaceFinder(client, limit=3)
        result = await finder.search(Coordinate(12.9716, 77.5946))
        for place in result.nearest_first():
            ...
    """

    def __init__(
        self,
        client: PlaceSearchClient,
        *,
        limit: int = DEFAULT_LIMIT,
        max_distance_km: Optional[float] = None,
        categories: Iterable[SafePlaceCategory] = DEFAULT_CATEGORIES,
    ):
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        self.client = client
        self.limit = limit
        self.max_distance_km = max_distance_km
        self.categories = tuple(categories)

    async def search(self, center: Coordinate) -> SafePlaceResult:
        start = time.perf_counter()
        queries = [
            PlaceQuery(
                category=category,
                query_text=SEARCH_TERMS[category],
                proximity=center,
                limit=self.limit,
            )
            for category in self.categories
        ]

        outcomes = await asyncio.gather(
            *(self.client.search(q) for q in queries),
            return_exceptions=True,
        )

        places: Set[SafePlace] = set()
        failed: List[SafePlaceCategory] = []
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                failed.append(query.category)
                logger.warning(
                    "Safe place query failed for %s: %s", query.category.value, outcome,
                    extra={"category": query.category.value},
                )
                continue
            for place in self._to_places(query, outcome, center):
                if place in places:
                    logger.warning("Duplicate safe place id %s rejected", place.id,
                                   extra={"category": query.category.value})
                    continue
                places.add(place)

        if queries and len(failed) == len(queries):
            raise SearchUnavailableError(c.value for c in failed)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Safe place search: %d places, %d/%d categories failed (%.1fms)",
            len(places), len(failed), len(queries), duration_ms,
            extra={"duration_ms": duration_ms},
        )
        return SafePlaceResult(
            center=center,
            places=frozenset(places),
            failed_categories=tuple(failed),
        )

    def _to_places(
        self,
        query: PlaceQuery,
        hits: List[PlaceHit],
        center: Coordinate,
    ) -> List[SafePlace]:
        places: List[SafePlace] = []
        # the API may ignore the limit; never surface more than asked for
        for index, hit in enumerate(hits[: query.limit]):
            if self.max_distance_km is not None and not is_inside_radius(
                center, hit.coordinates, self.max_distance_km,
            ):
                continue
            places.append(SafePlace(
                id=f"{query.category.value}-{index}",
                name=hit.name,
                category=query.category,
                coordinates=hit.coordinates,
                distance_m=haversine_m(center, hit.coordinates),
                address=hit.address,
            ))
        return places
