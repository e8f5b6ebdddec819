"""
FastAPI route: Direct safe-place search.

    GET /api/v1/places/nearby?lat=12.9716&lng=77.5946

Unlike the alert flow, an all-categories failure is returned as
``status="unavailable"`` with HTTP 200 so a client can tell it apart
from an empty neighbourhood.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from backend.app.api.deps import get_runtime
from backend.app.api.schemas import SafePlaceSearchOut
from backend.app.core.errors import SearchUnavailableError
from backend.app.location.models import SearchStatus
from backend.app.runtime import AlertRuntime
from backend.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/places", tags=["safe-places"])


@router.get(
    "/nearby",
    response_model=SafePlaceSearchOut,
    summary="Nearby police stations, hospitals and shelters",
)
async def nearby_safe_places(
    lat: float = Query(..., ge=-90.0, le=90.0, examples=[12.9716]),
    lng: float = Query(..., ge=-180.0, le=180.0, examples=[77.5946]),
    runtime: AlertRuntime = Depends(get_runtime),
):
    center = Coordinate(lat, lng)
    try:
        result = await runtime.finder.search(center)
    except SearchUnavailableError as exc:
        logger.warning("Safe place search unavailable at %s", center.as_lng_lat())
        return {
            "center": center.to_dict(),
            "status": SearchStatus.UNAVAILABLE.value,
            "partial": False,
            "failed_categories": exc.details.get("failed_categories", []),
            "places": [],
        }
    return result.to_dict()
