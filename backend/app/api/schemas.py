"""
Pydantic schemas for the alert, capture and places API.

Separated from the route handlers so they are reusable across
the codebase (WebSocket handlers, tests).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class CoordinateOut(BaseModel):
    lat: float
    lng: float


class ErrorInfoOut(BaseModel):
    code: str
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

class ArtifactOut(BaseModel):
    ref: str
    kind: str
    mime_type: str
    size_bytes: int
    created_at: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MediaSessionOut(BaseModel):
    """One capture session as shown on the alert screen."""
    session_id: str
    kind: str
    state: str
    status: str = Field(..., description="State, or 'error' when idle after a failed start")
    holds_device: bool
    artifact: Optional[ArtifactOut] = None
    started_at: Optional[str] = None
    stopped_at: Optional[str] = None
    elapsed_ticks: int = 0
    elapsed: str = Field("00:00", description="mm:ss since the recording started")
    chunk_count: int = 0
    error: Optional[ErrorInfoOut] = None


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

class PositionOut(BaseModel):
    lat: float
    lng: float
    accuracy: float
    captured_at: str


class SafePlaceOut(BaseModel):
    id: str
    name: str
    category: str
    coordinates: CoordinateOut
    distance_m: Optional[float] = None
    distance_km: Optional[float] = None
    address: str = ""


class SafePlaceSearchOut(BaseModel):
    """Response for GET /api/v1/places/nearby."""
    center: CoordinateOut
    status: str = Field(..., description="found | empty | unavailable")
    partial: bool = False
    failed_categories: List[str] = Field(default_factory=list)
    searched_at: Optional[str] = None
    places: List[SafePlaceOut] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class NoticeOut(BaseModel):
    code: str
    message: str
    level: str
    created_at: str


class AlertOut(BaseModel):
    """Current state of one alert."""
    alert_id: str
    status: str
    active: bool
    created_at: str
    ended_at: Optional[str] = None
    media: Dict[str, MediaSessionOut] = Field(default_factory=dict)
    position: Optional[PositionOut] = None
    location_status: str
    places_status: str
    failed_categories: List[str] = Field(default_factory=list)
    places: List[SafePlaceOut] = Field(default_factory=list)
    notices: List[NoticeOut] = Field(default_factory=list)


class CurrentAlertOut(BaseModel):
    alert: Optional[AlertOut] = None


class ContactOut(BaseModel):
    name: str
    number: str
    description: str = ""
