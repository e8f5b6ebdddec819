"""
geolocation.py — One-shot device position.

GeolocationService.get_current_position() asks the provider for a single
fix (no continuous tracking). While a request is outstanding, further
callers await the same in-flight task instead of querying the device
again.

Failure mapping
===============
    provider refuses               → PermissionDeniedError
    provider fails / invalid fix   → PositionUnavailableError
    deadline exceeded              → LocationTimeoutError

Providers
=========
    static    — fixed coordinates from configuration (kiosk / dev box)
    disabled  — location services switched off; always PermissionDenied
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from backend.app.core.config import Settings
from backend.app.core.errors import (
    CaptureError,
    LocationTimeoutError,
    PermissionDeniedError,
    PositionUnavailableError,
)
from backend.app.location.models import Position, RawFix

logger = logging.getLogger(__name__)


class GeolocationProvider(ABC):
    name: str = "abstract"

    @abstractmethod
    async def get_position(self) -> RawFix:
        ...


class StaticGeolocationProvider(GeolocationProvider):
    name = "static"

    def __init__(self, lat: Optional[float], lng: Optional[float], accuracy: float = 25.0):
        self.lat = lat
        self.lng = lng
        self.accuracy = accuracy

    async def get_position(self) -> RawFix:
        if self.lat is None or self.lng is None:
            raise PositionUnavailableError("No device coordinates configured")
        return RawFix(lat=self.lat, lng=self.lng, accuracy=self.accuracy)


class DisabledGeolocationProvider(GeolocationProvider):
    name = "disabled"

    async def get_position(self) -> RawFix:
        raise PermissionDeniedError("geolocation", "Location services are disabled")


def build_geolocation_provider(config: Settings) -> GeolocationProvider:
    provider = config.GEOLOCATION_PROVIDER.lower()
    if provider == "static":
        return StaticGeolocationProvider(
            config.DEVICE_LATITUDE, config.DEVICE_LONGITUDE, config.DEVICE_ACCURACY_M,
        )
    if provider == "disabled":
        return DisabledGeolocationProvider()
    raise ValueError(f"Unknown GEOLOCATION_PROVIDER '{config.GEOLOCATION_PROVIDER}'")


class GeolocationService:
    """
    Usage:
        service = GeolocationService(StaticGeolocationProvider(12.97, 77.59))
        position = await service.get_current_position()
    """

    def __init__(self, provider: GeolocationProvider, *, timeout_seconds: float = 10.0):
        self._provider = provider
        self._timeout = timeout_seconds
        self._inflight: Optional[asyncio.Task] = None
        self.requests_issued = 0

    @property
    def provider(self) -> GeolocationProvider:
        return self._provider

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def get_current_position(self) -> Position:
        if not self.in_flight:
            self._inflight = asyncio.create_task(self._query(), name="geolocation-query")
        # shield: one caller giving up must not cancel the query for the others
        return await asyncio.shield(self._inflight)

    def cancel(self) -> None:
        if self.in_flight:
            self._inflight.cancel()
        self._inflight = None

    async def _query(self) -> Position:
        self.requests_issued += 1
        start = time.perf_counter()
        try:
            fix = await asyncio.wait_for(self._provider.get_position(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Position request timed out after %.1fs", self._timeout)
            raise LocationTimeoutError(self._timeout) from exc
        except CaptureError:
            raise
        except Exception as exc:
            raise PositionUnavailableError(str(exc) or type(exc).__name__) from exc

        try:
            position = Position(lat=fix.lat, lng=fix.lng, accuracy=fix.accuracy)
        except ValueError as exc:
            raise PositionUnavailableError(f"Invalid fix from {self._provider.name}: {exc}") from exc

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Position acquired %s (±%.0fm, %.1fms)",
            position.describe(), position.accuracy, duration_ms,
            extra={"duration_ms": duration_ms},
        )
        return position
