"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development: the media
platform runs in simulation mode and the device position is pinned to
Bengaluru city centre.

Usage:
    from backend.app.core.config import settings
    print(settings.PLACE_SEARCH_LIMIT)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Emergency Alert Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = True

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:8080",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Media platform ──
    MEDIA_PROVIDER: str = "simulation"  # simulation only for now
    SIM_DENIED_DEVICES: List[str] = []  # e.g. ["microphone"]
    SIM_UNAVAILABLE_DEVICES: List[str] = []
    SIM_GRANT_DELAY_SECONDS: float = 0.05
    SIM_CHUNK_INTERVAL_SECONDS: float = 0.25
    SIM_CHUNK_BYTES: int = 4096
    SIM_FRAME_WIDTH: int = 640
    SIM_FRAME_HEIGHT: int = 480

    # ── Recording ──
    RECORDER_TICK_SECONDS: float = 1.0  # elapsed counter resolution
    FINALIZE_TIMEOUT_SECONDS: float = 5.0
    VIDEO_MIME_TYPE: str = "video/webm"
    AUDIO_MIME_TYPE: str = "audio/webm"

    # ── Geolocation ──
    GEOLOCATION_PROVIDER: str = "static"  # static | disabled
    DEVICE_LATITUDE: Optional[float] = 12.9716
    DEVICE_LONGITUDE: Optional[float] = 77.5946
    DEVICE_ACCURACY_M: float = 25.0
    GEOLOCATION_TIMEOUT_SECONDS: float = 10.0

    # ── Place search (Mapbox geocoding) ──
    MAPBOX_ACCESS_TOKEN: Optional[str] = None
    PLACE_SEARCH_BASE_URL: str = "https://api.mapbox.com/geocoding/v5/mapbox.places"
    PLACE_SEARCH_LIMIT: int = 3  # results per category
    PLACE_SEARCH_TIMEOUT_SECONDS: float = 10.0
    SAFE_PLACE_MAX_DISTANCE_KM: float = 25.0

    # ── Presentation events ──
    EVENT_QUEUE_SIZE: int = 256  # per WebSocket subscriber

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
