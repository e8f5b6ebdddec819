"""
Application runtime — wires the capture, location and alert components.

One AlertRuntime exists per process (held on ``app.state`` by the API).
Collaborators can be injected for tests:

    runtime = build_runtime(settings, platform=SimulatedMediaPlatform(),
                            place_client=FakePlaceSearchClient())
    ...
    await runtime.aclose()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.app.alerts.notifier import EventBus
from backend.app.alerts.orchestrator import AlertOrchestrator
from backend.app.capture.artifacts import ArtifactRegistry
from backend.app.capture.models import MediaKind
from backend.app.capture.photo import PhotoCaptureController
from backend.app.capture.platform import MediaPlatform, build_media_platform
from backend.app.capture.recorder import RecorderController
from backend.app.capture.stream_manager import MediaStreamManager
from backend.app.core.config import Settings
from backend.app.location.geolocation import (
    GeolocationProvider,
    GeolocationService,
    build_geolocation_provider,
)
from backend.app.location.safe_places import (
    PlaceSearchClient,
    SafePlaceFinder,
    build_place_search_client,
)

logger = logging.getLogger(__name__)


@dataclass
class AlertRuntime:
    config: Settings
    platform: MediaPlatform
    streams: MediaStreamManager
    artifacts: ArtifactRegistry
    video: RecorderController
    audio: RecorderController
    photo: PhotoCaptureController
    geolocation: GeolocationService
    place_client: PlaceSearchClient
    finder: SafePlaceFinder
    events: EventBus
    orchestrator: AlertOrchestrator

    def recorder(self, kind: MediaKind) -> RecorderController:
        if kind is MediaKind.VIDEO:
            return self.video
        if kind is MediaKind.AUDIO:
            return self.audio
        raise ValueError(f"No recorder for {kind.value}")

    async def aclose(self) -> None:
        """End any alert, drop every capture and close the HTTP client."""
        await self.orchestrator.shutdown()
        self.photo.clear()
        released = self.streams.release_all()
        revoked = self.artifacts.revoke_all()
        await self.place_client.aclose()
        logger.info("Runtime closed: %d handles released, %d artifacts revoked", released, revoked)


def build_runtime(
    config: Settings,
    *,
    platform: Optional[MediaPlatform] = None,
    geolocation_provider: Optional[GeolocationProvider] = None,
    place_client: Optional[PlaceSearchClient] = None,
) -> AlertRuntime:
    platform = platform or build_media_platform(config)
    streams = MediaStreamManager(platform)
    artifacts = ArtifactRegistry()
    events = EventBus(queue_size=config.EVENT_QUEUE_SIZE)

    recorder_options = dict(
        tick_interval=config.RECORDER_TICK_SECONDS,
        finalize_timeout=config.FINALIZE_TIMEOUT_SECONDS,
    )
    video = RecorderController(
        MediaKind.VIDEO, streams, platform, artifacts,
        mime_type=config.VIDEO_MIME_TYPE, **recorder_options,
    )
    audio = RecorderController(
        MediaKind.AUDIO, streams, platform, artifacts,
        mime_type=config.AUDIO_MIME_TYPE, **recorder_options,
    )
    photo = PhotoCaptureController(streams, platform, artifacts, facing_mode="user")

    geolocation = GeolocationService(
        geolocation_provider or build_geolocation_provider(config),
        timeout_seconds=config.GEOLOCATION_TIMEOUT_SECONDS,
    )
    place_client = place_client or build_place_search_client(config)
    finder = SafePlaceFinder(
        place_client,
        limit=config.PLACE_SEARCH_LIMIT,
        max_distance_km=config.SAFE_PLACE_MAX_DISTANCE_KM,
    )

    orchestrator = AlertOrchestrator(video, audio, geolocation, finder, events=events)
    photo.add_listener(orchestrator.on_media_change)

    logger.info(
        "Runtime built: media=%s, geolocation=%s",
        getattr(platform, "name", type(platform).__name__),
        geolocation.provider.name,
    )
    return AlertRuntime(
        config=config,
        platform=platform,
        streams=streams,
        artifacts=artifacts,
        video=video,
        audio=audio,
        photo=photo,
        geolocation=geolocation,
        place_client=place_client,
        finder=finder,
        events=events,
        orchestrator=orchestrator,
    )
