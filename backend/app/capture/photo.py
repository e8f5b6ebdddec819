"""
photo.py — Single-frame snapshot pipeline on top of a camera preview.

    IDLE → REQUESTING → STREAMING → CAPTURED → IDLE

The camera handle lives only while STREAMING. capture() reads the
current frame at the stream's native resolution, encodes it as PNG,
gives the camera back, and only then enters CAPTURED; a captured still
and a held camera never coexist.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Callable, List, Optional

import numpy as np
from PIL import Image

from backend.app.capture.artifacts import ArtifactRegistry
from backend.app.capture.models import DeviceKind, MediaKind, MediaSession, SessionState, utc_now
from backend.app.capture.platform import MediaPlatform
from backend.app.capture.stream_manager import MediaStreamManager
from backend.app.core.errors import CaptureError, CaptureUnavailableError, InvalidStateError

logger = logging.getLogger(__name__)

PHOTO_MIME_TYPE = "image/png"


def encode_png(pixels: np.ndarray) -> bytes:
    """Encode an H × W × 3 uint8 RGB array as a PNG image."""
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"Expected H x W x 3 RGB pixels, got shape {pixels.shape}")
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buf, format="PNG")
    return buf.getvalue()


class PhotoCaptureController:
    """Preview → snapshot → clear, for the front camera."""

    owner = "photo"

    def __init__(
        self,
        streams: MediaStreamManager,
        platform: MediaPlatform,
        artifacts: ArtifactRegistry,
        *,
        facing_mode: str = "user",
        listener: Optional[Callable[[MediaSession], None]] = None,
    ):
        self._streams = streams
        self._platform = platform
        self._artifacts = artifacts
        self._facing_mode = facing_mode
        self._listeners: List[Callable[[MediaSession], None]] = [listener] if listener else []
        self._generation = 0
        self._capturing = False
        self.session = MediaSession(kind=MediaKind.PHOTO)

    @property
    def state(self) -> SessionState:
        return self.session.state

    def add_listener(self, listener: Callable[[MediaSession], None]) -> None:
        self._listeners.append(listener)

    async def start_preview(self) -> MediaSession:
        if self.session.state is SessionState.STREAMING:
            return self.session
        if self.session.state is not SessionState.IDLE:
            raise InvalidStateError(
                "start camera preview",
                state=self.session.state.value,
                allowed=[SessionState.IDLE.value, SessionState.STREAMING.value],
            )

        self._generation += 1
        generation = self._generation
        session = MediaSession(kind=MediaKind.PHOTO, state=SessionState.REQUESTING)
        self.session = session
        self._notify(session)

        try:
            handle = await self._streams.acquire(
                DeviceKind.CAMERA, self.owner, facing_mode=self._facing_mode,
            )
        except CaptureError as exc:
            if generation != self._generation:
                return session
            session.state = SessionState.IDLE
            session.record_error(exc.error_code, exc.message)
            logger.warning("Camera preview unavailable: %s", exc.message,
                           extra={"session_id": session.session_id, "kind": "photo"})
            self._notify(session)
            raise
        except asyncio.CancelledError:
            if generation == self._generation:
                session.state = SessionState.IDLE
                self._notify(session)
            raise

        if generation != self._generation:
            self._streams.release(handle)
            return session

        session.device_handle = handle
        session.state = SessionState.STREAMING
        session.started_at = utc_now()
        logger.info("Camera preview started", extra={"session_id": session.session_id, "kind": "photo"})
        self._notify(session)
        return session

    async def capture(self) -> MediaSession:
        session = self.session
        if session.state is not SessionState.STREAMING:
            raise InvalidStateError(
                "capture photo",
                state=session.state.value,
                allowed=[SessionState.STREAMING.value],
            )

        if self._capturing:
            raise InvalidStateError(
                "capture photo",
                state="capturing",
                allowed=[SessionState.STREAMING.value],
            )

        generation = self._generation
        self._capturing = True
        try:
            frame = await self._platform.read_frame(session.device_handle.stream)
        finally:
            self._capturing = False
        if generation != self._generation or session.state is not SessionState.STREAMING:
            # cleared while the frame was being read
            return self.session
        if frame is None:
            raise CaptureUnavailableError("Camera stream is not ready yet")

        image = encode_png(frame.pixels)
        artifact = self._artifacts.create(
            MediaKind.PHOTO,
            PHOTO_MIME_TYPE,
            image,
            session_id=session.session_id,
            width=frame.width,
            height=frame.height,
        )

        handle, session.device_handle = session.device_handle, None
        self._streams.release(handle)
        session.artifact = artifact
        session.state = SessionState.CAPTURED
        session.stopped_at = utc_now()
        logger.info(
            "Photo captured %dx%d (%d bytes)", frame.width, frame.height, artifact.size_bytes,
            extra={"session_id": session.session_id, "kind": "photo"},
        )
        self._notify(session)
        return session

    def clear(self) -> MediaSession:
        """Release the camera and discard any still; safe from every state."""
        session = self.session
        if session.state is SessionState.IDLE:
            return session

        self._generation += 1
        handle, session.device_handle = session.device_handle, None
        self._streams.release(handle)
        self._artifacts.revoke(session.artifact)
        session.artifact = None
        session.state = SessionState.IDLE
        logger.info("Photo session cleared", extra={"session_id": session.session_id, "kind": "photo"})
        self._notify(session)
        return session

    def cancel(self) -> MediaSession:
        return self.clear()

    def _notify(self, session: MediaSession) -> None:
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener failed for %s", session.session_id)
