"""
recorder.py — Continuous video / audio capture sessions.

One RecorderController exists per media kind (video, audio). It drives a
MediaSession through

    IDLE → REQUESTING → ACTIVE → STOPPING → COMPLETED → IDLE

and guarantees that, whatever sequence of start / stop / clear / cancel
the user produces, the controller holds at most one device handle and at
most one live artifact.

═══════════════════════════════════════════════════════════════════════════
STALE RESOLUTIONS
═══════════════════════════════════════════════════════════════════════════

Every start() takes a generation number. cancel() bumps the generation,
so when a device grant (or a finalize) resolves after the user has
already moved on, the controller sees a generation mismatch and discards
the result: a late handle is released immediately and never reaches
ACTIVE.

═══════════════════════════════════════════════════════════════════════════
CHUNK FLOW
═══════════════════════════════════════════════════════════════════════════

    MediaRecording ──ChunkReceived──▶ RecordingChannel ──▶ _pump() buffer
                   ──RecordingFinalized (once)──▶ stop() assembles bytes

The elapsed counter is a separate task ticking once per interval while
ACTIVE; stop() and cancel() cancel it outright.

The video recorder opens the camera only and the audio recorder the
microphone only, so a denied microphone never costs the video. A video
artifact therefore carries no audio track; the sound of the scene is in
the separate audio artifact. Browser clients that record video with
audio in one stream behave differently here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from backend.app.capture.artifacts import ArtifactRegistry
from backend.app.capture.channel import ChunkReceived, RecordingChannel
from backend.app.capture.models import (
    DeviceKind,
    MediaKind,
    MediaSession,
    SessionState,
    utc_now,
)
from backend.app.capture.platform import MediaPlatform, MediaRecording
from backend.app.capture.stream_manager import MediaStreamManager
from backend.app.core.errors import (
    CaptureError,
    DeviceUnavailableError,
    InvalidStateError,
)

logger = logging.getLogger(__name__)

SessionListener = Callable[[MediaSession], None]

DEVICE_FOR_KIND: Dict[MediaKind, DeviceKind] = {
    MediaKind.VIDEO: DeviceKind.CAMERA,
    MediaKind.AUDIO: DeviceKind.MICROPHONE,
}


class RecorderController:
    """
    Start / stop / clear lifecycle for one recording kind.

    Usage:
        recorder = RecorderController(MediaKind.AUDIO, streams, platform, artifacts,
                                      mime_type="audio/webm")
        await recorder.start()
        ...
        session = await recorder.stop()
        data = session.artifact.data
        recorder.clear()
    """

    def __init__(
        self,
        kind: MediaKind,
        streams: MediaStreamManager,
        platform: MediaPlatform,
        artifacts: ArtifactRegistry,
        *,
        mime_type: str,
        tick_interval: float = 1.0,
        finalize_timeout: float = 5.0,
        listener: Optional[SessionListener] = None,
    ):
        if kind not in DEVICE_FOR_KIND:
            raise ValueError(f"RecorderController does not record {kind.value}")
        self.kind = kind
        self.device = DEVICE_FOR_KIND[kind]
        self.owner = f"recorder:{kind.value}"
        self.mime_type = mime_type
        self.session = MediaSession(kind=kind)

        self._streams = streams
        self._platform = platform
        self._artifacts = artifacts
        self._tick_interval = tick_interval
        self._finalize_timeout = finalize_timeout
        self._listeners: List[SessionListener] = [listener] if listener else []

        self._generation = 0
        self._recording: Optional[MediaRecording] = None
        self._buffer: List[bytes] = []
        self._pump_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return self.session.state

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    # ── Commands ──

    async def start(self) -> MediaSession:
        if self.session.state is not SessionState.IDLE:
            raise InvalidStateError(
                f"start {self.kind.value} recording",
                state=self.session.state.value,
                allowed=[SessionState.IDLE.value],
            )

        self._generation += 1
        generation = self._generation
        session = MediaSession(kind=self.kind, state=SessionState.REQUESTING)
        self.session = session
        self._notify(session)

        try:
            handle = await self._streams.acquire(self.device, self.owner)
        except CaptureError as exc:
            if generation != self._generation:
                logger.info("Discarding failed %s request after cancel", self.kind.value)
                return session
            session.state = SessionState.IDLE
            session.record_error(exc.error_code, exc.message)
            logger.warning(
                "%s recording could not start: %s", self.kind.value, exc.message,
                extra={"session_id": session.session_id, "kind": self.kind.value},
            )
            self._notify(session)
            raise
        except asyncio.CancelledError:
            if generation == self._generation:
                session.state = SessionState.IDLE
                self._notify(session)
            raise

        if generation != self._generation:
            # cancelled while the grant was pending
            self._streams.release(handle)
            logger.info(
                "Late %s grant released for cancelled session %s",
                self.device.value, session.session_id,
                extra={"session_id": session.session_id, "kind": self.kind.value},
            )
            return session

        channel = RecordingChannel(session.session_id)
        recording = self._platform.create_recording(handle.stream, self.mime_type)
        try:
            recording.start(channel)
        except Exception as exc:
            self._streams.release(handle)
            error = DeviceUnavailableError(self.device.value, f"recorder failed to start: {exc}")
            session.state = SessionState.IDLE
            session.record_error(error.error_code, error.message)
            self._notify(session)
            raise error from exc

        session.device_handle = handle
        session.state = SessionState.ACTIVE
        session.started_at = utc_now()
        session.elapsed_ticks = 0

        self._recording = recording
        self._buffer = []
        self._pump_task = asyncio.create_task(
            self._pump(channel, session, self._buffer),
            name=f"recorder-pump-{session.session_id}",
        )
        self._tick_task = asyncio.create_task(
            self._tick(session),
            name=f"recorder-tick-{session.session_id}",
        )
        logger.info(
            "%s recording started", self.kind.value.capitalize(),
            extra={"session_id": session.session_id, "kind": self.kind.value},
        )
        self._notify(session)
        return session

    async def stop(self) -> MediaSession:
        session = self.session
        if session.state in (SessionState.STOPPING, SessionState.COMPLETED):
            logger.debug("stop() ignored, %s session already %s", self.kind.value, session.state.value)
            return session
        if session.state is not SessionState.ACTIVE:
            raise InvalidStateError(
                f"stop {self.kind.value} recording",
                state=session.state.value,
                allowed=[SessionState.ACTIVE.value],
            )

        generation = self._generation
        session.state = SessionState.STOPPING
        self._cancel_ticker()
        self._notify(session)

        recording, pump, buffer = self._recording, self._pump_task, self._buffer
        recording.stop()
        done, _ = await asyncio.wait({pump}, timeout=self._finalize_timeout)

        if generation != self._generation:
            # cancel() ran while we were finalizing and has cleaned up
            return session

        if pump not in done:
            logger.warning(
                "%s recording did not finalize within %.1fs; keeping %d buffered chunks",
                self.kind.value, self._finalize_timeout, len(buffer),
                extra={"session_id": session.session_id, "kind": self.kind.value},
            )
            recording.abort()
            pump.cancel()

        data = b"".join(buffer)
        self._artifacts.revoke(session.artifact)
        session.artifact = self._artifacts.create(
            self.kind,
            self.mime_type,
            data,
            session_id=session.session_id,
            chunk_count=len(buffer),
            elapsed_ticks=session.elapsed_ticks,
        )

        handle, session.device_handle = session.device_handle, None
        self._streams.release(handle)
        session.state = SessionState.COMPLETED
        session.stopped_at = utc_now()
        self._reset_runtime()

        logger.info(
            "%s recording completed: %d chunks, %d bytes",
            self.kind.value.capitalize(), len(buffer), len(data),
            extra={"session_id": session.session_id, "kind": self.kind.value},
        )
        self._notify(session)
        return session

    def clear(self) -> MediaSession:
        session = self.session
        if session.state is SessionState.IDLE:
            return session
        if session.state is not SessionState.COMPLETED:
            raise InvalidStateError(
                f"clear {self.kind.value} recording",
                state=session.state.value,
                allowed=[SessionState.COMPLETED.value],
            )

        self._artifacts.revoke(session.artifact)
        session.artifact = None
        session.state = SessionState.IDLE
        logger.info(
            "%s recording cleared", self.kind.value.capitalize(),
            extra={"session_id": session.session_id, "kind": self.kind.value},
        )
        self._notify(session)
        return session

    def cancel(self) -> MediaSession:
        """Abort from any state: drop the handle, the chunks and any artifact."""
        session = self.session
        if session.state is SessionState.IDLE:
            return session
        if session.state is SessionState.COMPLETED:
            return self.clear()

        self._generation += 1
        self._cancel_ticker()
        if self._recording is not None:
            self._recording.abort()
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()

        handle, session.device_handle = session.device_handle, None
        self._streams.release(handle)
        self._artifacts.revoke(session.artifact)
        session.artifact = None

        previous = session.state
        session.state = SessionState.IDLE
        session.stopped_at = utc_now()
        self._reset_runtime()

        logger.info(
            "%s recording cancelled from %s", self.kind.value.capitalize(), previous.value,
            extra={"session_id": session.session_id, "kind": self.kind.value},
        )
        self._notify(session)
        return session

    # ── Internals ──

    async def _pump(
        self,
        channel: RecordingChannel,
        session: MediaSession,
        buffer: List[bytes],
    ) -> None:
        async for event in channel:
            if isinstance(event, ChunkReceived):
                buffer.append(event.data)
                session.chunk_count += 1

    async def _tick(self, session: MediaSession) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            if session.state is not SessionState.ACTIVE:
                return
            session.elapsed_ticks += 1
            self._notify(session)

    def _cancel_ticker(self) -> None:
        if self._tick_task is not None and not self._tick_task.done():
            self._tick_task.cancel()
        self._tick_task = None

    def _reset_runtime(self) -> None:
        self._recording = None
        self._pump_task = None
        self._buffer = []

    def _notify(self, session: MediaSession) -> None:
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener failed for %s", session.session_id)
