"""
platform.py — Boundary to the platform media capture service.

The capture core depends only on this minimal contract:

    MediaPlatform.request_stream(constraints) → MediaStream | raises
    MediaStream.stop_tracks()
    MediaPlatform.create_recording(stream, mime_type) → MediaRecording
        MediaRecording.start(channel)   chunks → channel, then one finalize
        MediaRecording.stop()           flush remaining data, finalize
        MediaRecording.abort()          finalize immediately, drop the rest
    MediaPlatform.read_frame(stream) → Frame | None

Providers
=========
    simulation  — SimulatedMediaPlatform: synthetic streams, chunks and
                  frames. Devices can be configured as denied or
                  unavailable to exercise the failure paths without
                  hardware. Default for development and tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

import numpy as np

from backend.app.capture.channel import RecordingChannel
from backend.app.capture.models import DeviceKind
from backend.app.core.config import Settings
from backend.app.core.errors import DeviceUnavailableError, PermissionDeniedError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Contract
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StreamConstraints:
    """Which tracks to request from the platform."""
    video: bool = False
    audio: bool = False
    facing_mode: Optional[str] = None  # "user" = front camera

    @classmethod
    def for_device(cls, device: DeviceKind, facing_mode: Optional[str] = None) -> "StreamConstraints":
        if device is DeviceKind.CAMERA:
            return cls(video=True, facing_mode=facing_mode)
        return cls(audio=True)

    @property
    def devices(self) -> Tuple[DeviceKind, ...]:
        wanted: List[DeviceKind] = []
        if self.video:
            wanted.append(DeviceKind.CAMERA)
        if self.audio:
            wanted.append(DeviceKind.MICROPHONE)
        return tuple(wanted)


@dataclass
class MediaTrack:
    device: DeviceKind
    label: str
    live: bool = True

    def stop(self) -> None:
        self.live = False


@dataclass
class MediaStream:
    """A granted stream; stopping every track gives the hardware back."""
    tracks: List[MediaTrack]
    stream_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    opened_at: float = field(default_factory=time.monotonic)

    @property
    def active(self) -> bool:
        return any(track.live for track in self.tracks)

    def stop_tracks(self) -> None:
        for track in self.tracks:
            track.stop()


@dataclass
class Frame:
    """One video frame at the stream's native resolution (H × W × RGB)."""
    pixels: np.ndarray = field(repr=False)
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])


class MediaRecording(ABC):
    """Incremental recorder bound to one stream."""

    def __init__(self, stream: MediaStream, mime_type: str):
        self.stream = stream
        self.mime_type = mime_type

    @abstractmethod
    def start(self, channel: RecordingChannel) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        """Flush buffered data, then finalize the channel. Idempotent."""

    @abstractmethod
    def abort(self) -> None:
        """Finalize immediately without flushing. Idempotent."""


class MediaPlatform(ABC):
    name: str = "abstract"

    @abstractmethod
    async def request_stream(self, constraints: StreamConstraints) -> MediaStream:
        """Raise PermissionDeniedError or DeviceUnavailableError on refusal."""

    @abstractmethod
    def create_recording(self, stream: MediaStream, mime_type: str) -> MediaRecording:
        ...

    @abstractmethod
    async def read_frame(self, stream: MediaStream) -> Optional[Frame]:
        """Current video frame, or None if the stream has none ready."""


# ═══════════════════════════════════════════════════════════════════════════
# Simulation provider
# ═══════════════════════════════════════════════════════════════════════════

class SimulatedRecording(MediaRecording):
    """Emits a synthetic chunk every interval until stopped."""

    def __init__(
        self,
        stream: MediaStream,
        mime_type: str,
        *,
        chunk_interval: float,
        chunk_bytes: int,
        rng: np.random.Generator,
    ):
        super().__init__(stream, mime_type)
        self._chunk_interval = chunk_interval
        self._chunk_bytes = chunk_bytes
        self._rng = rng
        self._stop_event = asyncio.Event()
        self._channel: Optional[RecordingChannel] = None
        self._task: Optional[asyncio.Task] = None

    def start(self, channel: RecordingChannel) -> None:
        if self._task is not None:
            raise RuntimeError("recording already started")
        self._channel = channel
        self._task = asyncio.create_task(
            self._produce(channel),
            name=f"sim-recording-{self.stream.stream_id}",
        )

    def stop(self) -> None:
        self._stop_event.set()

    def abort(self) -> None:
        if self._channel is not None:
            self._channel.finalize("aborted")
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _emit(self, channel: RecordingChannel) -> None:
        if not self.stream.active:
            return
        chunk = self._rng.integers(0, 256, self._chunk_bytes, dtype=np.uint8)
        channel.push_chunk(chunk.tobytes())

    async def _produce(self, channel: RecordingChannel) -> None:
        try:
            while True:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self._chunk_interval
                    )
                except asyncio.TimeoutError:
                    self._emit(channel)
                else:
                    # trailing partial chunk, as a real recorder flushes on stop
                    self._emit(channel)
                    break
            channel.finalize("stopped")
        except asyncio.CancelledError:
            channel.finalize("aborted")
            raise


class SimulatedMediaPlatform(MediaPlatform):
    """
    Hardware-free media platform.

    Parameters
    ----------
    denied : iterable of DeviceKind
        Devices for which the "user" refuses permission.
    unavailable : iterable of DeviceKind
        Devices reported as missing.
    grant_delay : float
        Seconds between request and grant (the permission prompt).
    frame_warmup : float
        Seconds after opening before the first frame is readable.
    """

    name = "simulation"

    def __init__(
        self,
        *,
        denied: Iterable[DeviceKind] = (),
        unavailable: Iterable[DeviceKind] = (),
        grant_delay: float = 0.0,
        chunk_interval: float = 0.25,
        chunk_bytes: int = 4096,
        frame_size: Tuple[int, int] = (640, 480),
        frame_warmup: float = 0.0,
        seed: Optional[int] = None,
    ):
        self.denied = set(denied)
        self.unavailable = set(unavailable)
        self.grant_delay = grant_delay
        self.chunk_interval = chunk_interval
        self.chunk_bytes = chunk_bytes
        self.frame_size = frame_size
        self.frame_warmup = frame_warmup
        self.streams_opened = 0
        self._rng = np.random.default_rng(seed)

    async def request_stream(self, constraints: StreamConstraints) -> MediaStream:
        if self.grant_delay > 0:
            await asyncio.sleep(self.grant_delay)

        for device in constraints.devices:
            if device in self.denied:
                raise PermissionDeniedError(device.value)
            if device in self.unavailable:
                raise DeviceUnavailableError(device.value, f"No {device.value} found")

        tracks = []
        for device in constraints.devices:
            label = f"Simulated {device.value}"
            if device is DeviceKind.CAMERA and constraints.facing_mode:
                label += f" ({constraints.facing_mode})"
            tracks.append(MediaTrack(device=device, label=label))

        self.streams_opened += 1
        stream = MediaStream(tracks=tracks)
        logger.debug("Simulated stream %s opened: %s", stream.stream_id, [t.label for t in tracks])
        return stream

    def create_recording(self, stream: MediaStream, mime_type: str) -> MediaRecording:
        return SimulatedRecording(
            stream,
            mime_type,
            chunk_interval=self.chunk_interval,
            chunk_bytes=self.chunk_bytes,
            rng=self._rng,
        )

    async def read_frame(self, stream: MediaStream) -> Optional[Frame]:
        video_live = any(
            t.live and t.device is DeviceKind.CAMERA for t in stream.tracks
        )
        if not video_live:
            return None
        if time.monotonic() - stream.opened_at < self.frame_warmup:
            return None

        width, height = self.frame_size
        # horizontal gradient with a little sensor noise
        ramp = np.linspace(0, 255, width, dtype=np.float32)
        pixels = np.empty((height, width, 3), dtype=np.uint8)
        pixels[..., 0] = ramp.astype(np.uint8)
        pixels[..., 1] = ramp[::-1].astype(np.uint8)
        pixels[..., 2] = self._rng.integers(0, 32, (height, width), dtype=np.uint8)
        return Frame(pixels=pixels)


def build_media_platform(config: Settings) -> MediaPlatform:
    """Instantiate the configured media provider."""
    provider = config.MEDIA_PROVIDER.lower()
    if provider == "simulation":
        return SimulatedMediaPlatform(
            denied=[DeviceKind(d) for d in config.SIM_DENIED_DEVICES],
            unavailable=[DeviceKind(d) for d in config.SIM_UNAVAILABLE_DEVICES],
            grant_delay=config.SIM_GRANT_DELAY_SECONDS,
            chunk_interval=config.SIM_CHUNK_INTERVAL_SECONDS,
            chunk_bytes=config.SIM_CHUNK_BYTES,
            frame_size=(config.SIM_FRAME_WIDTH, config.SIM_FRAME_HEIGHT),
        )
    raise ValueError(f"Unknown MEDIA_PROVIDER '{config.MEDIA_PROVIDER}'")
