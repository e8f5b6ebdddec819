"""
test_photo_capture.py — Tests for preview → snapshot → clear.

Run with:
    pytest tests/test_photo_capture.py -v
"""

from __future__ import annotations

import asyncio
import io

import numpy as np
import pytest
from PIL import Image

from backend.app.capture.models import DeviceKind, SessionState
from backend.app.capture.photo import PHOTO_MIME_TYPE, PhotoCaptureController, encode_png
from backend.app.capture.stream_manager import MediaStreamManager
from backend.app.core.errors import (
    CaptureUnavailableError,
    DeviceUnavailableError,
    InvalidStateError,
    PermissionDeniedError,
)

from fakes import GatedPlatform

pytestmark = pytest.mark.anyio


class SlowFramePlatform(GatedPlatform):
    """Yields to the loop before handing back the frame."""

    async def read_frame(self, stream):
        frame = await super().read_frame(stream)
        await asyncio.sleep(0)
        return frame


def _make_photo(streams, artifacts) -> PhotoCaptureController:
    return PhotoCaptureController(streams, streams.platform, artifacts, facing_mode="user")


class TestEncodePng:

    def test_decodes_to_same_pixels(self):
        pixels = np.zeros((6, 8, 3), dtype=np.uint8)
        pixels[..., 0] = 200
        png = encode_png(pixels)
        image = Image.open(io.BytesIO(png))
        assert image.format == "PNG"
        assert image.mode == "RGB"
        assert image.size == (8, 6)
        assert np.array_equal(np.asarray(image), pixels)

    def test_rejects_non_rgb(self):
        with pytest.raises(ValueError):
            encode_png(np.zeros((4, 4), dtype=np.uint8))


class TestPreview:

    async def test_preview_holds_front_camera(self, streams, platform, artifacts):
        photo = _make_photo(streams, artifacts)
        session = await photo.start_preview()
        assert session.state is SessionState.STREAMING
        assert streams.holder(DeviceKind.CAMERA) == "photo"
        assert platform.requests[-1].facing_mode == "user"
        assert platform.requests[-1].audio is False

    async def test_preview_twice_is_noop(self, streams, platform, artifacts):
        photo = _make_photo(streams, artifacts)
        first = await photo.start_preview()
        second = await photo.start_preview()
        assert first is second
        assert platform.streams_opened == 1

    async def test_preview_denied(self, artifacts):
        streams = MediaStreamManager(GatedPlatform(denied=[DeviceKind.CAMERA]))
        photo = _make_photo(streams, artifacts)
        with pytest.raises(PermissionDeniedError):
            await photo.start_preview()
        assert photo.state is SessionState.IDLE
        assert photo.session.display_status == "error"

    async def test_preview_blocked_by_video_recorder(self, streams, artifacts):
        await streams.acquire(DeviceKind.CAMERA, "recorder:video")
        photo = _make_photo(streams, artifacts)
        with pytest.raises(DeviceUnavailableError):
            await photo.start_preview()
        assert photo.state is SessionState.IDLE


class TestCapture:

    async def test_capture_releases_camera_and_keeps_png(self, streams, artifacts):
        photo = _make_photo(streams, artifacts)
        await photo.start_preview()

        session = await photo.capture()

        assert session.state is SessionState.CAPTURED
        assert session.device_handle is None
        assert streams.live_handles() == []
        assert session.artifact.mime_type == PHOTO_MIME_TYPE
        assert session.artifact.metadata["width"] == 8
        assert session.artifact.metadata["height"] == 6
        assert session.artifact.data.startswith(b"\x89PNG")

    async def test_capture_without_preview_is_invalid(self, streams, artifacts):
        photo = _make_photo(streams, artifacts)
        with pytest.raises(InvalidStateError):
            await photo.capture()

    async def test_capture_before_first_frame(self, artifacts):
        streams = MediaStreamManager(GatedPlatform(frame_warmup=60.0))
        photo = _make_photo(streams, artifacts)
        await photo.start_preview()

        with pytest.raises(CaptureUnavailableError):
            await photo.capture()

        assert photo.state is SessionState.STREAMING
        assert photo.session.holds_device
        assert len(artifacts) == 0

    async def test_overlapping_captures_keep_one_artifact(self, artifacts):
        streams = MediaStreamManager(SlowFramePlatform())
        photo = _make_photo(streams, artifacts)
        await photo.start_preview()

        first, second = await asyncio.gather(
            photo.capture(), photo.capture(), return_exceptions=True,
        )

        assert first.state is SessionState.CAPTURED
        assert isinstance(second, InvalidStateError)
        assert len(artifacts) == 1
        photo.clear()
        assert len(artifacts) == 0

    async def test_clear_during_frame_read_drops_still(self, artifacts):
        streams = MediaStreamManager(SlowFramePlatform())
        photo = _make_photo(streams, artifacts)
        await photo.start_preview()

        capturing = asyncio.create_task(photo.capture())
        await asyncio.sleep(0)
        photo.clear()
        session = await capturing

        assert session.state is SessionState.IDLE
        assert len(artifacts) == 0
        assert streams.live_handles() == []

    async def test_video_can_take_camera_after_capture(self, streams, artifacts):
        photo = _make_photo(streams, artifacts)
        await photo.start_preview()
        await photo.capture()
        handle = await streams.acquire(DeviceKind.CAMERA, "recorder:video")
        assert handle.owner == "recorder:video"


class TestClear:

    async def test_clear_from_captured(self, streams, artifacts):
        photo = _make_photo(streams, artifacts)
        await photo.start_preview()
        session = await photo.capture()
        artifact = session.artifact

        photo.clear()

        assert photo.state is SessionState.IDLE
        assert artifact.revoked
        assert len(artifacts) == 0

    async def test_clear_from_streaming_releases_camera(self, streams, artifacts):
        photo = _make_photo(streams, artifacts)
        await photo.start_preview()
        photo.clear()
        assert photo.state is SessionState.IDLE
        assert streams.holder(DeviceKind.CAMERA) is None

    async def test_cancel_while_requesting_drops_late_grant(self, streams, platform, artifacts):
        gate = platform.gate(DeviceKind.CAMERA)
        photo = _make_photo(streams, artifacts)
        starting = asyncio.create_task(photo.start_preview())
        await asyncio.sleep(0)
        assert photo.state is SessionState.REQUESTING

        photo.cancel()
        gate.set()
        await starting

        assert photo.state is SessionState.IDLE
        assert streams.live_handles() == []

    async def test_clear_twice_is_safe(self, streams, artifacts):
        photo = _make_photo(streams, artifacts)
        await photo.start_preview()
        photo.clear()
        assert photo.clear().state is SessionState.IDLE
