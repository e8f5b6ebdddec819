"""
stream_manager.py — Exclusive hand-out of camera and microphone handles.

═══════════════════════════════════════════════════════════════════════════
OWNER SLOTS
═══════════════════════════════════════════════════════════════════════════

The manager keeps one slot per physical device. A slot is either free,
reserved (a platform request is in flight), or held (a handle granted):

    Device        Contenders
    ──────────    ────────────────────────────────────────────
    camera        video recorder, photo preview
    microphone    audio recorder

acquire(device, owner) resolves deterministically:

    slot free                     → request the device, grant a handle
    held by the same owner        → reuse the existing handle
    reserved/held by other owner  → DeviceUnavailableError
    reserved by the same owner    → DeviceUnavailableError (already asking)

release(handle) stops the stream's tracks and frees the slot. It is
idempotent: releasing an already-released handle is a no-op.

The manager is the only place that knows who holds what; controllers
keep a reference to their own handle and nothing else.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from backend.app.capture.models import DeviceKind
from backend.app.capture.platform import MediaPlatform, MediaStream, StreamConstraints
from backend.app.core.errors import CaptureError, DeviceUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class DeviceHandle:
    """Exclusive claim on one device, backed by a live platform stream."""
    device: DeviceKind
    owner: str
    stream: MediaStream = field(repr=False)
    handle_id: str = field(default_factory=lambda: f"DH-{uuid.uuid4().hex[:8]}")
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    released: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handle_id": self.handle_id,
            "device": self.device.value,
            "owner": self.owner,
            "acquired_at": self.acquired_at.isoformat(),
            "released": self.released,
        }


@dataclass
class _DeviceSlot:
    device: DeviceKind
    owner: Optional[str] = None
    handle: Optional[DeviceHandle] = None
    requesting: bool = False

    @property
    def is_free(self) -> bool:
        return self.owner is None


class MediaStreamManager:
    """Arena of single-owner device slots."""

    def __init__(self, platform: MediaPlatform):
        self._platform = platform
        self._slots: Dict[DeviceKind, _DeviceSlot] = {
            device: _DeviceSlot(device) for device in DeviceKind
        }
        self.handles_granted = 0

    @property
    def platform(self) -> MediaPlatform:
        return self._platform

    async def acquire(
        self,
        device: DeviceKind,
        owner: str,
        *,
        facing_mode: Optional[str] = None,
    ) -> DeviceHandle:
        slot = self._slots[device]

        if slot.owner is not None and slot.owner != owner:
            raise DeviceUnavailableError(
                device.value,
                f"{device.value} is in use by {slot.owner}",
                held_by=slot.owner,
            )
        if slot.handle is not None:
            logger.debug("Reusing %s handle %s for %s", device.value, slot.handle.handle_id, owner)
            return slot.handle
        if slot.requesting:
            raise DeviceUnavailableError(
                device.value,
                f"{device.value} request already in progress for {owner}",
                held_by=owner,
            )

        slot.owner = owner
        slot.requesting = True
        stream: Optional[MediaStream] = None
        try:
            stream = await self._platform.request_stream(
                StreamConstraints.for_device(device, facing_mode)
            )
        except CaptureError:
            raise
        except Exception as exc:
            raise DeviceUnavailableError(device.value, str(exc)) from exc
        finally:
            slot.requesting = False
            if stream is None:
                # denied, failed or cancelled: nothing granted, slot goes back
                slot.owner = None

        handle = DeviceHandle(device=device, owner=owner, stream=stream)
        slot.handle = handle
        self.handles_granted += 1
        logger.info(
            "Granted %s to %s (%s)", device.value, owner, handle.handle_id,
            extra={"kind": device.value},
        )
        return handle

    def release(self, handle: Optional[DeviceHandle]) -> bool:
        """Give a handle back. Returns False if there was nothing to release."""
        if handle is None or handle.released:
            return False

        handle.released = True
        handle.stream.stop_tracks()

        slot = self._slots[handle.device]
        if slot.handle is handle:
            slot.handle = None
            slot.owner = None
        logger.info(
            "Released %s from %s (%s)", handle.device.value, handle.owner, handle.handle_id,
            extra={"kind": handle.device.value},
        )
        return True

    def release_all(self) -> int:
        held = [slot.handle for slot in self._slots.values() if slot.handle is not None]
        for handle in held:
            self.release(handle)
        return len(held)

    def holder(self, device: DeviceKind) -> Optional[str]:
        return self._slots[device].owner

    def live_handles(self, owner: Optional[str] = None) -> List[DeviceHandle]:
        return [
            slot.handle for slot in self._slots.values()
            if slot.handle is not None and (owner is None or slot.handle.owner == owner)
        ]

    def snapshot(self) -> Dict[str, Any]:
        return {
            slot.device.value: {
                "owner": slot.owner,
                "requesting": slot.requesting,
                "handle": slot.handle.to_dict() if slot.handle else None,
            }
            for slot in self._slots.values()
        }
