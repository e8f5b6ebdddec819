"""
models.py — Shared data structures for live media capture.

Defines:
    • MediaKind     — what a session captures (video / audio / photo)
    • DeviceKind    — the physical device behind it (camera / microphone)
    • SessionState  — lifecycle of a capture session
    • MediaSession  — one per active or completed capture

═══════════════════════════════════════════════════════════════════════════
SESSION STATE MACHINES
═══════════════════════════════════════════════════════════════════════════

Recorder (video, audio):

    IDLE ──start()──▶ REQUESTING ──grant──▶ ACTIVE ──stop()──▶ STOPPING
      ▲                   │                                      │
      │               denied/busy                            finalized
      │                   ▼                                      ▼
      └──────────────── IDLE ◀───────────clear()─────────── COMPLETED

Photo:

    IDLE ──start_preview()──▶ REQUESTING ──▶ STREAMING ──capture()──▶ CAPTURED
      ▲                                         │                       │
      └──────────────── clear() / cancel() ─────┴───────────────────────┘

Ownership rules:
    device_handle  held only while REQUESTING (once granted), ACTIVE,
                   STOPPING or STREAMING; released on every exit.
    artifact       exists only while COMPLETED or CAPTURED.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from backend.app.capture.artifacts import Artifact
    from backend.app.capture.stream_manager import DeviceHandle


class MediaKind(str, Enum):
    """What a capture session produces."""
    VIDEO = "video"
    AUDIO = "audio"
    PHOTO = "photo"


class DeviceKind(str, Enum):
    """Physical capture hardware; one owner slot each."""
    CAMERA     = "camera"
    MICROPHONE = "microphone"


class SessionState(str, Enum):
    IDLE       = "idle"
    REQUESTING = "requesting"   # waiting for the device grant
    ACTIVE     = "active"       # recording, chunks flowing
    STOPPING   = "stopping"     # finalizing chunks into an artifact
    COMPLETED  = "completed"    # artifact ready
    STREAMING  = "streaming"    # photo preview live
    CAPTURED   = "captured"     # still image ready


# States in which a session may legitimately hold a device handle
HANDLE_STATES = frozenset({
    SessionState.REQUESTING,
    SessionState.ACTIVE,
    SessionState.STOPPING,
    SessionState.STREAMING,
})

# States in which a session owns a finalized artifact
ARTIFACT_STATES = frozenset({SessionState.COMPLETED, SessionState.CAPTURED})


def _generate_session_id() -> str:
    return f"MS-{uuid.uuid4().hex[:10].upper()}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_elapsed(ticks: int) -> str:
    """Render an elapsed tick count as mm:ss for the live display."""
    minutes, seconds = divmod(max(ticks, 0), 60)
    return f"{minutes:02d}:{seconds:02d}"


@dataclass
class MediaSession:
    """
    A single capture attempt and its outcome.

    Attributes
    ----------
    kind : MediaKind
        Video, audio or photo.
    state : SessionState
        Current lifecycle state.
    device_handle : DeviceHandle | None
        Exclusive hardware handle; owned by this session alone.
    artifact : Artifact | None
        Finalized recording or still image.
    elapsed_ticks : int
        Live counter, one tick per recorder interval while ACTIVE.
    last_error : str | None
        Error code of the most recent failed start, e.g. PERMISSION_DENIED.
    """
    kind: MediaKind
    session_id: str = field(default_factory=_generate_session_id)
    state: SessionState = SessionState.IDLE
    device_handle: Optional["DeviceHandle"] = field(default=None, repr=False)
    artifact: Optional["Artifact"] = field(default=None, repr=False)
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    elapsed_ticks: int = 0
    chunk_count: int = 0
    last_error: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def display_status(self) -> str:
        """Status as shown to the user: an idle session with an error reads 'error'."""
        if self.state is SessionState.IDLE and self.last_error:
            return "error"
        return self.state.value

    @property
    def holds_device(self) -> bool:
        return self.device_handle is not None and not self.device_handle.released

    def record_error(self, error_code: str, message: str) -> None:
        self.last_error = error_code
        self.error_message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "kind": self.kind.value,
            "state": self.state.value,
            "status": self.display_status,
            "holds_device": self.holds_device,
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
            "elapsed_ticks": self.elapsed_ticks,
            "elapsed": format_elapsed(self.elapsed_ticks),
            "chunk_count": self.chunk_count,
            "error": (
                {"code": self.last_error, "message": self.error_message}
                if self.last_error else None
            ),
        }
