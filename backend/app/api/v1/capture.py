"""
FastAPI route: Manual capture controls.

Provides endpoints to:
    GET  /api/v1/capture/photo            — photo session state
    POST /api/v1/capture/photo/preview    — open the front camera
    POST /api/v1/capture/photo/capture    — take the still, release the camera
    POST /api/v1/capture/photo/clear      — discard still / close preview
    POST /api/v1/capture/photo/cancel     — same as clear
    GET  /api/v1/capture/photo/image      — PNG bytes
    GET  /api/v1/capture/{kind}           — recorder session state (video | audio)
    POST /api/v1/capture/{kind}/start
    POST /api/v1/capture/{kind}/stop
    POST /api/v1/capture/{kind}/clear
    POST /api/v1/capture/{kind}/cancel
    GET  /api/v1/capture/{kind}/artifact  — recording bytes
"""

from __future__ import annotations

from enum import Enum

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from backend.app.api.deps import get_runtime
from backend.app.api.schemas import MediaSessionOut
from backend.app.capture.models import MediaKind, MediaSession
from backend.app.capture.recorder import RecorderController
from backend.app.core.errors import NotFoundError
from backend.app.runtime import AlertRuntime

router = APIRouter(prefix="/api/v1/capture", tags=["capture"])


class RecorderKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


def _recorder(runtime: AlertRuntime, kind: RecorderKind) -> RecorderController:
    return runtime.recorder(MediaKind(kind.value))


def _artifact_response(session: MediaSession) -> Response:
    if session.artifact is None:
        raise NotFoundError("Artifact", kind=session.kind.value, state=session.state.value)
    artifact = session.artifact
    return Response(
        content=artifact.data,
        media_type=artifact.mime_type,
        headers={"X-Artifact-Ref": artifact.ref},
    )


# ---------------------------------------------------------------------------
# Photo
# ---------------------------------------------------------------------------

@router.get("/photo", response_model=MediaSessionOut)
async def photo_state(runtime: AlertRuntime = Depends(get_runtime)):
    return runtime.photo.session.to_dict()


@router.post("/photo/preview", response_model=MediaSessionOut)
async def photo_preview(runtime: AlertRuntime = Depends(get_runtime)):
    session = await runtime.photo.start_preview()
    return session.to_dict()


@router.post("/photo/capture", response_model=MediaSessionOut)
async def photo_capture(runtime: AlertRuntime = Depends(get_runtime)):
    session = await runtime.photo.capture()
    return session.to_dict()


@router.post("/photo/clear", response_model=MediaSessionOut)
async def photo_clear(runtime: AlertRuntime = Depends(get_runtime)):
    return runtime.photo.clear().to_dict()


@router.post("/photo/cancel", response_model=MediaSessionOut)
async def photo_cancel(runtime: AlertRuntime = Depends(get_runtime)):
    return runtime.photo.cancel().to_dict()


@router.get("/photo/image", response_class=Response)
async def photo_image(runtime: AlertRuntime = Depends(get_runtime)):
    return _artifact_response(runtime.photo.session)


# ---------------------------------------------------------------------------
# Recorders
# ---------------------------------------------------------------------------

@router.get("/{kind}", response_model=MediaSessionOut)
async def recorder_state(kind: RecorderKind, runtime: AlertRuntime = Depends(get_runtime)):
    return _recorder(runtime, kind).session.to_dict()


@router.post("/{kind}/start", response_model=MediaSessionOut)
async def recorder_start(kind: RecorderKind, runtime: AlertRuntime = Depends(get_runtime)):
    session = await _recorder(runtime, kind).start()
    return session.to_dict()


@router.post("/{kind}/stop", response_model=MediaSessionOut)
async def recorder_stop(kind: RecorderKind, runtime: AlertRuntime = Depends(get_runtime)):
    session = await _recorder(runtime, kind).stop()
    return session.to_dict()


@router.post("/{kind}/clear", response_model=MediaSessionOut)
async def recorder_clear(kind: RecorderKind, runtime: AlertRuntime = Depends(get_runtime)):
    return _recorder(runtime, kind).clear().to_dict()


@router.post("/{kind}/cancel", response_model=MediaSessionOut)
async def recorder_cancel(kind: RecorderKind, runtime: AlertRuntime = Depends(get_runtime)):
    return _recorder(runtime, kind).cancel().to_dict()


@router.get("/{kind}/artifact", response_class=Response)
async def recorder_artifact(kind: RecorderKind, runtime: AlertRuntime = Depends(get_runtime)):
    return _artifact_response(_recorder(runtime, kind).session)
