"""
FastAPI route: Emergency alert lifecycle.

Provides endpoints to:
    POST /api/v1/alerts/trigger   — start (or refresh) the alert
    POST /api/v1/alerts/end       — end the alert and release everything
    GET  /api/v1/alerts/current   — current alert, if any
    GET  /api/v1/alerts/contacts  — emergency helplines
    WS   /api/v1/alerts/events    — live state-change stream
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from backend.app.alerts.models import EMERGENCY_CONTACTS
from backend.app.api.deps import get_runtime, runtime_from
from backend.app.api.schemas import AlertOut, ContactOut, CurrentAlertOut
from backend.app.runtime import AlertRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.post(
    "/trigger",
    response_model=AlertOut,
    summary="Trigger the emergency alert",
    description=(
        "Starts video and audio recording, requests the device position and "
        "searches for nearby safe places. On an active alert this only "
        "refreshes the position."
    ),
)
async def trigger_alert(runtime: AlertRuntime = Depends(get_runtime)):
    alert = await runtime.orchestrator.trigger()
    return alert.to_dict()


@router.post("/end", response_model=CurrentAlertOut, summary="End the emergency alert")
async def end_alert(runtime: AlertRuntime = Depends(get_runtime)):
    alert = await runtime.orchestrator.end()
    return {"alert": alert.to_dict() if alert else None}


@router.get("/current", response_model=CurrentAlertOut)
async def current_alert(runtime: AlertRuntime = Depends(get_runtime)):
    return {"alert": runtime.orchestrator.snapshot()}


@router.get("/contacts", response_model=List[ContactOut])
async def emergency_contacts():
    return [contact.to_dict() for contact in EMERGENCY_CONTACTS]


@router.websocket("/events")
async def alert_events(websocket: WebSocket) -> None:
    """Push a snapshot, then every alert and media event as it happens."""
    runtime = runtime_from(websocket)
    await websocket.accept()
    queue = runtime.events.subscribe()
    try:
        await websocket.send_json({"type": "snapshot", "payload": runtime.orchestrator.snapshot()})
        while True:
            event = await queue.get()
            await websocket.send_json(event.to_dict())
    except WebSocketDisconnect:
        logger.debug("Event subscriber disconnected")
    finally:
        runtime.events.unsubscribe(queue)
