"""
Emergency Alert Orchestration.

═══════════════════════════════════════════════════════════════════════════
TRIGGER FLOW
═══════════════════════════════════════════════════════════════════════════

    trigger()
      ├─▶ location task:  GeolocationService ──Position──▶ SafePlaceFinder
      ├─▶ video recorder: start()   ┐ concurrently, failures reported
      └─▶ audio recorder: start()   ┘ individually as notices

1. Partial degradation:
   - A recorder that cannot start leaves a warning notice; the alert
     stays active with whatever did start
   - No position → "location_unavailable" notice, no search
   - Every search query failed → places_status UNAVAILABLE, not EMPTY
2. Ordering:
   - search() only ever runs after a Position was stored on the
     current alert
3. Idempotence:
   - trigger() on an active alert only refreshes the position, and only
     when no position request is already in flight

═══════════════════════════════════════════════════════════════════════════
END FLOW
═══════════════════════════════════════════════════════════════════════════

end() detaches the alert first, so every late resolution (position,
search, device grant) sees an alert that is no longer current and is
dropped. It then cancels the location task, cancels recorders still
waiting for a device, stops active ones, and discards position and
places. Each step is isolated; one failing does not skip the rest.

═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from backend.app.alerts.models import (
    AlertSession,
    AlertStatus,
    LocationStatus,
    NoticeLevel,
)
from backend.app.alerts.notifier import EventBus
from backend.app.capture.models import MediaKind, MediaSession, SessionState, utc_now
from backend.app.capture.recorder import RecorderController
from backend.app.core.errors import CaptureError, SearchUnavailableError
from backend.app.location.geolocation import GeolocationService
from backend.app.location.models import SearchStatus
from backend.app.location.safe_places import SafePlaceFinder

logger = logging.getLogger(__name__)


class AlertOrchestrator:
    """
    Coordinates recorders, position and safe-place search for one alert.

    Usage:
        orchestrator = AlertOrchestrator(video, audio, geolocation, finder, events=bus)
        alert = await orchestrator.trigger()
        ...
        await orchestrator.end()
    """

    def __init__(
        self,
        video: RecorderController,
        audio: RecorderController,
        geolocation: GeolocationService,
        finder: SafePlaceFinder,
        *,
        events: Optional[EventBus] = None,
    ):
        self.recorders: Dict[MediaKind, RecorderController] = {
            MediaKind.VIDEO: video,
            MediaKind.AUDIO: audio,
        }
        self.geolocation = geolocation
        self.finder = finder
        self.events = events or EventBus()
        self._current: Optional[AlertSession] = None

        for recorder in self.recorders.values():
            recorder.add_listener(self.on_media_change)

    @property
    def current(self) -> Optional[AlertSession]:
        return self._current

    def snapshot(self) -> Optional[Dict[str, Any]]:
        return self._current.to_dict() if self._current else None

    # ── Commands ──

    async def trigger(self) -> AlertSession:
        alert = self._current
        if alert is not None and alert.is_active:
            if alert.location_task is None or alert.location_task.done():
                logger.info("Alert already active; refreshing position",
                            extra={"alert_id": alert.alert_id})
                alert.location_status = LocationStatus.PENDING
                self._spawn_location_task(alert)
                self._publish("location", alert)
            return alert

        alert = AlertSession()
        self._current = alert
        logger.info("Alert triggered", extra={"alert_id": alert.alert_id})
        self._publish("alert_triggered", alert)

        self._spawn_location_task(alert)
        await asyncio.gather(*(
            self._start_recorder(alert, kind, recorder)
            for kind, recorder in self.recorders.items()
        ))
        return alert

    async def end(self) -> Optional[AlertSession]:
        alert = self._current
        if alert is None:
            return None
        self._current = None
        start = time.perf_counter()

        self._run_step(alert, "cancel location", self._cancel_location, alert)

        stopping: List[RecorderController] = []
        for recorder in self.recorders.values():
            if recorder.state is SessionState.REQUESTING:
                self._run_step(alert, f"cancel {recorder.kind.value}", recorder.cancel)
            elif recorder.state is SessionState.ACTIVE:
                stopping.append(recorder)

        outcomes = await asyncio.gather(
            *(recorder.stop() for recorder in stopping),
            return_exceptions=True,
        )
        for recorder, outcome in zip(stopping, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "Stopping %s failed during alert end: %s", recorder.kind.value, outcome,
                    extra={"alert_id": alert.alert_id},
                )
                self._run_step(alert, f"cancel {recorder.kind.value}", recorder.cancel)

        for kind, recorder in self.recorders.items():
            alert.media[kind] = recorder.session
        alert.discard_location()
        alert.status = AlertStatus.ENDED
        alert.ended_at = utc_now()

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("Alert ended", extra={"alert_id": alert.alert_id, "duration_ms": duration_ms})
        self._publish("alert_ended", alert)
        return alert

    async def shutdown(self) -> None:
        await self.end()
        for recorder in self.recorders.values():
            recorder.cancel()

    # ── Listener ──

    def on_media_change(self, session: MediaSession) -> None:
        alert = self._current
        if alert is not None and session.kind in self.recorders:
            alert.media[session.kind] = session
        self.events.publish(
            "media",
            session.to_dict(),
            alert_id=alert.alert_id if alert else None,
        )

    # ── Internals ──

    async def _start_recorder(
        self,
        alert: AlertSession,
        kind: MediaKind,
        recorder: RecorderController,
    ) -> None:
        if recorder.state is SessionState.COMPLETED:
            # a new alert starts a fresh recording
            recorder.clear()
        if recorder.state is not SessionState.IDLE:
            logger.info("%s recorder already %s; attaching to alert", kind.value, recorder.state.value,
                        extra={"alert_id": alert.alert_id})
            alert.media[kind] = recorder.session
            return

        try:
            await recorder.start()
        except CaptureError as exc:
            if alert is not self._current:
                return
            alert.add_notice(f"{kind.value}_unavailable", exc.message, NoticeLevel.WARNING)
            logger.warning(
                "%s capture unavailable for alert: %s", kind.value, exc.message,
                extra={"alert_id": alert.alert_id, "kind": kind.value},
            )
            self._publish("notice", alert)
        finally:
            if alert is self._current:
                alert.media[kind] = recorder.session

    def _spawn_location_task(self, alert: AlertSession) -> None:
        alert.location_task = asyncio.create_task(
            self._locate_and_search(alert),
            name=f"alert-location-{alert.alert_id}",
        )

    async def _locate_and_search(self, alert: AlertSession) -> None:
        try:
            position = await self.geolocation.get_current_position()
        except CaptureError as exc:
            if alert is not self._current:
                return
            # a failed refresh keeps the last shared position
            alert.location_status = (
                LocationStatus.ACQUIRED if alert.position is not None else LocationStatus.UNAVAILABLE
            )
            alert.add_notice("location_unavailable", exc.message, NoticeLevel.WARNING)
            logger.warning("Location unavailable: %s", exc.message, extra={"alert_id": alert.alert_id})
            self._publish("location", alert)
            return

        if alert is not self._current:
            logger.info("Discarding position for ended alert", extra={"alert_id": alert.alert_id})
            return

        alert.position = position
        alert.location_status = LocationStatus.ACQUIRED
        alert.add_notice("location_shared", f"Location shared: {position.describe()}")
        alert.places_status = SearchStatus.SEARCHING
        self._publish("location", alert)

        try:
            result = await self.finder.search(position.coordinate)
        except SearchUnavailableError as exc:
            if alert is not self._current:
                return
            alert.places = frozenset()
            alert.places_status = SearchStatus.UNAVAILABLE
            alert.failed_categories = tuple(self.finder.categories)
            alert.add_notice("safe_places_unavailable", exc.message, NoticeLevel.WARNING)
            self._publish("places", alert)
            return

        if alert is not self._current:
            return
        alert.places = result.places
        alert.places_status = result.status
        alert.failed_categories = result.failed_categories
        logger.info(
            "Safe places updated: %d (%s)", len(result.places), result.status.value,
            extra={"alert_id": alert.alert_id},
        )
        self._publish("places", alert)

    def _cancel_location(self, alert: AlertSession) -> None:
        task, alert.location_task = alert.location_task, None
        if task is not None and not task.done():
            task.cancel()
        self.geolocation.cancel()

    def _run_step(self, alert: AlertSession, name: str, step, *args) -> None:
        try:
            step(*args)
        except Exception:
            logger.exception("Alert teardown step '%s' failed", name, extra={"alert_id": alert.alert_id})

    def _publish(self, event_type: str, alert: AlertSession) -> None:
        self.events.publish(event_type, alert.to_dict(), alert_id=alert.alert_id)
