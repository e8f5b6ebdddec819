"""
test_orchestrator.py — End-to-end tests for the alert trigger / end flow.

Covers:
    • Partial degradation: one recorder denied, the alert stays active
    • Position → safe-place search with proximity to the fix
    • end() while a recorder waits for its device grant
    • Search never runs without a position; search failure states
    • Idempotent trigger (position refresh only)
    • Unconditional teardown and the presentation event stream

Run with:
    pytest tests/test_orchestrator.py -v
"""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from backend.app.alerts.models import EMERGENCY_CONTACTS, AlertStatus, LocationStatus
from backend.app.alerts.notifier import EventBus
from backend.app.capture.models import DeviceKind, MediaKind, SessionState
from backend.app.core.config import Settings
from backend.app.core.errors import PositionUnavailableError
from backend.app.location.geolocation import (
    DisabledGeolocationProvider,
    GeolocationProvider,
    StaticGeolocationProvider,
)
from backend.app.location.models import RawFix, SafePlaceCategory, SearchStatus
from backend.app.runtime import AlertRuntime, build_runtime
from backend.app.spatial.radius_utils import Coordinate

from fakes import BLR_LAT, BLR_LNG, FakePlaceSearchClient, GatedPlatform, SlowProvider, wait_until

pytestmark = pytest.mark.anyio


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
async def make_runtime():
    built: List[AlertRuntime] = []

    def factory(platform=None, provider=None, client=None) -> AlertRuntime:
        config = Settings(RECORDER_TICK_SECONDS=0.01, FINALIZE_TIMEOUT_SECONDS=1.0)
        runtime = build_runtime(
            config,
            platform=platform or GatedPlatform(),
            geolocation_provider=provider or StaticGeolocationProvider(BLR_LAT, BLR_LNG, 25.0),
            place_client=client or FakePlaceSearchClient(),
        )
        built.append(runtime)
        return runtime

    yield factory
    for runtime in built:
        await runtime.aclose()


def _notice_codes(alert) -> List[str]:
    return [n.code for n in alert.notices]


class FlakyProvider(GeolocationProvider):
    """Answers once, then loses the fix."""

    name = "flaky"

    def __init__(self):
        self.calls = 0

    async def get_position(self) -> RawFix:
        self.calls += 1
        if self.calls > 1:
            raise PositionUnavailableError("GPS signal lost")
        return RawFix(BLR_LAT, BLR_LNG, 10.0)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Trigger scenarios
# ═══════════════════════════════════════════════════════════════════════════

class TestTrigger:

    async def test_audio_denied_video_still_records(self, make_runtime):
        runtime = make_runtime(platform=GatedPlatform(denied=[DeviceKind.MICROPHONE]))

        alert = await runtime.orchestrator.trigger()

        assert alert.is_active
        assert alert.media[MediaKind.VIDEO].state is SessionState.ACTIVE
        audio = alert.media[MediaKind.AUDIO]
        assert audio.state is SessionState.IDLE
        assert audio.last_error == "PERMISSION_DENIED"
        assert audio.display_status == "error"
        assert runtime.streams.holder(DeviceKind.MICROPHONE) is None
        assert "audio_unavailable" in _notice_codes(alert)

    async def test_position_feeds_search_with_proximity(self, make_runtime):
        client = FakePlaceSearchClient()
        runtime = make_runtime(client=client)

        alert = await runtime.orchestrator.trigger()
        await alert.location_task

        assert (alert.position.lat, alert.position.lng) == (BLR_LAT, BLR_LNG)
        assert alert.location_status is LocationStatus.ACQUIRED
        assert len(client.queries) == 3
        assert {q.category for q in client.queries} == set(SafePlaceCategory)
        assert all(q.proximity == Coordinate(BLR_LAT, BLR_LNG) for q in client.queries)
        assert len(alert.places) == 9
        assert alert.places_status is SearchStatus.FOUND
        assert "Location shared: 12.9716, 77.5946" in [n.message for n in alert.notices]

    async def test_snapshot_orders_places_nearest_first(self, make_runtime):
        runtime = make_runtime()
        alert = await runtime.orchestrator.trigger()
        await alert.location_task

        snapshot = runtime.orchestrator.snapshot()
        distances = [p["distance_m"] for p in snapshot["places"]]
        assert distances == sorted(distances)
        assert snapshot["media"]["video"]["state"] == "active"

    async def test_no_search_without_position(self, make_runtime):
        client = FakePlaceSearchClient()
        runtime = make_runtime(provider=DisabledGeolocationProvider(), client=client)

        alert = await runtime.orchestrator.trigger()
        await alert.location_task

        assert client.queries == []
        assert alert.is_active
        assert alert.position is None
        assert alert.location_status is LocationStatus.UNAVAILABLE
        assert alert.places_status is SearchStatus.NOT_STARTED
        assert "location_unavailable" in _notice_codes(alert)

    async def test_search_failure_is_unavailable_not_empty(self, make_runtime):
        client = FakePlaceSearchClient(failing=list(SafePlaceCategory))
        runtime = make_runtime(client=client)

        alert = await runtime.orchestrator.trigger()
        await alert.location_task

        assert alert.is_active
        assert alert.places == frozenset()
        assert alert.places_status is SearchStatus.UNAVAILABLE
        assert "safe_places_unavailable" in _notice_codes(alert)

    async def test_partial_search_failure(self, make_runtime):
        client = FakePlaceSearchClient(failing=[SafePlaceCategory.POLICE])
        runtime = make_runtime(client=client)

        alert = await runtime.orchestrator.trigger()
        await alert.location_task

        assert len(alert.places) == 6
        assert alert.places_status is SearchStatus.FOUND
        assert alert.failed_categories == (SafePlaceCategory.POLICE,)

    async def test_retrigger_only_refreshes_position(self, make_runtime):
        platform = GatedPlatform()
        provider = SlowProvider(0.0)
        runtime = make_runtime(platform=platform, provider=provider)

        first = await runtime.orchestrator.trigger()
        await first.location_task
        opened = platform.streams_opened

        second = await runtime.orchestrator.trigger()
        await second.location_task

        assert second is first
        assert provider.calls == 2
        assert platform.streams_opened == opened

    async def test_retrigger_while_locating_reuses_request(self, make_runtime):
        provider = SlowProvider(0.05)
        runtime = make_runtime(provider=provider)

        first = await runtime.orchestrator.trigger()
        task = first.location_task
        second = await runtime.orchestrator.trigger()

        assert second.location_task is task
        await task
        assert provider.calls == 1

    async def test_failed_refresh_keeps_last_position(self, make_runtime):
        provider = FlakyProvider()
        runtime = make_runtime(provider=provider)

        alert = await runtime.orchestrator.trigger()
        await alert.location_task
        shared = alert.position

        await runtime.orchestrator.trigger()
        await alert.location_task

        assert provider.calls == 2
        assert alert.position is shared
        assert alert.location_status is LocationStatus.ACQUIRED
        assert len(alert.places) == 9
        assert "location_unavailable" in _notice_codes(alert)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: end()
# ═══════════════════════════════════════════════════════════════════════════

class TestEnd:

    async def test_end_while_video_requesting_drops_late_grant(self, make_runtime):
        platform = GatedPlatform()
        gate = platform.gate(DeviceKind.CAMERA)
        runtime = make_runtime(platform=platform)

        triggering = asyncio.create_task(runtime.orchestrator.trigger())
        await wait_until(lambda: runtime.video.state is SessionState.REQUESTING)
        await wait_until(lambda: runtime.audio.state is SessionState.ACTIVE)

        ended = await runtime.orchestrator.end()
        assert runtime.video.state is SessionState.IDLE

        gate.set()
        await triggering

        assert runtime.video.state is SessionState.IDLE
        assert runtime.video.session.device_handle is None
        assert runtime.streams.holder(DeviceKind.CAMERA) is None
        assert runtime.streams.live_handles() == []
        assert platform.streams_opened == 2
        assert ended.status is AlertStatus.ENDED
        assert ended.media[MediaKind.AUDIO].state is SessionState.COMPLETED

    async def test_end_stops_recorders_and_discards_location(self, make_runtime):
        runtime = make_runtime()
        alert = await runtime.orchestrator.trigger()
        await alert.location_task
        await wait_until(lambda: runtime.video.session.chunk_count >= 1)

        ended = await runtime.orchestrator.end()

        assert ended is alert
        assert not ended.is_active
        assert ended.ended_at is not None
        assert ended.position is None
        assert ended.places == frozenset()
        assert ended.location_status is LocationStatus.DISCARDED
        assert ended.media[MediaKind.VIDEO].state is SessionState.COMPLETED
        assert ended.media[MediaKind.VIDEO].artifact is not None
        assert runtime.streams.live_handles() == []
        assert runtime.orchestrator.current is None

    async def test_end_without_alert(self, make_runtime):
        runtime = make_runtime()
        assert await runtime.orchestrator.end() is None

    async def test_late_position_is_discarded(self, make_runtime):
        client = FakePlaceSearchClient()
        runtime = make_runtime(provider=SlowProvider(0.05), client=client)

        alert = await runtime.orchestrator.trigger()
        await runtime.orchestrator.end()
        await asyncio.sleep(0.1)

        assert alert.position is None
        assert client.queries == []

    async def test_late_search_result_is_discarded(self, make_runtime):
        client = FakePlaceSearchClient(delay=0.05)
        runtime = make_runtime(client=client)
        queue = runtime.events.subscribe()

        alert = await runtime.orchestrator.trigger()
        await wait_until(lambda: alert.places_status is SearchStatus.SEARCHING)
        await runtime.orchestrator.end()
        await asyncio.sleep(0.1)

        assert alert.places == frozenset()
        assert alert.position is None
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        assert "places" not in [e.type for e in events]
        assert events[-1].type == "alert_ended"

    async def test_end_finishes_when_a_step_fails(self, make_runtime, monkeypatch):
        runtime = make_runtime()

        def broken_cancel():
            raise RuntimeError("geolocation stuck")

        monkeypatch.setattr(runtime.geolocation, "cancel", broken_cancel)
        await runtime.orchestrator.trigger()

        ended = await runtime.orchestrator.end()

        assert ended.status is AlertStatus.ENDED
        assert runtime.streams.live_handles() == []

    async def test_new_alert_after_end_starts_fresh(self, make_runtime):
        runtime = make_runtime()
        first = await runtime.orchestrator.trigger()
        await runtime.orchestrator.end()
        assert len(runtime.artifacts) == 2

        second = await runtime.orchestrator.trigger()

        assert second.alert_id != first.alert_id
        assert len(runtime.artifacts) == 0
        assert runtime.video.state is SessionState.ACTIVE
        assert runtime.audio.state is SessionState.ACTIVE


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Events and contacts
# ═══════════════════════════════════════════════════════════════════════════

class TestEvents:

    async def test_event_stream_order(self, make_runtime):
        runtime = make_runtime()
        queue = runtime.events.subscribe()

        alert = await runtime.orchestrator.trigger()
        await alert.location_task
        await runtime.orchestrator.end()

        types = []
        while not queue.empty():
            types.append(queue.get_nowait().type)
        assert types[0] == "alert_triggered"
        assert {"media", "location", "places"} <= set(types)
        assert types[-1] == "alert_ended"

    async def test_slow_subscriber_drops_oldest(self):
        bus = EventBus(queue_size=2)
        queue = bus.subscribe()
        for i in range(3):
            bus.publish("media", {"i": i})
        assert [queue.get_nowait().payload["i"] for _ in range(2)] == [1, 2]

    async def test_unsubscribe(self):
        bus = EventBus()
        queue = bus.subscribe()
        bus.unsubscribe(queue)
        bus.publish("media", {})
        assert queue.empty()
        assert bus.subscriber_count == 0


class TestContacts:

    def test_national_emergency_first(self):
        assert EMERGENCY_CONTACTS[0].number == "112"
        numbers = {c.number for c in EMERGENCY_CONTACTS}
        assert {"1091", "100", "102", "181", "1930"} <= numbers
