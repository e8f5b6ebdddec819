"""
test_api.py — HTTP and WebSocket surface tests.

Uses FastAPI's TestClient against an app whose runtime runs on the
simulated media platform with canned place-search results.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from backend.app import main as main_module
from backend.app.core.config import Settings, settings
from backend.app.location.geolocation import StaticGeolocationProvider
from backend.app.location.models import SafePlaceCategory
from backend.app.main import create_app
from backend.app.runtime import build_runtime

from fakes import BLR_LAT, BLR_LNG, FakePlaceSearchClient, GatedPlatform


def _make_client(place_client=None) -> TestClient:
    runtime = build_runtime(
        Settings(RECORDER_TICK_SECONDS=0.01, FINALIZE_TIMEOUT_SECONDS=1.0),
        platform=GatedPlatform(),
        geolocation_provider=StaticGeolocationProvider(BLR_LAT, BLR_LNG, 25.0),
        place_client=place_client or FakePlaceSearchClient(),
    )
    return TestClient(create_app(runtime=runtime))


@pytest.fixture
def client():
    with _make_client() as test_client:
        yield test_client


def _wait_for_places(client: TestClient, timeout: float = 2.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        alert = client.get("/api/v1/alerts/current").json()["alert"]
        if alert and alert["places_status"] not in ("not_started", "searching"):
            return alert
        time.sleep(0.01)
    raise AssertionError("safe places never settled")


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Alert lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertEndpoints:

    def test_no_alert_initially(self, client):
        resp = client.get("/api/v1/alerts/current")
        assert resp.status_code == 200
        assert resp.json() == {"alert": None}

    def test_trigger_starts_recorders(self, client):
        resp = client.post("/api/v1/alerts/trigger")
        assert resp.status_code == 200
        data = resp.json()
        assert data["alert_id"].startswith("ALR-")
        assert data["active"] is True
        assert data["media"]["video"]["state"] == "active"
        assert data["media"]["audio"]["state"] == "active"

    def test_trigger_is_idempotent(self, client):
        first = client.post("/api/v1/alerts/trigger").json()
        second = client.post("/api/v1/alerts/trigger").json()
        assert first["alert_id"] == second["alert_id"]

    def test_places_reported_on_current_alert(self, client):
        client.post("/api/v1/alerts/trigger")
        alert = _wait_for_places(client)
        assert alert["places_status"] == "found"
        assert len(alert["places"]) == 9
        assert alert["position"]["lat"] == BLR_LAT
        assert any(n["code"] == "location_shared" for n in alert["notices"])

    def test_end_releases_everything(self, client):
        client.post("/api/v1/alerts/trigger")
        resp = client.post("/api/v1/alerts/end")
        assert resp.status_code == 200
        alert = resp.json()["alert"]
        assert alert["status"] == "ended"
        assert alert["position"] is None
        assert alert["places"] == []
        assert alert["media"]["video"]["holds_device"] is False
        assert client.get("/api/v1/alerts/current").json() == {"alert": None}

    def test_end_without_alert(self, client):
        assert client.post("/api/v1/alerts/end").json() == {"alert": None}

    def test_contacts(self, client):
        contacts = client.get("/api/v1/alerts/contacts").json()
        assert contacts[0]["number"] == "112"
        assert {"name", "number", "description"} <= set(contacts[0])


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Manual capture
# ═══════════════════════════════════════════════════════════════════════════

class TestCaptureEndpoints:

    def test_record_and_download_audio(self, client):
        assert client.post("/api/v1/capture/audio/start").json()["state"] == "active"
        time.sleep(0.05)
        stopped = client.post("/api/v1/capture/audio/stop").json()
        assert stopped["state"] == "completed"
        assert stopped["artifact"]["mime_type"] == "audio/webm"

        resp = client.get("/api/v1/capture/audio/artifact")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("audio/webm")
        assert resp.headers["X-Artifact-Ref"] == stopped["artifact"]["ref"]
        assert len(resp.content) == stopped["artifact"]["size_bytes"]

    def test_stop_while_idle_is_conflict(self, client):
        resp = client.post("/api/v1/capture/video/stop")
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "INVALID_STATE"
        assert error["details"]["state"] == "idle"

    def test_artifact_missing_is_404(self, client):
        resp = client.get("/api/v1/capture/video/artifact")
        assert resp.status_code == 404

    def test_unknown_kind_rejected(self, client):
        assert client.get("/api/v1/capture/hologram").status_code == 422

    def test_clear_after_recording(self, client):
        client.post("/api/v1/capture/video/start")
        client.post("/api/v1/capture/video/stop")
        cleared = client.post("/api/v1/capture/video/clear").json()
        assert cleared["state"] == "idle"
        assert cleared["artifact"] is None

    def test_photo_preview_capture_image(self, client):
        assert client.post("/api/v1/capture/photo/preview").json()["state"] == "streaming"
        time.sleep(0.02)
        captured = client.post("/api/v1/capture/photo/capture").json()
        assert captured["state"] == "captured"
        assert captured["holds_device"] is False

        image = client.get("/api/v1/capture/photo/image")
        assert image.status_code == 200
        assert image.headers["content-type"] == "image/png"
        assert image.content.startswith(b"\x89PNG")

    def test_photo_preview_blocked_while_video_records(self, client):
        client.post("/api/v1/capture/video/start")
        resp = client.post("/api/v1/capture/photo/preview")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "DEVICE_UNAVAILABLE"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Places, health, events
# ═══════════════════════════════════════════════════════════════════════════

class TestPlacesEndpoint:

    def test_nearby(self, client):
        resp = client.get("/api/v1/places/nearby", params={"lat": BLR_LAT, "lng": BLR_LNG})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "found"
        assert len(data["places"]) == 9
        distances = [p["distance_m"] for p in data["places"]]
        assert distances == sorted(distances)

    def test_nearby_unavailable_is_not_empty(self):
        failing = FakePlaceSearchClient(failing=list(SafePlaceCategory))
        with _make_client(place_client=failing) as client:
            data = client.get("/api/v1/places/nearby", params={"lat": BLR_LAT, "lng": BLR_LNG}).json()
        assert data["status"] == "unavailable"
        assert data["places"] == []
        assert data["failed_categories"] == ["hospital", "police", "shelter"]

    def test_out_of_range_latitude(self, client):
        resp = client.get("/api/v1/places/nearby", params={"lat": 95.0, "lng": BLR_LNG})
        assert resp.status_code == 422


class TestHealthAndEvents:

    def test_health_lists_components(self, client):
        data = client.get("/health").json()
        assert data["status"] in ("healthy", "degraded")
        names = {c["name"] for c in data["components"]}
        assert {"media_platform", "geolocation", "place_search", "artifacts"} <= names
        assert data["alert_active"] is False

    def test_request_id_header(self, client):
        resp = client.get("/health/live")
        assert resp.headers["X-Request-ID"]

    def test_websocket_snapshot_then_events(self, client):
        with client.websocket_connect("/api/v1/alerts/events") as websocket:
            first = websocket.receive_json()
            assert first == {"type": "snapshot", "payload": None}

            client.post("/api/v1/alerts/trigger")
            event = websocket.receive_json()
            assert event["type"] == "alert_triggered"
            assert event["alert_id"].startswith("ALR-")


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Server runner
# ═══════════════════════════════════════════════════════════════════════════

class TestRunner:

    @pytest.fixture
    def served(self, monkeypatch):
        calls = []
        monkeypatch.setattr(main_module.uvicorn, "run", lambda **kwargs: calls.append(kwargs))
        return calls

    def test_run_uses_configured_address(self, served, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "development")
        main_module.run()

        assert len(served) == 1
        config = served[0]
        assert config["app"] == "backend.app.main:app"
        assert config["host"] == settings.HOST
        assert config["port"] == settings.PORT
        assert config["reload"] is settings.RELOAD
        assert config["log_config"] is None

    def test_no_reload_outside_development(self, served, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")
        monkeypatch.setattr(settings, "RELOAD", True)
        main_module.run()
        assert served[0]["reload"] is False

    def test_overrides_win(self, served):
        main_module.run(port=9100, workers=2)
        assert served[0]["port"] == 9100
        assert served[0]["workers"] == 2
