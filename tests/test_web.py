"""
Tests for the Flask dashboard and control API.
"""

import pytest

from sentinel_cam import events
from sentinel_cam.service import SentinelService
from sentinel_cam.web import create_app

from conftest import DeferredExecutor, FakeCamera, ManualTimer, ScriptedClient


@pytest.fixture
def service(fake_camera_factory):
    svc = SentinelService(
        client=ScriptedClient(),
        camera_factory=fake_camera_factory,
        timer=ManualTimer(),
        executor=DeferredExecutor(),
    )
    yield svc
    svc.stop()


@pytest.fixture
def client(service):
    app = create_app(service)
    app.config["TESTING"] = True
    return app.test_client()


class TestStateApi:
    """Tests for read-only endpoints."""

    def test_state_when_idle(self, client):
        """An idle service reports inactive with no next scan."""
        resp = client.get("/api/state")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["active"] is False
        assert data["phase"] == "idle"
        assert data["next_scan_in_sec"] is None
        assert data["current_interval_ms"] > 0

    def test_history_starts_empty(self, client):
        """No events before the first scan."""
        assert client.get("/api/history").get_json() == {"events": []}

    def test_dashboard_renders(self, client):
        """The dashboard page renders in both states."""
        assert b"Disarmed" in client.get("/").data

        client.post("/api/activate")

        assert b"Armed" in client.get("/").data

    def test_latest_frame_unavailable_when_idle(self, client):
        """No frame is served before the camera starts."""
        assert client.get("/latest.jpg").status_code == 503


class TestControlApi:
    """Tests for control endpoints."""

    def test_activate_and_deactivate(self, client):
        """Arming and disarming flip the active flag."""
        resp = client.post("/api/activate")
        assert resp.status_code == 200
        assert resp.get_json()["state"]["active"] is True

        resp = client.post("/api/deactivate")
        assert resp.get_json()["state"]["active"] is False

    def test_activate_reports_capture_error(self):
        """A missing camera yields 503 with the reason."""
        svc = SentinelService(
            client=ScriptedClient(),
            camera_factory=lambda size: FakeCamera(size, fail=True),
            timer=ManualTimer(),
            executor=DeferredExecutor(),
        )
        client = create_app(svc).test_client()

        resp = client.post("/api/activate")

        assert resp.status_code == 503
        assert resp.get_json()["error"] == "no camera attached"

    def test_manual_scan_rejected_when_idle(self, client):
        """Manual scans need an armed loop."""
        assert client.post("/api/scan").status_code == 409

    def test_sound_toggle_and_set(self, client, service):
        """Sound can be toggled or set explicitly."""
        before = service.alerts.sound_enabled

        resp = client.post("/api/sound")
        assert resp.get_json()["sound_enabled"] is (not before)

        resp = client.post("/api/sound", json={"enabled": True})
        assert resp.get_json()["sound_enabled"] is True

        assert client.post("/api/sound", json={"enabled": "loud"}).status_code == 400

    def test_resolution_change(self, client, service):
        """Known presets are applied; unknown ones are rejected."""
        resp = client.post("/api/resolution", json={"resolution": "UHD"})
        assert resp.get_json() == {"ok": True, "resolution": "UHD"}
        assert service.feed.resolution.size == (3840, 2160)

        assert client.post("/api/resolution", json={"resolution": "VGA"}).status_code == 400


class TestAlertSound:
    """Tests for the dashboard siren and panel polling."""

    SIREN_CALL = b"if (st.sound_enabled) siren();"

    def test_page_polls_instead_of_reloading(self, client):
        """The shell fetches the panel so the unlocked audio context survives."""
        page = client.get("/").data

        assert b'http-equiv="refresh"' not in page
        assert b"location.reload" not in page
        assert b"fetch('/panel')" in page

    def test_panel_is_a_fragment(self, client):
        """The polled panel carries status but no document shell."""
        resp = client.get("/panel")

        assert resp.status_code == 200
        assert b"Disarmed" in resp.data
        assert b"<html" not in resp.data

    def test_state_reports_alert_timestamp(self, client, service):
        """The alert timestamp is exposed for once-per-alert playback."""
        assert client.get("/api/state").get_json()["last_alert_ts"] is None

        service.alerts.notify(events.person_detected("Person", 90.0))

        data = client.get("/api/state").get_json()
        assert data["last_alert_ts"] == service.alerts.last_alert_ts
        assert data["alert_active"] is True

    def test_siren_keyed_on_new_alert_timestamp(self, client, service):
        """The siren is gated on an unseen alert timestamp, not on the banner."""
        idle_page = client.get("/").data

        service.alerts.notify(events.person_detected("Person", 90.0))
        alert_page = client.get("/").data

        assert idle_page.count(self.SIREN_CALL) == 1
        assert alert_page.count(self.SIREN_CALL) == 1
        assert b"ts <= heard" in alert_page
        # A freshly opened tab treats the current alert as already heard
        seed = "'{}'".format(service.alerts.last_alert_ts).encode()
        assert seed in alert_page
        assert b"'0'" in idle_page
