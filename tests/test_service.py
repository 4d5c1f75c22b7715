"""
Tests for the camera feed and service wiring.
"""

import time

import pytest

from sentinel_cam import events
from sentinel_cam.camera import CaptureUnavailable
from sentinel_cam.config import RESOLUTIONS
from sentinel_cam.events import DetectionStatus
from sentinel_cam.service import CameraFeed, SentinelService

from conftest import DeferredExecutor, FakeCamera, ManualTimer, ScriptedClient


def wait_for_frame(feed, timeout=3.0):
    """Poll the feed until the capture thread delivered a frame."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        frame = feed.read()
        if frame is not None:
            return frame
        time.sleep(0.01)
    raise AssertionError("camera feed produced no frame")


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


class TestCameraFeed:
    """Tests for the background capture loop."""

    def test_start_read_stop(self, fake_camera_factory):
        """Frames flow while running; stopping releases the camera."""
        feed = CameraFeed(RESOLUTIONS["HD"], camera_factory=fake_camera_factory, fps=30)
        assert feed.read() is None

        feed.start()
        frame = wait_for_frame(feed)
        feed.stop()

        assert (frame.width, frame.height) == (1280, 720)
        assert FakeCamera.instances[0].stopped is True
        assert feed.read() is None
        assert feed.running is False

    def test_rotation(self, fake_camera_factory):
        """Quarter turns swap frame dimensions."""
        feed = CameraFeed(RESOLUTIONS["HD"], camera_factory=fake_camera_factory, rotate_degrees=90)

        feed.start()
        frame = wait_for_frame(feed)
        feed.stop()

        assert (frame.width, frame.height) == (720, 1280)

    def test_start_failure_propagates(self):
        """A camera that cannot be opened raises CaptureUnavailable."""
        feed = CameraFeed(RESOLUTIONS["HD"], camera_factory=lambda size: FakeCamera(size, fail=True))

        with pytest.raises(CaptureUnavailable):
            feed.start()
        assert feed.running is False

    def test_resolution_locked_while_running(self, fake_camera_factory):
        """Resolution may only change while the camera is released."""
        feed = CameraFeed(RESOLUTIONS["HD"], camera_factory=fake_camera_factory)
        feed.start()
        try:
            with pytest.raises(RuntimeError):
                feed.set_resolution(RESOLUTIONS["FHD"])
        finally:
            feed.stop()

        feed.set_resolution(RESOLUTIONS["FHD"])
        assert feed.resolution.key == "FHD"


class TestSentinelService:
    """Tests for the service facade."""

    def test_activate_and_manual_scan(self, service):
        """An armed service analyses a manual scan and records the result."""
        assert service.activate() is True
        wait_for_frame(service.feed)

        assert service.trigger_manual() is True
        service.scheduler._executor.complete_next()

        status = service.get_status()
        assert status["active"] is True
        assert status["last_event"]["status"] == DetectionStatus.NO_PERSON.value
        assert [e.status for e in service.get_history()] == [DetectionStatus.NO_PERSON]

    def test_set_resolution_restarts_camera(self, service):
        """Changing resolution while armed reopens the camera at the new size."""
        service.activate()

        assert service.set_resolution("FHD") is True

        assert [cam.size for cam in FakeCamera.instances] == [(1280, 720), (1920, 1080)]
        assert FakeCamera.instances[0].stopped is True
        assert service.get_status()["resolution"] == "FHD"

    def test_set_resolution_rejects_unknown(self, service):
        """Unknown presets raise ValueError."""
        with pytest.raises(ValueError):
            service.set_resolution("VGA")

    def test_deactivate_clears_alerts(self, service):
        """Disarming drops the alert banner and the history."""
        service.activate()
        service.alerts.notify(events.person_detected("Person", 90.0))

        service.deactivate()

        status = service.get_status()
        assert status["active"] is False
        assert status["alert_active"] is False
        assert service.get_history() == []
