"""Background capture and scan service for the sentinel camera app."""

import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from .alerts import AlertBoard
from .analysis import AnalysisClient, GeminiAnalysisClient
from .camera import BaseCamera, make_camera
from .config import Config, Resolution, resolve_resolution
from .detector import Frame, MotionDetector
from .events import DetectionEvent
from .scheduler import FrameSource, ScanScheduler

logger = logging.getLogger(__name__)

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


class CameraFeed(FrameSource):
    """Keeps the newest camera frame available for scans and the live view.

    A worker thread reads the camera at `fps` and stores the latest frame, so
    a scan always sees the current scene rather than a stale driver buffer.
    """

    def __init__(
        self,
        resolution: Resolution = Config.RESOLUTION,
        camera_factory: Callable[[Tuple[int, int]], BaseCamera] = make_camera,
        fps: int = Config.CAPTURE_FPS,
        rotate_degrees: int = Config.ROTATE_DEGREES,
    ) -> None:
        self.resolution = resolution
        self._camera_factory = camera_factory
        self.fps = max(1, int(fps))
        self.rotate_degrees = int(rotate_degrees)
        self.camera: Optional[BaseCamera] = None
        self.total_frames = 0
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._frame_lock = threading.Lock()
        self._latest_frame: Optional[np.ndarray] = None
        self._latest_ts = 0.0

    @property
    def running(self) -> bool:
        return self.camera is not None

    def set_resolution(self, resolution: Resolution) -> None:
        """Change the capture size; only allowed while stopped."""
        if self.running:
            raise RuntimeError("stop the camera feed before changing its resolution")
        self.resolution = resolution

    def start(self) -> None:
        """Open the camera and start the capture thread.

        Raises:
          CaptureUnavailable: If the camera cannot be opened.
        """
        if self.running:
            return
        camera = self._camera_factory(self.resolution.size)
        camera.start()  # Raises CaptureUnavailable
        self.camera = camera
        logger.info("Camera started (%s, %dx%d)", self.resolution.key, self.resolution.width, self.resolution.height)
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="camera-feed", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the capture thread and release the camera."""
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None
        if self.camera is not None:
            self.camera.stop()
            self.camera = None
            logger.info("Camera released")
        with self._frame_lock:
            self._latest_frame = None
            self._latest_ts = 0.0

    def read(self) -> Optional[Frame]:
        """Return the newest frame, or None while the camera warms up."""
        with self._frame_lock:
            if self._latest_frame is None:
                return None
            return Frame(self._latest_frame.copy(), self._latest_ts)

    def get_latest_frame(self) -> Optional[np.ndarray]:
        """Return a copy of the most recent frame, or None."""
        with self._frame_lock:
            if self._latest_frame is None:
                return None
            return self._latest_frame.copy()

    def _run(self) -> None:
        """Worker loop: read frames at the target rate and keep the latest."""
        frame_interval = 1.0 / self.fps
        next_frame_ts = time.time()
        camera = self.camera
        while not self._stop.is_set() and camera is not None:
            # Pace the loop to respect fps regardless of read time
            now_loop = time.time()
            if now_loop < next_frame_ts:
                time.sleep(min(0.1, next_frame_ts - now_loop))
                continue
            # Schedule next frame time; if we fell behind, reset to avoid bursts
            next_frame_ts += frame_interval
            if next_frame_ts < now_loop:
                next_frame_ts = now_loop + frame_interval
            try:
                frame = camera.read()
            except Exception as e:
                # Never let camera read errors kill the capture loop
                logger.warning("Camera read failed: %s", e)
                time.sleep(0.1)
                continue
            if frame is None:
                time.sleep(0.01)
                continue
            rotation = _ROTATIONS.get(self.rotate_degrees)
            if rotation is not None:
                frame = cv2.rotate(frame, rotation)
            with self._frame_lock:
                self._latest_frame = frame
                self._latest_ts = time.time()
            self.total_frames += 1


class SentinelService:
    """Wires the camera feed, scan scheduler, analysis client and alerts."""

    def __init__(
        self,
        client: Optional[AnalysisClient] = None,
        camera_factory: Callable[[Tuple[int, int]], BaseCamera] = make_camera,
        timer=None,
        executor=None,
    ) -> None:
        """Build the service from `Config`.

        Args:
          client: Remote analysis backend; defaults to Gemini.
          camera_factory: Builds a camera for a `(width, height)` size.
          timer: Timer capability for the scheduler (threads by default).
          executor: Runs analysis calls (one worker thread by default).
        """
        self.config = Config
        self.feed = CameraFeed(Config.RESOLUTION, camera_factory=camera_factory)
        self.alerts = AlertBoard(sound_enabled=Config.SOUND_ENABLED, banner_sec=Config.ALERT_BANNER_SEC)
        self.client = client or GeminiAnalysisClient()
        self.scheduler = ScanScheduler(
            self.feed,
            self.client,
            alert_sink=self.alerts,
            detector=MotionDetector(Config.SENSITIVITY),
            timer=timer,
            executor=executor,
            base_interval_ms=Config.BASE_INTERVAL_MS,
            max_interval_ms=Config.MAX_INTERVAL_MS,
            retry_ms=Config.NOT_READY_RETRY_MS,
        )

    @property
    def resolution(self) -> Resolution:
        return self.feed.resolution

    # Public API
    def start(self) -> None:
        """Arm the scan loop right away if configured to."""
        if self.config.AUTO_ACTIVATE:
            self.activate()

    def stop(self) -> None:
        """Disarm, release the camera and the analysis worker."""
        self.scheduler.shutdown()
        close = getattr(self.client, "close", None)
        if callable(close):
            close()

    def activate(self) -> bool:
        return self.scheduler.activate()

    def deactivate(self) -> None:
        self.scheduler.deactivate()
        self.alerts.clear()

    def trigger_manual(self) -> bool:
        return self.scheduler.trigger_manual()

    def set_sound(self, enabled: bool) -> None:
        self.alerts.set_sound(enabled)

    def set_resolution(self, key: str) -> bool:
        """Switch capture resolution, restarting the camera if it is running.

        Raises:
          ValueError: If `key` is not a known preset.
        """
        preset = resolve_resolution(key)
        return self.scheduler.restart_source(lambda: self.feed.set_resolution(preset))

    def time_until_next_scan(self) -> Optional[float]:
        return self.scheduler.time_until_next_scan()

    def get_history(self) -> List[DetectionEvent]:
        return self.scheduler.get_history()

    def get_latest_frame(self) -> Optional[np.ndarray]:
        return self.feed.get_latest_frame()

    def get_status(self) -> dict:
        """Return a JSON-friendly status snapshot for the web API and dashboard."""
        st = self.scheduler.snapshot()
        remaining = self.scheduler.time_until_next_scan()
        return {
            "active": st.active,
            "phase": st.phase.value,
            "busy": st.busy,
            "current_interval_ms": st.current_interval_ms,
            "next_scan_in_sec": remaining,
            "motion_level": st.motion_level,
            "motion_threshold": self.scheduler.detector.threshold,
            "capture_error": st.capture_error,
            "last_event": st.last_event.to_dict() if st.last_event else None,
            "analysis_count": st.analysis_count,
            "resolution": self.resolution.key,
            "sound_enabled": self.alerts.sound_enabled,
            "alert_active": self.alerts.is_alert_active(),
            "alert_count": self.alerts.alert_count,
            "last_alert_ts": self.alerts.last_alert_ts or None,
            "total_frames": self.feed.total_frames,
        }
