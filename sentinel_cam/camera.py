"""Camera backends and factory for the sentinel camera app.

Provides a minimal interface to either Picamera2 (CSI cameras) or OpenCV's
VideoCapture (V4L2 devices like USB webcams). Frames are returned as BGR
NumPy arrays compatible with OpenCV.
"""

import time  # Sleep on read failures to reduce busy looping
from typing import Optional, Tuple  # Type hints for clarity

import numpy as np  # Frame arrays

from .config import Config  # Global configuration


class CaptureUnavailable(RuntimeError):
    """The capture device could not be acquired."""


class BaseCamera:
    """Abstract camera interface returning BGR frames.

    Subclasses must implement `start()`, `read()`, and `stop()`.
    """

    def start(self) -> None:
        """Initialize and start the camera stream.

        Raises:
          CaptureUnavailable: If the device cannot be opened.
        """
        raise NotImplementedError

    def read(self) -> Optional[np.ndarray]:
        """Read a single BGR frame.

        Returns:
          A NumPy array in BGR order, or None if a frame is not available.
        """
        raise NotImplementedError

    def stop(self) -> None:
        """Stop and release camera resources."""
        pass


class PiCamera2Wrapper(BaseCamera):
    """PiCamera2-based camera backend for CSI-connected camera modules."""

    def __init__(self, size: Tuple[int, int]) -> None:
        """Create a camera with a given frame size.

        Args:
          size: `(width, height)` capture resolution.
        """
        self.size = size  # Desired capture size
        self.picam2 = None  # Will hold Picamera2 instance
        self._started = False  # Tracks start state

    def start(self) -> None:
        """Configure and start Picamera2 streaming."""
        try:
            from picamera2 import Picamera2  # Imported lazily to avoid hard dependency

            self.picam2 = Picamera2()  # Create camera instance
            w, h = self.size  # Unpack desired width and height
            config = self.picam2.create_video_configuration(
                main={"size": (w, h), "format": "RGB888"}  # RGB888 is BGR in memory
            )
            self.picam2.configure(config)  # Apply configuration
            self.picam2.start()  # Start the camera
        except Exception as e:
            self.stop()
            raise CaptureUnavailable(f"Picamera2 could not be started: {e}") from e
        self._started = True  # Mark as started

    def read(self) -> Optional[np.ndarray]:
        """Capture a frame and return it in BGR order."""
        if not self._started:  # Guard if not started yet
            return None
        arr = self.picam2.capture_array("main")
        if arr is None:  # If no frame is available yet
            return None
        return arr[:, :, :3]

    def stop(self) -> None:
        """Stop streaming and release resources."""
        try:
            if self.picam2:  # If a camera instance exists
                self.picam2.stop()  # Stop streaming
                self.picam2.close()  # Release the device handle
        except Exception:
            # Ignore errors during shutdown to keep cleanup robust
            pass
        self.picam2 = None
        self._started = False  # Mark as stopped


class Cv2V4L2Camera(BaseCamera):
    """OpenCV VideoCapture backend for V4L2 devices (e.g., USB webcams)."""

    def __init__(self, index: int, size: Tuple[int, int], fps: int) -> None:
        """Create a V4L2 camera.

        Args:
          index: V4L2 device index (e.g., 0 for /dev/video0).
          size: `(width, height)` capture resolution.
          fps: Requested frames per second.
        """
        import cv2  # Imported here to avoid global import cost if unused

        self.cv2 = cv2  # Save module reference for property constants
        self.index = index  # Device index
        self.size = size  # Desired capture size
        self.fps = fps  # Target FPS
        self.cap = None  # Will hold cv2.VideoCapture instance

    def start(self) -> None:
        """Open the V4L2 device and set basic properties."""
        self.cap = self.cv2.VideoCapture(self.index)  # Open device
        if not self.cap.isOpened():
            self.stop()
            raise CaptureUnavailable(f"Could not open camera device {self.index}")
        w, h = self.size  # Unpack target size
        self.cap.set(self.cv2.CAP_PROP_FRAME_WIDTH, w)  # Set width
        self.cap.set(self.cv2.CAP_PROP_FRAME_HEIGHT, h)  # Set height
        self.cap.set(self.cv2.CAP_PROP_FPS, self.fps)  # Set FPS

    def read(self) -> Optional[np.ndarray]:
        """Grab a frame from the V4L2 device."""
        if self.cap is None:  # Not started
            return None
        ok, frame = self.cap.read()  # Try to read a frame
        if not ok:  # If read failed, back off briefly
            time.sleep(0.01)
            return None
        return frame  # Frame is already BGR

    def stop(self) -> None:
        """Release the V4L2 device."""
        try:
            if self.cap is not None:  # If opened
                self.cap.release()  # Release device
        except Exception:
            # Suppress release errors during shutdown
            pass
        self.cap = None


def make_camera(size: Tuple[int, int]) -> BaseCamera:
    """Factory to create the appropriate camera backend based on config.

    Args:
      size: `(width, height)` capture resolution.

    Returns:
      An instance of `BaseCamera` using either Picamera2 or V4L2.
    """
    backend = Config.CAMERA_BACKEND  # Requested backend
    if backend == "picamera2":  # Force Picamera2
        return PiCamera2Wrapper(size=size)
    if backend == "v4l2":  # Force V4L2
        return Cv2V4L2Camera(index=Config.CAMERA_INDEX, size=size, fps=Config.CAPTURE_FPS)

    # Auto: try Picamera2 first, fall back to V4L2
    try:
        import importlib  # Dynamic import to test availability

        importlib.import_module("picamera2")  # Raises if unavailable
        return PiCamera2Wrapper(size=size)
    except ImportError:
        return Cv2V4L2Camera(index=Config.CAMERA_INDEX, size=size, fps=Config.CAPTURE_FPS)
