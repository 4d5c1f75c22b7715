"""Global configuration for the sentinel camera application.

This module exposes configuration constants via the `Config` class. All values
are read from environment variables with defaults suited to a single webcam
watched by a remote vision model.
"""

import os  # Standard library for environment helpers
import re  # Robust parsing of numeric envs with comments/ranges
from dataclasses import dataclass  # Resolution presets
from typing import Dict


@dataclass(frozen=True)
class Resolution:
    """Capture resolution preset."""

    key: str
    width: int
    height: int
    label: str

    @property
    def size(self) -> tuple:
        """Return `(width, height)` as expected by the camera backends."""
        return (self.width, self.height)


RESOLUTIONS: Dict[str, Resolution] = {
    "HD": Resolution("HD", 1280, 720, "HD (720p)"),
    "FHD": Resolution("FHD", 1920, 1080, "Full HD (1080p)"),
    "UHD": Resolution("UHD", 3840, 2160, "4K (2160p)"),
}


def _env_int(name: str, default: int) -> int:
    """Parse an integer from an environment variable robustly.

    Accepts values like "150", "150 # comment", or "120~180" and returns the
    first integer found. Falls back to default if parsing fails.
    """
    val = os.getenv(name)
    if val is None:
        return default
    s = str(val).strip().strip('"').strip("'")
    m = re.search(r"-?\d+", s)
    if not m:
        return default
    return int(m.group(0))


def _env_bool(name: str, default: bool) -> bool:
    """Parse a "1"/"0" style switch; anything else keeps the default."""
    val = os.getenv(name)
    if val is None:
        return default
    s = str(val).strip().strip('"').strip("'").lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def resolve_resolution(key: str) -> Resolution:
    """Look up a resolution preset by key (case-insensitive).

    Raises:
      ValueError: If the key is not one of HD, FHD, UHD.
    """
    preset = RESOLUTIONS.get(str(key or "").strip().upper())
    if preset is None:
        raise ValueError(f"unknown resolution {key!r}; expected one of {', '.join(RESOLUTIONS)}")
    return preset


class Config:
    """Application configuration sourced from environment variables.

    This class provides class attributes so other modules can import settings as
    constants (e.g., `from sentinel_cam.config import Config`). To override a
    setting, define the corresponding environment variable before launching the
    application.
    """
    # Scan cadence
    MAX_INTERVAL_MS = 300_000  # Backoff ceiling (fixed)
    BASE_INTERVAL_MS = _clamp(_env_int("SENTINEL_BASE_INTERVAL_MS", 30_000), 1000, MAX_INTERVAL_MS)
    # Re-poll delay when the camera has no frame yet or a tick had to be dropped
    NOT_READY_RETRY_MS = max(50, _env_int("SENTINEL_NOT_READY_RETRY_MS", 1000))
    AUTO_ACTIVATE = _env_bool("SENTINEL_AUTO_ACTIVATE", False)  # Arm the scan loop at startup

    # Motion gate
    SENSITIVITY = _clamp(_env_int("SENTINEL_SENSITIVITY", 15), 0, 100)
    """Percentage of changed sample pixels needed to count as motion, times ten.
    15 means more than 1.5% of the 50x50 sample must change. Lower is more sensitive."""

    # Camera
    RESOLUTION = RESOLUTIONS.get(os.getenv("SENTINEL_RESOLUTION", "HD").strip().upper(), RESOLUTIONS["HD"])
    CAMERA_BACKEND = os.getenv("SENTINEL_CAMERA_BACKEND", "auto").strip().lower()  # auto|picamera2|v4l2
    CAMERA_INDEX = _env_int("SENTINEL_CAMERA_INDEX", 0)  # V4L2 device index
    CAPTURE_FPS = max(1, _env_int("SENTINEL_CAPTURE_FPS", 30))  # Capture loop pacing
    # Rotate frames by this many degrees (allowed: 0, 90, 180, 270)
    ROTATE_DEGREES = _env_int("SENTINEL_ROTATE_DEGREES", 0)

    # Remote analysis
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", os.getenv("API_KEY", "")).strip()
    GEMINI_MODEL = os.getenv("SENTINEL_GEMINI_MODEL", "gemini-3-flash-preview").strip()
    ANALYSIS_TIMEOUT_SEC = float(max(1, _env_int("SENTINEL_ANALYSIS_TIMEOUT_SEC", 60)))
    SNAPSHOT_MAX_WIDTH = max(64, _env_int("SENTINEL_SNAPSHOT_MAX_WIDTH", 1024))  # Upload width cap
    SNAPSHOT_JPEG_QUALITY = _clamp(_env_int("SENTINEL_SNAPSHOT_JPEG_QUALITY", 80), 10, 100)

    # Alerts
    SOUND_ENABLED = _env_bool("SENTINEL_SOUND_ENABLED", True)  # Dashboard siren on person detected
    ALERT_BANNER_SEC = float(_env_int("SENTINEL_ALERT_BANNER_SEC", 10))  # Keep alert banner visible this long

    # Dashboard
    HOST = os.getenv("SENTINEL_HOST", "0.0.0.0")  # Flask bind host
    PORT = _env_int("SENTINEL_PORT", 8000)  # Flask bind port
    DEBUG = _env_bool("SENTINEL_DEBUG", False)  # Flask debug switch
    LOG_LEVEL = os.getenv("SENTINEL_LOG_LEVEL", "INFO").strip().upper()
