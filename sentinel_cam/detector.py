"""Motion gate (frame differencing on a tiny sample).

Defines the `Frame` handed over by the capture loop and a `MotionDetector`
that reduces each frame to a fixed 50x50 colour sample and compares it with
the sample taken on the previous scan. Only frames that changed enough are
worth a remote analysis call.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

import cv2  # OpenCV
import numpy as np  # Arrays

from .config import Config  # Default sensitivity

SAMPLE_SIZE = (50, 50)  # (width, height) of the motion sample
PIXEL_DELTA_THRESH = 30  # Summed |dR|+|dG|+|dB| above this marks a pixel as changed


@dataclass
class Frame:
    """One captured BGR image.

    Attributes:
      pixels: HxWx3 uint8 array in BGR order (as returned by the camera).
      captured_at: Wall-clock capture time in seconds.
    """

    pixels: np.ndarray
    captured_at: float = field(default_factory=time.time)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1]) if self.pixels.ndim >= 2 else 0

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0]) if self.pixels.ndim >= 2 else 0

    @property
    def is_ready(self) -> bool:
        """False while the capture is still warming up (empty image)."""
        return self.pixels.size > 0 and self.width > 0 and self.height > 0


@dataclass(frozen=True)
class MotionReading:
    """Result of comparing a frame against the previous sample.

    Attributes:
      has_motion: True when the scene changed enough to be worth analysing.
      level: Percentage (0-100) of sample pixels that changed.
      seeded: True when there was no previous sample and this call only
        stored one (cold start); `has_motion` is then always True.
    """

    has_motion: bool
    level: float
    seeded: bool = False


@dataclass
class MotionState:
    """State owned by the detector between calls: the last stored sample."""

    previous: Optional[np.ndarray] = None


def downsample(pixels: np.ndarray) -> np.ndarray:
    """Reduce an image to the fixed 50x50 BGR motion sample."""
    if pixels.ndim == 3 and pixels.shape[2] == 1:
        pixels = pixels.reshape(pixels.shape[:2])  # (H, W, 1) mono
    if pixels.ndim == 2:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGR)
    elif pixels.shape[2] == 4:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_BGRA2BGR)
    return cv2.resize(pixels, SAMPLE_SIZE, interpolation=cv2.INTER_AREA)


def changed_percentage(previous: np.ndarray, current: np.ndarray) -> float:
    """Percentage of pixels whose summed per-channel difference exceeds the threshold."""
    diff = cv2.absdiff(previous, current)
    per_pixel = diff.sum(axis=2, dtype=np.int32)
    changed = int(np.count_nonzero(per_pixel > PIXEL_DELTA_THRESH))
    total = per_pixel.shape[0] * per_pixel.shape[1]
    return changed / total * 100.0


def compare_samples(
    state: MotionState, frame: Frame, sensitivity: int
) -> Tuple[MotionState, Optional[MotionReading]]:
    """Pure motion step: returns the next state and the reading for `frame`.

    An empty frame yields `(state, None)`: no decision, state untouched. Without
    a previous sample the reading is a cold-start "motion". Otherwise the new
    state always holds the current sample, whatever the outcome.
    """
    if not frame.is_ready:
        return state, None
    current = downsample(frame.pixels)
    if state.previous is None:
        return MotionState(previous=current), MotionReading(True, 0.0, seeded=True)
    level = changed_percentage(state.previous, current)
    return MotionState(previous=current), MotionReading(level > sensitivity / 10.0, level)


class MotionDetector:
    """Decides whether a frame differs meaningfully from the previous one.

    Keeps the previous 50x50 sample. A pixel counts as changed when the sum of
    its absolute R, G and B differences exceeds 30; the frame has motion when
    the changed share is above `sensitivity / 10` percent.
    """

    def __init__(self, sensitivity: int = Config.SENSITIVITY) -> None:
        self.sensitivity = int(sensitivity)
        self.state = MotionState()

    @property
    def threshold(self) -> float:
        """Changed-pixel percentage that must be exceeded to report motion."""
        return self.sensitivity / 10.0

    def reset(self) -> None:
        """Drop the stored sample so the next frame is a cold start.

        Call this after the camera restarts, since the old sample no longer
        describes the same stream.
        """
        self.state = MotionState()

    def detect(self, frame: Frame) -> Optional[MotionReading]:
        """Compare `frame` with the previous sample.

        Returns:
          The reading, or None when the frame is empty and the tick must be
          skipped rather than treated as "no motion".
        """
        self.state, reading = compare_samples(self.state, frame, self.sensitivity)
        return reading
