"""
Pytest configuration and shared fixtures.
"""

import os
import sys
from concurrent.futures import Executor, Future

import numpy as np
import pytest

# Make the flat package importable without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sentinel_cam.analysis import AnalysisClient, AnalysisResult
from sentinel_cam.alerts import AlertSink
from sentinel_cam.camera import BaseCamera, CaptureUnavailable
from sentinel_cam.detector import Frame, MotionDetector
from sentinel_cam.scheduler import FrameSource, ScanScheduler
from sentinel_cam.timers import BaseTimer


def solid_frame(value=0, size=50):
    """Uniform BGR frame of `size` x `size` pixels."""
    return Frame(np.full((size, size, 3), value, dtype=np.uint8))


def frame_with_changes(base, n, value=255):
    """Copy of `base` with its first `n` pixels (row-major) set to `value`."""
    pixels = base.pixels.copy()
    pixels.reshape(-1, 3)[:n] = value
    return Frame(pixels)


class ManualTimer(BaseTimer):
    """Deterministic timer: callbacks fire only when the test advances time."""

    def __init__(self):
        self._now = 0.0
        self._seq = 0
        self._pending = {}

    def now(self):
        return self._now

    def after(self, delay_s, fn):
        self._seq += 1
        self._pending[self._seq] = (self._now + max(0.0, delay_s), self._seq, fn)
        return self._seq

    def cancel(self, handle):
        self._pending.pop(handle, None)

    @property
    def pending(self):
        return len(self._pending)

    def advance(self, seconds):
        target = self._now + seconds
        while True:
            due = [entry for entry in self._pending.values() if entry[0] <= target]
            if not due:
                break
            when, handle, fn = min(due, key=lambda e: (e[0], e[1]))
            del self._pending[handle]
            self._now = max(self._now, when)
            fn()
        self._now = target


class DeferredExecutor(Executor):
    """Holds submitted calls until the test completes them."""

    def __init__(self):
        self.calls = []
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.calls.append((future, fn, args, kwargs))
        self.submitted += 1
        return future

    def complete_next(self):
        future, fn, args, kwargs = self.calls.pop(0)
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)


class ScriptedClient(AnalysisClient):
    """Returns (or raises) scripted outcomes in order; repeats the last one."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [AnalysisResult(False, 90.0, "Empty room")]
        self.frames = []

    def detect(self, frame):
        self.frames.append(frame)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSink(AlertSink):
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


class FakeSource(FrameSource):
    """Frame source returning `frame` (None means not ready)."""

    def __init__(self, frame=None):
        self.frame = frame
        self.start_calls = 0
        self.stop_calls = 0
        self.reads = 0
        self.fail_start = None

    def start(self):
        self.start_calls += 1
        if self.fail_start:
            raise CaptureUnavailable(self.fail_start)

    def stop(self):
        self.stop_calls += 1

    def read(self):
        self.reads += 1
        return self.frame


class FakeCamera(BaseCamera):
    """Camera producing uniform frames of the requested size."""

    instances = []

    def __init__(self, size, fail=False):
        self.size = size
        self.fail = fail
        self.started = False
        self.stopped = False
        FakeCamera.instances.append(self)

    def start(self):
        if self.fail:
            raise CaptureUnavailable("no camera attached")
        self.started = True

    def read(self):
        if not self.started:
            return None
        w, h = self.size
        return np.full((h, w, 3), 40, dtype=np.uint8)

    def stop(self):
        self.stopped = True
        self.started = False


@pytest.fixture
def timer():
    return ManualTimer()


@pytest.fixture
def executor():
    return DeferredExecutor()


@pytest.fixture
def source():
    return FakeSource(solid_frame(0))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def client():
    return ScriptedClient()


@pytest.fixture
def make_scheduler(source, sink, timer, executor):
    """Factory building a scheduler wired to the fakes above."""

    def _make(client, base_interval_ms=30_000, max_interval_ms=300_000, sensitivity=15):
        return ScanScheduler(
            source,
            client,
            alert_sink=sink,
            detector=MotionDetector(sensitivity),
            timer=timer,
            executor=executor,
            base_interval_ms=base_interval_ms,
            max_interval_ms=max_interval_ms,
            retry_ms=1000,
        )

    return _make


@pytest.fixture
def fake_camera_factory():
    FakeCamera.instances = []

    def _factory(size):
        return FakeCamera(size)

    return _factory
