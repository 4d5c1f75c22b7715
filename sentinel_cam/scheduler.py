"""Motion-gated scan loop.

`ScanScheduler` decides when a frame is worth sending to the remote analysis
service. On every scheduled tick it grabs the latest frame, runs the motion
gate and, only when the scene changed, calls the `AnalysisClient`. Results
drive the cadence: a quota rejection doubles the interval (up to five
minutes), any successful analysis snaps it back to the base interval.

Threading model: timer callbacks and analysis completions arrive on worker
threads, so every state change happens under one re-entrant lock. At most one
analysis call is in flight per scheduler (`busy`); ticks that arrive while it
runs are dropped, not queued. Callbacks carry the activation generation they
were issued under, and results from an older generation are discarded.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from . import events
from .alerts import AlertSink
from .analysis import AnalysisClient, AnalysisResult, QuotaExceededError
from .config import Config
from .detector import Frame, MotionDetector
from .events import DetectionEvent, DetectionStatus, HistoryLog
from .timers import BaseTimer, ThreadingTimer

logger = logging.getLogger(__name__)

RELIABLE_CONFIDENCE = 45  # Person reports must be strictly more confident than this


class ScanPhase(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"


class Trigger(str, Enum):
    """What started a scan cycle."""

    TIMER = "timer"
    MANUAL = "manual"


class Outcome(str, Enum):
    """Classified result of one analysis call."""

    SUCCESS = "success"
    QUOTA_EXCEEDED = "quota_exceeded"
    ERROR = "error"


class FrameSource:
    """Capture collaborator driven by the scheduler.

    `start()` is called exactly once when the scheduler activates and `stop()`
    exactly once when it deactivates; they never overlap.
    """

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def read(self) -> Optional[Frame]:
        """Return the latest frame, or None if none is available yet."""
        raise NotImplementedError


@dataclass
class ScheduleState:
    """Scan loop state. Only `ScanScheduler` mutates it; readers get copies.

    Attributes:
      active: True between activation and deactivation.
      phase: Current step of the scan cycle.
      current_interval_ms: Delay between scans; within [base, max].
      next_scan_at: Timer-clock time of the next scheduled scan (None when idle).
      busy: True while an analysis call is in flight.
      motion_level: Changed-pixel percentage measured on the last timer tick.
      capture_error: Why the camera could not be acquired; kept until the
        next activation attempt.
      last_event: Most recent event, for the "last result" display.
      analysis_count: Analysis calls issued since startup.
    """

    active: bool = False
    phase: ScanPhase = ScanPhase.IDLE
    current_interval_ms: int = Config.BASE_INTERVAL_MS
    next_scan_at: Optional[float] = None
    busy: bool = False
    motion_level: float = 0.0
    capture_error: Optional[str] = None
    last_event: Optional[DetectionEvent] = None
    analysis_count: int = 0


def next_interval(current_ms: int, outcome: Outcome, base_ms: int, max_ms: int = Config.MAX_INTERVAL_MS) -> int:
    """Backoff policy: double on quota rejection, reset on success, else keep."""
    if outcome is Outcome.SUCCESS:
        return base_ms
    if outcome is Outcome.QUOTA_EXCEEDED:
        return min(current_ms * 2, max_ms)
    return current_ms


def classify_result(result: AnalysisResult) -> DetectionEvent:
    """Turn a model reply into a PersonDetected or NoPerson event."""
    reliable = result.person_detected and result.confidence > RELIABLE_CONFIDENCE
    if reliable:
        return events.person_detected(result.description, result.confidence)
    return events.no_person(result.description, result.confidence)


def classify_outcome(future: "Future[AnalysisResult]") -> Tuple[Outcome, DetectionEvent]:
    """Classify a finished analysis call; unknown failures count as errors."""
    try:
        result = future.result()
    except QuotaExceededError as e:
        logger.warning("Analysis quota exceeded: %s", e)
        return Outcome.QUOTA_EXCEEDED, events.cooldown()
    except Exception as e:
        logger.warning("Analysis failed: %s", e)
        return Outcome.ERROR, events.analysis_error(str(e) or None)
    return Outcome.SUCCESS, classify_result(result)


class ScanScheduler:
    """Owns the scan cadence, the motion gate, the backoff and the history."""

    def __init__(
        self,
        source: FrameSource,
        client: AnalysisClient,
        alert_sink: Optional[AlertSink] = None,
        detector: Optional[MotionDetector] = None,
        timer: Optional[BaseTimer] = None,
        executor: Optional[Executor] = None,
        base_interval_ms: int = Config.BASE_INTERVAL_MS,
        max_interval_ms: int = Config.MAX_INTERVAL_MS,
        retry_ms: int = Config.NOT_READY_RETRY_MS,
    ) -> None:
        if not 0 < base_interval_ms <= max_interval_ms:
            raise ValueError("base interval must be positive and not above the max interval")
        self.source = source
        self.client = client
        self.alert_sink = alert_sink
        self.detector = detector or MotionDetector()
        self.timer = timer or ThreadingTimer()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="analysis")
        self.base_interval_ms = int(base_interval_ms)
        self.max_interval_ms = int(max_interval_ms)
        self.retry_ms = int(retry_ms)
        self.history = HistoryLog()
        self.state = ScheduleState(current_interval_ms=self.base_interval_ms)
        self._lock = threading.RLock()
        self._generation = 0
        self._timer_handle: Any = None
        self._arm_seq = 0  # Identifies the live timer callback
        self._observers: List[Callable[[DetectionEvent], None]] = []

    # Public API
    def subscribe(self, observer: Callable[[DetectionEvent], None]) -> None:
        """Register a callback receiving every emitted event."""
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: Callable[[DetectionEvent], None]) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def activate(self) -> bool:
        """Acquire the camera and arm the scan loop.

        Returns:
          True if armed (or already active); False if the camera could not be
          acquired, in which case `capture_error` explains why.
        """
        with self._lock:
            if self.state.active:
                return True
            self.state.capture_error = None
            try:
                self.source.start()
            except Exception as e:
                self.state.capture_error = str(e) or "camera unavailable"
                logger.error("Camera start failed: %s", self.state.capture_error)
                return False
            self._generation += 1
            self.detector.reset()
            self.history.clear()
            self.state.active = True
            self.state.phase = ScanPhase.ARMED
            self.state.current_interval_ms = self.base_interval_ms
            self.state.last_event = None
            self.state.motion_level = 0.0
            self._schedule_next()
            logger.info("Scan loop armed (interval=%d ms)", self.base_interval_ms)
            return True

    def deactivate(self) -> None:
        """Stop scanning, release the camera and forget all results.

        An analysis call still in flight runs to completion but its result is
        discarded.
        """
        with self._lock:
            if not self.state.active:
                return
            self._go_idle()
            try:
                self.source.stop()
            except Exception:
                logger.exception("Camera stop failed")
            if self.state.busy:
                logger.info("Analysis still in flight; its result will be discarded")
            logger.info("Scan loop disarmed")

    def trigger_manual(self) -> bool:
        """Analyse the current frame now, bypassing the motion gate.

        Returns:
          False when rejected (inactive, analysis in flight, no frame yet).
        """
        return self.run_cycle(Trigger.MANUAL)

    def run_cycle(self, trigger: Trigger) -> bool:
        """Run one scan cycle for a timer tick or a manual request.

        Both paths share the same `busy` guard. Timer ticks go through the
        motion gate; manual requests always go to analysis.

        Returns:
          True if the cycle produced an event or started an analysis call.
        """
        with self._lock:
            if not self.state.active:
                return False
            if self.state.busy:
                logger.info("Scan dropped (%s): analysis already in flight", trigger.value)
                if trigger is Trigger.TIMER:
                    self._arm(self.retry_ms / 1000.0)
                return False
            self.state.phase = ScanPhase.CAPTURING
            frame = self._read_frame()
            if frame is None or not frame.is_ready:
                return self._skip_not_ready(trigger)
            if trigger is Trigger.TIMER:
                reading = self.detector.detect(frame)
                if reading is None:
                    return self._skip_not_ready(trigger)
                self.state.motion_level = reading.level
                if not reading.has_motion:
                    self.state.phase = ScanPhase.ARMED
                    self._emit(events.static_scene())
                    self._schedule_next()
                    return True
            self._start_analysis(frame, trigger)
            return True

    def restart_source(self, reconfigure: Callable[[], None]) -> bool:
        """Apply a capture parameter change, releasing the camera first.

        While active the source is stopped, `reconfigure()` runs, and the
        source is started again; the motion baseline is dropped since the
        stream changed. If the camera cannot be reacquired the scheduler goes
        idle with `capture_error` set.

        Returns:
          False if the camera could not be reacquired.
        """
        with self._lock:
            if not self.state.active:
                reconfigure()
                return True
            try:
                self.source.stop()
            except Exception:
                logger.exception("Camera stop failed")
            reconfigure()
            self.detector.reset()
            try:
                self.source.start()
            except Exception as e:
                self._go_idle()
                self.state.capture_error = str(e) or "camera unavailable"
                logger.error("Camera restart failed: %s", self.state.capture_error)
                return False
            logger.info("Camera restarted with new parameters")
            return True

    def snapshot(self) -> ScheduleState:
        """Return a copy of the current state."""
        with self._lock:
            return dataclasses.replace(self.state)

    def get_history(self) -> List[DetectionEvent]:
        """Return recent events, newest first."""
        with self._lock:
            return self.history.snapshot()

    def time_until_next_scan(self) -> Optional[float]:
        """Seconds left before the next scheduled scan, or None when idle."""
        with self._lock:
            if not self.state.active or self.state.next_scan_at is None:
                return None
            return max(0.0, self.state.next_scan_at - self.timer.now())

    def shutdown(self) -> None:
        """Deactivate and release the worker pool if we created it."""
        self.deactivate()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # Internal
    def _on_tick(self, generation: int, seq: int) -> None:
        with self._lock:
            if generation != self._generation or not self.state.active:
                return
            if seq != self._arm_seq:
                # A callback that fired while being cancelled; a newer one is armed
                return
            self._timer_handle = None
            remaining = self.time_until_next_scan()
            if remaining:
                self._arm(remaining)
                return
            self.run_cycle(Trigger.TIMER)

    def _read_frame(self) -> Optional[Frame]:
        try:
            return self.source.read()
        except Exception:
            # Never let capture errors kill the scan loop
            logger.exception("Frame read failed")
            return None

    def _skip_not_ready(self, trigger: Trigger) -> bool:
        """Frame not available: skip without touching `next_scan_at`."""
        self.state.phase = ScanPhase.ARMED
        logger.debug("Frame not ready; %s scan skipped", trigger.value)
        if trigger is Trigger.TIMER:
            self._arm(self.retry_ms / 1000.0)
        return False

    def _start_analysis(self, frame: Frame, trigger: Trigger) -> None:
        generation = self._generation
        self.state.busy = True
        self.state.phase = ScanPhase.ANALYZING
        self.state.analysis_count += 1
        logger.info("Analyzing frame (%s trigger, motion=%.1f%%)", trigger.value, self.state.motion_level)
        try:
            future = self._executor.submit(self.client.detect, frame)
        except RuntimeError as e:
            # Executor refused the work (e.g. shut down); classify like any failure
            future = Future()
            future.set_exception(e)
        future.add_done_callback(functools.partial(self._on_analysis_done, generation))

    def _on_analysis_done(self, generation: int, future: "Future[AnalysisResult]") -> None:
        with self._lock:
            self.state.busy = False
            if generation != self._generation or not self.state.active:
                logger.info("Discarding late analysis result (scan loop was disarmed)")
                return
            outcome, event = classify_outcome(future)
            self.state.current_interval_ms = next_interval(
                self.state.current_interval_ms, outcome, self.base_interval_ms, self.max_interval_ms
            )
            self.state.phase = ScanPhase.ARMED
            self._emit(event)
            if event.status is DetectionStatus.PERSON_DETECTED:
                self._alert(event)
            self._schedule_next()

    def _schedule_next(self) -> None:
        delay_s = self.state.current_interval_ms / 1000.0
        self.state.next_scan_at = self.timer.now() + delay_s
        self._arm(delay_s)

    def _arm(self, delay_s: float) -> None:
        self._cancel_timer()
        self._arm_seq += 1
        self._timer_handle = self.timer.after(
            delay_s, functools.partial(self._on_tick, self._generation, self._arm_seq)
        )

    def _cancel_timer(self) -> None:
        if self._timer_handle is not None:
            self.timer.cancel(self._timer_handle)
            self._timer_handle = None

    def _go_idle(self) -> None:
        self._generation += 1
        self._cancel_timer()
        self.state.active = False
        self.state.phase = ScanPhase.IDLE
        self.state.next_scan_at = None
        self.state.current_interval_ms = self.base_interval_ms
        self.state.last_event = None
        self.state.motion_level = 0.0
        self.history.clear()
        self.detector.reset()

    def _emit(self, event: DetectionEvent) -> None:
        self.history.push(event)
        self.state.last_event = event
        logger.info("Scan result: %s - %s", event.status.value, event.message)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception("Event observer failed")

    def _alert(self, event: DetectionEvent) -> None:
        if self.alert_sink is None:
            return
        try:
            self.alert_sink.notify(event)
        except Exception:
            logger.exception("Alert sink failed")
