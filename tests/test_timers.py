"""
Tests for the threading-backed timer.
"""

import threading
import time

from sentinel_cam.timers import ThreadingTimer


class TestThreadingTimer:
    """Tests for one-shot callbacks on daemon threads."""

    def test_clock_is_monotonic(self):
        """now() never goes backwards."""
        timer = ThreadingTimer()
        first = timer.now()

        assert timer.now() >= first

    def test_callback_fires_once(self):
        """A scheduled callback runs on a daemon thread."""
        timer = ThreadingTimer()
        fired = threading.Event()

        handle = timer.after(0.05, fired.set)

        assert handle.daemon is True
        assert fired.wait(2.0)

    def test_cancel_prevents_callback(self):
        """A cancelled callback never runs."""
        timer = ThreadingTimer()
        calls = []

        handle = timer.after(0.2, lambda: calls.append(1))
        timer.cancel(handle)
        time.sleep(0.4)

        assert calls == []

    def test_negative_delay_fires_immediately(self):
        """Delays below zero are clamped."""
        fired = threading.Event()

        ThreadingTimer().after(-1.0, fired.set)

        assert fired.wait(2.0)
