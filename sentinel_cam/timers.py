"""Timer capability used by the scan scheduler.

The scheduler never sleeps or reads the clock itself; it asks a timer for
`now()` and one-shot callbacks via `after()`. Tests substitute a manual clock.
"""

import threading
import time
from typing import Any, Callable


class BaseTimer:
    """Abstract one-shot timer with a monotonic clock."""

    def now(self) -> float:
        """Return the current time in seconds (monotonic)."""
        raise NotImplementedError

    def after(self, delay_s: float, fn: Callable[[], None]) -> Any:
        """Call `fn` once after `delay_s` seconds and return a cancel handle."""
        raise NotImplementedError

    def cancel(self, handle: Any) -> None:
        """Cancel a pending callback; no-op if it already ran."""
        raise NotImplementedError


class ThreadingTimer(BaseTimer):
    """Timer backed by daemon `threading.Timer` threads."""

    def now(self) -> float:
        return time.monotonic()

    def after(self, delay_s: float, fn: Callable[[], None]) -> threading.Timer:
        t = threading.Timer(max(0.0, float(delay_s)), fn)
        t.daemon = True  # Never block interpreter exit
        t.start()
        return t

    def cancel(self, handle: threading.Timer) -> None:
        handle.cancel()
