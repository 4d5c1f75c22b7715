"""Alert sinks invoked when a scan reports a person."""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from .config import Config
from .events import DetectionEvent

logger = logging.getLogger(__name__)


class AlertSink:
    """Receives "person detected" events, once per event."""

    def notify(self, event: DetectionEvent) -> None:
        raise NotImplementedError


class AlertBoard(AlertSink):
    """Alert state shown by the dashboard.

    Remembers the last alert so the web UI can raise a banner (and play the
    siren when sound is enabled) for `banner_sec` seconds after it.
    """

    def __init__(self, sound_enabled: bool = Config.SOUND_ENABLED, banner_sec: float = Config.ALERT_BANNER_SEC) -> None:
        self.sound_enabled = bool(sound_enabled)
        self.banner_sec = float(banner_sec)
        self.alert_count = 0
        self.last_alert: Optional[DetectionEvent] = None
        self.last_alert_ts = 0.0
        self._lock = threading.Lock()

    def notify(self, event: DetectionEvent) -> None:
        with self._lock:
            self.alert_count += 1
            self.last_alert = event
            self.last_alert_ts = time.time()
        logger.warning(
            "ALERT: %s (confidence=%s, sound=%s): %s",
            event.message,
            event.confidence,
            "on" if self.sound_enabled else "off",
            event.description,
        )

    def set_sound(self, enabled: bool) -> None:
        self.sound_enabled = bool(enabled)
        logger.info("Alarm sound %s", "enabled" if self.sound_enabled else "muted")

    def is_alert_active(self, now: Optional[float] = None) -> bool:
        """True while the last alert is younger than the banner lifetime."""
        if self.last_alert is None:
            return False
        now = time.time() if now is None else now
        return (now - self.last_alert_ts) <= self.banner_sec

    def clear(self) -> None:
        with self._lock:
            self.last_alert = None
            self.last_alert_ts = 0.0
