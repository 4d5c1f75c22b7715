"""Detection events and the bounded history of recent events."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Iterator, List, Optional

HISTORY_CAPACITY = 5


class DetectionStatus(str, Enum):
    """Outcome category of one scan cycle."""

    PERSON_DETECTED = "person_detected"
    NO_PERSON = "no_person"
    STATIC_SCENE = "static_scene"
    COOLDOWN = "cooldown"
    ERROR = "error"


@dataclass(frozen=True)
class DetectionEvent:
    """Immutable record of a scan outcome, as shown on the dashboard.

    Attributes:
      status: Outcome category.
      message: Short headline.
      description: Optional detail (model description or failure reason).
      confidence: Optional model confidence, 0-100.
      timestamp: Wall-clock seconds since the epoch.
    """

    status: DetectionStatus
    message: str
    description: Optional[str] = None
    confidence: Optional[float] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "description": self.description,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
        }


def person_detected(description: str, confidence: float) -> DetectionEvent:
    return DetectionEvent(DetectionStatus.PERSON_DETECTED, "AREA NOT SECURE - INTRUSION", description, confidence)


def no_person(description: str, confidence: float) -> DetectionEvent:
    return DetectionEvent(DetectionStatus.NO_PERSON, "AREA SECURE - PERIMETER CLEAR", description, confidence)


def static_scene() -> DetectionEvent:
    return DetectionEvent(DetectionStatus.STATIC_SCENE, "Static perimeter", "No changes in the scene.")


def cooldown() -> DetectionEvent:
    return DetectionEvent(DetectionStatus.COOLDOWN, "Adjusting scan frequency", "Saving cloud resources.")


def analysis_error(reason: Optional[str] = None) -> DetectionEvent:
    return DetectionEvent(DetectionStatus.ERROR, "Sensor error", reason or "Image analysis failed.")


class HistoryLog:
    """Newest-first record of the most recent events.

    Holds at most `capacity` events; pushing onto a full log drops the oldest.
    `push` and `clear` are the only ways to change it.
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        self._events: Deque[DetectionEvent] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    def push(self, event: DetectionEvent) -> None:
        self._events.appendleft(event)

    def clear(self) -> None:
        self._events.clear()

    def snapshot(self) -> List[DetectionEvent]:
        """Return the events as a list, newest first."""
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[DetectionEvent]:
        return iter(list(self._events))
