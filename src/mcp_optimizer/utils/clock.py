"""Injectable time sources.

Scoring, cache expiry and recency decay all read time through a ``Clock`` so
tests can drive them deterministically with ``ManualClock``.
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Source of wall-clock and monotonic time."""

    @abstractmethod
    def now(self) -> datetime:
        """Current UTC time (timezone aware)."""

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic seconds, for measuring elapsed time."""


class SystemClock(Clock):
    """Clock backed by the operating system."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._monotonic = 0.0
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def monotonic(self) -> float:
        with self._lock:
            return self._monotonic

    def advance(self, seconds: float = 0.0, *, milliseconds: float = 0.0, days: float = 0.0) -> None:
        delta = seconds + milliseconds / 1000.0 + days * 86400.0
        with self._lock:
            self._now += timedelta(seconds=delta)
            self._monotonic += delta
