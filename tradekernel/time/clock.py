"""
Time abstraction layer for the trade kernel.

Provides an injectable clock that can be:
- Real-time (production)
- Simulated (tests, replay)

Every timestamp written to the audit log comes from the injected clock,
never from datetime.now() at the call site.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone



class Clock(ABC):
    """Abstract clock interface"""

    @abstractmethod
    def now(self) -> datetime:
        """Get current time (always UTC, timezone-aware)"""
        pass


class RealTimeClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SimulatedClock(Clock):
    """Simulated clock for tests and replays."""

    def __init__(self, start_time: datetime):
        """
        Args:
            start_time: Initial simulation time (must be timezone-aware)
        """
        if start_time.tzinfo is None:
            raise ValueError("start_time must be timezone-aware (UTC)")

        self._current_time = start_time.astimezone(timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current_time

    def advance(self, delta: timedelta) -> datetime:
        """Move simulated time forward. Negative deltas are rejected."""
        if delta < timedelta(0):
            raise ValueError(f"Cannot move clock backwards: {delta}")
        with self._lock:
            self._current_time = self._current_time + delta
            return self._current_time

    def set_time(self, new_time: datetime) -> None:
        if new_time.tzinfo is None:
            raise ValueError("new_time must be timezone-aware (UTC)")
        new_time = new_time.astimezone(timezone.utc)
        with self._lock:
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move clock backwards: {self._current_time} -> {new_time}"
                )
            self._current_time = new_time
