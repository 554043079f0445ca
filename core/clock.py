"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a testable clock abstraction for the export service.

- All timestamps (artifact names, retention cutoffs, credential
  ages, schedule countdowns) come from this clock
- All waits (backoff, materialization delay, schedule sleeps)
  go through this clock
- MockClock makes retry schedules deterministic in tests

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only
- Mockable for testing
- Sleeping never blocks the event loop

============================================================
"""

import asyncio
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Optional


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the service clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for the given number of seconds."""
        pass

    def format_iso(self, dt: Optional[datetime] = None) -> str:
        """Format datetime as ISO 8601."""
        dt = dt or self.now()
        return dt.isoformat()


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock using actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    sleep() does not wait: it records the requested delay,
    advances the mocked time and yields control once so other
    tasks get a chance to run.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        self._time = initial_time or datetime.now(timezone.utc)
        if self._time.tzinfo is None:
            self._time = self._time.replace(tzinfo=timezone.utc)
        self._lock = threading.Lock()
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        with self._lock:
            return self._time

    async def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self._time = self._time + timedelta(seconds=seconds)
        await asyncio.sleep(0)

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            if new_time.tzinfo is None:
                new_time = new_time.replace(tzinfo=timezone.utc)
            self._time = new_time

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


# ============================================================
# CANCELLABLE WAIT
# ============================================================

async def wait_or_stop(
    clock: ClockProtocol,
    seconds: float,
    stop_event: Optional[asyncio.Event] = None,
) -> bool:
    """
    Sleep on the clock unless the stop event fires first.

    Returns:
        True if the full delay elapsed, False if stopped
    """
    if stop_event is None:
        await clock.sleep(seconds)
        return True

    if stop_event.is_set():
        return False

    sleeper = asyncio.ensure_future(clock.sleep(seconds))
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait(
            {sleeper, stopper},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (sleeper, stopper):
            if not task.done():
                task.cancel()

    return not stop_event.is_set()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "wait_or_stop",
]
