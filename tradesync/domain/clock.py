"""
Clock abstraction for live vs simulated time.

Every wall-clock read and every delay in the sync pipeline goes through a
Clock so that freshness decisions, incremental windows and request pacing
can be driven deterministically in tests.

Usage:
    # Live
    clock = SystemClock()
    now_ms = clock.now_ms()

    # Tests
    clock = SimulatedClock(start_time=datetime(2024, 6, 1, tzinfo=timezone.utc))
    await clock.sleep(0.2)   # advances simulated time, returns immediately
    clock.advance_by(timedelta(hours=25))
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

from ..utils.logging_setup import get_logger

logger = get_logger(__name__)


class Clock(ABC):
    """
    Abstract clock interface.

    All times are timezone-aware UTC datetimes.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Current time (UTC)."""
        ...

    @abstractmethod
    def timestamp(self) -> float:
        """Current Unix timestamp in seconds."""
        ...

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """
        Sleep for specified duration.

        In live mode, this performs real sleep.
        In simulated mode, this advances time immediately.
        """
        ...

    def now_ms(self) -> int:
        """Current time as epoch milliseconds."""
        return int(self.timestamp() * 1000)


class SystemClock(Clock):
    """Real system clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class SimulatedClock(Clock):
    """
    Simulated clock for tests.

    Time advances only when explicitly advanced via advance_to(), advance_by()
    or sleep().
    """

    def __init__(self, start_time: datetime):
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        self._current_time = start_time
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._current_time

    def timestamp(self) -> float:
        return self._current_time.timestamp()

    async def sleep(self, seconds: float) -> None:
        """Record the sleep and advance time without blocking."""
        self.sleeps.append(seconds)
        if seconds > 0:
            self.advance_by(timedelta(seconds=seconds))
        # Still yield to the loop so cancellation points behave like live mode
        await asyncio.sleep(0)

    def advance_to(self, new_time: datetime) -> None:
        """
        Advance clock to new time.

        Raises:
            ValueError: If new_time is before current time.
        """
        if new_time.tzinfo is None:
            new_time = new_time.replace(tzinfo=timezone.utc)
        if new_time < self._current_time:
            raise ValueError(f"Cannot advance backwards: {self._current_time} -> {new_time}")
        self._current_time = new_time

    def advance_by(self, delta: timedelta) -> None:
        self.advance_to(self._current_time + delta)

    def reset(self, new_time: datetime) -> None:
        """Reset clock to a new time (may move backwards)."""
        if new_time.tzinfo is None:
            new_time = new_time.replace(tzinfo=timezone.utc)
        self._current_time = new_time
        self.sleeps.clear()
        logger.debug(f"Simulated clock reset to {new_time}")
