"""
Clock abstraction for testable time-dependent code.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple


class Clock(ABC):
    """Abstract clock interface for dependency injection."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current timezone-aware UTC datetime."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Async sleep for specified seconds."""
        pass

    def today(self) -> date:
        """Calendar day used for daily counters."""
        return self.now().date()


class SystemClock(Clock):
    """Real system clock implementation."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class FakeClock(Clock):
    """Fake clock for testing with controllable time."""

    def __init__(self, initial_time: Optional[datetime] = None):
        self._current_time = initial_time or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        self._sleepers: List[Tuple[datetime, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._current_time

    async def sleep(self, seconds: float) -> None:
        """Park until advance() moves time past the wake time."""
        wake_time = self._current_time + timedelta(seconds=seconds)
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((wake_time, future))
        await future

    def advance(self, seconds: float = 0, milliseconds: float = 0) -> None:
        """Advance fake time and wake any sleepers that are due."""
        self._current_time += timedelta(seconds=seconds, milliseconds=milliseconds)
        self._wake_sleepers()

    def set_time(self, when: datetime) -> None:
        self._current_time = when
        self._wake_sleepers()

    @property
    def sleeper_count(self) -> int:
        return sum(1 for _, future in self._sleepers if not future.done())

    def _wake_sleepers(self) -> None:
        still_sleeping = []

        for wake_time, future in self._sleepers:
            if future.done():
                continue
            if wake_time <= self._current_time:
                future.set_result(None)
            else:
                still_sleeping.append((wake_time, future))

        self._sleepers = still_sleeping
