"""
Injectable time source.

Services take a ``Clock`` instead of calling ``datetime.now()``: run
start/completion stamps and the default time of a receipt or a reversal
all come from it.  ``SystemClock`` is the only implementation that reads
the wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock for tests; only ``advance()`` moves it."""

    def __init__(self, start: datetime | None = None):
        self._current = start or datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)
