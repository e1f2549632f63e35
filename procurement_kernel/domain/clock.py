"""
Injectable time source.

Approval deadlines, escalation checks, retry schedules and debounce
windows all read time from a ``Clock`` passed in by the caller, so tests
can move time explicitly instead of sleeping.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at ``start`` (default Wednesday 2024-01-03 09:00 UTC) and
    returns the same instant until ``advance`` or ``advance_hours`` is
    called.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or datetime(2024, 1, 3, 9, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_hours(self, hours: float) -> None:
        self.advance(hours * 3600)
