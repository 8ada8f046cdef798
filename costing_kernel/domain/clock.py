"""
Injectable time source.

Services, the batch runner and the run log read the current instant from a
Clock they are given, never from ``datetime.now()``.  Month-to-date runs and
run-log timestamps therefore stay reproducible under test.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

_DEFAULT_START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of the current instant, always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at a given instant until moved explicitly.

    Naive start times are taken as UTC.
    """

    def __init__(self, start: datetime | None = None):
        self._current = _as_utc(start or _DEFAULT_START)

    def now(self) -> datetime:
        return self._current

    def set_time(self, instant: datetime) -> None:
        self._current = _as_utc(instant)

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward and return the new instant."""
        self._current += timedelta(seconds=seconds)
        return self._current


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
