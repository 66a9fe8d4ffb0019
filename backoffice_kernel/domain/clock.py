"""
Clock -- injectable time source for services and caches.

Services stamp created_at/updated_at, pick the document-number year and
expire cache entries through a Clock, never through ``datetime.now()``.
Tests drive time explicitly with DeterministicClock.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that reads the wall
    clock.
"""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"Clock time must be timezone-aware, got {value!r}")
    return value.astimezone(timezone.utc)


class Clock(ABC):
    """``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock.

    Time stands still until ``advance``, ``tick`` or ``set_time``.  One
    instance may be shared by worker threads of the same AccountingCore.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._lock = threading.Lock()
        self._current = _as_utc(fixed_time) if fixed_time is not None else DEFAULT_TEST_TIME

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set_time(self, time: datetime) -> None:
        value = _as_utc(time)
        with self._lock:
            self._current = value

    def advance(self, seconds: float = 1) -> datetime:
        if seconds < 0:
            raise ValueError(f"Clock cannot move backwards ({seconds}s)")
        with self._lock:
            self._current += timedelta(seconds=seconds)
            return self._current

    def tick(self) -> datetime:
        """Advance by one second and return the new time."""
        return self.advance(1)
