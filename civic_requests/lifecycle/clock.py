"""
Time sources for the engine.

All timestamps are naive UTC datetimes, which is what the SQLAlchemy
``DateTime`` columns store.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Return the current naive UTC time."""
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock(Clock):
    """
    A clock that only moves when told to.

    Usage:
        clock = FrozenClock(datetime(2026, 3, 1, 9, 0))
        clock.advance(days=8)
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or SystemClock().now()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._now = moment

    def advance(self, delta: Optional[timedelta] = None, **kwargs: float) -> datetime:
        step = delta if delta is not None else timedelta(**kwargs)
        with self._lock:
            self._now = self._now + step
            return self._now
