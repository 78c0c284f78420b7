"""
Per-application serialization.

Every write for a given application id runs while holding that id's lock.
Different ids never contend, so there is no global lock. A lock lives only
while some thread holds or waits for it, so the registry stays as small as
the number of applications in flight.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator


@dataclass
class _LockEntry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class ApplicationLocks:
    """
    Registry of re-entrant locks keyed by application id.

    Usage:
        locks = ApplicationLocks()
        with locks.hold(application_id):
            ...
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _LockEntry] = {}

    @contextmanager
    def hold(self, application_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(application_id)
            if entry is None:
                entry = self._locks[application_id] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[application_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
