"""
Unassigned-queue browsing and self-assignment by officials.

Officials pull work: they page through the oldest unassigned applications
and accept one. Accepting is first-come first-served; whoever loses the
race gets ``AlreadyTaken`` carrying the winner's state.
"""

from __future__ import annotations

import logging
from typing import Iterator, Optional

from civic_requests.lifecycle.errors import AlreadyAssigned, AlreadyTaken
from civic_requests.lifecycle.models import Application
from civic_requests.lifecycle.state_machine import StateMachine, TransitionResult

logger = logging.getLogger(__name__)


class UnassignedQueue:
    """
    Lazy FIFO view of ``Submitted`` applications.

    Each iteration runs a fresh query, so the queue can be walked again
    and always reflects the current database.
    """

    def __init__(self, store, department: Optional[str] = None, batch_size: int = 50) -> None:
        self.store = store
        self.department = department
        self.batch_size = batch_size

    def __iter__(self) -> Iterator[Application]:
        return self.store.iter_unassigned(department=self.department, batch_size=self.batch_size)

    def first(self) -> Optional[Application]:
        return next(iter(self), None)


class AssignmentAllocator:
    """
    Hand unassigned applications to officials.

    Usage:
        allocator = AssignmentAllocator(state_machine)
        for app in allocator.list_unassigned("Health"):
            print(app.tracking_code)
        allocator.accept(app.id, "official-7")
    """

    def __init__(self, state_machine: StateMachine) -> None:
        self.sm = state_machine
        self.store = state_machine.store

    def list_unassigned(self, department: Optional[str] = None) -> UnassignedQueue:
        return UnassignedQueue(self.store, department=department)

    def accept(self, application_id: str, official_id: str) -> TransitionResult:
        """Take an unassigned application; raises ``AlreadyTaken`` on a lost race."""
        try:
            return self.sm.assign(application_id, official_id, actor_id=official_id)
        except AlreadyTaken:
            raise
        except AlreadyAssigned as exc:
            logger.info("%s lost the race for %s", official_id, application_id)
            raise AlreadyTaken(exc.message, current=exc.current) from exc

    def accept_next(
        self, official_id: str, department: Optional[str] = None
    ) -> Optional[TransitionResult]:
        """Accept the oldest application still free, skipping ones taken meanwhile."""
        for app in list(self.list_unassigned(department)):
            try:
                return self.accept(app.id, official_id)
            except AlreadyTaken:
                continue
        return None

    def workload(self, official_id: str) -> int:
        """Applications the official currently holds (Assigned or In Progress)."""
        return self.store.workload(official_id)
