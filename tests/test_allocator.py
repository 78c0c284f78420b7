"""
Tests for the unassigned queue and first-come first-served acceptance.
"""

import threading
from datetime import datetime

import pytest

from civic_requests.lifecycle.allocator import AssignmentAllocator
from civic_requests.lifecycle.clock import FrozenClock
from civic_requests.lifecycle.errors import AlreadyAssigned, AlreadyTaken
from civic_requests.lifecycle.models import ApplicationStatus
from civic_requests.lifecycle.state_machine import StateMachine
from civic_requests.lifecycle.store import ApplicationStore


START = datetime(2026, 3, 2, 9, 0)


class TestAssignmentAllocator:
    def setup_method(self):
        self.clock = FrozenClock(START)
        self.store = ApplicationStore("sqlite:///:memory:")
        self.sm = StateMachine(self.store, clock=self.clock)
        self.allocator = AssignmentAllocator(self.sm)
        self.apps = []
        for citizen, department in [("c1", "Health"), ("c2", "Water"), ("c3", "Health")]:
            self.apps.append(self.sm.submit(citizen, department, "Request").application)
            self.clock.advance(minutes=5)

    def test_queue_is_fifo(self):
        codes = [a.tracking_code for a in self.allocator.list_unassigned()]
        assert codes == [a.tracking_code for a in self.apps]

    def test_queue_is_restartable(self):
        queue = self.allocator.list_unassigned()
        first = [a.id for a in queue]
        second = [a.id for a in queue]
        assert first == second
        assert len(first) == 3

    def test_queue_reflects_new_state(self):
        queue = self.allocator.list_unassigned()
        self.allocator.accept(self.apps[0].id, "official-1")
        assert [a.id for a in queue] == [self.apps[1].id, self.apps[2].id]

    def test_department_filter(self):
        ids = [a.id for a in self.allocator.list_unassigned("Health")]
        assert ids == [self.apps[0].id, self.apps[2].id]
        assert self.allocator.list_unassigned("Roads").first() is None

    def test_accept(self):
        result = self.allocator.accept(self.apps[1].id, "official-1")
        assert result.application.status == ApplicationStatus.ASSIGNED
        assert result.history.actor_id == "official-1"

    def test_second_accept_is_already_taken(self):
        self.allocator.accept(self.apps[0].id, "official-1")
        with pytest.raises(AlreadyTaken) as exc_info:
            self.allocator.accept(self.apps[0].id, "official-2")
        assert isinstance(exc_info.value, AlreadyAssigned)
        assert exc_info.value.current["official_id"] == "official-1"
        assert self.store.get(self.apps[0].id).official_id == "official-1"

    def test_accept_next_takes_oldest(self):
        result = self.allocator.accept_next("official-1", department="Health")
        assert result.application.id == self.apps[0].id
        result = self.allocator.accept_next("official-2", department="Health")
        assert result.application.id == self.apps[2].id
        assert self.allocator.accept_next("official-3", department="Health") is None

    def test_workload(self):
        self.allocator.accept(self.apps[0].id, "official-1")
        self.allocator.accept(self.apps[1].id, "official-1")
        assert self.allocator.workload("official-1") == 2
        assert self.allocator.workload("official-2") == 0


class TestConcurrentAccept:
    def test_double_accept_race(self, tmp_path):
        store = ApplicationStore(f"sqlite:///{tmp_path / 'race.db'}")
        sm = StateMachine(store, clock=FrozenClock(START))
        allocator = AssignmentAllocator(sm)
        app = sm.submit("citizen-1", "Health", "Contested").application

        contenders = 8
        barrier = threading.Barrier(contenders)
        winners: list[str] = []
        losers: list[str] = []
        unexpected: list[BaseException] = []
        guard = threading.Lock()

        def contend(official_id: str) -> None:
            barrier.wait()
            try:
                allocator.accept(app.id, official_id)
            except AlreadyTaken:
                with guard:
                    losers.append(official_id)
            except BaseException as e:  # surfaced by the assertion below
                with guard:
                    unexpected.append(e)
            else:
                with guard:
                    winners.append(official_id)

        threads = [
            threading.Thread(target=contend, args=(f"official-{i}",)) for i in range(contenders)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert unexpected == []
        assert len(winners) == 1
        assert len(losers) == contenders - 1
        assert store.get(app.id).official_id == winners[0]
        assigned_rows = [h for h in store.history(app.id) if h.status == ApplicationStatus.ASSIGNED]
        assert len(assigned_rows) == 1
        store.dispose()

    def test_separate_state_machines_share_database(self, tmp_path):
        # Two engines without a shared lock registry still cannot both win.
        url = f"sqlite:///{tmp_path / 'cas.db'}"
        first = StateMachine(ApplicationStore(url), clock=FrozenClock(START))
        second = StateMachine(ApplicationStore(url), clock=FrozenClock(START))
        app = first.submit("citizen-1", "Health", "Contested").application

        AssignmentAllocator(first).accept(app.id, "official-1")
        with pytest.raises(AlreadyTaken):
            AssignmentAllocator(second).accept(app.id, "official-2")
