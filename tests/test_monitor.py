"""
Tests for the deadline sweeper and the SLA alert report.
"""

import time
from datetime import datetime, timedelta

import pytest

from civic_requests.lifecycle.clock import FrozenClock
from civic_requests.lifecycle.escalation import EscalationController
from civic_requests.lifecycle.models import ApplicationStatus
from civic_requests.lifecycle.state_machine import StateMachine
from civic_requests.lifecycle.store import ApplicationStore
from civic_requests.monitor.alerts import AlertSeverity, SLAAlertEngine
from civic_requests.monitor.sweeper import DeadlineSweeper


START = datetime(2026, 3, 2, 9, 0)


# ---------------------------------------------------------------------------
# Deadline sweeper
# ---------------------------------------------------------------------------

class TestDeadlineSweeper:
    def setup_method(self):
        self.clock = FrozenClock(START)
        self.store = ApplicationStore("sqlite:///:memory:")
        self.sm = StateMachine(self.store, clock=self.clock)
        self.sweeper = DeadlineSweeper(self.sm, interval_seconds=60)

    def test_one_failure_does_not_stop_the_sweep(self, monkeypatch):
        bad = self.sm.submit("citizen-1", "Health", "First").application
        good = self.sm.submit("citizen-2", "Health", "Second").application
        self.clock.advance(days=8)
        original = self.sm.force_auto_approve

        def flaky(application_id, now=None):
            if application_id == bad.id:
                raise RuntimeError("row locked")
            return original(application_id, now=now)

        monkeypatch.setattr(self.sm, "force_auto_approve", flaky)
        report = self.sweeper.sweep_once()

        assert report.examined == 2
        assert report.failed == 1
        assert report.errors[0].application_id == bad.id
        assert "row locked" in report.errors[0].error
        assert report.auto_approved == [good.id]
        assert self.store.get(bad.id).status == ApplicationStatus.SUBMITTED
        assert self.store.get(good.id).status == ApplicationStatus.AUTO_APPROVED

    def test_skipped_when_decided_after_collection(self, monkeypatch):
        app = self.sm.submit("citizen-1", "Health", "Race").application
        self.sm.assign(app.id, "official-1")
        self.clock.advance(days=8)
        original_due = self.store.due_for_auto_approval

        def due_then_decided(now):
            ids = original_due(now)
            self.sm.transition(app.id, "official-1", ApplicationStatus.REJECTED)
            return ids

        monkeypatch.setattr(self.store, "due_for_auto_approval", due_then_decided)
        report = self.sweeper.sweep_once()
        assert report.skipped == 1
        assert report.auto_approved == []
        assert self.store.get(app.id).status == ApplicationStatus.REJECTED

    def test_summary(self):
        self.sm.submit("citizen-1", "Health", "Overdue").application
        self.clock.advance(days=8)
        report = self.sweeper.sweep_once()
        text = report.summary()
        assert "Deadline Sweep" in text
        assert "Auto-approved: 1" in text
        assert self.sweeper.last_report is report

    def test_reopen_after_deadline_is_approved_again(self):
        # The deadline is fixed at submission, so a reopen past it is swept at once.
        app = self.sm.submit("citizen-1", "Health", "Overdue").application
        self.sm.assign(app.id, "official-1")
        self.clock.advance(days=8)
        self.sweeper.sweep_once()
        self.store.add_official("official-2", department="Health")
        EscalationController(self.sm).submit_feedback(app.id, "citizen-1", False, 1)
        assert self.store.get(app.id).status == ApplicationStatus.ASSIGNED

        report = self.sweeper.sweep_once()

        swept = self.store.get(app.id)
        assert report.auto_approved == [app.id]
        assert swept.status == ApplicationStatus.AUTO_APPROVED
        assert swept.escalation_level == 1
        assert swept.official_id == "official-2"

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            DeadlineSweeper(self.sm, interval_seconds=0)

    def test_background_thread(self, tmp_path):
        store = ApplicationStore(f"sqlite:///{tmp_path / 'sweep.db'}")
        clock = FrozenClock(START)
        sm = StateMachine(store, clock=clock)
        app = sm.submit("citizen-1", "Health", "Overdue").application
        clock.advance(days=8)

        sweeper = DeadlineSweeper(sm, interval_seconds=0.05)
        sweeper.start()
        try:
            for _ in range(200):
                if sweeper.last_report is not None:
                    break
                time.sleep(0.01)
        finally:
            sweeper.stop()

        assert not sweeper.running
        assert sweeper.last_report is not None
        assert store.get(app.id).status == ApplicationStatus.AUTO_APPROVED
        store.dispose()


# ---------------------------------------------------------------------------
# SLA alerts
# ---------------------------------------------------------------------------

class TestSLAAlertEngine:
    def setup_method(self):
        self.clock = FrozenClock(START)
        self.store = ApplicationStore("sqlite:///:memory:")
        self.sm = StateMachine(self.store, clock=self.clock)
        self.engine = SLAAlertEngine(self.store, clock=self.clock)

    def test_far_deadline_no_alert(self):
        self.sm.submit("citizen-1", "Health", "Routine")
        assert self.engine.check_all() == []

    def test_severity_by_hours_left(self):
        app = self.sm.submit("citizen-1", "Health", "Urgent", priority="High").application
        self.clock.advance(hours=20)
        [alert] = self.engine.check_all()
        assert alert.severity == AlertSeverity.URGENT
        assert alert.tracking_code == app.tracking_code
        assert alert.hours_remaining == pytest.approx(4.0)
        assert "Assign an official" in alert.suggested_action

    def test_warning_and_info(self):
        self.sm.submit("citizen-1", "Health", "Medium", priority="Medium")
        self.clock.advance(days=1, hours=12)
        [alert] = self.engine.check_all()
        assert alert.severity == AlertSeverity.INFO
        self.clock.advance(hours=14)
        [alert] = self.engine.check_all()
        assert alert.severity == AlertSeverity.WARNING

    def test_overdue_sorted_first(self):
        self.sm.submit("citizen-1", "Health", "High", priority="High")
        self.sm.submit("citizen-2", "Health", "Medium", priority="Medium")
        self.clock.advance(days=2)
        alerts = self.engine.check_all()
        assert [a.severity for a in alerts] == [AlertSeverity.OVERDUE, AlertSeverity.WARNING]
        assert len(self.engine.check_overdue()) == 1
        assert len(self.engine.check_upcoming(within_hours=24)) == 1

    def test_decided_applications_ignored(self):
        app = self.sm.submit("citizen-1", "Health", "High", priority="High").application
        self.sm.assign(app.id, "official-1")
        self.sm.transition(app.id, "official-1", ApplicationStatus.APPROVED)
        self.clock.advance(days=3)
        assert self.engine.check_all() == []

    def test_report_is_read_only(self):
        app = self.sm.submit("citizen-1", "Health", "High", priority="High").application
        self.clock.advance(days=2)
        self.engine.check_all()
        assert self.store.notifications("citizen-1") == []
        assert self.store.get(app.id).status == ApplicationStatus.SUBMITTED

    def test_custom_thresholds(self):
        engine = SLAAlertEngine(self.store, clock=self.clock, thresholds={"info": 200})
        self.sm.submit("citizen-1", "Health", "Routine")
        [alert] = engine.check_all()
        assert alert.severity == AlertSeverity.INFO

    def test_format_and_dict(self):
        app = self.sm.submit("citizen-1", "Health", "High", priority="High").application
        self.sm.assign(app.id, "official-1")
        self.clock.advance(hours=20)
        [alert] = self.engine.check_all()
        assert "[URGENT]" in alert.format_text()
        assert "official-1" in alert.format_text()
        data = alert.to_dict()
        assert data["severity"] == "urgent"
        assert data["deadline"] == (START + timedelta(days=1)).isoformat()
