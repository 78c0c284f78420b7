"""
Tests for the engine config loader and the WorkflowService facade.
"""

import json
from datetime import datetime, timedelta

import pytest

from civic_requests.config import EngineConfig, load_engine_config
from civic_requests.lifecycle.clock import FrozenClock
from civic_requests.lifecycle.errors import NotFound
from civic_requests.lifecycle.store import ApplicationStore
from civic_requests.lifecycle.models import ApplicationStatus, NotificationType, Priority
from civic_requests.notify.dispatcher import NotificationSink
from civic_requests.service import WorkflowService


START = datetime(2026, 3, 2, 9, 0)


class RecordingSink(NotificationSink):
    name = "recording"

    def __init__(self):
        self.received = []

    def deliver(self, notification):
        self.received.append(notification)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestEngineConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CIVIC_DB_URL", raising=False)
        config = load_engine_config()
        assert config.db_url == "sqlite:///civic_requests.db"
        assert config.sla_days[Priority.NORMAL] == 7
        assert config.investigation_threshold == 2
        assert config.retry.max_retries == 3

    def test_load_from_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CIVIC_DB_URL", raising=False)
        monkeypatch.setenv("GATEWAY_TOKEN", "s3cret")
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({
            "db_url": "sqlite:///engine.db",
            "sla_days": {"high": 2, "Normal": 10},
            "sla_day_type": "business",
            "investigation_threshold": 3,
            "oversight_recipients": ["admin-1"],
            "webhook_url": "https://gateway.example/notify",
            "webhook_token_env": "GATEWAY_TOKEN",
            "retry": {"max_retries": 5},
            "alert_thresholds_hours": {"urgent": 12},
        }), encoding="utf-8")

        config = load_engine_config(path)
        assert config.db_url == "sqlite:///engine.db"
        assert config.sla_days == {Priority.HIGH: 2, Priority.MEDIUM: 3, Priority.NORMAL: 10}
        assert config.sla_day_type == "business"
        assert config.investigation_threshold == 3
        assert config.oversight_recipients == ["admin-1"]
        assert config.webhook_token == "s3cret"
        assert config.retry.max_retries == 5
        assert config.alert_thresholds_hours == {"info": 48, "warning": 24, "urgent": 12}

    def test_env_overrides_db_url(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CIVIC_DB_URL", "sqlite:///from-env.db")
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"db_url": "sqlite:///from-file.db"}), encoding="utf-8")
        assert load_engine_config(path).db_url == "sqlite:///from-env.db"

    def test_missing_token_env_means_no_token(self, tmp_path, monkeypatch):
        monkeypatch.delenv("UNSET_TOKEN", raising=False)
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"webhook_token_env": "UNSET_TOKEN"}), encoding="utf-8")
        assert load_engine_config(path).webhook_token == ""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_engine_config(tmp_path / "nope.json")

    def test_unknown_priority(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"sla_days": {"Critical": 1}}), encoding="utf-8")
        with pytest.raises(ValueError, match="Unknown priority"):
            load_engine_config(path)

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            EngineConfig(investigation_threshold=0)


# ---------------------------------------------------------------------------
# WorkflowService
# ---------------------------------------------------------------------------

class TestWorkflowService:
    def setup_method(self):
        self.clock = FrozenClock(START)
        self.sink = RecordingSink()
        config = EngineConfig(
            db_url="sqlite:///:memory:",
            oversight_recipients=["admin-1"],
            investigation_threshold=1,
        )
        self.svc = WorkflowService.from_config(
            config, clock=self.clock, sinks=[self.sink], start_dispatcher=False
        )
        self.svc.register_official("official-1", department="Health", hierarchy_level=1)
        self.svc.register_official("official-2", department="Health", hierarchy_level=2)

    def teardown_method(self):
        self.svc.close()

    def test_end_to_end(self):
        app = self.svc.submit("citizen-1", "Health", "Clinic closed", priority="Medium").application
        assert app.auto_approval_deadline == START + timedelta(days=3)
        assert [a.id for a in self.svc.list_unassigned("Health")] == [app.id]

        self.svc.accept(app.id, "official-1")
        self.svc.transition(app.id, "official-1", "In Progress")
        self.svc.transition(app.id, "official-1", "Approved", "Clinic reopened")
        assert self.svc.feedback_eligible(app.id)

        outcome = self.svc.submit_feedback(app.id, "citizen-1", is_solved=False, rating=2)
        assert outcome.application.official_id == "official-2"
        assert outcome.application.escalation_level == 1

        self.svc.verify_feedback(outcome.feedback.id)
        assert self.svc.get_feedback(app.id)[0].verified is True
        assert self.svc.official_performance("official-1").average_rating == 2.0

        history = self.svc.get_history(app.id)
        assert [h.status for h in history][-1] == ApplicationStatus.ASSIGNED
        alerts = self.svc.get_notifications("admin-1")
        assert [n.type for n in alerts] == [NotificationType.INVESTIGATION_ALERT]

    def test_committed_notifications_reach_sinks(self):
        app = self.svc.submit("citizen-1", "Health", "Clinic closed").application
        self.svc.assign(app.id, "official-1", actor_id="supervisor-1")
        self.svc.dispatcher.drain()
        assert len(self.sink.received) == 1
        stored = self.svc.get_notifications("citizen-1")[0]
        assert self.sink.received[0]["id"] == stored.id
        assert self.svc.get_history(app.id)[-1].actor_id == "supervisor-1"

    def test_lookup_by_tracking_code(self):
        app = self.svc.submit("citizen-1", "Health", "Clinic closed").application
        assert self.svc.get_by_tracking_code(app.tracking_code).id == app.id
        assert self.svc.resolve(app.tracking_code).id == app.id
        assert self.svc.resolve(app.id).id == app.id
        with pytest.raises(NotFound):
            self.svc.get_application("missing")
        with pytest.raises(NotFound):
            self.svc.resolve("APP-1999-000001")

    def test_sweep_and_stats(self):
        app = self.svc.submit("citizen-1", "Health", "Clinic closed", priority="High").application
        self.clock.advance(hours=20)
        assert [a.application_id for a in self.svc.sla_alerts()] == [app.id]
        self.clock.advance(hours=5)
        assert self.svc.get_stats()["overdue"] == 1
        report = self.svc.run_deadline_sweep()
        assert report.auto_approved == [app.id]
        stats = self.svc.get_stats()
        assert stats["overdue"] == 0
        assert stats["by_status"] == {"Auto-Approved": 1}

    def test_mark_read(self):
        app = self.svc.submit("citizen-1", "Health", "Clinic closed").application
        self.svc.accept(app.id, "official-1")
        note = self.svc.get_notifications("citizen-1", unread_only=True)[0]
        self.svc.mark_read(note.id)
        assert self.svc.get_notifications("citizen-1", unread_only=True) == []

    def test_document_verification_changes_auto_approval_variant(self):
        app = self.svc.submit("citizen-1", "Health", "Clinic closed").application
        self.svc.record_document_verification(app.id)
        self.clock.advance(days=8)
        self.svc.run_deadline_sweep()
        assert self.svc.get_application(app.id).status == ApplicationStatus.AUTO_APPROVED_VERIFIED


class TestDefaultDispatcher:
    def test_own_dispatcher_is_started_and_stopped(self):
        svc = WorkflowService(ApplicationStore("sqlite:///:memory:"), clock=FrozenClock(START))
        try:
            assert svc.dispatcher.running
            app = svc.submit("citizen-1", "Health", "Clinic closed").application
            svc.assign(app.id, "official-1")
            svc.dispatcher.drain()
            assert svc.dispatcher.delivered == 1
            assert svc.dispatcher.pending() == 0
        finally:
            svc.close()
        assert not svc.dispatcher.running
