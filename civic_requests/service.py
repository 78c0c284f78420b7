"""
Workflow service: the single entry point an API layer or the CLI talks to.

Wires the store, state machine, escalation controller, allocator, deadline
sweeper and notification dispatcher together from one ``EngineConfig``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from civic_requests.config import EngineConfig
from civic_requests.lifecycle.allocator import AssignmentAllocator, UnassignedQueue
from civic_requests.lifecycle.clock import Clock, SystemClock
from civic_requests.lifecycle.deadlines import DeadlineCalculator
from civic_requests.lifecycle.errors import NotFound
from civic_requests.lifecycle.escalation import EscalationController, FeedbackOutcome
from civic_requests.lifecycle.locks import ApplicationLocks
from civic_requests.lifecycle.models import (
    Application,
    ApplicationHistory,
    ApplicationStatus,
    Feedback,
    Notification,
    Official,
    Priority,
)
from civic_requests.lifecycle.state_machine import StateMachine, TransitionResult
from civic_requests.lifecycle.store import ApplicationStore
from civic_requests.monitor.alerts import SLAAlert, SLAAlertEngine
from civic_requests.monitor.performance import OfficialPerformance, official_performance
from civic_requests.monitor.sweeper import DeadlineSweeper, SweepReport
from civic_requests.notify.dispatcher import LogSink, NotificationDispatcher, NotificationSink
from civic_requests.notify.webhook import WebhookConfig, WebhookSink

logger = logging.getLogger(__name__)


class WorkflowService:
    """
    Facade over the lifecycle engine.

    Usage:
        with WorkflowService.from_config(load_engine_config("engine.json")) as svc:
            app = svc.submit("citizen-1", "Health", "Clinic closed").application
            svc.accept(app.id, "official-7")
            svc.transition(app.id, "official-7", "Approved", "Reopened on Monday")
            svc.submit_feedback(app.id, "citizen-1", is_solved=False, rating=2)
    """

    def __init__(
        self,
        store: ApplicationStore,
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.config = config or EngineConfig(db_url=store.db_url)
        self.store = store
        self.clock = clock or SystemClock()
        if dispatcher is None:
            dispatcher = NotificationDispatcher(retry=self.config.retry)
            dispatcher.start()
        self.dispatcher = dispatcher
        self.locks = ApplicationLocks()
        self.deadlines = DeadlineCalculator(
            sla_days=self.config.sla_days, day_type=self.config.sla_day_type
        )
        self.state_machine = StateMachine(
            store,
            clock=self.clock,
            locks=self.locks,
            deadlines=self.deadlines,
            publisher=self.dispatcher.publish,
            tracking_prefix=self.config.tracking_prefix,
            investigation_threshold=self.config.investigation_threshold,
            oversight_recipients=self.config.oversight_recipients,
        )
        self.escalation = EscalationController(self.state_machine)
        self.allocator = AssignmentAllocator(self.state_machine)
        self.sweeper = DeadlineSweeper(
            self.state_machine,
            clock=self.clock,
            interval_seconds=self.config.sweep_interval_seconds,
        )
        self.alerts = SLAAlertEngine(
            store, clock=self.clock, thresholds=self.config.alert_thresholds_hours
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        clock: Optional[Clock] = None,
        sinks: Optional[Iterable[NotificationSink]] = None,
        start_dispatcher: bool = True,
    ) -> WorkflowService:
        if sinks is None:
            sinks = [LogSink()]
            if config.webhook_url:
                sinks.append(
                    WebhookSink(WebhookConfig(url=config.webhook_url, token=config.webhook_token))
                )
        dispatcher = NotificationDispatcher(sinks, retry=config.retry)
        if start_dispatcher:
            dispatcher.start()
        return cls(ApplicationStore(config.db_url), config=config, clock=clock, dispatcher=dispatcher)

    def close(self) -> None:
        self.sweeper.stop()
        self.dispatcher.drain()
        self.dispatcher.close()
        self.store.dispose()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # ---- Citizen operations ----

    def submit(
        self,
        citizen_id: str,
        department: str,
        description: str,
        priority: str | Priority = "Normal",
        sub_department: Optional[str] = None,
        remarks: Optional[str] = None,
        documents_verified: bool = False,
    ) -> TransitionResult:
        return self.state_machine.submit(
            citizen_id,
            department,
            description,
            priority=priority,
            sub_department=sub_department,
            remarks=remarks,
            documents_verified=documents_verified,
        )

    def submit_feedback(
        self,
        application_id: str,
        citizen_id: str,
        is_solved: bool,
        rating: int,
        comment: Optional[str] = None,
        expected_status: Optional[str | ApplicationStatus] = None,
    ) -> FeedbackOutcome:
        return self.escalation.submit_feedback(
            application_id,
            citizen_id,
            is_solved,
            rating,
            comment=comment,
            expected_status=expected_status,
        )

    def verify_feedback(self, feedback_id: str) -> Feedback:
        return self.escalation.verify_feedback(feedback_id)

    def feedback_eligible(self, application_id: str) -> bool:
        return self.escalation.is_eligible(application_id)

    # ---- Official operations ----

    def accept(self, application_id: str, official_id: str) -> TransitionResult:
        return self.allocator.accept(application_id, official_id)

    def assign(
        self, application_id: str, official_id: str, actor_id: Optional[str] = None
    ) -> TransitionResult:
        return self.state_machine.assign(application_id, official_id, actor_id=actor_id)

    def transition(
        self,
        application_id: str,
        actor_id: str,
        new_status: str | ApplicationStatus,
        comment: Optional[str] = None,
    ) -> TransitionResult:
        return self.state_machine.transition(application_id, actor_id, new_status, comment)

    def record_document_verification(self, application_id: str) -> Application:
        return self.state_machine.record_document_verification(application_id)

    def list_unassigned(self, department: Optional[str] = None) -> UnassignedQueue:
        return self.allocator.list_unassigned(department)

    def register_official(
        self,
        official_id: str,
        department: Optional[str] = None,
        hierarchy_level: int = 1,
        full_name: Optional[str] = None,
        active: bool = True,
    ) -> Official:
        return self.store.add_official(
            official_id,
            department=department,
            hierarchy_level=hierarchy_level,
            full_name=full_name,
            active=active,
        )

    def official_performance(self, official_id: str) -> OfficialPerformance:
        return official_performance(self.store, official_id)

    # ---- Lookups ----

    def get_application(self, application_id: str) -> Application:
        app = self.store.get(application_id)
        if app is None:
            raise NotFound(f"Application {application_id} not found.")
        return app

    def get_by_tracking_code(self, tracking_code: str) -> Application:
        app = self.store.get_by_tracking_code(tracking_code)
        if app is None:
            raise NotFound(f"No application with tracking code {tracking_code}.")
        return app

    def resolve(self, reference: str) -> Application:
        """Find an application by id or tracking code."""
        app = self.store.get(reference) or self.store.get_by_tracking_code(reference)
        if app is None:
            raise NotFound(f"No application matches '{reference}'.")
        return app

    def get_history(self, application_id: str) -> list[ApplicationHistory]:
        return self.store.history(application_id)

    def get_feedback(self, application_id: str) -> list[Feedback]:
        return self.store.feedback_for(application_id)

    def get_notifications(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        return self.store.notifications(user_id, unread_only=unread_only)

    def mark_read(self, notification_id: str) -> Notification:
        return self.store.mark_read(notification_id)

    # ---- Monitoring ----

    def run_deadline_sweep(self) -> SweepReport:
        return self.sweeper.sweep_once()

    def start_sweeper(self) -> None:
        self.sweeper.start()

    def get_stats(self) -> dict:
        return self.store.get_stats(self.clock.now())

    def sla_alerts(self) -> list[SLAAlert]:
        return self.alerts.check_all()
