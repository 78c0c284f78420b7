"""
SLA alert report for open applications.

Classifies every open application by how close it is to automatic
approval. The report is read-only: it stores nothing and emits no
notifications, so it can be run as often as supervisors like.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from civic_requests.lifecycle.clock import Clock, SystemClock
from civic_requests.lifecycle.models import Application
from civic_requests.lifecycle.store import ApplicationStore


class AlertSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    URGENT = "urgent"
    OVERDUE = "overdue"


SEVERITY_ORDER = {
    AlertSeverity.OVERDUE: 0,
    AlertSeverity.URGENT: 1,
    AlertSeverity.WARNING: 2,
    AlertSeverity.INFO: 3,
}


@dataclass
class SLAAlert:
    """A single alert about an open application."""

    application_id: str
    tracking_code: str
    department: str
    official_id: Optional[str]
    status: str
    severity: AlertSeverity
    message: str
    hours_remaining: float
    deadline: datetime
    suggested_action: str

    def to_dict(self) -> dict:
        return {
            "application_id": self.application_id,
            "tracking_code": self.tracking_code,
            "department": self.department,
            "official_id": self.official_id,
            "status": self.status,
            "severity": self.severity.value,
            "message": self.message,
            "hours_remaining": round(self.hours_remaining, 1),
            "deadline": self.deadline.isoformat(),
            "suggested_action": self.suggested_action,
        }

    def format_text(self) -> str:
        prefix = f"[{self.severity.value.upper()}]"
        holder = self.official_id or "unassigned"
        return (
            f"{prefix} {self.tracking_code} ({self.department}, {self.status}, {holder})\n"
            f"  {self.message}\n"
            f"  Action: {self.suggested_action}\n"
        )


class SLAAlertEngine:
    """
    Scan open applications and report those near or past their deadline.

    Usage:
        engine = SLAAlertEngine(store)
        for alert in engine.check_all():
            print(alert.format_text())
    """

    # Hours before the auto-approval deadline to trigger each severity
    THRESHOLDS = {
        AlertSeverity.INFO: 48,
        AlertSeverity.WARNING: 24,
        AlertSeverity.URGENT: 6,
    }

    def __init__(
        self,
        store: ApplicationStore,
        clock: Optional[Clock] = None,
        thresholds: Optional[dict[str, float]] = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.thresholds = dict(self.THRESHOLDS)
        for name, hours in (thresholds or {}).items():
            self.thresholds[AlertSeverity(name)] = hours

    def check_all(self) -> list[SLAAlert]:
        """Check all open applications and return alerts sorted by severity."""
        now = self.clock.now()
        alerts = [
            alert
            for alert in (self._check_application(app, now) for app in self.store.open_applications())
            if alert is not None
        ]
        alerts.sort(key=lambda a: (SEVERITY_ORDER[a.severity], a.hours_remaining))
        return alerts

    def check_overdue(self) -> list[SLAAlert]:
        return [a for a in self.check_all() if a.severity == AlertSeverity.OVERDUE]

    def check_upcoming(self, within_hours: float = 24) -> list[SLAAlert]:
        return [a for a in self.check_all() if 0 < a.hours_remaining <= within_hours]

    def _check_application(self, app: Application, now: datetime) -> Optional[SLAAlert]:
        hours_left = app.time_until_deadline(now).total_seconds() / 3600

        if hours_left <= 0:
            return self._alert(
                app,
                AlertSeverity.OVERDUE,
                f"Deadline passed {abs(hours_left):.1f}h ago "
                f"({app.auto_approval_deadline.isoformat()}); the next sweep will auto-approve it.",
                hours_left,
                "Decide now or expect automatic approval.",
            )

        if hours_left <= self.thresholds[AlertSeverity.URGENT]:
            severity = AlertSeverity.URGENT
        elif hours_left <= self.thresholds[AlertSeverity.WARNING]:
            severity = AlertSeverity.WARNING
        elif hours_left <= self.thresholds[AlertSeverity.INFO]:
            severity = AlertSeverity.INFO
        else:
            return None

        return self._alert(
            app,
            severity,
            f"Auto-approval in {hours_left:.1f}h ({app.auto_approval_deadline.isoformat()}).",
            hours_left,
            self._upcoming_action(app, severity),
        )

    @staticmethod
    def _alert(
        app: Application,
        severity: AlertSeverity,
        message: str,
        hours_left: float,
        action: str,
    ) -> SLAAlert:
        return SLAAlert(
            application_id=app.id,
            tracking_code=app.tracking_code,
            department=app.department,
            official_id=app.official_id,
            status=app.status.value,
            severity=severity,
            message=message,
            hours_remaining=hours_left,
            deadline=app.auto_approval_deadline,
            suggested_action=action,
        )

    @staticmethod
    def _upcoming_action(app: Application, severity: AlertSeverity) -> str:
        if app.official_id is None:
            return "Nobody has accepted this application yet. Assign an official."
        if severity == AlertSeverity.URGENT:
            return f"Ask {app.official_id} for a decision today."
        if severity == AlertSeverity.WARNING:
            return f"Remind {app.official_id} of the approaching deadline."
        return "Monitor. No action required yet."
