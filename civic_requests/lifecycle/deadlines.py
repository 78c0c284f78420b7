"""
Auto-approval deadline calculator.

Each application gets a service-level deadline when it is submitted. If no
official decides the case before then, the deadline sweep approves it
automatically. The window depends on the application's priority and is
counted either in calendar days or in business days (weekends skipped).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from civic_requests.lifecycle.models import Application, Priority


def _is_weekend(d: datetime) -> bool:
    return d.weekday() >= 5


def add_business_days(start: datetime, days: int) -> datetime:
    """Add N business days to a start moment, skipping weekends."""
    current = start
    added = 0
    while added < days:
        current += timedelta(days=1)
        if _is_weekend(current):
            continue
        added += 1
    return current


def add_calendar_days(start: datetime, days: int) -> datetime:
    """Add N calendar days."""
    return start + timedelta(days=days)


# ---------------------------------------------------------------------------
# Service-level rules per priority
# ---------------------------------------------------------------------------

SLA_RULES: dict[Priority, dict] = {
    Priority.HIGH: {
        "days": 1,
        "day_type": "calendar",
        "notes": "Urgent requests are decided within 24 hours.",
    },
    Priority.MEDIUM: {
        "days": 3,
        "day_type": "calendar",
        "notes": "Standard escalated requests are decided within 3 days.",
    },
    Priority.NORMAL: {
        "days": 7,
        "day_type": "calendar",
        "notes": "Routine requests are decided within 7 days.",
    },
}


class DeadlineCalculator:
    """
    Calculate auto-approval deadlines.

    Usage:
        calc = DeadlineCalculator()
        deadline = calc.calculate(Priority.NORMAL, submitted_at)
        calc.is_due(application, now)
    """

    def __init__(
        self,
        sla_days: Optional[dict[Priority, int]] = None,
        day_type: Optional[str] = None,
    ) -> None:
        self.rules = {priority: dict(rule) for priority, rule in SLA_RULES.items()}
        for priority, days in (sla_days or {}).items():
            if days < 0:
                raise ValueError(f"SLA for {priority.value} must be non-negative, got {days}.")
            self.rules[priority]["days"] = days
        if day_type is not None:
            if day_type not in ("calendar", "business"):
                raise ValueError(f"Unknown SLA day type '{day_type}'. Use 'calendar' or 'business'.")
            for rule in self.rules.values():
                rule["day_type"] = day_type

    def calculate(self, priority: Priority, submitted_at: datetime) -> datetime:
        """Return the moment after which the application is auto-approved."""
        rule = self._get_rule(priority)
        if rule["day_type"] == "business":
            return add_business_days(submitted_at, rule["days"])
        return add_calendar_days(submitted_at, rule["days"])

    @staticmethod
    def is_due(application: Application, now: datetime) -> bool:
        """True when the application is still open and its deadline has passed."""
        return application.is_past_deadline(now)

    def get_priority_info(self, priority: Priority) -> dict:
        rule = self._get_rule(priority)
        return {
            "priority": priority.value,
            "days": rule["days"],
            "day_type": rule["day_type"],
            "notes": rule.get("notes", ""),
        }

    def list_priorities(self) -> list[str]:
        return [p.value for p in self.rules]

    def _get_rule(self, priority: Priority) -> dict:
        if priority in self.rules:
            return self.rules[priority]
        raise ValueError(
            f"No SLA rule for priority '{priority}'. "
            f"Known: {', '.join(self.list_priorities())}"
        )
