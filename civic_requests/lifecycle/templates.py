"""
Notification templates keyed by transition kind.

The table is an immutable mapping and ``render_notifications`` is a pure
function of (kind, application snapshot, recipients). Persisting the
result and delivering it elsewhere is the caller's business.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from jinja2 import BaseLoader, Environment, StrictUndefined

from civic_requests.lifecycle.models import ApplicationStatus, NotificationType


class TransitionKind(enum.Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEADLINE_APPROVED = "deadline_approved"
    ESCALATION_REOPENED = "escalation_reopened"
    INVESTIGATION_ALERT = "investigation_alert"


class Audience(enum.Enum):
    CITIZEN = "citizen"
    OVERSIGHT = "oversight"


@dataclass(frozen=True)
class NotificationTemplate:
    type: NotificationType
    audience: Audience
    title: str
    body: str
    flagged: bool = False


@dataclass(frozen=True)
class RenderedNotification:
    """A notification ready to be stored; no database identity yet."""

    recipient_id: str
    type: NotificationType
    title: str
    message: str
    application_id: Optional[str]
    flagged: bool = False


NOTIFICATION_TEMPLATES: Mapping[TransitionKind, NotificationTemplate] = MappingProxyType(
    {
        TransitionKind.ASSIGNED: NotificationTemplate(
            type=NotificationType.ASSIGNMENT,
            audience=Audience.CITIZEN,
            title="Application Assigned",
            body="Your application {{ tracking_code }} has been assigned to an official.",
        ),
        TransitionKind.IN_PROGRESS: NotificationTemplate(
            type=NotificationType.ASSIGNMENT,
            audience=Audience.CITIZEN,
            title="Application In Progress",
            body="Your application {{ tracking_code }} is now being processed.",
        ),
        TransitionKind.APPROVED: NotificationTemplate(
            type=NotificationType.APPROVAL,
            audience=Audience.CITIZEN,
            title="Application Approved",
            body=(
                "Your application {{ tracking_code }} has been approved."
                "{% if comment %} Remarks: {{ comment }}{% endif %}"
                " Please tell us whether your issue was resolved."
            ),
        ),
        TransitionKind.REJECTED: NotificationTemplate(
            type=NotificationType.FEEDBACK,
            audience=Audience.CITIZEN,
            title="Application Rejected",
            body=(
                "Your application {{ tracking_code }} has been rejected."
                "{% if comment %} Reason: {{ comment }}{% endif %}"
                " You can tell us whether this resolved your issue."
            ),
        ),
        TransitionKind.DEADLINE_APPROVED: NotificationTemplate(
            type=NotificationType.APPROVAL,
            audience=Audience.CITIZEN,
            title="Application Auto-Approved",
            body=(
                "No decision was taken on your application {{ tracking_code }} "
                "before its deadline ({{ auto_approval_deadline }}), so it has been "
                "approved automatically{% if documents_verified %}; your documents "
                "were verified by the system{% endif %}."
            ),
            flagged=True,
        ),
        TransitionKind.ESCALATION_REOPENED: NotificationTemplate(
            type=NotificationType.ASSIGNMENT,
            audience=Audience.CITIZEN,
            title="Application Reopened",
            body=(
                "Your application {{ tracking_code }} was reopened after your feedback "
                "{% if official_id %}and reassigned for review{% else %}and returned to "
                "the queue for a new official{% endif %} "
                "(escalation level {{ escalation_level }})."
            ),
        ),
        TransitionKind.INVESTIGATION_ALERT: NotificationTemplate(
            type=NotificationType.INVESTIGATION_ALERT,
            audience=Audience.OVERSIGHT,
            title="Repeated Escalation: {{ tracking_code }}",
            body=(
                "Application {{ tracking_code }} ({{ department }}) has been reported "
                "unresolved {{ escalation_level }} times. "
                "{% if previous_official_id %}Previous official: {{ previous_official_id }}. {% endif %}"
                "Current official: {{ official_id or 'unassigned' }}."
            ),
        ),
    }
)

STATUS_KINDS: Mapping[ApplicationStatus, TransitionKind] = MappingProxyType(
    {
        ApplicationStatus.ASSIGNED: TransitionKind.ASSIGNED,
        ApplicationStatus.IN_PROGRESS: TransitionKind.IN_PROGRESS,
        ApplicationStatus.APPROVED: TransitionKind.APPROVED,
        ApplicationStatus.REJECTED: TransitionKind.REJECTED,
        ApplicationStatus.AUTO_APPROVED: TransitionKind.DEADLINE_APPROVED,
        ApplicationStatus.AUTO_APPROVED_VERIFIED: TransitionKind.DEADLINE_APPROVED,
    }
)

_jinja_env = Environment(
    loader=BaseLoader(),
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
    autoescape=False,
)


def template_for(kind: TransitionKind) -> NotificationTemplate:
    return NOTIFICATION_TEMPLATES[kind]


def kind_for_status(status: ApplicationStatus) -> TransitionKind:
    try:
        return STATUS_KINDS[status]
    except KeyError:
        raise ValueError(f"No notification is defined for entering '{status.value}'.") from None


def render_notifications(
    kind: TransitionKind,
    application: Mapping[str, Any],
    oversight: Iterable[str] = (),
    **extra: Any,
) -> list[RenderedNotification]:
    """
    Render the notifications for one transition.

    ``application`` is a snapshot as produced by ``Application.to_dict()``.
    Citizen templates address the application's citizen; oversight
    templates address every id in ``oversight``.
    """
    template = template_for(kind)
    variables = {"comment": None, "previous_official_id": None}
    variables.update(application)
    variables.update(extra)

    title = _jinja_env.from_string(template.title).render(**variables)
    message = _jinja_env.from_string(template.body).render(**variables)

    if template.audience is Audience.CITIZEN:
        recipients = [application["citizen_id"]]
    else:
        recipients = list(dict.fromkeys(oversight))

    return [
        RenderedNotification(
            recipient_id=recipient,
            type=template.type,
            title=title,
            message=message,
            application_id=application.get("id"),
            flagged=template.flagged,
        )
        for recipient in recipients
    ]
