"""
Status state machine for citizen applications.

    Submitted -> Assigned -> In Progress -> {Approved | Rejected}
    Assigned  -> {Approved | Rejected}                  (fast track)
    any non-terminal -> Auto-Approved[ (verified)]     (deadline sweep only)
    terminal -> Assigned | Submitted                   (escalation reopen only)

Every transition updates the application, appends one history row and
stores its notifications inside a single database transaction. Delivery
of the stored notifications to outside channels happens after commit and
can never undo the transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from civic_requests.lifecycle.clock import Clock, SystemClock
from civic_requests.lifecycle.deadlines import DeadlineCalculator
from civic_requests.lifecycle.errors import (
    AlreadyAssigned,
    InvalidTransition,
    StaleState,
    ValidationError,
)
from civic_requests.lifecycle.locks import ApplicationLocks
from civic_requests.lifecycle.models import (
    APPROVAL_STATUSES,
    Application,
    ApplicationHistory,
    ApplicationStatus,
    Notification,
    Official,
    Priority,
    SYSTEM_ACTOR,
)
from civic_requests.lifecycle.store import ApplicationStore
from civic_requests.lifecycle.templates import (
    TransitionKind,
    kind_for_status,
    render_notifications,
)

logger = logging.getLogger(__name__)

Publisher = Callable[[list[dict[str, Any]]], None]


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.SUBMITTED: frozenset(),  # leaves only through assign()
    ApplicationStatus.ASSIGNED: frozenset(
        {
            ApplicationStatus.IN_PROGRESS,
            ApplicationStatus.APPROVED,
            ApplicationStatus.REJECTED,
        }
    ),
    ApplicationStatus.IN_PROGRESS: frozenset(
        {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}
    ),
    ApplicationStatus.APPROVED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
    ApplicationStatus.AUTO_APPROVED: frozenset(),
    ApplicationStatus.AUTO_APPROVED_VERIFIED: frozenset(),
}

MAX_TRACKING_CODE_ATTEMPTS = 5


def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
    """True when ``current -> target`` is an official-driven edge."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def auto_approval_status(documents_verified: bool) -> ApplicationStatus:
    if documents_verified:
        return ApplicationStatus.AUTO_APPROVED_VERIFIED
    return ApplicationStatus.AUTO_APPROVED


def parse_status(value: str | ApplicationStatus) -> ApplicationStatus:
    if isinstance(value, ApplicationStatus):
        return value
    try:
        return ApplicationStatus(value)
    except ValueError:
        options = ", ".join(s.value for s in ApplicationStatus)
        raise ValidationError(f"Unknown status '{value}'. Options: {options}") from None


def parse_priority(value: str | Priority | None) -> Priority:
    if value is None:
        return Priority.NORMAL
    if isinstance(value, Priority):
        return value
    for priority in Priority:
        if priority.value.lower() == str(value).lower():
            return priority
    options = ", ".join(p.value for p in Priority)
    raise ValidationError(f"Unknown priority '{value}'. Options: {options}")


@dataclass
class TransitionResult:
    """An application after a committed transition and what it emitted."""

    application: Application
    history: ApplicationHistory
    notifications: list[Notification]


class StateMachine:
    """
    Validate and apply status transitions.

    Usage:
        sm = StateMachine(ApplicationStore("sqlite:///:memory:"))
        app = sm.submit("citizen-1", "Health", "Clinic closed").application
        sm.assign(app.id, "official-7")
        sm.transition(app.id, "official-7", ApplicationStatus.APPROVED, "Documents in order")
    """

    def __init__(
        self,
        store: ApplicationStore,
        clock: Optional[Clock] = None,
        locks: Optional[ApplicationLocks] = None,
        deadlines: Optional[DeadlineCalculator] = None,
        publisher: Optional[Publisher] = None,
        tracking_prefix: str = "APP",
        investigation_threshold: int = 2,
        oversight_recipients: Iterable[str] = (),
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.locks = locks or ApplicationLocks()
        self.deadlines = deadlines or DeadlineCalculator()
        self.publisher = publisher
        self.tracking_prefix = tracking_prefix
        self.investigation_threshold = investigation_threshold
        self.oversight_recipients = list(oversight_recipients)

    # ---- Submission ----

    def submit(
        self,
        citizen_id: str,
        department: str,
        description: str,
        priority: str | Priority | None = None,
        sub_department: Optional[str] = None,
        remarks: Optional[str] = None,
        documents_verified: bool = False,
    ) -> TransitionResult:
        """Create a ``Submitted`` application with its fixed auto-approval deadline."""
        if not citizen_id:
            raise ValidationError("A citizen id is required.")
        if not department or not department.strip():
            raise ValidationError("A department is required.")
        if not description or not description.strip():
            raise ValidationError("A description is required.")
        level = parse_priority(priority)

        for attempt in range(1, MAX_TRACKING_CODE_ATTEMPTS + 1):
            now = self.clock.now()
            try:
                with self.store.transaction() as session:
                    app = Application(
                        tracking_code=self.store.next_tracking_code(
                            session, self.tracking_prefix, now.year
                        ),
                        department=department.strip(),
                        sub_department=sub_department,
                        description=description.strip(),
                        priority=level,
                        remarks=remarks,
                        citizen_id=citizen_id,
                        status=ApplicationStatus.SUBMITTED,
                        documents_verified=documents_verified,
                        submitted_at=now,
                        last_updated_at=now,
                        auto_approval_deadline=self.deadlines.calculate(level, now),
                    )
                    session.add(app)
                    session.flush()
                    entry = self._append_history(
                        session, app, citizen_id, "Application submitted", now
                    )
            except IntegrityError:
                logger.warning(
                    "Tracking code collision on attempt %d/%d, retrying",
                    attempt,
                    MAX_TRACKING_CODE_ATTEMPTS,
                )
                continue
            logger.info(
                "Submitted %s (%s, priority %s, deadline %s)",
                app.tracking_code,
                app.department,
                level.value,
                app.auto_approval_deadline.isoformat(),
            )
            return TransitionResult(application=app, history=entry, notifications=[])
        raise StaleState("Could not allocate a unique tracking code; please retry.")

    # ---- Assignment ----

    def assign(
        self, application_id: str, official_id: str, actor_id: Optional[str] = None
    ) -> TransitionResult:
        """
        Attach an official to a ``Submitted`` application.

        The update is a compare-and-set on ``official_id IS NULL``, so a
        second caller can never overwrite the first one's assignment.
        """
        if not official_id:
            raise ValidationError("An official id is required.")
        with self.locks.hold(application_id):
            try:
                with self.store.transaction() as session:
                    app = self.store.require(session, application_id)
                    if app.official_id is not None:
                        raise AlreadyAssigned(
                            f"Application {app.tracking_code} is already assigned "
                            f"to {app.official_id}.",
                            current=app.to_dict(),
                        )
                    if app.status != ApplicationStatus.SUBMITTED:
                        raise InvalidTransition(
                            f"Cannot assign {app.tracking_code} while it is "
                            f"'{app.status.value}'.",
                            current=app.to_dict(),
                        )
                    self._check_official(session, official_id, app)

                    now = self.clock.now()
                    result = session.execute(
                        update(Application)
                        .where(
                            Application.id == application_id,
                            Application.official_id.is_(None),
                            Application.status == ApplicationStatus.SUBMITTED,
                            Application.version == app.version,
                        )
                        .values(
                            official_id=official_id,
                            status=ApplicationStatus.ASSIGNED,
                            assigned_at=now,
                            last_updated_at=now,
                            version=Application.version + 1,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        latest = self.store.require(session, application_id)
                        raise AlreadyAssigned(
                            f"Application {latest.tracking_code} was taken concurrently.",
                            current=latest.to_dict(),
                        )
                    app = self.store.require(session, application_id)
                    entry = self._append_history(
                        session,
                        app,
                        actor_id or official_id,
                        "Application assigned to official",
                        now,
                    )
                    notes = self._emit(session, TransitionKind.ASSIGNED, app, now)
            except StaleDataError as exc:
                raise self.stale_error(application_id) from exc

        logger.info("Assigned %s to %s", app.tracking_code, official_id)
        self.publish(notes)
        return TransitionResult(application=app, history=entry, notifications=notes)

    # ---- Official-driven transitions ----

    def transition(
        self,
        application_id: str,
        actor_id: str,
        new_status: str | ApplicationStatus,
        comment: Optional[str] = None,
    ) -> TransitionResult:
        """Move an application along one edge of the transition table."""
        target = parse_status(new_status)
        if not actor_id:
            raise ValidationError("An actor id is required.")
        with self.locks.hold(application_id):
            try:
                with self.store.transaction() as session:
                    app = self.store.require(session, application_id)
                    if not can_transition(app.status, target):
                        raise InvalidTransition(
                            f"Cannot move {app.tracking_code} from "
                            f"'{app.status.value}' to '{target.value}'.",
                            current=app.to_dict(),
                        )
                    now = self.clock.now()
                    app.status = target
                    app.last_updated_at = now
                    if target in APPROVAL_STATUSES:
                        app.approved_at = now
                    entry = self._append_history(session, app, actor_id, comment, now)
                    notes = self._emit(
                        session, kind_for_status(target), app, now, comment=comment
                    )
            except StaleDataError as exc:
                raise self.stale_error(application_id) from exc

        logger.info("%s -> %s by %s", app.tracking_code, target.value, actor_id)
        self.publish(notes)
        return TransitionResult(application=app, history=entry, notifications=notes)

    # ---- Deadline edge ----

    def force_auto_approve(
        self, application_id: str, now: Optional[datetime] = None
    ) -> Optional[TransitionResult]:
        """
        Approve an overdue application on the system's authority.

        Re-checks the application after taking its lock and returns None
        (a no-op) when it is already terminal or not yet due.
        """
        with self.locks.hold(application_id):
            try:
                with self.store.transaction() as session:
                    app = self.store.require(session, application_id)
                    moment = now or self.clock.now()
                    if not self.deadlines.is_due(app, moment):
                        return None
                    target = auto_approval_status(app.documents_verified)
                    app.status = target
                    app.approved_at = moment
                    app.last_updated_at = moment
                    entry = self._append_history(
                        session,
                        app,
                        SYSTEM_ACTOR,
                        "Auto-approved: no decision before the deadline of "
                        f"{app.auto_approval_deadline.isoformat()}",
                        moment,
                    )
                    notes = self._emit(session, TransitionKind.DEADLINE_APPROVED, app, moment)
            except StaleDataError as exc:
                raise self.stale_error(application_id) from exc

        logger.info("%s auto-approved (%s)", app.tracking_code, target.value)
        self.publish(notes)
        return TransitionResult(application=app, history=entry, notifications=notes)

    def record_document_verification(self, application_id: str) -> Application:
        """Set ``documents_verified`` once the document scan has confirmed the upload."""
        with self.locks.hold(application_id):
            try:
                with self.store.transaction() as session:
                    app = self.store.require(session, application_id)
                    if app.is_terminal():
                        raise InvalidTransition(
                            f"Application {app.tracking_code} is already decided.",
                            current=app.to_dict(),
                        )
                    app.documents_verified = True
                    app.last_updated_at = self.clock.now()
            except StaleDataError as exc:
                raise self.stale_error(application_id) from exc
        logger.info("Documents verified for %s", app.tracking_code)
        return app

    # ---- Escalation edge ----

    def reopen(
        self,
        session: Session,
        app: Application,
        actor_id: str,
        official_id: Optional[str],
        comment: Optional[str] = None,
    ) -> tuple[ApplicationHistory, list[Notification]]:
        """
        EscalationReopen: demote a terminal application back to ``Assigned``
        under ``official_id``, or to ``Submitted`` with no official when
        ``official_id`` is None so that it re-enters the unassigned queue.

        This is the only place that raises ``escalation_level`` and clears
        ``approved_at``. The caller holds the application's lock and owns
        the transaction; notifications are returned for publishing after
        commit.
        """
        if not app.is_terminal():
            raise InvalidTransition(
                f"Only a terminal application can be reopened; {app.tracking_code} "
                f"is '{app.status.value}'.",
                current=app.to_dict(),
            )
        now = self.clock.now()
        previous_official = app.official_id
        app.status = (
            ApplicationStatus.ASSIGNED if official_id else ApplicationStatus.SUBMITTED
        )
        app.escalation_level = app.escalation_level + 1
        app.approved_at = None
        app.is_solved = False
        app.official_id = official_id or None
        app.assigned_at = now if official_id else None
        app.last_updated_at = now

        note = comment or (
            f"Reopened after unresolved feedback; escalation level {app.escalation_level}"
        )
        entry = self._append_history(session, app, actor_id, note, now)
        notes = self._emit(session, TransitionKind.ESCALATION_REOPENED, app, now)
        if app.escalation_level >= self.investigation_threshold:
            notes += self._emit(
                session,
                TransitionKind.INVESTIGATION_ALERT,
                app,
                now,
                previous_official_id=previous_official,
            )
        logger.info(
            "%s reopened to level %d (official %s -> %s)",
            app.tracking_code,
            app.escalation_level,
            previous_official,
            official_id,
        )
        return entry, notes

    # ---- Internal helpers ----

    def _append_history(
        self,
        session: Session,
        app: Application,
        actor_id: str,
        comment: Optional[str],
        when: datetime,
    ) -> ApplicationHistory:
        entry = ApplicationHistory(
            application_id=app.id,
            sequence=self.store.next_history_sequence(session, app.id),
            status=app.status,
            comment=comment,
            actor_id=actor_id,
            changed_at=when,
        )
        session.add(entry)
        return entry

    def _emit(
        self,
        session: Session,
        kind: TransitionKind,
        app: Application,
        when: datetime,
        **extra: Any,
    ) -> list[Notification]:
        rendered = render_notifications(
            kind, app.to_dict(), oversight=self.oversight_recipients, **extra
        )
        if kind is TransitionKind.INVESTIGATION_ALERT and not rendered:
            logger.warning(
                "No oversight recipients configured; investigation alert for %s not stored",
                app.tracking_code,
            )
        notes = [
            Notification(
                recipient_id=r.recipient_id,
                type=r.type,
                title=r.title,
                message=r.message,
                flagged=r.flagged,
                application_id=r.application_id,
                created_at=when,
            )
            for r in rendered
        ]
        session.add_all(notes)
        session.flush()
        return notes

    def _check_official(self, session: Session, official_id: str, app: Application) -> None:
        official = session.get(Official, official_id)
        if official is not None and not official.active:
            raise ValidationError(
                f"Official {official_id} is not active.", current=app.to_dict()
            )

    def publish(self, notes: list[Notification]) -> None:
        if not notes or self.publisher is None:
            return
        try:
            self.publisher([n.to_dict() for n in notes])
        except Exception:  # delivery must never undo a committed transition
            logger.exception("Failed to hand %d notification(s) to the dispatcher", len(notes))

    def stale_error(self, application_id: str) -> StaleState:
        current = self.store.get(application_id)
        return StaleState(
            f"Application {application_id} was modified concurrently.",
            current=current.to_dict() if current else None,
        )
