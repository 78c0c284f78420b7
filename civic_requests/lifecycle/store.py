"""
Persistence layer for the lifecycle engine.

Owns the SQLAlchemy engine and session factory and answers every read
query the engine and the CLI need. Writes happen inside
``ApplicationStore.transaction()`` so that an application change, its
history row and its notifications commit or roll back together.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from civic_requests.lifecycle.errors import NotFound
from civic_requests.lifecycle.models import (
    Application,
    ApplicationHistory,
    ApplicationStatus,
    Base,
    Feedback,
    Notification,
    Official,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (ApplicationStatus.ASSIGNED, ApplicationStatus.IN_PROGRESS)


def _build_engine(db_url: str):
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=False)
    connect_args = {"check_same_thread": False}
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every thread gets its own empty database.
        return create_engine(
            db_url, echo=False, connect_args=connect_args, poolclass=StaticPool
        )
    return create_engine(db_url, echo=False, connect_args=connect_args)


class ApplicationStore:
    """
    Storage interface for applications, history, feedback and notifications.

    Usage:
        store = ApplicationStore("sqlite:///civic_requests.db")
        with store.transaction() as session:
            app = store.require(session, application_id)
        history = store.history(application_id)
    """

    def __init__(self, db_url: str = "sqlite:///civic_requests.db") -> None:
        self.db_url = db_url
        self.engine = _build_engine(db_url)
        Base.metadata.create_all(self.engine)
        self.SessionFactory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _session(self) -> Session:
        return self.SessionFactory()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Open a session that commits on success and rolls back on any error."""
        with self.SessionFactory.begin() as session:
            yield session

    def dispose(self) -> None:
        self.engine.dispose()

    # ---- Applications ----

    @staticmethod
    def require(session: Session, application_id: str) -> Application:
        app = session.get(Application, application_id, populate_existing=True)
        if app is None:
            raise NotFound(f"Application {application_id} not found.")
        return app

    def get(self, application_id: str) -> Optional[Application]:
        with self._session() as session:
            return session.get(Application, application_id)

    def get_by_tracking_code(self, tracking_code: str) -> Optional[Application]:
        with self._session() as session:
            return session.scalars(
                select(Application).where(Application.tracking_code == tracking_code)
            ).first()

    @staticmethod
    def next_tracking_code(session: Session, prefix: str, year: int) -> str:
        stem = f"{prefix}-{year}-"
        count = session.scalar(
            select(func.count(Application.id)).where(Application.tracking_code.like(f"{stem}%"))
        )
        return f"{stem}{(count or 0) + 1:06d}"

    def list_applications(
        self,
        status: Optional[ApplicationStatus] = None,
        citizen_id: Optional[str] = None,
        official_id: Optional[str] = None,
        department: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Application]:
        with self._session() as session:
            q = select(Application)
            if status:
                q = q.where(Application.status == status)
            if citizen_id:
                q = q.where(Application.citizen_id == citizen_id)
            if official_id:
                q = q.where(Application.official_id == official_id)
            if department:
                q = q.where(Application.department == department)
            q = q.order_by(Application.submitted_at.desc()).offset(offset).limit(limit)
            return list(session.scalars(q))

    def iter_unassigned(
        self, department: Optional[str] = None, batch_size: int = 50
    ) -> Iterator[Application]:
        """Yield ``Submitted`` applications oldest first, fetched in batches."""
        with self._session() as session:
            q = select(Application).where(
                Application.status == ApplicationStatus.SUBMITTED,
                Application.official_id.is_(None),
            )
            if department:
                q = q.where(Application.department == department)
            q = q.order_by(Application.submitted_at.asc(), Application.tracking_code.asc())
            for app in session.scalars(q.execution_options(yield_per=batch_size)):
                yield app

    def due_for_auto_approval(self, now: datetime) -> list[str]:
        """Ids of non-terminal applications whose deadline has passed."""
        with self._session() as session:
            q = (
                select(Application.id)
                .where(
                    Application.status.notin_(tuple(TERMINAL_STATUSES)),
                    Application.auto_approval_deadline < now,
                )
                .order_by(Application.auto_approval_deadline.asc())
            )
            return list(session.scalars(q))

    def open_applications(self) -> list[Application]:
        with self._session() as session:
            q = (
                select(Application)
                .where(Application.status.notin_(tuple(TERMINAL_STATUSES)))
                .order_by(Application.auto_approval_deadline.asc())
            )
            return list(session.scalars(q))

    # ---- History ----

    @staticmethod
    def next_history_sequence(session: Session, application_id: str) -> int:
        current = session.scalar(
            select(func.max(ApplicationHistory.sequence)).where(
                ApplicationHistory.application_id == application_id
            )
        )
        return (current or 0) + 1

    def history(self, application_id: str) -> list[ApplicationHistory]:
        with self._session() as session:
            q = (
                select(ApplicationHistory)
                .where(ApplicationHistory.application_id == application_id)
                .order_by(ApplicationHistory.sequence.asc())
            )
            return list(session.scalars(q))

    # ---- Feedback ----

    @staticmethod
    def feedback_rows(session: Session, application_id: str) -> list[Feedback]:
        q = (
            select(Feedback)
            .where(Feedback.application_id == application_id)
            .order_by(Feedback.escalation_cycle.asc(), Feedback.created_at.asc())
        )
        return list(session.scalars(q))

    def feedback_for(self, application_id: str) -> list[Feedback]:
        with self._session() as session:
            return self.feedback_rows(session, application_id)

    def ratings_for_official(self, official_id: str, verified_only: bool = True) -> list[Feedback]:
        with self._session() as session:
            q = select(Feedback).where(Feedback.official_id == official_id)
            if verified_only:
                q = q.where(Feedback.verified.is_(True))
            return list(session.scalars(q))

    # ---- Notifications ----

    def notifications(self, recipient_id: str, unread_only: bool = False) -> list[Notification]:
        with self._session() as session:
            q = select(Notification).where(Notification.recipient_id == recipient_id)
            if unread_only:
                q = q.where(Notification.read.is_(False))
            q = q.order_by(Notification.created_at.desc())
            return list(session.scalars(q))

    def notifications_for_application(self, application_id: str) -> list[Notification]:
        with self._session() as session:
            q = (
                select(Notification)
                .where(Notification.application_id == application_id)
                .order_by(Notification.created_at.asc())
            )
            return list(session.scalars(q))

    def mark_read(self, notification_id: str) -> Notification:
        with self.transaction() as session:
            note = session.get(Notification, notification_id)
            if note is None:
                raise NotFound(f"Notification {notification_id} not found.")
            note.read = True
            return note

    # ---- Officials ----

    def add_official(
        self,
        official_id: str,
        department: Optional[str] = None,
        hierarchy_level: int = 1,
        full_name: Optional[str] = None,
        active: bool = True,
    ) -> Official:
        with self.transaction() as session:
            official = session.get(Official, official_id)
            if official is None:
                official = Official(id=official_id)
                session.add(official)
            official.department = department
            official.hierarchy_level = hierarchy_level
            official.full_name = full_name
            official.active = active
            return official

    def get_official(self, official_id: str) -> Optional[Official]:
        with self._session() as session:
            return session.get(Official, official_id)

    def list_officials(self, department: Optional[str] = None, active_only: bool = True) -> list[Official]:
        with self._session() as session:
            return self.roster(session, department=department, active_only=active_only)

    @staticmethod
    def roster(
        session: Session, department: Optional[str] = None, active_only: bool = True
    ) -> list[Official]:
        q = select(Official)
        if active_only:
            q = q.where(Official.active.is_(True))
        if department:
            q = q.where((Official.department == department) | (Official.department.is_(None)))
        return list(session.scalars(q.order_by(Official.hierarchy_level.asc(), Official.id.asc())))

    @staticmethod
    def count_open(session: Session, official_id: str) -> int:
        return session.scalar(
            select(func.count(Application.id)).where(
                Application.official_id == official_id,
                Application.status.in_(OPEN_STATUSES),
            )
        ) or 0

    def workload(self, official_id: str) -> int:
        with self._session() as session:
            return self.count_open(session, official_id)

    def count_assigned(self, official_id: str) -> int:
        with self._session() as session:
            return session.scalar(
                select(func.count(Application.id)).where(Application.official_id == official_id)
            ) or 0

    # ---- Stats ----

    def get_stats(self, now: datetime) -> dict:
        with self._session() as session:
            total = session.scalar(select(func.count(Application.id))) or 0
            by_status: dict[str, int] = {}
            rows = session.execute(
                select(Application.status, func.count(Application.id)).group_by(Application.status)
            )
            for status, count in rows:
                by_status[status.value] = count
            escalated = session.scalar(
                select(func.count(Application.id)).where(Application.escalation_level > 0)
            ) or 0
        overdue = len(self.due_for_auto_approval(now))
        return {
            "total": total,
            "overdue": overdue,
            "escalated": escalated,
            "by_status": by_status,
        }
