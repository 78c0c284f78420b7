"""
SQLAlchemy models for the application lifecycle.

Stores every application from submission through final disposition,
together with its append-only status history, citizen feedback rows,
and the notifications emitted by each transition.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum_column(enum_cls: type[enum.Enum], length: int = 64) -> Enum:
    # Persist the human-readable values ("In Progress"), not the member names.
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=length,
        validate_strings=True,
    )


class ApplicationStatus(enum.Enum):
    """Lifecycle states for a citizen application."""

    SUBMITTED = "Submitted"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    AUTO_APPROVED = "Auto-Approved"
    AUTO_APPROVED_VERIFIED = "Auto-Approved (Documents Verified by System)"


TERMINAL_STATUSES = frozenset(
    {
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
        ApplicationStatus.AUTO_APPROVED,
        ApplicationStatus.AUTO_APPROVED_VERIFIED,
    }
)

APPROVAL_STATUSES = frozenset(
    {
        ApplicationStatus.APPROVED,
        ApplicationStatus.AUTO_APPROVED,
        ApplicationStatus.AUTO_APPROVED_VERIFIED,
    }
)


class Priority(enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    NORMAL = "Normal"


class NotificationType(enum.Enum):
    APPROVAL = "approval"
    DELAY = "delay"
    ASSIGNMENT = "assignment"
    FEEDBACK = "feedback"
    INVESTIGATION_ALERT = "investigation_alert"
    SUSPENSION = "suspension"


SYSTEM_ACTOR = "system"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Application(Base):
    """A single citizen application and its lifecycle data."""

    __tablename__ = "applications"

    id = Column(String(36), primary_key=True, default=_uuid)
    tracking_code = Column(String(64), unique=True, nullable=False, index=True)
    # --- category ---
    department = Column(String(256), nullable=False, index=True)
    sub_department = Column(String(256), nullable=True)
    description = Column(Text, nullable=False)
    priority = Column(_enum_column(Priority, 16), default=Priority.NORMAL, nullable=False)
    remarks = Column(Text, nullable=True)
    # --- actors ---
    citizen_id = Column(String(64), nullable=False, index=True)
    official_id = Column(String(64), nullable=True, index=True)
    # --- status ---
    status = Column(
        _enum_column(ApplicationStatus),
        default=ApplicationStatus.SUBMITTED,
        nullable=False,
        index=True,
    )
    is_solved = Column(Boolean, default=False, nullable=False)
    escalation_level = Column(Integer, default=0, nullable=False)
    documents_verified = Column(Boolean, default=False, nullable=False)
    # --- dates ---
    submitted_at = Column(DateTime, nullable=False, index=True)
    assigned_at = Column(DateTime, nullable=True)
    last_updated_at = Column(DateTime, nullable=False)
    approved_at = Column(DateTime, nullable=True)
    auto_approval_deadline = Column(DateTime, nullable=False, index=True)
    # --- optimistic concurrency ---
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Application(id={self.id}, code='{self.tracking_code}', "
            f"status={self.status.value}, level={self.escalation_level})>"
        )

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_past_deadline(self, now: datetime) -> bool:
        if self.is_terminal():
            return False
        return now > self.auto_approval_deadline

    def time_until_deadline(self, now: datetime):
        return self.auto_approval_deadline - now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tracking_code": self.tracking_code,
            "department": self.department,
            "sub_department": self.sub_department,
            "description": self.description,
            "priority": self.priority.value if self.priority else None,
            "remarks": self.remarks,
            "citizen_id": self.citizen_id,
            "official_id": self.official_id,
            "status": self.status.value if self.status else None,
            "is_solved": self.is_solved,
            "escalation_level": self.escalation_level,
            "documents_verified": self.documents_verified,
            "submitted_at": _iso(self.submitted_at),
            "assigned_at": _iso(self.assigned_at),
            "last_updated_at": _iso(self.last_updated_at),
            "approved_at": _iso(self.approved_at),
            "auto_approval_deadline": _iso(self.auto_approval_deadline),
            "version": self.version,
        }


class ApplicationHistory(Base):
    """Append-only audit trail entry, one per status transition."""

    __tablename__ = "application_history"
    __table_args__ = (UniqueConstraint("application_id", "sequence"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(_enum_column(ApplicationStatus), nullable=False)
    comment = Column(Text, nullable=True)
    actor_id = Column(String(64), nullable=False)
    changed_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApplicationHistory(app={self.application_id}, #{self.sequence}, "
            f"status={self.status.value}, actor='{self.actor_id}')>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "sequence": self.sequence,
            "status": self.status.value,
            "comment": self.comment,
            "actor_id": self.actor_id,
            "changed_at": _iso(self.changed_at),
        }


class Feedback(Base):
    """A citizen's verdict on a terminal application, one per escalation cycle."""

    __tablename__ = "feedback"

    id = Column(String(36), primary_key=True, default=_uuid)
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=False, index=True)
    citizen_id = Column(String(64), nullable=False)
    official_id = Column(String(64), nullable=True, index=True)
    escalation_cycle = Column(Integer, nullable=False, default=0)
    is_solved = Column(Boolean, nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "citizen_id": self.citizen_id,
            "official_id": self.official_id,
            "escalation_cycle": self.escalation_cycle,
            "is_solved": self.is_solved,
            "rating": self.rating,
            "comment": self.comment,
            "verified": self.verified,
            "created_at": _iso(self.created_at),
        }


class Notification(Base):
    """A user-addressed event record produced by a transition."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    recipient_id = Column(String(64), nullable=False, index=True)
    type = Column(_enum_column(NotificationType, 32), nullable=False)
    title = Column(String(256), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    flagged = Column(Boolean, default=False, nullable=False)
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "read": self.read,
            "flagged": self.flagged,
            "application_id": self.application_id,
            "created_at": _iso(self.created_at),
        }


class Official(Base):
    """Roster entry for an official who can take or inherit applications."""

    __tablename__ = "officials"

    id = Column(String(64), primary_key=True)
    full_name = Column(String(256), nullable=True)
    department = Column(String(256), nullable=True, index=True)
    hierarchy_level = Column(Integer, default=1, nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Official(id='{self.id}', department='{self.department}', "
            f"level={self.hierarchy_level}, active={self.active})>"
        )

    def serves(self, department: Optional[str]) -> bool:
        return self.department is None or self.department == department
