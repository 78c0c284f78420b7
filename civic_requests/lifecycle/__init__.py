"""Application lifecycle: models, storage, state machine, escalation and allocation."""

from civic_requests.lifecycle.allocator import AssignmentAllocator, UnassignedQueue
from civic_requests.lifecycle.clock import Clock, FrozenClock, SystemClock
from civic_requests.lifecycle.deadlines import DeadlineCalculator
from civic_requests.lifecycle.errors import (
    AlreadyAssigned,
    AlreadyTaken,
    InvalidTransition,
    NotFound,
    StaleState,
    ValidationError,
    WorkflowError,
)
from civic_requests.lifecycle.escalation import (
    EscalationController,
    FeedbackOutcome,
    feedback_eligible,
)
from civic_requests.lifecycle.locks import ApplicationLocks
from civic_requests.lifecycle.models import (
    Application,
    ApplicationHistory,
    ApplicationStatus,
    Feedback,
    Notification,
    NotificationType,
    Official,
    Priority,
)
from civic_requests.lifecycle.state_machine import (
    ALLOWED_TRANSITIONS,
    StateMachine,
    TransitionResult,
    can_transition,
)
from civic_requests.lifecycle.store import ApplicationStore

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AlreadyAssigned",
    "AlreadyTaken",
    "Application",
    "ApplicationHistory",
    "ApplicationLocks",
    "ApplicationStatus",
    "ApplicationStore",
    "AssignmentAllocator",
    "Clock",
    "DeadlineCalculator",
    "EscalationController",
    "Feedback",
    "FeedbackOutcome",
    "FrozenClock",
    "InvalidTransition",
    "NotFound",
    "Notification",
    "NotificationType",
    "Official",
    "Priority",
    "StaleState",
    "StateMachine",
    "SystemClock",
    "TransitionResult",
    "UnassignedQueue",
    "ValidationError",
    "WorkflowError",
    "can_transition",
    "feedback_eligible",
]
