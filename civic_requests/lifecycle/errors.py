"""
Typed failures raised by the lifecycle engine.

Every failure concerning an existing application carries ``current``, a
snapshot of the application's authoritative state, so callers can
resynchronize instead of retrying blindly.
"""

from __future__ import annotations

from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for all recoverable lifecycle failures."""

    code = "workflow_error"

    def __init__(self, message: str, current: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.current = current

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "current": self.current}


class InvalidTransition(WorkflowError):
    """The requested status edge is not allowed from the current status."""

    code = "invalid_transition"


class AlreadyAssigned(WorkflowError):
    """An official is already attached to the application."""

    code = "already_assigned"


class AlreadyTaken(AlreadyAssigned):
    """Another official accepted the application first."""

    code = "already_taken"


class NotFound(WorkflowError):
    code = "not_found"


class StaleState(WorkflowError):
    """The application changed underneath the caller."""

    code = "stale_state"


class ValidationError(WorkflowError):
    """Malformed input, e.g. a rating outside 1-5."""

    code = "validation_error"
