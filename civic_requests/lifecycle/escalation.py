"""
Citizen feedback and escalation.

A citizen answers "was your issue solved?" once a decision (or the
deadline) has closed their application. A "no" reopens the application
with a different official, preferring the next one up the chain, and
raises its escalation level. When no other official serves the
department the application goes back to the unassigned queue instead.
Repeated "no"s past the investigation threshold alert oversight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from civic_requests.lifecycle.errors import NotFound, StaleState, ValidationError
from civic_requests.lifecycle.models import (
    Application,
    ApplicationStatus,
    Feedback,
    Notification,
    Official,
)
from civic_requests.lifecycle.state_machine import StateMachine, parse_status

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def feedback_eligible(app: Application, feedbacks: Sequence[Feedback]) -> bool:
    """
    Whether ``app`` accepts a new feedback row.

    ``feedbacks`` must be ordered oldest first. A first-cycle application
    takes exactly one feedback. After an escalation, feedback is taken
    again once per official: when nobody has rated the current official
    yet, or the latest feedback was about someone else or belongs to an
    earlier escalation cycle (the latter covers a requeued application
    accepted again by the official it left).
    """
    if not app.is_terminal():
        return False
    if app.escalation_level == 0:
        return len(feedbacks) == 0
    if not any(f.official_id == app.official_id for f in feedbacks):
        return True
    latest = feedbacks[-1]
    if latest.official_id != app.official_id:
        return True
    return latest.escalation_cycle < app.escalation_level


def _validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}.")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Rating {rating} is out of range ({MIN_RATING}-{MAX_RATING})."
        )
    return rating


@dataclass
class FeedbackOutcome:
    """Result of a feedback submission."""

    feedback: Feedback
    application: Application
    reopened: bool = False
    notifications: list[Notification] = field(default_factory=list)


class EscalationController:
    """
    Record feedback and reopen unresolved applications.

    Usage:
        controller = EscalationController(state_machine)
        outcome = controller.submit_feedback(app_id, "citizen-1", False, 2)
        if outcome.reopened:
            print(outcome.application.official_id)
    """

    def __init__(self, state_machine: StateMachine) -> None:
        self.sm = state_machine
        self.store = state_machine.store

    def submit_feedback(
        self,
        application_id: str,
        citizen_id: str,
        is_solved: bool,
        rating: int,
        comment: Optional[str] = None,
        expected_status: Optional[str | ApplicationStatus] = None,
    ) -> FeedbackOutcome:
        """
        Store a citizen's feedback on a terminal application.

        ``expected_status`` is the status the citizen saw when answering;
        if the application has moved since, ``StaleState`` is raised with
        the current snapshot.
        """
        rating = _validate_rating(rating)
        expected = parse_status(expected_status) if expected_status is not None else None

        with self.sm.locks.hold(application_id):
            try:
                with self.store.transaction() as session:
                    app = self.store.require(session, application_id)
                    if expected is not None and app.status != expected:
                        raise StaleState(
                            f"Application {app.tracking_code} is '{app.status.value}', "
                            f"not '{expected.value}'.",
                            current=app.to_dict(),
                        )
                    if not app.is_terminal():
                        raise StaleState(
                            f"Application {app.tracking_code} is still "
                            f"'{app.status.value}'; feedback opens after a decision.",
                            current=app.to_dict(),
                        )
                    if app.citizen_id != citizen_id:
                        raise ValidationError(
                            f"Citizen {citizen_id} did not submit {app.tracking_code}.",
                            current=app.to_dict(),
                        )
                    feedbacks = self.store.feedback_rows(session, app.id)
                    if not feedback_eligible(app, feedbacks):
                        raise ValidationError(
                            f"Feedback for {app.tracking_code} has already been recorded "
                            f"for this decision.",
                            current=app.to_dict(),
                        )

                    now = self.sm.clock.now()
                    feedback = Feedback(
                        application_id=app.id,
                        citizen_id=citizen_id,
                        official_id=app.official_id,
                        escalation_cycle=app.escalation_level,
                        is_solved=is_solved,
                        rating=rating,
                        comment=comment,
                        created_at=now,
                    )
                    session.add(feedback)

                    notes: list[Notification] = []
                    if is_solved:
                        app.is_solved = True
                        app.last_updated_at = now
                    else:
                        replacement = self.choose_replacement_official(session, app)
                        _, notes = self.sm.reopen(
                            session,
                            app,
                            actor_id=citizen_id,
                            official_id=replacement,
                            comment=comment,
                        )
                    session.flush()
            except StaleDataError as exc:
                raise self.sm.stale_error(application_id) from exc

        logger.info(
            "Feedback on %s: solved=%s rating=%d%s",
            app.tracking_code,
            is_solved,
            rating,
            " (reopened)" if not is_solved else "",
        )
        self.sm.publish(notes)
        return FeedbackOutcome(
            feedback=feedback,
            application=app,
            reopened=not is_solved,
            notifications=notes,
        )

    def choose_replacement_official(
        self, session: Session, app: Application
    ) -> Optional[str]:
        """
        Pick who inherits a reopened application.

        Active officials serving the department other than the current
        one, ranked by: above the current official's hierarchy level
        first, then fewest open applications, then id. Returns None when
        nobody else is available, which sends the application back to the
        unassigned queue.
        """
        current_id = app.official_id
        current = session.get(Official, current_id) if current_id else None
        current_level = current.hierarchy_level if current is not None else 0

        candidates = [
            o
            for o in self.store.roster(session, department=app.department)
            if o.id != current_id
        ]
        if not candidates:
            logger.warning(
                "No other active official for %s (%s); returning it to the queue",
                app.tracking_code,
                app.department,
            )
            return None

        def rank(official: Official) -> tuple:
            return (
                official.hierarchy_level <= current_level,
                self.store.count_open(session, official.id),
                official.id,
            )

        return min(candidates, key=rank).id

    def is_eligible(self, application_id: str) -> bool:
        with self.store.transaction() as session:
            app = self.store.require(session, application_id)
            return feedback_eligible(app, self.store.feedback_rows(session, app.id))

    def verify_feedback(self, feedback_id: str) -> Feedback:
        """Mark feedback as confirmed by the citizen's one-time code."""
        with self.store.transaction() as session:
            feedback = session.get(Feedback, feedback_id)
            if feedback is None:
                raise NotFound(f"Feedback {feedback_id} not found.")
            feedback.verified = True
        logger.info("Feedback %s verified", feedback_id)
        return feedback
