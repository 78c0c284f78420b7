"""
Deadline sweep: auto-approve applications nobody decided in time.

The sweep first collects the ids of overdue non-terminal applications,
then forces each one under its own lock. A failure on one application is
logged and recorded in the report; the rest of the sweep carries on.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from civic_requests.lifecycle.clock import Clock
from civic_requests.lifecycle.state_machine import StateMachine

logger = logging.getLogger(__name__)


@dataclass
class SweepError:
    application_id: str
    error: str


@dataclass
class SweepReport:
    """Summary of one deadline sweep."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    examined: int = 0
    auto_approved: list[str] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0
    errors: list[SweepError] = field(default_factory=list)

    def summary(self) -> str:
        """Format a human-readable sweep summary."""
        duration = ""
        if self.completed_at:
            elapsed = (self.completed_at - self.started_at).total_seconds()
            duration = f" in {elapsed:.1f}s"

        lines = [
            "=== Deadline Sweep ===",
            f"Started:  {self.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        ]
        if self.completed_at:
            lines.append(
                f"Finished: {self.completed_at.strftime('%Y-%m-%d %H:%M:%S UTC')}{duration}"
            )
        lines.extend([
            f"Examined:      {self.examined}",
            f"Auto-approved: {len(self.auto_approved)}",
            f"Skipped:       {self.skipped}",
            f"Failed:        {self.failed}",
        ])
        for err in self.errors:
            lines.append(f"  FAIL {err.application_id}: {err.error}")
        return "\n".join(lines)


class DeadlineSweeper:
    """
    Periodically force overdue applications to auto-approval.

    Usage:
        sweeper = DeadlineSweeper(state_machine, interval_seconds=3600)
        report = sweeper.sweep_once()
        sweeper.start()   # background thread
        sweeper.stop()
    """

    def __init__(
        self,
        state_machine: StateMachine,
        clock: Optional[Clock] = None,
        interval_seconds: float = 3600.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive.")
        self.sm = state_machine
        self.store = state_machine.store
        self.clock = clock or state_machine.clock
        self.interval_seconds = interval_seconds
        self.last_report: Optional[SweepReport] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep_once(self) -> SweepReport:
        now = self.clock.now()
        report = SweepReport(started_at=now)
        candidates = self.store.due_for_auto_approval(now)
        report.examined = len(candidates)

        for index, application_id in enumerate(candidates):
            if self._stop_event.is_set():
                logger.info("Sweep cancelled with %d candidate(s) left", len(candidates) - index)
                break
            try:
                result = self.sm.force_auto_approve(application_id, now=now)
            except Exception as e:
                report.failed += 1
                report.errors.append(SweepError(application_id, str(e)))
                logger.exception("Auto-approval of %s failed", application_id)
                continue
            if result is None:
                # Decided or already swept while we were waiting for the lock.
                report.skipped += 1
            else:
                report.auto_approved.append(application_id)

        report.completed_at = self.clock.now()
        self.last_report = report
        logger.info(
            "Deadline sweep: %d examined, %d auto-approved, %d skipped, %d failed",
            report.examined,
            len(report.auto_approved),
            report.skipped,
            report.failed,
        )
        return report

    # ---- Background thread ----

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="deadline-sweeper", daemon=True)
        self._thread.start()
        logger.info("Deadline sweeper started (every %ss)", self.interval_seconds)

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Deadline sweeper stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stopped; True if the stop was requested."""
        return self._stop_event.wait(timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Deadline sweep aborted")
            if self._stop_event.wait(self.interval_seconds):
                break
