"""
CLI interface for the citizen request lifecycle engine.

Commands:
    submit          — File a new application
    queue           — List unassigned applications, oldest first
    accept          — Take an unassigned application as an official
    update-status   — Move an application along its lifecycle
    feedback        — Record a citizen's verdict on a decided application
    verify-feedback — Confirm feedback after OTP verification
    verify-documents — Record that the document scan passed
    show / history  — Inspect an application and its audit trail
    notifications   — Read a user's notifications
    sweep           — Auto-approve overdue applications once
    run-sweeper     — Keep sweeping in the foreground
    stats           — Show statistics and SLA alerts
    official        — Manage the official roster and view performance
"""

from __future__ import annotations

import dataclasses
import functools
import json
import logging
from typing import Optional

import click

from civic_requests import __version__
from civic_requests.lifecycle.errors import WorkflowError
from civic_requests.lifecycle.models import ApplicationStatus, Priority


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="civic-requests")
@click.option("--db", default=None, help="Database URL (overrides the config file and CIVIC_DB_URL).")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Path to an engine config JSON file.")
@click.option("--verbose", "-v", is_flag=True, help="Log engine activity to stderr.")
@click.pass_context
def cli(ctx: click.Context, db: Optional[str], config_path: Optional[str], verbose: bool) -> None:
    """Citizen request lifecycle engine — submit, assign, decide, and escalate applications."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db_url"] = db
    ctx.obj["config_path"] = config_path


def _service(ctx: click.Context):
    from civic_requests.config import load_engine_config
    from civic_requests.service import WorkflowService

    root = ctx.find_root()
    if "service" not in root.obj:
        config = load_engine_config(root.obj.get("config_path"))
        if root.obj.get("db_url"):
            config = dataclasses.replace(config, db_url=root.obj["db_url"])
        svc = WorkflowService.from_config(config)
        root.obj["service"] = svc
        root.call_on_close(svc.close)
    return root.obj["service"]


def _workflow_errors(f):
    """Turn engine errors into a one-line message plus the current state."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except WorkflowError as e:
            click.echo(f"Error ({e.code}): {e.message}", err=True)
            if e.current:
                click.echo(
                    f"Current state: status={e.current.get('status')} "
                    f"official={e.current.get('official_id')} "
                    f"level={e.current.get('escalation_level')}",
                    err=True,
                )
            raise SystemExit(1)

    return wrapper


def _echo_application(app) -> None:
    click.echo(f"Application {app.tracking_code}")
    click.echo(f"  ID:           {app.id}")
    click.echo(f"  Department:   {app.department}"
               + (f" / {app.sub_department}" if app.sub_department else ""))
    click.echo(f"  Priority:     {app.priority.value}")
    click.echo(f"  Status:       {app.status.value}")
    click.echo(f"  Citizen:      {app.citizen_id}")
    click.echo(f"  Official:     {app.official_id or '-'}")
    click.echo(f"  Escalation:   {app.escalation_level}")
    click.echo(f"  Solved:       {app.is_solved}")
    click.echo(f"  Documents:    {'verified' if app.documents_verified else 'not verified'}")
    click.echo(f"  Submitted:    {app.submitted_at:%Y-%m-%d %H:%M}")
    click.echo(f"  Deadline:     {app.auto_approval_deadline:%Y-%m-%d %H:%M}")
    if app.approved_at:
        click.echo(f"  Approved:     {app.approved_at:%Y-%m-%d %H:%M}")
    if app.remarks:
        click.echo(f"  Remarks:      {app.remarks}")
    click.echo(f"  Description:  {app.description}")


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--citizen", "-c", required=True, help="Citizen user id.")
@click.option("--department", "-d", required=True, help="Department the request concerns.")
@click.option("--description", "-m", required=True, help="What the citizen needs.")
@click.option("--priority", "-p", default=Priority.NORMAL.value,
              type=click.Choice([p.value for p in Priority], case_sensitive=False),
              help="Priority (sets the auto-approval deadline).")
@click.option("--sub-department", default=None, help="Sub-department, if known.")
@click.option("--remarks", default=None, help="Free-text remarks.")
@click.option("--documents-verified", is_flag=True, help="Documents already verified by the scan.")
@click.option("--json-output", is_flag=True, help="Output as JSON.")
@click.pass_context
@_workflow_errors
def submit(
    ctx: click.Context,
    citizen: str,
    department: str,
    description: str,
    priority: str,
    sub_department: Optional[str],
    remarks: Optional[str],
    documents_verified: bool,
    json_output: bool,
) -> None:
    """Submit a new application."""
    result = _service(ctx).submit(
        citizen,
        department,
        description,
        priority=priority,
        sub_department=sub_department,
        remarks=remarks,
        documents_verified=documents_verified,
    )
    app = result.application
    if json_output:
        click.echo(json.dumps(app.to_dict(), indent=2))
        return
    click.echo(f"Submitted {app.tracking_code} (id {app.id})")
    click.echo(f"Auto-approval deadline: {app.auto_approval_deadline:%Y-%m-%d %H:%M}")


# ---------------------------------------------------------------------------
# queue / accept
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--department", "-d", default=None, help="Filter by department.")
@click.option("--limit", default=20, type=int, help="Maximum rows to show.")
@click.pass_context
def queue(ctx: click.Context, department: Optional[str], limit: int) -> None:
    """List unassigned applications, oldest first."""
    shown = 0
    for app in _service(ctx).list_unassigned(department):
        if shown >= limit:
            break
        if shown == 0:
            click.echo("Unassigned applications:")
        click.echo(
            f"  {app.tracking_code:18s} | {app.department[:25]:25s} | "
            f"{app.priority.value:6s} | submitted {app.submitted_at:%Y-%m-%d %H:%M}"
        )
        shown += 1
    if shown == 0:
        click.echo("No unassigned applications.")


@cli.command()
@click.argument("reference")
@click.option("--official", "-o", required=True, help="Official user id.")
@click.pass_context
@_workflow_errors
def accept(ctx: click.Context, reference: str, official: str) -> None:
    """Accept an unassigned application (id or tracking code)."""
    svc = _service(ctx)
    app = svc.resolve(reference)
    result = svc.accept(app.id, official)
    click.echo(f"{result.application.tracking_code} assigned to {official}.")


# ---------------------------------------------------------------------------
# update-status
# ---------------------------------------------------------------------------

@cli.command(name="update-status")
@click.argument("reference")
@click.argument("status", type=click.Choice(
    [ApplicationStatus.IN_PROGRESS.value, ApplicationStatus.APPROVED.value,
     ApplicationStatus.REJECTED.value], case_sensitive=False))
@click.option("--actor", "-a", required=True, help="Official making the change.")
@click.option("--comment", "-m", default=None, help="Remarks recorded in history.")
@click.pass_context
@_workflow_errors
def update_status(
    ctx: click.Context, reference: str, status: str, actor: str, comment: Optional[str]
) -> None:
    """Move an application to In Progress, Approved or Rejected."""
    svc = _service(ctx)
    app = svc.resolve(reference)
    target = next(s for s in ApplicationStatus if s.value.lower() == status.lower())
    result = svc.transition(app.id, actor, target, comment)
    click.echo(f"{result.application.tracking_code} is now {result.application.status.value}.")


# ---------------------------------------------------------------------------
# feedback
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("reference")
@click.option("--citizen", "-c", required=True, help="Citizen user id.")
@click.option("--solved/--unsolved", required=True, help="Whether the issue was resolved.")
@click.option("--rating", "-r", required=True, type=click.IntRange(1, 5), help="Rating 1-5.")
@click.option("--comment", "-m", default=None, help="Feedback text.")
@click.option("--expected-status", default=None, help="Status the citizen saw when answering.")
@click.pass_context
@_workflow_errors
def feedback(
    ctx: click.Context,
    reference: str,
    citizen: str,
    solved: bool,
    rating: int,
    comment: Optional[str],
    expected_status: Optional[str],
) -> None:
    """Record citizen feedback; unsolved feedback reopens the application."""
    svc = _service(ctx)
    app = svc.resolve(reference)
    outcome = svc.submit_feedback(
        app.id, citizen, solved, rating, comment=comment, expected_status=expected_status
    )
    click.echo(f"Feedback recorded (id {outcome.feedback.id}).")
    if outcome.reopened:
        reopened = outcome.application
        holder = (
            f"assigned to {reopened.official_id}"
            if reopened.official_id
            else "back in the unassigned queue"
        )
        click.echo(
            f"{reopened.tracking_code} reopened at escalation level "
            f"{reopened.escalation_level}, {holder}."
        )


@cli.command(name="verify-feedback")
@click.argument("feedback_id")
@click.pass_context
@_workflow_errors
def verify_feedback(ctx: click.Context, feedback_id: str) -> None:
    """Mark feedback as verified (after the citizen's OTP check)."""
    _service(ctx).verify_feedback(feedback_id)
    click.echo(f"Feedback {feedback_id} verified.")


@cli.command(name="verify-documents")
@click.argument("reference")
@click.pass_context
@_workflow_errors
def verify_documents(ctx: click.Context, reference: str) -> None:
    """Record that the document scan verified an application's uploads."""
    svc = _service(ctx)
    app = svc.record_document_verification(svc.resolve(reference).id)
    click.echo(f"Documents verified for {app.tracking_code}.")


# ---------------------------------------------------------------------------
# show / history / notifications
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("reference")
@click.option("--json-output", is_flag=True, help="Output as JSON.")
@click.pass_context
@_workflow_errors
def show(ctx: click.Context, reference: str, json_output: bool) -> None:
    """Show one application."""
    svc = _service(ctx)
    app = svc.resolve(reference)
    if json_output:
        data = app.to_dict()
        data["feedback_eligible"] = svc.feedback_eligible(app.id)
        click.echo(json.dumps(data, indent=2))
        return
    _echo_application(app)
    if app.is_terminal():
        eligible = svc.feedback_eligible(app.id)
        click.echo(f"  Feedback:     {'open' if eligible else 'closed'}")


@cli.command()
@click.argument("reference")
@click.pass_context
@_workflow_errors
def history(ctx: click.Context, reference: str) -> None:
    """Show the status history of an application."""
    svc = _service(ctx)
    app = svc.resolve(reference)
    click.echo(f"History of {app.tracking_code}:")
    for entry in svc.get_history(app.id):
        line = (
            f"  #{entry.sequence:<3d} {entry.changed_at:%Y-%m-%d %H:%M} | "
            f"{entry.status.value:45s} | by {entry.actor_id}"
        )
        if entry.comment:
            line += f" | {entry.comment}"
        click.echo(line)


@cli.command()
@click.argument("user_id")
@click.option("--unread", is_flag=True, help="Only unread notifications.")
@click.option("--mark-read", "mark_read", default=None, help="Mark a notification as read.")
@click.pass_context
@_workflow_errors
def notifications(ctx: click.Context, user_id: str, unread: bool, mark_read: Optional[str]) -> None:
    """List a user's notifications."""
    svc = _service(ctx)
    if mark_read:
        svc.mark_read(mark_read)
        click.echo(f"Notification {mark_read} marked read.")
        return
    notes = svc.get_notifications(user_id, unread_only=unread)
    if not notes:
        click.echo("No notifications.")
        return
    for note in notes:
        marks = ("*" if not note.read else " ") + ("!" if note.flagged else " ")
        click.echo(f"{marks} [{note.type.value}] {note.title} ({note.id})")
        click.echo(f"     {note.message}")


# ---------------------------------------------------------------------------
# sweep / run-sweeper
# ---------------------------------------------------------------------------

@cli.command()
@click.pass_context
def sweep(ctx: click.Context) -> None:
    """Auto-approve every overdue application once."""
    report = _service(ctx).run_deadline_sweep()
    click.echo(report.summary())
    if report.failed:
        ctx.exit(1)


@cli.command(name="run-sweeper")
@click.option("--interval", default=None, type=float, help="Seconds between sweeps.")
@click.pass_context
def run_sweeper(ctx: click.Context, interval: Optional[float]) -> None:
    """Run the deadline sweeper in the foreground until interrupted."""
    svc = _service(ctx)
    if interval is not None:
        svc.sweeper.interval_seconds = interval
    svc.start_sweeper()
    click.echo(f"Sweeping every {svc.sweeper.interval_seconds:g}s. Press Ctrl+C to stop.")
    try:
        svc.sweeper.wait()
    except KeyboardInterrupt:
        click.echo("Stopping sweeper...")
    finally:
        svc.sweeper.stop()


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--alerts", is_flag=True, help="Show SLA alerts for open applications.")
@click.pass_context
def stats(ctx: click.Context, alerts: bool) -> None:
    """Show application statistics and SLA alerts."""
    svc = _service(ctx)
    stats_data = svc.get_stats()

    click.echo("=== Application Statistics ===")
    click.echo(f"Total applications: {stats_data['total']}")
    click.echo(f"Overdue: {stats_data['overdue']}")
    click.echo(f"Escalated: {stats_data['escalated']}")
    click.echo("\nBy status:")
    for status, count in stats_data.get("by_status", {}).items():
        click.echo(f"  {status:45s}: {count}")

    if alerts:
        all_alerts = svc.sla_alerts()
        if not all_alerts:
            click.echo("\nNo active alerts.")
        else:
            click.echo(f"\n=== Active Alerts ({len(all_alerts)}) ===")
            for alert in all_alerts:
                click.echo(alert.format_text())


# ---------------------------------------------------------------------------
# official
# ---------------------------------------------------------------------------

@cli.group()
def official() -> None:
    """Manage the official roster."""


@official.command(name="add")
@click.argument("official_id")
@click.option("--department", "-d", default=None, help="Department served (omit for all).")
@click.option("--level", default=1, type=int, help="Hierarchy level (higher is more senior).")
@click.option("--name", default=None, help="Full name.")
@click.option("--inactive", is_flag=True, help="Register as inactive.")
@click.pass_context
def official_add(
    ctx: click.Context,
    official_id: str,
    department: Optional[str],
    level: int,
    name: Optional[str],
    inactive: bool,
) -> None:
    """Register or update an official."""
    record = _service(ctx).register_official(
        official_id,
        department=department,
        hierarchy_level=level,
        full_name=name,
        active=not inactive,
    )
    click.echo(
        f"Official {record.id} ({record.department or 'all departments'}, "
        f"level {record.hierarchy_level}, {'active' if record.active else 'inactive'})"
    )


@official.command(name="report")
@click.argument("official_id")
@click.option("--json-output", is_flag=True, help="Output as JSON.")
@click.pass_context
@_workflow_errors
def official_report(ctx: click.Context, official_id: str, json_output: bool) -> None:
    """Show an official's performance from verified feedback."""
    perf = _service(ctx).official_performance(official_id)
    if json_output:
        click.echo(json.dumps(perf.to_dict(), indent=2))
        return
    avg = f"{perf.average_rating:.2f}" if perf.average_rating is not None else "n/a"
    click.echo(f"Official {perf.official_id} ({perf.department or 'all departments'})")
    click.echo(f"  Hierarchy level:  {perf.hierarchy_level}")
    click.echo(f"  Average rating:   {avg} ({perf.rated} verified)")
    click.echo(f"  Solved/unsolved:  {perf.solved}/{perf.unsolved}")
    click.echo(f"  Assigned total:   {perf.assigned_total}")
    click.echo(f"  Current workload: {perf.current_workload}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
