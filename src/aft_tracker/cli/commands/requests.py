"""Request tracking commands.

Provides CLI access to the status engine:
- ``aft-tracker create`` -- open a new draft request
- ``aft-tracker transition`` -- move a request to another status
- ``aft-tracker activity`` -- record a non-status activity
- ``aft-tracker timeline`` -- show the reconstructed timeline
- ``aft-tracker progress`` -- compute progress for a variant/status pair
- ``aft-tracker list`` -- list requests with progress
- ``aft-tracker summary`` -- count requests per status
- ``aft-tracker add-actor`` -- register an actor display name
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table
from typing_extensions import Annotated

from aft_tracker.config import (
    TrackerConfig,
    TrackerConfigError,
    load_config,
    locate_project_root,
)
from aft_tracker.status import (
    AuditWriter,
    StepState,
    StoreError,
    TimelineEngine,
    TrackingStore,
    TransitionOutcome,
    UnresolvedStatusError,
    compute_progress,
    list_with_progress,
    status_label,
    status_summary,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="aft-tracker",
    help="AFT request status tracking",
    no_args_is_help=True,
)

console = Console()

DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", help="SQLite database path (defaults to .aft/config.yaml setting)"),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Machine-readable JSON output")]

_STATE_STYLES: dict[StepState, str] = {
    StepState.COMPLETED: "green",
    StepState.CURRENT: "bold cyan",
    StepState.PENDING: "dim",
    StepState.SKIPPED: "dim strike",
    StepState.ERROR: "bold red",
}


def _output_result(json_mode: bool, data: Any, success_message: str | None = None) -> None:
    """Output result in JSON or human-readable format."""
    if json_mode:
        print(json.dumps(data))
    elif success_message:
        console.print(success_message)


def _output_error(json_mode: bool, error_message: str) -> None:
    """Output error in JSON or human-readable format."""
    if json_mode:
        print(json.dumps({"error": error_message}))
    else:
        console.print(f"[red]Error:[/red] {error_message}")


def _open_store(db: Path | None, json_mode: bool) -> tuple[TrackingStore, TrackerConfig]:
    """Resolve configuration and open the tracking store.

    Raises:
        typer.Exit: If the configuration cannot be read.
    """
    cwd = Path.cwd()
    project_root = locate_project_root(cwd) or cwd
    try:
        config = load_config(project_root)
    except TrackerConfigError as exc:
        _output_error(json_mode, str(exc))
        raise typer.Exit(1)
    db_path = db if db is not None else config.resolve_db_path(project_root)
    logger.debug("Using tracking database %s", db_path)
    return TrackingStore(db_path), config


def _fmt_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value is not None else "-"


def _fmt_hours(value: float | None) -> str:
    return f"{value:.1f}h" if value is not None else "-"


@app.command()
def create(
    requestor_id: Annotated[int, typer.Option("--requestor-id", help="Actor ID of the requestor")],
    variant: Annotated[Optional[str], typer.Option("--variant", help="standard or high-to-low")] = None,
    requestor_name: Annotated[Optional[str], typer.Option("--requestor-name", help="Requestor display name")] = None,
    assignee_id: Annotated[Optional[int], typer.Option("--assignee-id", help="Assigned actor ID")] = None,
    classification: Annotated[Optional[str], typer.Option("--classification", help="Data classification")] = None,
    number: Annotated[Optional[str], typer.Option("--number", help="Request number (generated if omitted)")] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Notes for the creation entry")] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Create a draft request and record its creation entry."""
    store, config = _open_store(db, json_output)
    try:
        request = AuditWriter(store).create_request(
            requestor_id,
            variant=variant or config.default_variant,
            request_number=number,
            requestor_name=requestor_name,
            assignee_id=assignee_id,
            classification=classification,
            notes=notes,
        )
    except StoreError as exc:
        _output_error(json_output, str(exc))
        raise typer.Exit(1)

    _output_result(
        json_output,
        request.to_dict(),
        f"[green]OK[/green] Created request {request.id} "
        f"({request.request_number}, {request.variant})",
    )


@app.command()
def transition(
    request_id: Annotated[int, typer.Argument(help="Request ID")],
    to: Annotated[str, typer.Option("--to", help="Target status (e.g. submitted, pending_dao)")],
    actor: Annotated[int, typer.Option("--actor", help="Actor ID making the transition")],
    notes: Annotated[Optional[str], typer.Option("--notes", help="Notes recorded with the transition")] = None,
    expect: Annotated[Optional[str], typer.Option("--expect", help="Only apply if the request is still in this status")] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Move a request to another status.

    Examples:
        aft-tracker transition 12 --to submitted --actor 3
        aft-tracker transition 12 --to approved --actor 7 --expect pending_approver
    """
    store, _config = _open_store(db, json_output)
    outcome = AuditWriter(store).transition_status(
        request_id, actor, to, notes, expected_status=expect
    )
    result = {"request_id": request_id, "to": to, "outcome": str(outcome)}
    if outcome is not TransitionOutcome.APPLIED:
        if json_output:
            print(json.dumps(result))
        else:
            console.print(f"[red]Error:[/red] transition of request {request_id} to {to}: {outcome}")
        raise typer.Exit(1)

    _output_result(
        json_output,
        result,
        f"[green]OK[/green] Request {request_id} -> {status_label(to)}",
    )


@app.command()
def activity(
    request_id: Annotated[int, typer.Argument(help="Request ID")],
    action: Annotated[str, typer.Option("--action", help="Activity label (e.g. scan_recorded)")],
    actor: Annotated[int, typer.Option("--actor", help="Actor ID")],
    notes: Annotated[Optional[str], typer.Option("--notes", help="Free-text notes")] = None,
    changes_json: Annotated[Optional[str], typer.Option("--changes-json", help="JSON object with structured details")] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Record an activity against a request without changing its status."""
    changes = None
    if changes_json is not None:
        try:
            changes = json.loads(changes_json)
        except json.JSONDecodeError as exc:
            _output_error(json_output, f"Invalid JSON in --changes-json: {exc}")
            raise typer.Exit(1)
        if not isinstance(changes, dict):
            _output_error(json_output, "--changes-json must be a JSON object")
            raise typer.Exit(1)

    store, _config = _open_store(db, json_output)
    try:
        entry = AuditWriter(store).append_activity(
            request_id, actor, action, changes=changes, notes=notes
        )
    except StoreError as exc:
        _output_error(json_output, str(exc))
        raise typer.Exit(1)

    _output_result(
        json_output,
        entry.to_dict(),
        f"[green]OK[/green] Recorded {action} on request {request_id} (entry {entry.id})",
    )


@app.command()
def timeline(
    request_id: Annotated[int, typer.Argument(help="Request ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the reconstructed status timeline of a request."""
    store, config = _open_store(db, json_output)
    engine = TimelineEngine(store, strict=config.strict_status)
    try:
        result = engine.get_timeline(request_id)
    except (UnresolvedStatusError, StoreError) as exc:
        _output_error(json_output, str(exc))
        raise typer.Exit(1)

    if result is None:
        _output_error(json_output, f"Request {request_id} not found")
        raise typer.Exit(1)

    if json_output:
        print(json.dumps(result.to_dict()))
        return

    progress = result.progress
    table = Table(
        title=f"Request {request_id}: {status_label(result.current_status)} "
        f"(step {progress.current_step}/{progress.total_steps}, {progress.percent}%)"
    )
    table.add_column("#", justify="right")
    table.add_column("Stage")
    table.add_column("State")
    table.add_column("Reached")
    table.add_column("Assigned")
    table.add_column("Duration", justify="right")
    table.add_column("Notes")
    for position, step in enumerate(result.steps, start=1):
        style = _STATE_STYLES.get(step.state, "")
        table.add_row(
            str(position),
            step.title,
            f"[{style}]{step.state}[/{style}]" if style else str(step.state),
            _fmt_time(step.timestamp),
            step.assigned_to,
            _fmt_hours(step.duration_hours),
            step.notes or "",
        )
    console.print(table)
    if result.estimated_completion is not None and not progress.is_terminal:
        console.print(f"[dim]Estimated completion: {_fmt_time(result.estimated_completion)}[/dim]")


@app.command()
def progress(
    status: Annotated[str, typer.Argument(help="Current status")],
    variant: Annotated[Optional[str], typer.Option("--variant", help="standard or high-to-low")] = None,
    deviated_from: Annotated[Optional[str], typer.Option("--deviated-from", help="Status left when rejected/cancelled")] = None,
    json_output: JsonOption = False,
) -> None:
    """Compute progress for a status without touching the database."""
    result = compute_progress(variant, status, deviated_from=deviated_from)
    _output_result(
        json_output,
        result.to_dict(),
        f"{status_label(status)}: step {result.current_step}/{result.total_steps} "
        f"({result.percent}%){' (terminal)' if result.is_terminal else ''}",
    )


@app.command("list")
def list_requests(
    status: Annotated[Optional[str], typer.Option("--status", help="Filter by status")] = None,
    requestor_id: Annotated[Optional[int], typer.Option("--requestor-id", help="Filter by requestor")] = None,
    assignee_id: Annotated[Optional[int], typer.Option("--assignee-id", help="Filter by assignee")] = None,
    limit: Annotated[Optional[int], typer.Option("--limit", min=1, help="Maximum rows")] = None,
    offset: Annotated[Optional[int], typer.Option("--offset", min=0, help="Rows to skip")] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List requests with progress, most recently updated first."""
    store, config = _open_store(db, json_output)
    try:
        rows = list_with_progress(
            store,
            status=status,
            requestor_id=requestor_id,
            assignee_id=assignee_id,
            limit=limit,
            offset=offset,
            strict=config.strict_status,
        )
    except (UnresolvedStatusError, StoreError) as exc:
        _output_error(json_output, str(exc))
        raise typer.Exit(1)

    if json_output:
        print(json.dumps(rows))
        return

    table = Table(title="AFT requests")
    table.add_column("ID", justify="right")
    table.add_column("Number")
    table.add_column("Requestor")
    table.add_column("Variant")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Entries", justify="right")
    for row in rows:
        table.add_row(
            str(row["id"]),
            row["request_number"],
            row["requestor_name"] or str(row["requestor_id"]),
            row["variant"],
            status_label(row["status"]),
            f"{row['current_step']}/{row['total_steps']} ({row['timeline_progress']}%)",
            str(row["audit_count"]),
        )
    console.print(table)


@app.command()
def summary(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Count requests per status."""
    store, _config = _open_store(db, json_output)
    counts = status_summary(store)
    if json_output:
        print(json.dumps(counts))
        return

    table = Table(title="Requests by status")
    table.add_column("Status")
    table.add_column("Count", justify="right")
    for status, total in counts.items():
        table.add_row(status_label(status), str(total))
    console.print(table)


@app.command("add-actor")
def add_actor(
    first_name: Annotated[str, typer.Argument(help="First name")],
    last_name: Annotated[str, typer.Argument(help="Last name")],
    role: Annotated[Optional[str], typer.Option("--role", help="Primary role (e.g. dao, approver, dta)")] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Register an actor so timelines show their name."""
    store, _config = _open_store(db, json_output)
    actor_id = store.add_actor(first_name, last_name, role)
    _output_result(
        json_output,
        {"id": actor_id, "name": f"{first_name} {last_name}", "role": role},
        f"[green]OK[/green] Actor {actor_id}: {first_name} {last_name}",
    )
