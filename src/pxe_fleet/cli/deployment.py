"""
CLI: ``pxe-fleet deployment`` — schedule, inspect and cancel deployments.
"""

from __future__ import annotations

import typer

from pxe_fleet.cli.utils import console, fleet_errors, open_scheduler, output_items, output_record
from pxe_fleet.core.models import DeploymentRequest, DeploymentStatus, ScheduleType
from pxe_fleet.core.timestamps import from_iso8601

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ("id", "device_id", "image_id", "status", "progress", "schedule_type", "next_run_at")


@app.command("list")
def list_deployments(
    status: DeploymentStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    device: str | None = typer.Option(None, "--device", help="Filter by device"),
    limit: int = typer.Option(50, "--limit", "-l", min=1),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List deployments, newest first."""
    scheduler = open_scheduler(database)
    with fleet_errors():
        items = scheduler.repository.list(status, device, limit=limit)
        total = scheduler.repository.count(status, device)
    output_items(items, as_json=json_out, title="Deployments", columns=_LIST_COLUMNS, total=total)


@app.command("show")
def show_deployment(
    deployment_id: str = typer.Argument(..., help="Deployment ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show deployment details and its task runs."""
    scheduler = open_scheduler(database)
    with fleet_errors():
        task_runs = scheduler.list_task_runs(deployment_id)
        deployment = scheduler.repository.get(deployment_id)
    output_record(deployment, as_json=json_out, title=f"Deployment: {deployment_id}")
    if task_runs and not json_out:
        output_items(task_runs, title="Task runs", columns=("id", "task_type", "status", "progress"))


@app.command("schedule")
def schedule_deployment(
    device_id: str = typer.Argument(..., help="Target device"),
    image_id: str = typer.Argument(..., help="Image to deploy"),
    at: str | None = typer.Option(None, "--at", help="Fire once at this ISO 8601 instant"),
    cron: str | None = typer.Option(None, "--cron", help="Recurring cron pattern"),
    created_by: str | None = typer.Option(None, "--by", help="Operator name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Schedule a deployment (immediate unless --at or --cron is given)."""
    if at and cron:
        raise typer.BadParameter("Use either --at or --cron, not both")

    scheduled_for = None
    if at:
        try:
            scheduled_for = from_iso8601(at)
        except ValueError as e:
            raise typer.BadParameter(f"Not an ISO 8601 instant: {at}") from e

    if cron:
        schedule_type = ScheduleType.RECURRING
    elif at:
        schedule_type = ScheduleType.DELAYED
    else:
        schedule_type = ScheduleType.IMMEDIATE

    scheduler = open_scheduler(database)
    with fleet_errors():
        deployment = scheduler.schedule(
            DeploymentRequest(
                device_id=device_id,
                image_id=image_id,
                schedule_type=schedule_type,
                scheduled_for=scheduled_for,
                recurring_pattern=cron,
                created_by=created_by,
            )
        )
    output_record(deployment, as_json=json_out, title="Deployment Scheduled")


@app.command("cancel")
def cancel_deployment(
    deployment_id: str = typer.Argument(..., help="Deployment ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel a deployment (no-op if it already finished)."""
    scheduler = open_scheduler(database)
    with fleet_errors():
        deployment = scheduler.cancel(deployment_id)
    output_record(deployment, as_json=json_out, title="Deployment Cancelled")


@app.command("tick")
def tick(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one scheduler tick against the database and report what fired."""
    scheduler = open_scheduler(database)
    scheduler.recover()
    result = scheduler.tick()
    if result.aborted:
        console.print(f"[bold red]Tick aborted[/bold red]: {result.error}")
        raise typer.Exit(code=1)
    output_record(result, as_json=json_out, title="Tick")
