"""
CLI: ``pxe-fleet cron`` — validate and preview cron patterns.
"""

from __future__ import annotations

import typer

from pxe_fleet.cli.utils import console, err_console, output_items
from pxe_fleet.core.scheduling import cron as cron_eval
from pxe_fleet.core.timestamps import format_relative_time, from_iso8601, to_iso8601, utc_now

app = typer.Typer(no_args_is_help=True)


@app.command("validate")
def validate(pattern: str = typer.Argument(..., help="Cron pattern, e.g. '0 2 * * *'")) -> None:
    """Check a cron pattern. Exits 1 when it is invalid."""
    result = cron_eval.validate(pattern)
    if not result.valid:
        err_console.print(f"[bold red]Invalid[/bold red]: {result.error}")
        raise typer.Exit(code=1)
    console.print(f"[green]Valid[/green]: {pattern}")


@app.command("preview")
def preview(
    pattern: str = typer.Argument(..., help="Cron pattern"),
    count: int = typer.Option(3, "--count", "-n", min=1, max=50),
    start: str | None = typer.Option(None, "--from", help="Reference instant (ISO 8601, default now)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the next occurrences of a pattern."""
    result = cron_eval.validate(pattern)
    if not result.valid:
        err_console.print(f"[bold red]Invalid[/bold red]: {result.error}")
        raise typer.Exit(code=1)

    try:
        now = from_iso8601(start) if start else utc_now()
    except ValueError as e:
        raise typer.BadParameter(f"Not an ISO 8601 instant: {start}") from e

    rows = [
        {"occurrence": to_iso8601(o), "relative": format_relative_time(o, now)}
        for o in cron_eval.next_occurrences(pattern, now, count)
    ]
    output_items(rows, as_json=json_out, title=f"Next runs: {pattern}")
