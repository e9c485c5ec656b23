"""
CLI utility helpers — output formatting and scheduler construction.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from pxe_fleet.core.database import create_connection, init_schema
from pxe_fleet.core.errors import FleetError
from pxe_fleet.core.scheduling import DeploymentScheduler, create_scheduler
from pxe_fleet.core.settings import get_settings
from pxe_fleet.execution import LoggingLauncher

console = Console()
err_console = Console(stderr=True)


# ── Scheduler helper ─────────────────────────────────────────────────────


def open_scheduler(database: str | None = None) -> DeploymentScheduler:
    """Scheduler over the configured database. The CLI never starts its loop."""
    db_path = database or get_settings().database_path
    conn = create_connection(db_path)
    init_schema(conn)
    return create_scheduler(conn, launcher=LoggingLauncher())


@contextmanager
def fleet_errors() -> Iterator[None]:
    """Print a domain error and exit 1 instead of dumping a traceback."""
    try:
        yield
    except FleetError as e:
        err_console.print(f"[bold red]Error[/bold red] ({e.__class__.__name__}): {e.message}")
        raise typer.Exit(code=1) from e


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a row model / pydantic model / dict to a plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_items(
    items: list[Any],
    *,
    as_json: bool = False,
    title: str = "",
    columns: tuple[str, ...] | None = None,
    total: int | None = None,
) -> None:
    """Render a list of records as a Rich table or JSON."""
    rows = [_to_dict(i) for i in items]

    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return

    if not rows:
        console.print("[dim]No items.[/dim]")
        return

    table = Table(title=title or None, show_lines=False, pad_edge=False)
    keys = columns or tuple(rows[0])
    for col in keys:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(k) is None else str(row.get(k)) for k in keys))
    console.print(table)

    if total is not None:
        console.print(f"\n[dim]Showing {len(rows)} of {total}[/dim]")


def output_record(obj: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a single record as key-value pairs or JSON."""
    data = _to_dict(obj)
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
