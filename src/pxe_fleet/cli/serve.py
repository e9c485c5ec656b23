"""
CLI: ``pxe-fleet serve`` — start the API server.
"""

from __future__ import annotations

import typer
import uvicorn

from pxe_fleet.cli.utils import console
from pxe_fleet.core.logging import configure_logging
from pxe_fleet.core.settings import get_settings

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default: FLEET_HOST)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default: FLEET_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Start the pxe-fleet API server, scheduler loop included."""
    settings = get_settings()
    level = (log_level or settings.log_level).upper()
    configure_logging(level=level, json_format=settings.json_logs, instance_id=settings.instance_id)

    bind_host = host or settings.host
    bind_port = port or settings.port
    console.print(f"[bold green]Starting pxe-fleet API[/bold green] on {bind_host}:{bind_port}")
    uvicorn.run(
        "pxe_fleet.api:create_app",
        factory=True,
        host=bind_host,
        port=bind_port,
        reload=reload,
        log_level=level.lower(),
    )
