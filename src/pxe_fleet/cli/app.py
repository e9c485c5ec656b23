"""
Root Typer application for the pxe-fleet CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="pxe-fleet",
    help="pxe-fleet — deployment scheduling for PXE fleet imaging.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from pxe_fleet import __version__

        typer.echo(f"pxe-fleet {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """pxe-fleet CLI — schedule deployments, inspect cron patterns, run the server."""


# ── Sub-command registration ─────────────────────────────────────────────

from pxe_fleet.cli.cron import app as cron_app  # noqa: E402
from pxe_fleet.cli.deployment import app as deployment_app  # noqa: E402
from pxe_fleet.cli.serve import app as serve_app  # noqa: E402

app.add_typer(deployment_app, name="deployment", help="Deployment management.")
app.add_typer(cron_app, name="cron", help="Cron pattern tools.")
app.add_typer(serve_app, name="serve", help="Start the API server.")
