"""Main Typer application — imports and registers all CLI commands.

Entry point: ``slimship`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

from typing import Optional

import typer

from slimship import __version__
from slimship.cli.commands.build import build_cmd
from slimship.cli.commands.env_cmd import env_cmd
from slimship.cli.commands.monitor_cmd import monitor_cmd
from slimship.cli.commands.render import render_cmd
from slimship.cli.commands.runs_cmd import compare_cmd, runs_cmd
from slimship.cli.commands.verify import verify_cmd
from slimship.cli.output import configure_logging, console
from slimship.config import SlimshipSettings

app = typer.Typer(
    name="slimship",
    help="slimship: two-stage build and minimal runtime image pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"slimship {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (default: SLIMSHIP_LOG_LEVEL).",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Configure logging for every subcommand."""
    configure_logging(log_level or SlimshipSettings().log_level)


# Register subcommands
app.command(name="build", help="Build, verify and publish the runtime image.")(build_cmd)
app.command(name="render", help="Render the multi-stage Containerfile.")(render_cmd)
app.command(name="verify", help="Run the release checks against an image.")(verify_cmd)
app.command(name="env", help="Show the effective process configuration.")(env_cmd)
app.command(name="monitor", help="Show the monitor for a run.")(monitor_cmd)
app.command(name="runs", help="List recorded runs.")(runs_cmd)
app.command(name="compare", help="Compare the releases of two runs.")(compare_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
