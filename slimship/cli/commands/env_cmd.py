"""``slimship env KEY=VALUE ...`` — show the effective process configuration.

Baked-in variables are defaults; values supplied by the deployment
environment at launch win.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from slimship.cli.output import console, load_definition
from slimship.config import SlimshipSettings


def _parse_overrides(pairs: list[str]) -> dict[str, str]:
    environ: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {pair!r}")
        environ[key] = value
    return environ


def env_cmd(
    overrides: Optional[list[str]] = typer.Argument(
        None, help="Launch-time variables as KEY=VALUE."
    ),
    definition: Optional[Path] = typer.Option(
        None, "--definition", "-d", help="Pipeline definition file."
    ),
) -> None:
    """Resolve the process configuration a container would start with."""
    pipeline = load_definition(definition, SlimshipSettings())
    process = pipeline.release.process
    environ = _parse_overrides(overrides or [])

    try:
        effective = process.resolve(environ)
    except ValueError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    baked = process.to_env()
    table = Table(title="Process configuration")
    table.add_column("Variable", style="cyan")
    table.add_column("Baked default")
    table.add_column("Effective", style="bold")
    table.add_column("Source")
    for key, value in effective.to_env().items():
        source = "launch" if key in environ else "image"
        table.add_row(key, baked[key], value, source)
    console.print(table)
