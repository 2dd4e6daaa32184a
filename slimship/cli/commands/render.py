"""``slimship render`` — show or write the Containerfile for a definition."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.syntax import Syntax

from slimship.cli.output import console, load_definition
from slimship.config import SlimshipSettings
from slimship.core.containerfile import (
    IGNORE_FILE_NAME,
    render_containerfile,
    render_ignore_file,
    write_build_files,
)


def render_cmd(
    definition: Optional[Path] = typer.Option(
        None, "--definition", "-d", help="Pipeline definition file."
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write Containerfile (and ignore file) into this directory.",
    ),
) -> None:
    """Render the multi-stage Containerfile without building anything."""
    settings = SlimshipSettings()
    pipeline = load_definition(definition, settings)

    if output is not None:
        path = write_build_files(pipeline, output, settings.state_paths)
        console.print(f"[green]Wrote[/green] {path}")
        return

    console.print(Syntax(render_containerfile(pipeline), "docker", word_wrap=True))
    ignore_text = render_ignore_file(pipeline.build.source, settings.state_paths)
    if ignore_text:
        console.print(f"\n[bold]{IGNORE_FILE_NAME}[/bold]")
        console.print(ignore_text, markup=False, highlight=False)
