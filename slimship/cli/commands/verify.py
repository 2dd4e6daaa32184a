"""``slimship verify IMAGE`` — check an existing image against the definition.

Runs the same release checks the Release Stage runs before publishing:
single artifact, no toolchain, exact dependency set, empty package lists,
process environment and entry point.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from slimship.cli.output import console, load_definition, print_pipeline_error
from slimship.config import SlimshipSettings
from slimship.core.engine import DockerEngine
from slimship.errors import PipelineError
from slimship.stages import verify_image


def verify_cmd(
    image: str = typer.Argument(..., help="Image reference or id to verify."),
    definition: Optional[Path] = typer.Option(
        None, "--definition", "-d", help="Pipeline definition file."
    ),
) -> None:
    """Verify a runtime image against the pipeline definition."""
    settings = SlimshipSettings()
    pipeline = load_definition(definition, settings)
    engine = DockerEngine.from_settings(settings)

    try:
        report = verify_image(engine, pipeline, image)
    except PipelineError as exc:
        print_pipeline_error(exc)
        raise typer.Exit(code=1)

    table = Table(title=f"Release checks for {image}")
    table.add_column("Check", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Detail")
    for check in report.checks:
        result = "[green]ok[/green]" if check.passed else "[bold red]FAIL[/bold red]"
        table.add_row(check.name, result, escape(check.detail))
    console.print(table)

    if report.artifact_sha256:
        console.print(f"[bold]Artifact sha256:[/bold] {report.artifact_sha256}")

    if not report.passed:
        console.print(
            f"[bold red]{len(report.violations)} check(s) failed.[/bold red]"
        )
        raise typer.Exit(code=1)
    console.print("[bold green]All release checks passed.[/bold green]")
