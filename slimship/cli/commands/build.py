"""``slimship build`` — run the two-stage pipeline and publish the image.

Compiles the source tree in the toolchain environment, assembles and
verifies the runtime image, tags it, optionally pushes it, and prints the
release manifest. Every stage transition is recorded in the run ledger.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel
from rich.table import Table

from slimship import __version__
from slimship.cli.output import (
    console,
    load_definition,
    print_pipeline_error,
    print_stage_error,
)
from slimship.config import SlimshipSettings
from slimship.core.orchestrator import Orchestrator
from slimship.core.prerequisite_graph import PrerequisiteNotMetError
from slimship.core.production_guard import ProductionConfigError
from slimship.core.stage_machine import InvalidTransitionError
from slimship.errors import PipelineError
from slimship.models.reports import ReleaseManifest
from slimship.monitor.projection import MonitorProjection
from slimship.monitor.renderer import MonitorRenderer
from slimship.stages.base import StageExecutionError, StagePrerequisiteError

# Raised by the stage machinery rather than by a failing build step.
_STAGE_ERRORS = (
    StageExecutionError,
    StagePrerequisiteError,
    PrerequisiteNotMetError,
    InvalidTransitionError,
)


def _manifest_panel(manifest: ReleaseManifest) -> Panel:
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Image", manifest.image)
    table.add_row("Image id", manifest.image_id or "-")
    table.add_row("Artifact", f"{manifest.artifact_path}")
    table.add_row("sha256", manifest.artifact_sha256 or "-")
    table.add_row("Toolchain", manifest.toolchain_image)
    table.add_row("Base", manifest.base_image)
    table.add_row("Packages", ", ".join(manifest.runtime_packages))
    table.add_row(
        "Env", ", ".join(f"{k}={v}" for k, v in manifest.process_env.items())
    )
    table.add_row("Entrypoint", " ".join(manifest.entrypoint))
    table.add_row("Pushed", "yes" if manifest.pushed else "no")
    table.add_row("Fingerprint", manifest.functional_fingerprint())
    return Panel(
        table,
        title=f"[bold green]Released {manifest.project_name}[/bold green]",
        subtitle=f"run {manifest.run_id}",
        border_style="green",
        padding=(1, 2),
    )


def _print_run_state(orchestrator: Orchestrator) -> None:
    if orchestrator.get_run_entries():
        snapshot = MonitorProjection(orchestrator.ledger).snapshot(orchestrator.run_id)
        MonitorRenderer(console=console).print_snapshot(snapshot)


def build_cmd(
    definition: Optional[Path] = typer.Option(
        None,
        "--definition",
        "-d",
        help="Pipeline definition file (default: SLIMSHIP_DEFINITION_PATH).",
    ),
    tag: str = typer.Option(
        "latest", "--tag", "-t", help="Tag for the published runtime image."
    ),
    push: bool = typer.Option(
        False, "--push", help="Push the image after it passes verification."
    ),
    keep_builder: Optional[bool] = typer.Option(
        None,
        "--keep-builder/--remove-builder",
        help="Keep the builder image after the run (default: SLIMSHIP_KEEP_BUILDER).",
    ),
) -> None:
    """Build, verify and publish the runtime image."""
    settings = SlimshipSettings()
    pipeline = load_definition(definition, settings)

    try:
        orchestrator = Orchestrator(pipeline, settings, pipeline_version=__version__)
    except ProductionConfigError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    console.print(
        f"[bold cyan]Run {orchestrator.run_id}[/bold cyan]: "
        f"{pipeline.project_name} -> {pipeline.image_name}:{tag}"
    )

    try:
        manifest = orchestrator.run(tag=tag, push=push, keep_builder=keep_builder)
    except PipelineError as exc:
        print_pipeline_error(exc)
        _print_run_state(orchestrator)
        raise typer.Exit(code=1)
    except _STAGE_ERRORS as exc:
        print_stage_error(exc)
        _print_run_state(orchestrator)
        raise typer.Exit(code=1)

    console.print()
    console.print(_manifest_panel(manifest))
