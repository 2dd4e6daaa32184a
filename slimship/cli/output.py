"""Shared console, logging and error output for the slimship CLI."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel

from slimship.config import SlimshipSettings
from slimship.errors import PipelineError, ReleaseVerificationError
from slimship.models.definition import PipelineDefinition

console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route all ``slimship.*`` loggers through a Rich handler on stderr."""
    handler = RichHandler(
        console=err_console,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root = logging.getLogger("slimship")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False


def format_validation_error(err: ValidationError) -> str:
    lines = ["Validation failed:"]
    for detail in err.errors():
        loc = ".".join(str(x) for x in detail["loc"])
        lines.append(f"  - {loc}: {detail['msg']}")
    return "\n".join(lines)


def load_definition(
    path: Path | None, settings: SlimshipSettings
) -> PipelineDefinition:
    """Load the pipeline definition, exiting with code 1 on any problem.

    With no explicit *path* and no file at ``settings.definition_path``, the
    built-in defaults are used with the current directory as source tree.
    """
    target = path or settings.definition_path
    if not target.exists():
        if path is None:
            console.print(
                f"[dim]No {target} found; using the default pipeline definition.[/dim]"
            )
            return PipelineDefinition()
        console.print(f"[bold red]Definition not found:[/bold red] {target}")
        raise typer.Exit(code=1)

    try:
        return PipelineDefinition.from_yaml(target)
    except yaml.YAMLError as exc:
        console.print(f"[bold red]Invalid YAML in {target}:[/bold red] {escape(str(exc))}")
    except ValidationError as exc:
        console.print(
            f"[bold red]Invalid definition {target}:[/bold red]\n"
            f"{escape(format_validation_error(exc))}"
        )
    except (PipelineError, ValueError) as exc:
        console.print(f"[bold red]Invalid definition {target}:[/bold red] {escape(str(exc))}")
    raise typer.Exit(code=1)


def print_pipeline_error(exc: PipelineError) -> None:
    """Show a pipeline failure with the underlying tool output."""
    lines = [f"[bold red]{type(exc).__name__}[/bold red]: {escape(str(exc))}"]
    if exc.stage_id:
        lines.append(f"[bold]Stage:[/bold] {exc.stage_id}")
    if isinstance(exc, ReleaseVerificationError) and exc.violations:
        lines.append("")
        lines.extend(f"[red]- {escape(v)}[/red]" for v in exc.violations)
    elif exc.detail:
        lines.append("")
        lines.append(escape(exc.detail))
    console.print(
        Panel("\n".join(lines), title="[bold]Pipeline failed[/bold]", border_style="red")
    )


def print_stage_error(exc: RuntimeError) -> None:
    """Show a stage that broke outside the pipeline error hierarchy."""
    lines = [f"[bold red]{type(exc).__name__}[/bold red]: {escape(str(exc))}"]
    if exc.__cause__ is not None:
        cause = exc.__cause__
        lines.append("")
        lines.append(f"[bold]Caused by:[/bold] {type(cause).__name__}: {escape(str(cause))}")
    console.print(
        Panel("\n".join(lines), title="[bold]Pipeline failed[/bold]", border_style="red")
    )
