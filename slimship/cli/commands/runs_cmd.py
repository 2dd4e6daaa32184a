"""``slimship runs`` and ``slimship compare`` — run history from the ledger.

``compare`` checks whether two released runs produced functionally
equivalent images, and reports any toolchain or base drift between them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from slimship.cli.output import console
from slimship.config import SlimshipSettings
from slimship.core.artifact_store import ContentAddressedStore
from slimship.core.orchestrator import load_manifest
from slimship.core.run_ledger import RunLedger
from slimship.core.version_pinner import VersionPinner
from slimship.monitor.projection import MonitorProjection

_OUTCOME_STYLES = {
    "released": "green",
    "failed": "bold red",
    "running": "yellow",
    "not_started": "dim",
}


def _open_ledger(ledger_db: Path | None) -> RunLedger:
    db_path = ledger_db or SlimshipSettings().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)
    return RunLedger(db_path)


def runs_cmd(
    limit: int = typer.Option(20, "--limit", "-n", help="Show at most N runs."),
    ledger_db: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Ledger database (default: SLIMSHIP_LEDGER_PATH)."
    ),
) -> None:
    """List recorded runs, most recent first."""
    ledger = _open_ledger(ledger_db)
    projection = MonitorProjection(ledger)

    run_ids = ledger.get_all_run_ids()
    if not run_ids:
        console.print("[dim]No runs recorded.[/dim]")
        return

    table = Table(title="Runs")
    table.add_column("Run", style="cyan")
    table.add_column("Outcome", justify="center")
    table.add_column("Toolchain")
    table.add_column("Base")
    table.add_column("Updated")
    for run_id in run_ids[:limit]:
        snapshot = projection.snapshot(run_id)
        style = _OUTCOME_STYLES.get(snapshot.outcome, "")
        table.add_row(
            run_id,
            f"[{style}]{snapshot.outcome}[/{style}]",
            snapshot.toolchain_image,
            snapshot.base_image,
            snapshot.last_updated.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)
    if len(run_ids) > limit:
        console.print(f"[dim]... and {len(run_ids) - limit} more[/dim]")


def compare_cmd(
    first: str = typer.Argument(..., help="Earlier run ID."),
    second: str = typer.Argument(..., help="Later run ID."),
    ledger_db: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Ledger database (default: SLIMSHIP_LEDGER_PATH)."
    ),
    artifact_dir: Optional[Path] = typer.Option(
        None,
        "--artifacts",
        "-a",
        help="Artifact store directory (default: SLIMSHIP_ARTIFACT_STORE_PATH).",
    ),
) -> None:
    """Compare the release manifests of two runs.  Exits 1 if they differ."""
    ledger = _open_ledger(ledger_db)
    store = ContentAddressedStore(
        artifact_dir or SlimshipSettings().artifact_store_path
    )

    try:
        a = load_manifest(ledger, store, first)
        b = load_manifest(ledger, store, second)
    except (LookupError, FileNotFoundError) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title="Release comparison")
    table.add_column("Field", style="cyan")
    table.add_column(first)
    table.add_column(second)
    table.add_row("Image", a.image, b.image)
    table.add_row("Artifact sha256", a.artifact_sha256 or "-", b.artifact_sha256 or "-")
    table.add_row("Fingerprint", a.functional_fingerprint(), b.functional_fingerprint())
    console.print(table)

    for drift in VersionPinner(b.version_pin).check_drift(a.version_pin, strict=False):
        console.print(f"[yellow]drift[/yellow] {drift}")

    if a.is_equivalent(b):
        console.print("[bold green]Functionally equivalent.[/bold green]")
    else:
        console.print("[bold red]Runs differ.[/bold red]")
        raise typer.Exit(code=1)
