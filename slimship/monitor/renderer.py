"""Rich terminal renderer for the slimship monitor.

Turns ``MonitorSnapshot`` into Rich renderables, with color-coded stage
states and an optional continuous ``Rich.Live`` mode.

Color scheme
------------
- green     : PASSED
- red       : FAILED
- yellow    : RUNNING
- dim       : NOT_STARTED
- bold red  : BLOCKED
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from slimship.models.stages import StageState

if TYPE_CHECKING:
    from slimship.monitor.projection import MonitorProjection, MonitorSnapshot


_STATE_STYLES: dict[StageState, str] = {
    StageState.PASSED: "green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "yellow",
    StageState.NOT_STARTED: "dim",
    StageState.BLOCKED: "bold red",
}

_STATE_LABELS: dict[StageState, str] = {
    state: f"[{style}]{state.value.replace('_', ' ').upper()}[/{style}]"
    for state, style in _STATE_STYLES.items()
}


def _short(digest: str) -> str:
    return digest[:12] if digest else "-"


class MonitorRenderer:
    """Renders ``MonitorSnapshot`` as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_snapshot(self, snapshot: MonitorSnapshot) -> Panel:
        """Render a snapshot as a Panel: stage table, then run summary."""
        chain = "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        summary = Text.from_markup(
            f"[bold]Run:[/bold] {snapshot.run_id}  |  "
            f"[bold]Version:[/bold] {snapshot.pipeline_version}  |  "
            f"[bold]Progress:[/bold] {snapshot.completed_count}/{snapshot.total_stages}  |  "
            f"[bold]Artifacts:[/bold] {snapshot.artifact_count}  |  "
            f"[bold]Chain:[/bold] {chain}"
        )
        images = Text(
            f"toolchain {snapshot.toolchain_image or '-'}  base {snapshot.base_image or '-'}",
            style="dim",
        )
        updated = snapshot.last_updated.strftime("%Y-%m-%d %H:%M:%S UTC")
        return Panel(
            Group(self._stage_table(snapshot), Text(""), summary, images),
            title="[bold]slimship monitor[/bold]",
            subtitle=f"Last updated: {updated}",
            border_style="blue",
            padding=(1, 2),
        )

    def _stage_table(self, snapshot: MonitorSnapshot) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Stage", min_width=10)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Entered", width=9)
        table.add_column("Input", width=13, style="dim")
        table.add_column("Output", width=13, style="dim")
        table.add_column("Detail", min_width=20)

        for stage in snapshot.stages:
            style = _STATE_STYLES[stage.state]
            table.add_row(
                Text(stage.display_name, style=style),
                _STATE_LABELS[stage.state],
                stage.entered_at.strftime("%H:%M:%S") if stage.entered_at else "-",
                _short(stage.input_hash),
                _short(stage.output_hash),
                Text(stage.detail, style="red") if stage.detail else Text("-", style="dim"),
            )
        return table

    # ------------------------------------------------------------------
    # Continuous live rendering
    # ------------------------------------------------------------------

    def render_live(
        self,
        run_id: str,
        projection: MonitorProjection,
        *,
        refresh_hz: float = 2.0,
    ) -> None:
        """Re-render the run until it finishes or Ctrl+C is pressed."""
        interval = 1.0 / max(refresh_hz, 0.1)

        with Live(
            console=self.console, refresh_per_second=refresh_hz, transient=False
        ) as live:
            try:
                while True:
                    snapshot = projection.snapshot(run_id)
                    live.update(self.render_snapshot(snapshot))
                    if snapshot.outcome in ("released", "failed"):
                        break
                    time.sleep(interval)
            except KeyboardInterrupt:
                live.update(self.render_snapshot(projection.snapshot(run_id)))

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_snapshot(self, snapshot: MonitorSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(
                f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]"
            )
