"""MonitorProjection — pure read-only view over the RunLedger.

The monitor is a PROJECTION of the Run Ledger. It does not compute truth,
it displays it. Every call re-reads from the ledger.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from slimship.core.run_ledger import LedgerIntegrityError, RunLedger
from slimship.models.ledger import LedgerEntry
from slimship.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    StageDefinition,
    StageState,
)


class StageStatus(BaseModel):
    """Point-in-time status of a single pipeline stage.

    Derived entirely from ledger entries, never stored independently.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    detail: str = ""
    input_hash: str = ""
    output_hash: str = ""
    artifact_refs: list[str] = []


class MonitorSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of a pipeline run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline_version: str = "0.1.0"
    toolchain_image: str = ""
    base_image: str = ""
    stages: list[StageStatus] = []
    artifact_count: int = 0
    chain_valid: bool = True
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stages if s.state == StageState.PASSED)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def failed_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.FAILED]

    @property
    def blocked_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.BLOCKED]

    @property
    def outcome(self) -> str:
        """``released``, ``failed``, ``running`` or ``not_started``."""
        if self.failed_stages:
            return "failed"
        if self.stages and self.completed_count == self.total_stages:
            return "released"
        if any(s.state != StageState.NOT_STARTED for s in self.stages):
            return "running"
        return "not_started"


class MonitorProjection:
    """Pure read-only projection over the RunLedger.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    stage_definitions:
        Stage definitions for display names and ordering.
        Defaults to ``DEFAULT_STAGE_DEFINITIONS``.
    """

    def __init__(
        self,
        ledger: RunLedger,
        stage_definitions: list[StageDefinition] | None = None,
    ) -> None:
        self._ledger = ledger
        definitions = sorted(
            stage_definitions or DEFAULT_STAGE_DEFINITIONS, key=lambda sd: sd.ordinal
        )
        self._stage_defs = {sd.stage_id: sd for sd in definitions}
        self._stage_order = [sd.stage_id for sd in definitions]

    def snapshot(self, run_id: str) -> MonitorSnapshot:
        """Produce a point-in-time snapshot of the run, re-reading the ledger."""
        entries = self._ledger.get_run_entries(run_id)
        stage_states = self._compute_stage_states(entries)

        stages = [
            StageStatus(
                stage_id=stage_id,
                display_name=self._stage_defs[stage_id].display_name,
                **stage_states.get(stage_id, {}),
            )
            for stage_id in self._stage_order
        ]

        latest = entries[-1] if entries else None
        return MonitorSnapshot(
            run_id=run_id,
            pipeline_version=latest.pipeline_version if latest else "0.1.0",
            toolchain_image=latest.toolchain_image if latest else "",
            base_image=latest.base_image if latest else "",
            stages=stages,
            artifact_count=len(
                {ref for entry in entries for ref in entry.artifact_references}
            ),
            chain_valid=self._check_chain_valid(run_id),
            last_updated=(
                latest.timestamp_utc if latest else datetime.now(timezone.utc)
            ),
        )

    def _compute_stage_states(
        self, entries: list[LedgerEntry]
    ) -> dict[str, dict[str, Any]]:
        """Replay ledger entries into per-stage field values."""
        result: dict[str, dict[str, Any]] = {}
        known = {state.value for state in StageState}

        for entry in entries:
            info = result.setdefault(entry.stage_id, {"artifact_refs": []})
            _, _, to_state = entry.state_transition.partition("->")
            if to_state in known:
                info["state"] = StageState(to_state)
                info["entered_at"] = entry.timestamp_utc
            if entry.detail:
                info["detail"] = entry.detail
            if entry.input_hash:
                info["input_hash"] = entry.input_hash
            if entry.output_hash:
                info["output_hash"] = entry.output_hash
            info["artifact_refs"].extend(entry.artifact_references)

        return result

    def _check_chain_valid(self, run_id: str) -> bool:
        """Check hash chain integrity without raising."""
        try:
            return self._ledger.verify_chain(run_id)
        except LedgerIntegrityError:
            return False
