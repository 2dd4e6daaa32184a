"""Deterministic stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Prerequisites checked before RUNNING
- Cascade blocking on failure
- Every transition recorded in the Run Ledger
"""

from __future__ import annotations

import logging

from slimship.core.prerequisite_graph import PrerequisiteGraph, PrerequisiteNotMetError
from slimship.core.run_ledger import RunLedger
from slimship.models.ledger import LedgerEntry
from slimship.models.stages import VALID_TRANSITIONS, StageState

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class StageMachine:
    """Enforces the stage state machine with prerequisite checking.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    graph:
        The prerequisite graph for dependency checking.
    pipeline_version, toolchain_image, base_image:
        Version stamps written into every ledger entry.
    """

    def __init__(
        self,
        ledger: RunLedger,
        graph: PrerequisiteGraph,
        *,
        pipeline_version: str = "0.1.0",
        toolchain_image: str = "",
        base_image: str = "",
    ) -> None:
        self._ledger = ledger
        self._graph = graph
        self._stamps = {
            "pipeline_version": pipeline_version,
            "toolchain_image": toolchain_image,
            "base_image": base_image,
        }
        # In-memory state cache: run_id -> {stage_id -> StageState}
        self._states: dict[str, dict[str, StageState]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, StageState]:
        """Initialize all stages to NOT_STARTED for a new run."""
        states = {sid: StageState.NOT_STARTED for sid in self._graph.stage_ids}
        self._states[run_id] = states
        return dict(states)

    def get_current_state(self, run_id: str, stage_id: str) -> StageState:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return self._states[run_id].get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        """Return a snapshot of all stage states for a run."""
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return dict(self._states[run_id])

    def _rebuild_state(self, run_id: str) -> None:
        """Rebuild in-memory state from the ledger."""
        states = {sid: StageState.NOT_STARTED for sid in self._graph.stage_ids}
        known = {state.value for state in StageState}
        for entry in self._ledger.get_run_entries(run_id):
            _, _, to_state = entry.state_transition.partition("->")
            if to_state in known:
                states[entry.stage_id] = StageState(to_state)
        self._states[run_id] = states

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: str = "",
    ) -> LedgerEntry:
        """Transition a stage to a new state, recording it in the ledger.

        Validates:
        1. The transition is allowed by VALID_TRANSITIONS.
        2. If target is RUNNING, prerequisites are met.
        3. If target is FAILED, dependents are cascade-blocked.

        Returns the sealed LedgerEntry.
        """
        if run_id not in self._states:
            self._rebuild_state(run_id)

        current = self._states[run_id].get(stage_id, StageState.NOT_STARTED)

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target_state == StageState.RUNNING:
            if not self._graph.are_prerequisites_met(stage_id, self._states[run_id]):
                reasons = self._graph.get_blocking_reasons(
                    stage_id, self._states[run_id]
                )
                raise PrerequisiteNotMetError(
                    f"Cannot start {stage_id}: prerequisites not met. "
                    f"Blocked by: {'; '.join(reasons)}"
                )

        sealed = self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                stage_id=stage_id,
                state_transition=f"{current.value}->{target_state.value}",
                input_hash=input_hash,
                output_hash=output_hash,
                artifact_references=artifact_references or [],
                detail=detail,
                **self._stamps,
            )
        )
        self._states[run_id][stage_id] = target_state
        logger.info("%s: %s -> %s", stage_id, current.value, target_state.value)

        if target_state == StageState.FAILED:
            for blocked_id in self._graph.cascade_block(stage_id, self._states[run_id]):
                self._ledger.append(
                    LedgerEntry(
                        run_id=run_id,
                        stage_id=blocked_id,
                        state_transition=(
                            f"{StageState.NOT_STARTED.value}->{StageState.BLOCKED.value}"
                        ),
                        detail=f"upstream {stage_id} failed",
                        **self._stamps,
                    )
                )
                logger.info("%s: blocked by failed %s", blocked_id, stage_id)

        return sealed
