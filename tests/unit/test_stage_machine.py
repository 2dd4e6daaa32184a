"""Tests for the StageMachine — state transitions, prerequisite enforcement, cascades."""

from __future__ import annotations

import pytest

from slimship.core.prerequisite_graph import PrerequisiteGraph, PrerequisiteNotMetError
from slimship.core.run_ledger import RunLedger
from slimship.core.stage_machine import InvalidTransitionError, StageMachine
from slimship.models.stages import StageState


class TestStageMachine:
    def test_initialize_run(self, stage_machine: StageMachine, run_id: str):
        states = stage_machine.initialize_run(run_id)
        assert states == {
            "s1_build": StageState.NOT_STARTED,
            "s2_release": StageState.NOT_STARTED,
        }

    def test_transition_to_running(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        entry = stage_machine.transition(run_id, "s1_build", StageState.RUNNING)
        assert entry.state_transition == "not_started->running"
        assert stage_machine.get_current_state(run_id, "s1_build") == StageState.RUNNING

    def test_transition_to_passed(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "s1_build", StageState.RUNNING)
        entry = stage_machine.transition(
            run_id, "s1_build", StageState.PASSED,
            input_hash="in", output_hash="out", artifact_references=["sha256:x"],
        )
        assert entry.state_transition == "running->passed"
        assert entry.artifact_references == ["sha256:x"]

    def test_invalid_transition_rejected(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        with pytest.raises(InvalidTransitionError):
            # Cannot go directly from NOT_STARTED to PASSED
            stage_machine.transition(run_id, "s1_build", StageState.PASSED)

    def test_failed_is_terminal(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "s1_build", StageState.RUNNING)
        stage_machine.transition(run_id, "s1_build", StageState.FAILED)
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(run_id, "s1_build", StageState.RUNNING)

    def test_prerequisite_enforcement(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        with pytest.raises(PrerequisiteNotMetError, match="Build"):
            stage_machine.transition(run_id, "s2_release", StageState.RUNNING)

    def test_release_starts_after_build_passes(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "s1_build", StageState.RUNNING)
        stage_machine.transition(run_id, "s1_build", StageState.PASSED)
        entry = stage_machine.transition(run_id, "s2_release", StageState.RUNNING)
        assert entry.state_transition == "not_started->running"

    def test_cascade_block_on_failure(
        self, stage_machine: StageMachine, ledger: RunLedger, run_id: str
    ):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "s1_build", StageState.RUNNING)
        stage_machine.transition(
            run_id, "s1_build", StageState.FAILED, detail="CompileError: boom"
        )
        assert stage_machine.get_current_state(run_id, "s2_release") == StageState.BLOCKED
        [blocked] = ledger.get_stage_history(run_id, "s2_release")
        assert blocked.state_transition == "not_started->blocked"
        assert blocked.detail == "upstream s1_build failed"

    def test_state_rebuilt_from_ledger(
        self, stage_machine: StageMachine, ledger: RunLedger, graph: PrerequisiteGraph, run_id: str
    ):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "s1_build", StageState.RUNNING)
        stage_machine.transition(run_id, "s1_build", StageState.PASSED)

        fresh = StageMachine(ledger, graph)
        assert fresh.get_all_states(run_id) == {
            "s1_build": StageState.PASSED,
            "s2_release": StageState.NOT_STARTED,
        }

    def test_entries_carry_version_stamps(self, ledger: RunLedger, graph: PrerequisiteGraph, run_id: str):
        machine = StageMachine(
            ledger, graph,
            pipeline_version="9.9.9",
            toolchain_image="rust:1.79",
            base_image="debian:bookworm-slim",
        )
        machine.initialize_run(run_id)
        entry = machine.transition(run_id, "s1_build", StageState.RUNNING)
        assert entry.pipeline_version == "9.9.9"
        assert entry.toolchain_image == "rust:1.79"
        assert entry.base_image == "debian:bookworm-slim"
