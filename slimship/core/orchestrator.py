"""Pipeline orchestrator — the central coordinator for slimship runs.

The Orchestrator wires together the RunLedger, StageMachine,
PrerequisiteGraph, ContentAddressedStore, VersionPinner and a
ContainerEngine, and runs the Build and Release stages strictly in order.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from slimship.config import SlimshipSettings
from slimship.core.artifact_store import ContentAddressedStore
from slimship.core.engine import ContainerEngine, DockerEngine
from slimship.core.prerequisite_graph import PrerequisiteGraph
from slimship.core.production_guard import enforce_production_constraints
from slimship.core.run_ledger import RunLedger
from slimship.core.stage_machine import StageMachine
from slimship.core.version_pinner import VersionPinner
from slimship.models.definition import PipelineDefinition
from slimship.models.ledger import LedgerEntry
from slimship.models.reports import ReleaseManifest
from slimship.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    RELEASE_STAGE_ID,
    StageState,
)
from slimship.models.versioning import VersionPin
from slimship.stages import STAGE_ORDER, get_stage

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"ss-{ts}-{uuid.uuid4().hex[:3]}"


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    definition:
        The pipeline to build.
    settings:
        Tool settings. Read from the environment if not provided.
    engine:
        Container engine backend. A ``DockerEngine`` built from *settings*
        if not provided.
    run_id:
        Identifier for this run. Generated if None.
    pipeline_version:
        Version stamp written into the ledger and the version pin.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        settings: SlimshipSettings | None = None,
        engine: ContainerEngine | None = None,
        run_id: str | None = None,
        *,
        pipeline_version: str = "0.1.0",
    ) -> None:
        self.definition = definition
        self.settings = settings or SlimshipSettings()

        # Production guard: fails hard before anything is recorded
        enforce_production_constraints(self.settings, definition)

        self.engine = engine or DockerEngine.from_settings(self.settings)
        self.pipeline_version = pipeline_version
        self.version_pinner = VersionPinner(
            VersionPin.from_definition(definition, pipeline_version)
        )

        # Core subsystems
        self.ledger = RunLedger(self.settings.ledger_path)
        self.artifact_store = ContentAddressedStore(self.settings.artifact_store_path)
        self.graph = PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)
        self.stage_machine = StageMachine(
            self.ledger,
            self.graph,
            pipeline_version=pipeline_version,
            toolchain_image=definition.build.toolchain.image.reference,
            base_image=definition.release.base.reference,
        )

        self.run_id = run_id or new_run_id()

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(
        self,
        *,
        tag: str = "latest",
        push: bool = False,
        keep_builder: bool | None = None,
    ) -> ReleaseManifest:
        """Execute both stages and return the release manifest.

        The first failing stage moves to FAILED, the release stage is
        cascade-blocked if it had not started, and the stage's error is
        re-raised unchanged.
        """
        self.engine.version()

        self.stage_machine.initialize_run(self.run_id)
        logger.info(
            "Run %s: %s -> %s:%s",
            self.run_id,
            self.definition.project_name,
            self.definition.image_name,
            tag,
        )

        run_context: dict[str, Any] = {
            "run_id": self.run_id,
            "definition": self.definition,
            "engine": self.engine,
            "artifact_store": self.artifact_store,
            "work_dir": self.settings.work_dir / self.run_id,
            "state_paths": self.settings.state_paths,
            "tag": tag,
            "push": push,
            "keep_builder": (
                self.settings.keep_builder if keep_builder is None else keep_builder
            ),
            "pipeline_version": self.pipeline_version,
            "stage_results": {},
        }

        for stage_id in STAGE_ORDER:
            self.execute_stage(stage_id, run_context)

        return self.load_manifest()

    def execute_stage(self, stage_id: str, run_context: dict[str, Any]) -> dict[str, Any]:
        """Run one stage through its lifecycle, recording every transition.

        Lifecycle:
        1. Transition to RUNNING (prerequisites checked by the state machine)
        2. ``stage.run_stage(run_context)``
        3. Transition to PASSED with hashes and artifact references,
           or to FAILED with the error text, re-raising the error.
        """
        stage = get_stage(stage_id)
        self.stage_machine.transition(self.run_id, stage_id, StageState.RUNNING)

        try:
            result = stage.run_stage(run_context)
        except Exception as exc:
            self.stage_machine.transition(
                self.run_id,
                stage_id,
                StageState.FAILED,
                detail=f"{type(exc).__name__}: {exc}",
            )
            raise

        self.stage_machine.transition(
            self.run_id,
            stage_id,
            StageState.PASSED,
            input_hash=result["_input_hash"],
            output_hash=result["_output_hash"],
            artifact_references=result.get("_artifact_refs", []),
        )
        return result

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[str, StageState]:
        """Return current state of all stages."""
        return self.stage_machine.get_all_states(self.run_id)

    def get_run_entries(self) -> list[LedgerEntry]:
        """Return all ledger entries for the current run."""
        return self.ledger.get_run_entries(self.run_id)

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of the current run's ledger."""
        return self.ledger.verify_chain(self.run_id)

    def load_manifest(self, run_id: str | None = None) -> ReleaseManifest:
        """Load the release manifest of a run (this run by default)."""
        return load_manifest(self.ledger, self.artifact_store, run_id or self.run_id)

    def check_drift(self, run_id: str) -> list[str]:
        """List version differences between *run_id* and the current definition."""
        recorded = self.load_manifest(run_id).version_pin
        return self.version_pinner.check_drift(recorded, strict=False)


def load_manifest(
    ledger: RunLedger, store: ContentAddressedStore, run_id: str
) -> ReleaseManifest:
    """Return the manifest recorded by a run's passed release stage.

    Raises ``LookupError`` if the run never released an image.
    """
    passed = f"{StageState.RUNNING.value}->{StageState.PASSED.value}"
    for entry in ledger.get_stage_history(run_id, RELEASE_STAGE_ID):
        if entry.state_transition == passed and entry.artifact_references:
            return ReleaseManifest.model_validate(
                store.retrieve_json(entry.artifact_references[0])
            )
    raise LookupError(f"Run {run_id} has no released image.")
