"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only ``execute()``.
The ``run_stage()`` wrapper is **not overridable**; it fixes the order:

    validate_prerequisites -> compute_input_hash -> execute
        -> compute_output_hash -> record

Pipeline failures (``PipelineError`` subclasses) propagate unchanged so the
caller can tell a compile failure from a missing base image. Anything else
escaping ``execute()`` is a defect and is wrapped in ``StageExecutionError``.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, ClassVar, final

from slimship.core.hasher import compute_input_hash, compute_output_hash
from slimship.errors import PipelineError

logger = logging.getLogger(__name__)


class StagePrerequisiteError(RuntimeError):
    """Raised when a stage runs before the stages it consumes."""


class StageExecutionError(RuntimeError):
    """Raised when a stage's execute() fails with a non-pipeline error."""


class BaseStage(abc.ABC):
    """Abstract base for the pipeline stages.

    Subclasses **must** implement ``stage_id``, ``display_name`` and
    ``execute(run_context)``. They **may** set ``requires`` to the stage ids
    whose results they read from ``run_context["stage_results"]``.

    Subclasses **must not** override ``run_stage()``.
    """

    requires: ClassVar[tuple[str, ...]] = ()

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @property
    @abc.abstractmethod
    def stage_id(self) -> str:
        """Unique stage identifier (e.g. ``'s1_build'``)."""
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        """Human-readable display name for the monitor."""
        ...

    @abc.abstractmethod
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the stage's core logic.

        Parameters
        ----------
        run_context:
            Mutable dict carrying run-wide state: ``run_id``, ``definition``,
            ``engine``, ``artifact_store``, ``work_dir``, release options and
            prior stage results under ``stage_results``.

        Returns
        -------
        dict:
            JSON-serializable result. Keys starting with ``_`` are internal
            and excluded from the output hash; ``_artifact_refs`` lists
            content addresses to record in the ledger.
        """
        ...

    # ------------------------------------------------------------------
    # Lifecycle, not overridable
    # ------------------------------------------------------------------

    @final
    def run_stage(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the full stage lifecycle.  **Do not override.**

        Returns the result dict produced by ``execute()``, augmented with
        ``_input_hash`` and ``_output_hash`` keys.
        """
        self.validate_prerequisites(run_context)

        input_hash = self._compute_input_hash(run_context)
        logger.info(
            "%s [%s] input_hash=%s", self.display_name, self.stage_id, input_hash
        )

        try:
            result = self.execute(run_context)
        except PipelineError as exc:
            if not exc.stage_id:
                exc.stage_id = self.stage_id
            logger.error(
                "%s [%s] failed: %s", self.display_name, self.stage_id, exc
            )
            if exc.detail:
                logger.error("%s", exc.detail)
            raise
        except Exception as exc:
            logger.error(
                "%s [%s] execution failed: %s", self.display_name, self.stage_id, exc
            )
            raise StageExecutionError(
                f"Stage {self.stage_id} failed: {exc}"
            ) from exc

        output_hash = self._compute_output_hash(result)
        logger.info(
            "%s [%s] output_hash=%s", self.display_name, self.stage_id, output_hash
        )

        result["_input_hash"] = input_hash
        result["_output_hash"] = output_hash
        run_context.setdefault("stage_results", {})[self.stage_id] = result
        return result

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    @final
    def validate_prerequisites(self, run_context: dict[str, Any]) -> None:
        """Ensure every required stage has already produced a result."""
        results = run_context.get("stage_results", {})
        missing = [sid for sid in self.requires if sid not in results]
        if missing:
            raise StagePrerequisiteError(
                f"Cannot run {self.stage_id}: no result from {', '.join(missing)}"
            )

    @final
    def _compute_input_hash(self, run_context: dict[str, Any]) -> str:
        """SHA-256 of the definition plus the outputs this stage consumes.

        The run id is excluded: two runs over the same inputs hash
        identically.
        """
        definition = run_context.get("definition")
        inputs: dict[str, Any] = {
            "definition": (
                definition.model_dump(mode="json") if definition is not None else {}
            ),
            "prior_output_hashes": {
                sid: run_context.get("stage_results", {})
                .get(sid, {})
                .get("_output_hash", "")
                for sid in self.requires
            },
        }
        return compute_input_hash(self.stage_id, inputs)

    @final
    def _compute_output_hash(self, result: dict[str, Any]) -> str:
        hashable = {k: v for k, v in result.items() if not k.startswith("_")}
        return compute_output_hash(self.stage_id, hashable)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage_id={self.stage_id!r}>"


def work_image_tag(image_name: str, role: str, run_id: str) -> str:
    """Engine tag for an intermediate image owned by one run."""
    return f"{image_name}-{role}:{run_id}"
