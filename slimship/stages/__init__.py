"""slimship pipeline stages — registry mapping stage_id to stage class.

Usage::

    from slimship.stages import STAGE_ORDER, get_stage

    for stage_id in STAGE_ORDER:
        result = get_stage(stage_id).run_stage(run_context)
"""

from __future__ import annotations

from slimship.models.stages import BUILD_STAGE_ID, RELEASE_STAGE_ID
from slimship.stages.base import BaseStage, StageExecutionError, StagePrerequisiteError
from slimship.stages.s1_build import BuildStage
from slimship.stages.s2_release import ReleaseStage, verify_image

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    BUILD_STAGE_ID: BuildStage,
    RELEASE_STAGE_ID: ReleaseStage,
}

# Strictly sequential: the release stage consumes the build artifact.
STAGE_ORDER: list[str] = [BUILD_STAGE_ID, RELEASE_STAGE_ID]


def get_stage(stage_id: str) -> BaseStage:
    """Instantiate a stage by id.  Raises KeyError for unknown ids."""
    try:
        return STAGE_REGISTRY[stage_id]()
    except KeyError:
        raise KeyError(
            f"Unknown stage_id {stage_id!r}. "
            f"Valid stages: {', '.join(STAGE_ORDER)}"
        ) from None


__all__ = [
    "BaseStage",
    "StageExecutionError",
    "StagePrerequisiteError",
    "BuildStage",
    "ReleaseStage",
    "verify_image",
    "STAGE_REGISTRY",
    "STAGE_ORDER",
    "get_stage",
]
