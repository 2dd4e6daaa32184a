"""Stage state machine models — strictly ordered, no retry."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """State of a single pipeline stage within one run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    BLOCKED = "blocked"
    FAILED = "failed"
    PASSED = "passed"


# Valid state transitions, enforced by StageMachine.
# PASSED, FAILED and BLOCKED are terminal: a failed pipeline is rerun as a
# new run, never resumed.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.BLOCKED},
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.BLOCKED: set(),
    StageState.FAILED: set(),
    StageState.PASSED: set(),
}


class StageDefinition(BaseModel):
    """Defines a pipeline stage and its prerequisites.

    A stage cannot enter RUNNING unless every prerequisite is PASSED.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: int
    prerequisites: list[str] = []


BUILD_STAGE_ID = "s1_build"
RELEASE_STAGE_ID = "s2_release"

# The two slimship stages. Release consumes the Build Stage's artifact.
DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id=BUILD_STAGE_ID,
        display_name="Build",
        ordinal=1,
        prerequisites=[],
    ),
    StageDefinition(
        stage_id=RELEASE_STAGE_ID,
        display_name="Release",
        ordinal=2,
        prerequisites=[BUILD_STAGE_ID],
    ),
]
