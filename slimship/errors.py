"""Pipeline error taxonomy.

Every failure is fatal to the run. Errors carry the stage that raised them
and the container engine's own output, which is what the operator sees.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for all fatal pipeline failures.

    Parameters
    ----------
    message:
        Human-readable summary.
    stage_id:
        The stage that failed, if any.
    detail:
        Raw tool output (usually the engine's stderr tail).
    """

    def __init__(
        self,
        message: str,
        *,
        stage_id: str = "",
        detail: str = "",
    ) -> None:
        super().__init__(message)
        self.stage_id = stage_id
        self.detail = detail


class EngineUnavailable(PipelineError):
    """The container engine binary cannot be executed."""


class ToolchainUnavailable(PipelineError):
    """The requested toolchain image or channel cannot be provisioned."""


class CompileError(PipelineError):
    """The source tree failed to compile or link."""


class ArtifactPathMismatch(PipelineError):
    """The build artifact is not where the release stage expects it."""


class BaseImageUnavailable(PipelineError):
    """The minimal runtime base image cannot be provisioned."""


class DependencyInstallError(PipelineError):
    """A declared runtime dependency could not be installed."""


class ReleaseVerificationError(PipelineError):
    """The produced runtime image violates a release invariant.

    ``violations`` lists every failed check, not only the first.
    """

    def __init__(
        self,
        message: str,
        *,
        violations: list[str] | None = None,
        stage_id: str = "",
        detail: str = "",
    ) -> None:
        super().__init__(message, stage_id=stage_id, detail=detail)
        self.violations = list(violations or [])
