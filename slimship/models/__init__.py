"""slimship data models — all Pydantic v2, all frozen (immutable)."""

from slimship.models.artifacts import ContentAddressedArtifact
from slimship.models.definition import (
    ArtifactHandoff,
    BuildStageSpec,
    ImageRef,
    LogLevel,
    PipelineDefinition,
    ProcessConfiguration,
    ReleaseStageSpec,
    RuntimeDependencySet,
    SourceTree,
    ToolchainSpec,
)
from slimship.models.ledger import LedgerEntry
from slimship.models.reports import (
    BuildReport,
    CheckResult,
    ReleaseManifest,
    VerificationReport,
)
from slimship.models.stages import (
    BUILD_STAGE_ID,
    DEFAULT_STAGE_DEFINITIONS,
    RELEASE_STAGE_ID,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)
from slimship.models.versioning import VersionPin

__all__ = [
    # definition
    "ImageRef",
    "ToolchainSpec",
    "SourceTree",
    "BuildStageSpec",
    "ArtifactHandoff",
    "RuntimeDependencySet",
    "LogLevel",
    "ProcessConfiguration",
    "ReleaseStageSpec",
    "PipelineDefinition",
    # versioning
    "VersionPin",
    # stages
    "StageState",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "DEFAULT_STAGE_DEFINITIONS",
    "BUILD_STAGE_ID",
    "RELEASE_STAGE_ID",
    # artifacts
    "ContentAddressedArtifact",
    # ledger
    "LedgerEntry",
    # reports
    "BuildReport",
    "CheckResult",
    "VerificationReport",
    "ReleaseManifest",
]
