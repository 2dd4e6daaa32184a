"""Stage output models: build report, release verification, release manifest."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from slimship.core.hasher import content_address
from slimship.models.versioning import VersionPin


class BuildReport(BaseModel):
    """What the Build Stage hands to the Release Stage."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    source_path: str
    toolchain_image: str
    toolchain_channel: str = ""
    builder_image: str  # engine tag of the compiled builder target
    artifact_name: str
    build_path: str
    artifact_size_bytes: int = 0
    containerfile_ref: str = ""


class CheckResult(BaseModel):
    """Outcome of a single release verification check."""

    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    detail: str = ""


class VerificationReport(BaseModel):
    """All release checks run against one image."""

    model_config = ConfigDict(frozen=True)

    image: str
    checks: list[CheckResult] = []
    installed_packages: list[str] = []
    artifact_sha256: str = ""

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def violations(self) -> list[str]:
        return [
            f"{check.name}: {check.detail}" for check in self.checks if not check.passed
        ]


class ReleaseManifest(BaseModel):
    """Record of a published runtime image.

    ``functional_fingerprint`` covers only what determines behaviour, so two
    runs on an unchanged source tree compare equal even though image ids
    and timestamps differ.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    project_name: str
    image: str
    image_id: str = ""
    toolchain_image: str
    base_image: str
    artifact_name: str
    artifact_path: str
    artifact_sha256: str = ""
    runtime_packages: list[str] = []
    installed_packages: list[str] = []
    process_env: dict[str, str] = {}
    entrypoint: list[str] = []
    version_pin: VersionPin = VersionPin()
    pushed: bool = False
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def functional_fingerprint(self) -> str:
        return content_address({
            "toolchain_image": self.toolchain_image,
            "base_image": self.base_image,
            "artifact_name": self.artifact_name,
            "artifact_path": self.artifact_path,
            "runtime_packages": sorted(self.runtime_packages),
            "installed_packages": sorted(self.installed_packages),
            "process_env": self.process_env,
            "entrypoint": self.entrypoint,
        })

    def is_equivalent(self, other: ReleaseManifest) -> bool:
        return self.functional_fingerprint() == other.functional_fingerprint()
