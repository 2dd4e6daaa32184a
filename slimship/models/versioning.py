"""Version pinning model — what a run was built against."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from slimship.models.definition import PipelineDefinition


class VersionPin(BaseModel):
    """Records the toolchain, base and dependency versions of a run.

    Two runs with equal pins on an unchanged source tree are expected to
    produce functionally equivalent images.
    """

    model_config = ConfigDict(frozen=True)

    pipeline_version: str = "0.1.0"
    toolchain_image: str = "rust:latest"
    toolchain_channel: str = "nightly"
    base_image: str = "debian:stable-slim"
    runtime_packages: list[str] = ["ca-certificates", "libpq5", "libssl-dev"]

    @classmethod
    def from_definition(
        cls, definition: PipelineDefinition, pipeline_version: str = "0.1.0"
    ) -> VersionPin:
        return cls(
            pipeline_version=pipeline_version,
            toolchain_image=definition.build.toolchain.image.reference,
            toolchain_channel=definition.build.toolchain.channel or "",
            base_image=definition.release.base.reference,
            runtime_packages=sorted(definition.release.dependencies.packages),
        )
