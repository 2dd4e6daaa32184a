"""Stage 1 — Build.

Produces the compiled artifact inside the toolchain environment:

    1. Pull the toolchain image and install the requested channel.
    2. Copy the source tree in (the build context) and compile it.
    3. Confirm the artifact exists at the declared build path.

Each step is a separate engine build target, so the error raised tells the
operator which step broke: ``ToolchainUnavailable``, ``CompileError`` or
``ArtifactPathMismatch``.
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path
from typing import Any

from slimship.core.artifact_store import ContentAddressedStore
from slimship.core.containerfile import (
    BUILDER_TARGET,
    CONTAINERFILE_NAME,
    IGNORE_FILE_NAME,
    TOOLCHAIN_TARGET,
    render_containerfile,
    render_ignore_file,
    write_build_files,
)
from slimship.core.engine import ContainerEngine
from slimship.errors import ArtifactPathMismatch, CompileError, ToolchainUnavailable
from slimship.models.definition import PipelineDefinition, SourceTree
from slimship.models.reports import BuildReport
from slimship.models.stages import BUILD_STAGE_ID
from slimship.stages.base import BaseStage, work_image_tag

logger = logging.getLogger(__name__)

# Top-level names that usually should not end up in an image layer.
SENSITIVE_PATTERNS: tuple[str, ...] = (".env", ".env.*", "*.pem", "*.key", ".git")


def find_sensitive_files(source: SourceTree) -> list[str]:
    """Return top-level entries of the source tree that look like secrets.

    Entries already covered by an exclusion pattern are not reported.
    """
    if not source.path.is_dir():
        return []
    found: list[str] = []
    for entry in sorted(source.path.iterdir()):
        name = entry.name
        if not any(fnmatch.fnmatch(name, pattern) for pattern in SENSITIVE_PATTERNS):
            continue
        if any(fnmatch.fnmatch(name, pattern.strip("/")) for pattern in source.exclude):
            continue
        found.append(name)
    return found


class BuildStage(BaseStage):
    """Stage 1: compile the source tree inside the toolchain environment."""

    @property
    def stage_id(self) -> str:
        return BUILD_STAGE_ID

    @property
    def display_name(self) -> str:
        return "Build"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Compile the artifact and return the build report.

        Reads from *run_context*: ``run_id``, ``definition``, ``engine``,
        ``artifact_store``, ``work_dir`` and optionally ``state_paths``
        (slimship state kept out of the build context).
        """
        run_id: str = run_context["run_id"]
        definition: PipelineDefinition = run_context["definition"]
        engine: ContainerEngine = run_context["engine"]
        store: ContentAddressedStore = run_context["artifact_store"]
        work_dir = Path(run_context["work_dir"])
        state_paths = tuple(run_context.get("state_paths", ()))

        source = definition.build.source
        toolchain = definition.build.toolchain
        if not source.path.is_dir():
            raise CompileError(
                f"Source tree {source.path} does not exist or is not a directory."
            )
        for name in find_sensitive_files(source):
            logger.warning(
                "Source tree contains %s and no exclusion covers it; "
                "it will be copied into the build image.",
                name,
            )

        # --- Render build files -----------------------------------------
        containerfile = write_build_files(definition, work_dir, state_paths)
        refs = [
            store.store_text(
                render_containerfile(definition),
                name=CONTAINERFILE_NAME,
                artifact_type="containerfile",
            ).content_address
        ]
        ignore_text = render_ignore_file(source, state_paths)
        if ignore_text:
            refs.append(
                store.store_text(
                    ignore_text, name=IGNORE_FILE_NAME, artifact_type="ignore-file"
                ).content_address
            )

        builder_image = work_image_tag(definition.image_name, BUILDER_TARGET, run_id)

        # --- 1. Provision toolchain --------------------------------------
        pulled = engine.pull(toolchain.image.reference)
        if not pulled.ok:
            raise ToolchainUnavailable(
                f"Cannot pull toolchain image {toolchain.image.reference}.",
                detail=pulled.tail(),
            )
        provisioned = engine.build(
            source.path, containerfile, target=TOOLCHAIN_TARGET, tag=builder_image
        )
        if not provisioned.ok:
            self._discard(engine, builder_image)
            raise ToolchainUnavailable(
                f"Cannot install toolchain channel {toolchain.channel!r} "
                f"in {toolchain.image.reference}.",
                detail=provisioned.tail(),
            )

        # --- 2. Compile --------------------------------------------------
        compiled = engine.build(
            source.path, containerfile, target=BUILDER_TARGET, tag=builder_image
        )
        if not compiled.ok:
            self._discard(engine, builder_image)
            raise CompileError(
                f"Compilation of {definition.project_name} failed "
                f"({' '.join(definition.build.build_command)}).",
                detail=compiled.tail(),
            )

        # --- 3. Verify artifact location ---------------------------------
        located = engine.run(builder_image, ["stat", "-c", "%s", definition.build_path])
        if not located.ok:
            self._discard(engine, builder_image)
            raise ArtifactPathMismatch(
                f"Build finished but no artifact {definition.artifact.name!r} "
                f"exists at {definition.build_path}. Check output_dir and the "
                "artifact name.",
                detail=located.tail(),
            )
        size = int(located.stdout.strip() or 0)
        logger.info("Artifact %s: %d bytes", definition.build_path, size)

        report = BuildReport(
            run_id=run_id,
            source_path=str(source.path),
            toolchain_image=toolchain.image.reference,
            toolchain_channel=toolchain.channel or "",
            builder_image=builder_image,
            artifact_name=definition.artifact.name,
            build_path=definition.build_path,
            artifact_size_bytes=size,
            containerfile_ref=refs[0],
        )
        return {
            "report": report.model_dump(mode="json"),
            "_artifact_refs": refs,
        }

    @staticmethod
    def _discard(engine: ContainerEngine, image: str) -> None:
        """Remove a partial builder image; the build error is what gets raised."""
        removed = engine.remove_image(image)
        if not removed.ok:
            logger.warning("Could not remove %s: %s", image, removed.tail())
