"""Stage 2 — Release.

Assembles the runtime image from the minimal base and the build artifact,
then proves the result is what was declared before publishing it:

    1. Pull the minimal base image.
    2. Install the runtime dependency set (``runtime-base`` target).
    3. Copy the artifact out of the Build Stage's builder image, set env
       and entry point (``runtime`` target, ``BUILDER_IMAGE`` build argument).
    4. Verify the candidate image (``verify_image``).
    5. Tag it as ``image_name:tag`` and optionally push.

The candidate tag never outlives a failed run, and the builder image is
removed at the end unless ``keep_builder`` is set.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Any

from slimship.core.artifact_store import ContentAddressedStore
from slimship.core.containerfile import (
    BUILDER_IMAGE_ARG,
    CONTAINERFILE_NAME,
    RUNTIME_BASE_TARGET,
    RUNTIME_TARGET,
)
from slimship.core.engine import CommandResult, ContainerEngine
from slimship.errors import (
    ArtifactPathMismatch,
    BaseImageUnavailable,
    DependencyInstallError,
    PipelineError,
    ReleaseVerificationError,
)
from slimship.models.definition import PipelineDefinition, ProcessConfiguration
from slimship.models.reports import (
    BuildReport,
    CheckResult,
    ReleaseManifest,
    VerificationReport,
)
from slimship.models.stages import BUILD_STAGE_ID, RELEASE_STAGE_ID
from slimship.models.versioning import VersionPin
from slimship.stages.base import BaseStage, work_image_tag

logger = logging.getLogger(__name__)

APT_LISTS_DIR = "/var/lib/apt/lists"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def _lines(result: CommandResult) -> list[str]:
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def _manual_packages(engine: ContainerEngine, image: str) -> tuple[set[str], str]:
    result = engine.run(image, ["apt-mark", "showmanual"])
    if not result.ok:
        return set(), result.tail()
    return set(_lines(result)), ""


def _check_artifact(
    engine: ContainerEngine, definition: PipelineDefinition, image: str
) -> CheckResult:
    result = engine.run(
        image,
        ["find", "/", "-xdev", "-type", "f", "-name", definition.artifact.name],
    )
    found = _lines(result)
    if found == [definition.runtime_path]:
        return CheckResult(name="artifact", passed=True, detail=definition.runtime_path)
    if not found:
        detail = f"no file named {definition.artifact.name!r} in the image"
        if not result.ok:
            detail += f" ({result.tail(3)})"
    else:
        detail = (
            f"expected exactly {definition.runtime_path}, found {', '.join(found)}"
        )
    return CheckResult(name="artifact", passed=False, detail=detail)


def _check_toolchain_absent(
    engine: ContainerEngine, definition: PipelineDefinition, image: str
) -> CheckResult:
    binaries = definition.build.toolchain.tool_binaries
    if not binaries:
        return CheckResult(name="toolchain-absent", passed=True)
    script = "; ".join(f"command -v {shlex.quote(b)}" for b in binaries) + "; true"
    result = engine.run(image, ["sh", "-c", script])
    if not result.ok:
        return CheckResult(
            name="toolchain-absent", passed=False, detail=result.tail(3)
        )
    found = _lines(result)
    if found:
        return CheckResult(
            name="toolchain-absent",
            passed=False,
            detail=f"toolchain binaries present: {', '.join(found)}",
        )
    return CheckResult(name="toolchain-absent", passed=True)


def _check_dependencies(
    definition: PipelineDefinition,
    base_manual: set[str],
    image_manual: set[str],
) -> tuple[CheckResult, list[str]]:
    declared = set(definition.release.dependencies.packages)
    installed = image_manual - base_manual
    extra = sorted(installed - declared)
    missing = sorted(declared - image_manual)
    problems = []
    if missing:
        problems.append(f"missing: {', '.join(missing)}")
    if extra:
        problems.append(f"undeclared: {', '.join(extra)}")
    check = CheckResult(
        name="dependencies",
        passed=not problems,
        detail="; ".join(problems) or ", ".join(sorted(installed)),
    )
    return check, sorted(installed)


def _check_apt_lists(engine: ContainerEngine, image: str) -> CheckResult:
    result = engine.run(
        image, ["find", APT_LISTS_DIR, "-type", "f", "!", "-name", "lock"]
    )
    leftovers = _lines(result)
    if leftovers:
        return CheckResult(
            name="package-lists",
            passed=False,
            detail=f"{len(leftovers)} file(s) left in {APT_LISTS_DIR}",
        )
    return CheckResult(name="package-lists", passed=True)


def _check_env(definition: PipelineDefinition, config: dict[str, Any]) -> CheckResult:
    baked: dict[str, str] = {}
    for item in config.get("Env") or []:
        key, _, value = item.partition("=")
        baked[key] = value
    process = definition.release.process
    wrong = [
        f"{key}={baked.get(key)!r} (expected {value!r})"
        for key, value in process.to_env().items()
        if baked.get(key) != value
    ]
    if wrong:
        return CheckResult(name="process-env", passed=False, detail="; ".join(wrong))

    seen = ProcessConfiguration.from_env(
        baked,
        log_level_var=process.log_level_var,
        backtrace_var=process.backtrace_var,
    )
    return CheckResult(
        name="process-env",
        passed=True,
        detail=(
            f"log level {seen.log_level.value}, "
            f"backtrace {'on' if seen.backtrace else 'off'}"
        ),
    )


def _check_entrypoint(
    definition: PipelineDefinition, config: dict[str, Any]
) -> CheckResult:
    entrypoint = config.get("Entrypoint") or []
    cmd = config.get("Cmd") or []
    problems = []
    if entrypoint != definition.entrypoint:
        problems.append(f"entrypoint is {entrypoint!r}, expected {definition.entrypoint!r}")
    if cmd:
        problems.append(f"unexpected command arguments {cmd!r}")
    return CheckResult(
        name="entrypoint",
        passed=not problems,
        detail="; ".join(problems) or " ".join(entrypoint),
    )


def verify_image(
    engine: ContainerEngine, definition: PipelineDefinition, image: str
) -> VerificationReport:
    """Check *image* against the release properties of *definition*.

    Every check runs even when an earlier one fails, so the report lists
    all violations at once. Raising is left to the caller.
    """
    config = engine.inspect_image(image).get("Config") or {}
    base_manual, base_error = _manual_packages(engine, definition.release.base.reference)
    image_manual, image_error = _manual_packages(engine, image)

    checks = [
        _check_artifact(engine, definition, image),
        _check_toolchain_absent(engine, definition, image),
    ]
    if base_error or image_error:
        checks.append(
            CheckResult(
                name="dependencies",
                passed=False,
                detail=f"cannot list packages: {base_error or image_error}",
            )
        )
        installed: list[str] = []
    else:
        dependency_check, installed = _check_dependencies(
            definition, base_manual, image_manual
        )
        checks.append(dependency_check)
    checks.extend([
        _check_apt_lists(engine, image),
        _check_env(definition, config),
        _check_entrypoint(definition, config),
    ])

    digest = ""
    hashed = engine.run(image, ["sha256sum", definition.runtime_path])
    if hashed.ok and hashed.stdout.strip():
        digest = hashed.stdout.split()[0]

    report = VerificationReport(
        image=image,
        checks=checks,
        installed_packages=installed,
        artifact_sha256=digest,
    )
    for check in checks:
        log = logger.info if check.passed else logger.error
        log("verify %s [%s]: %s", check.name, "ok" if check.passed else "FAIL", check.detail)
    return report


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


class ReleaseStage(BaseStage):
    """Stage 2: assemble, verify and publish the runtime image."""

    requires = (BUILD_STAGE_ID,)

    @property
    def stage_id(self) -> str:
        return RELEASE_STAGE_ID

    @property
    def display_name(self) -> str:
        return "Release"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Produce, verify and publish the runtime image.

        Reads from *run_context*: ``run_id``, ``definition``, ``engine``,
        ``artifact_store``, ``work_dir``, ``tag``, ``push``,
        ``keep_builder``, ``pipeline_version`` and the Build Stage result.
        """
        run_id: str = run_context["run_id"]
        definition: PipelineDefinition = run_context["definition"]
        engine: ContainerEngine = run_context["engine"]
        store: ContentAddressedStore = run_context["artifact_store"]
        containerfile = Path(run_context["work_dir"]) / CONTAINERFILE_NAME
        tag: str = run_context.get("tag") or "latest"
        push: bool = run_context.get("push", False)
        keep_builder: bool = run_context.get("keep_builder", False)

        build = BuildReport.model_validate(
            run_context["stage_results"][BUILD_STAGE_ID]["report"]
        )
        release = definition.release
        context = definition.build.source.path
        candidate = work_image_tag(definition.image_name, "candidate", run_id)
        final_image = f"{definition.image_name}:{tag}"

        try:
            # --- 1. Provision minimal base -------------------------------
            pulled = engine.pull(release.base.reference)
            if not pulled.ok:
                raise BaseImageUnavailable(
                    f"Cannot pull runtime base image {release.base.reference}.",
                    detail=pulled.tail(),
                )

            try:
                report = self._assemble_and_verify(
                    engine, definition, context, containerfile, candidate,
                    builder_image=build.builder_image,
                )

                # --- 5. Publish ----------------------------------------
                tagged = engine.tag(candidate, final_image)
                if not tagged.ok:
                    raise PipelineError(
                        f"Cannot tag {candidate} as {final_image}.",
                        detail=tagged.tail(),
                    )
                if push:
                    pushed = engine.push(final_image)
                    if not pushed.ok:
                        engine.remove_image(final_image)
                        raise PipelineError(
                            f"Cannot push {final_image}.", detail=pushed.tail()
                        )
            finally:
                self._remove(engine, candidate)
        finally:
            if not keep_builder:
                self._remove(engine, build.builder_image)

        image_id = engine.inspect_image(final_image).get("Id", "")
        manifest = ReleaseManifest(
            run_id=run_id,
            project_name=definition.project_name,
            image=final_image,
            image_id=image_id,
            toolchain_image=build.toolchain_image,
            base_image=release.base.reference,
            artifact_name=definition.artifact.name,
            artifact_path=definition.runtime_path,
            artifact_sha256=report.artifact_sha256,
            runtime_packages=sorted(release.dependencies.packages),
            installed_packages=report.installed_packages,
            process_env=release.process.to_env(),
            entrypoint=definition.entrypoint,
            version_pin=VersionPin.from_definition(
                definition, run_context.get("pipeline_version", "0.1.0")
            ),
            pushed=push,
        )
        manifest_ref = store.store_json(
            manifest.model_dump(mode="json"),
            name="release-manifest.json",
            artifact_type="release-manifest",
        ).content_address
        verification_ref = store.store_json(
            report.model_dump(mode="json"),
            name="verification.json",
            artifact_type="verification-report",
        ).content_address
        logger.info("Released %s (%s)", final_image, image_id or "no id")

        return {
            "manifest": manifest.model_dump(mode="json", exclude={"created_at"}),
            "_artifact_refs": [manifest_ref, verification_ref],
        }

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _assemble_and_verify(
        self,
        engine: ContainerEngine,
        definition: PipelineDefinition,
        context: Path,
        containerfile: Path,
        candidate: str,
        *,
        builder_image: str,
    ) -> VerificationReport:
        # --- 2. Install runtime dependencies ----------------------------
        installed = engine.build(
            context, containerfile, target=RUNTIME_BASE_TARGET, tag=candidate
        )
        if not installed.ok:
            raise DependencyInstallError(
                "Cannot install runtime dependencies "
                f"{', '.join(definition.release.dependencies.packages)} "
                f"on {definition.release.base.reference}.",
                detail=installed.tail(),
            )

        # --- 3. Copy artifact, configure, declare entry point -----------
        # The copy reads the image Stage 1 compiled and checked, never a rebuild.
        assembled = engine.build(
            context,
            containerfile,
            target=RUNTIME_TARGET,
            tag=candidate,
            build_args={BUILDER_IMAGE_ARG: builder_image},
        )
        if not assembled.ok:
            raise ArtifactPathMismatch(
                f"Cannot copy {definition.build_path} from {builder_image} "
                f"to {definition.runtime_path}.",
                detail=assembled.tail(),
            )

        # --- 4. Verify ----------------------------------------------------
        report = verify_image(engine, definition, candidate)
        if not report.passed:
            raise ReleaseVerificationError(
                f"Runtime image {candidate} failed {len(report.violations)} "
                "release check(s).",
                violations=report.violations,
                detail="\n".join(report.violations),
            )
        return report

    @staticmethod
    def _remove(engine: ContainerEngine, image: str) -> None:
        if not engine.image_exists(image):
            return
        removed = engine.remove_image(image)
        if not removed.ok:
            logger.warning("Could not remove %s: %s", image, removed.tail())
