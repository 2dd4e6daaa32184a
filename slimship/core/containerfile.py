"""Containerfile rendering for the two-stage pipeline.

The rendered file has four build targets so that each engine build maps to
one failure class:

- ``toolchain``    — toolchain image plus channel install
- ``builder``      — source tree copied in and compiled
- ``runtime-base`` — minimal base plus the runtime dependency set
- ``runtime``      — artifact copied in, env and entry point

``runtime`` copies from the ``artifact`` stage, which is whatever image the
``BUILDER_IMAGE`` build argument names. The Release Stage passes the
run-scoped builder image that the Build Stage compiled and checked, so
nothing is compiled twice. Without the argument it falls back to the
``builder`` stage and a plain ``docker build`` still works.

Rendering is a pure function of the definition: the same definition always
yields byte-identical text.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from slimship.models.definition import PipelineDefinition, SourceTree

TOOLCHAIN_TARGET = "toolchain"
BUILDER_TARGET = "builder"
RUNTIME_BASE_TARGET = "runtime-base"
RUNTIME_TARGET = "runtime"
ARTIFACT_STAGE = "artifact"
BUILDER_IMAGE_ARG = "BUILDER_IMAGE"

CONTAINERFILE_NAME = "Containerfile"
# BuildKit reads ``<containerfile>.dockerignore`` next to the Containerfile.
IGNORE_FILE_NAME = f"{CONTAINERFILE_NAME}.dockerignore"

_CONTINUATION = " \\\n    && "


def _render_toolchain(definition: PipelineDefinition) -> list[str]:
    toolchain = definition.build.toolchain
    lines = [f"FROM {toolchain.image.reference} AS {TOOLCHAIN_TARGET}"]
    commands = toolchain.install_commands()
    if commands:
        lines.append("RUN " + _CONTINUATION.join(commands))
    return lines


def _render_builder(definition: PipelineDefinition) -> list[str]:
    build = definition.build
    return [
        f"FROM {TOOLCHAIN_TARGET} AS {BUILDER_TARGET}",
        f"COPY . {build.source.workdir}",
        f"WORKDIR {build.source.workdir}",
        f"RUN {json.dumps(build.build_command)}",
    ]


def _render_runtime_base(definition: PipelineDefinition) -> list[str]:
    release = definition.release
    install = [
        "apt-get update -y",
        "apt-get install -y --no-install-recommends "
        + " ".join(release.dependencies.packages),
        "apt-get clean",
        "rm -rf /var/lib/apt/lists/*",
    ]
    return [
        f"FROM {release.base.reference} AS {RUNTIME_BASE_TARGET}",
        "RUN " + _CONTINUATION.join(install),
    ]


def _render_runtime(definition: PipelineDefinition) -> list[str]:
    release = definition.release
    lines = [f"FROM {RUNTIME_BASE_TARGET} AS {RUNTIME_TARGET}"]
    for key in sorted(definition.labels):
        lines.append(f"LABEL {key}={json.dumps(definition.labels[key])}")
    lines.append(f"WORKDIR {release.workdir}")
    lines.append(
        f"COPY --from={ARTIFACT_STAGE} {definition.build_path} {definition.runtime_path}"
    )
    for key, value in release.process.to_env().items():
        lines.append(f"ENV {key}={value}")
    lines.append(f"ENTRYPOINT {json.dumps(definition.entrypoint)}")
    return lines


def render_containerfile(definition: PipelineDefinition) -> str:
    """Render the four-target Containerfile for *definition*."""
    sections = [
        [
            "# syntax=docker/dockerfile:1",
            f"# {definition.project_name}: rendered by slimship, do not edit.",
        ],
        [f"ARG {BUILDER_IMAGE_ARG}={BUILDER_TARGET}"],
        _render_toolchain(definition),
        _render_builder(definition),
        _render_runtime_base(definition),
        [f"FROM ${{{BUILDER_IMAGE_ARG}}} AS {ARTIFACT_STAGE}"],
        _render_runtime(definition),
    ]
    return "\n\n".join("\n".join(section) for section in sections) + "\n"


def state_exclusions(source: SourceTree, state_paths: Iterable[Path]) -> list[str]:
    """Ignore patterns for slimship's own state that lives inside the source tree.

    The ledger, artifact store and work directories change on every run and
    belong to slimship, not to the calling repository. A trailing ``*`` also
    covers the SQLite ``-wal``/``-shm`` siblings of the ledger file.
    """
    root = source.path.resolve()
    patterns: list[str] = []
    for state in state_paths:
        resolved = Path(state).resolve()
        if resolved == root or not resolved.is_relative_to(root):
            continue
        pattern = f"{resolved.relative_to(root).as_posix()}*"
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


def render_ignore_file(source: SourceTree, state_paths: Iterable[Path] = ()) -> str:
    """Render the build-context exclusion file; empty when nothing is excluded.

    User exclusions come first, verbatim; slimship's state directories are
    appended when they fall under the source tree.
    """
    patterns = list(source.exclude)
    patterns += [p for p in state_exclusions(source, state_paths) if p not in patterns]
    if not patterns:
        return ""
    return "\n".join(patterns) + "\n"


def write_build_files(
    definition: PipelineDefinition,
    directory: Path,
    state_paths: Iterable[Path] = (),
) -> Path:
    """Write the Containerfile (and ignore file, if any) into *directory*.

    Returns the Containerfile path.
    """
    directory.mkdir(parents=True, exist_ok=True)
    containerfile = directory / CONTAINERFILE_NAME
    containerfile.write_text(render_containerfile(definition), encoding="utf-8")

    ignore_path = directory / IGNORE_FILE_NAME
    ignore_text = render_ignore_file(definition.build.source, state_paths)
    if ignore_text:
        ignore_path.write_text(ignore_text, encoding="utf-8")
    elif ignore_path.exists():
        ignore_path.unlink()
    return containerfile
