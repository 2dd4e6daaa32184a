"""Pipeline definition models — the declared shape of both stages.

A ``PipelineDefinition`` is the single source of truth for the build: the
toolchain, the source tree, the artifact handoff between stages, the runtime
base, its dependency set, and the process configuration baked into the image.
Loaded from ``slimship.yaml`` or built in code; defaults reproduce the
reference backend pipeline.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from slimship.errors import ArtifactPathMismatch

# Tags that move over time; builds against them are not reproducible.
FLOATING_TAGS: frozenset[str] = frozenset({
    "latest",
    "stable",
    "stable-slim",
    "testing",
    "testing-slim",
    "nightly",
    "beta",
})

# Packages that would put compiler/build tooling into the runtime image.
BUILD_TOOLING_PACKAGES: frozenset[str] = frozenset({
    "autoconf",
    "automake",
    "binutils",
    "build-essential",
    "cargo",
    "clang",
    "cmake",
    "cpp",
    "g++",
    "gcc",
    "libtool",
    "llvm",
    "make",
    "pkg-config",
    "rustc",
    "rustup",
})

_DEBIAN_PACKAGE_RE = re.compile(r"^[a-z0-9][a-z0-9+.-]+$")
_CHANNEL_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_ENV_VAR_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_IMAGE_NAME_RE = re.compile(r"^[a-z0-9]+(?:[._/-][a-z0-9]+)*$")


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


class ImageRef(BaseModel):
    """A base environment image reference (repository + tag)."""

    model_config = ConfigDict(frozen=True)

    repository: str
    tag: str = "latest"

    @model_validator(mode="before")
    @classmethod
    def _accept_reference_string(cls, data: Any) -> Any:
        # ``image: rust:1.79`` is shorthand for the repository/tag mapping
        if isinstance(data, str):
            return cls.parse(data).model_dump()
        return data

    @field_validator("repository")
    @classmethod
    def _repository_has_no_tag(cls, value: str) -> str:
        if not value:
            raise ValueError("image repository must not be empty")
        if ":" in value.rsplit("/", 1)[-1]:
            raise ValueError(
                f"image repository {value!r} must not carry a tag; use the tag field"
            )
        return value

    @field_validator("tag")
    @classmethod
    def _tag_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("image tag must not be empty")
        return value

    @property
    def reference(self) -> str:
        """``repository:tag`` as passed to the container engine."""
        return f"{self.repository}:{self.tag}"

    @property
    def is_floating(self) -> bool:
        """Whether the tag is a moving label rather than a pinned release."""
        return self.tag in FLOATING_TAGS

    @classmethod
    def parse(cls, reference: str) -> ImageRef:
        """Parse ``repository[:tag]``; a registry port is not mistaken for a tag."""
        head, _, last = reference.rpartition("/")
        name, sep, tag = last.partition(":")
        repository = f"{head}/{name}" if head else name
        return cls(repository=repository, tag=tag if sep else "latest")

    def __str__(self) -> str:
        return self.reference


# ---------------------------------------------------------------------------
# Build Stage
# ---------------------------------------------------------------------------


class ToolchainSpec(BaseModel):
    """Toolchain Environment: compiler image plus the channel to activate."""

    model_config = ConfigDict(frozen=True)

    image: ImageRef = ImageRef(repository="rust", tag="latest")
    channel: str | None = "nightly"
    # Executables whose presence identifies the toolchain in an image.
    tool_binaries: list[str] = ["cargo", "rustc", "rustup"]

    @field_validator("channel")
    @classmethod
    def _channel_is_plain(cls, value: str | None) -> str | None:
        if value is not None and not _CHANNEL_RE.match(value):
            raise ValueError(f"invalid toolchain channel {value!r}")
        return value

    def install_commands(self) -> list[str]:
        """Shell commands that install and select the channel."""
        if not self.channel:
            return []
        return [
            f"rustup toolchain install {self.channel}",
            f"rustup default {self.channel}",
        ]


class SourceTree(BaseModel):
    """The caller's source files, copied verbatim into the toolchain."""

    model_config = ConfigDict(frozen=True)

    path: Path = Path(".")
    workdir: str = "/usr/src/app"
    exclude: list[str] = []

    @field_validator("workdir")
    @classmethod
    def _workdir_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"source workdir must be absolute, got {value!r}")
        return posixpath.normpath(value)


class BuildStageSpec(BaseModel):
    """Build Stage: toolchain, source tree, and the release-mode build."""

    model_config = ConfigDict(frozen=True)

    toolchain: ToolchainSpec = ToolchainSpec()
    source: SourceTree = SourceTree()
    build_command: list[str] = ["cargo", "build", "--release"]
    output_dir: str = "target/release"

    @field_validator("build_command")
    @classmethod
    def _command_not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("build_command must not be empty")
        return value

    @field_validator("output_dir")
    @classmethod
    def _output_dir_relative(cls, value: str) -> str:
        normalized = posixpath.normpath(value)
        if normalized.startswith("/") or normalized.split("/")[0] == "..":
            raise ValueError(
                f"output_dir must be relative to the source workdir, got {value!r}"
            )
        return normalized


class ArtifactHandoff(BaseModel):
    """Identity of the single executable that crosses the stage boundary.

    Both stages derive their paths from this one declaration, so the build
    output and the release copy cannot drift apart silently.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "ghs_games_backend"

    @field_validator("name")
    @classmethod
    def _bare_file_name(cls, value: str) -> str:
        if not value or "/" in value or value in (".", ".."):
            raise ValueError(f"artifact name must be a bare file name, got {value!r}")
        return value


# ---------------------------------------------------------------------------
# Release Stage
# ---------------------------------------------------------------------------


class RuntimeDependencySet(BaseModel):
    """The exact packages installed into the runtime image, nothing more."""

    model_config = ConfigDict(frozen=True)

    packages: list[str] = ["libpq5", "ca-certificates", "libssl-dev"]

    @field_validator("packages")
    @classmethod
    def _valid_runtime_packages(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("runtime dependency set must not be empty")
        seen: set[str] = set()
        for name in value:
            if not _DEBIAN_PACKAGE_RE.match(name):
                raise ValueError(f"invalid package name {name!r}")
            if name in seen:
                raise ValueError(f"duplicate package {name!r}")
            if name in BUILD_TOOLING_PACKAGES:
                raise ValueError(
                    f"{name!r} is build tooling and must not ship in the runtime image"
                )
            seen.add(name)
        return value

    def as_set(self) -> frozenset[str]:
        return frozenset(self.packages)


class LogLevel(str, Enum):
    """Logging verbosity understood by the service binary."""

    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"
    TRACE = "trace"


class ProcessConfiguration(BaseModel):
    """Process-wide defaults baked into the image as environment variables.

    The values are defaults only: anything set by the deployment environment
    at launch takes precedence (see ``resolve``).
    """

    model_config = ConfigDict(frozen=True)

    log_level: LogLevel = LogLevel.INFO
    backtrace: bool = True
    log_level_var: str = "RUST_LOG"
    backtrace_var: str = "RUST_BACKTRACE"

    @field_validator("log_level_var", "backtrace_var")
    @classmethod
    def _valid_env_name(cls, value: str) -> str:
        if not _ENV_VAR_RE.match(value):
            raise ValueError(f"invalid environment variable name {value!r}")
        return value

    @model_validator(mode="after")
    def _distinct_vars(self) -> ProcessConfiguration:
        if self.log_level_var == self.backtrace_var:
            raise ValueError("log level and backtrace variables must differ")
        return self

    def to_env(self) -> dict[str, str]:
        return {
            self.log_level_var: self.log_level.value,
            self.backtrace_var: "1" if self.backtrace else "0",
        }

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str],
        *,
        log_level_var: str = "RUST_LOG",
        backtrace_var: str = "RUST_BACKTRACE",
    ) -> ProcessConfiguration:
        """Parse a baked-in image environment back into a configuration."""
        base = cls(log_level_var=log_level_var, backtrace_var=backtrace_var)
        return base.resolve(env)

    def resolve(self, environ: Mapping[str, str]) -> ProcessConfiguration:
        """Return the configuration a process sees when launched with *environ*.

        Variables present in *environ* override the baked-in defaults;
        absent ones keep the defaults.
        """
        updates: dict[str, Any] = {}
        if self.log_level_var in environ:
            updates["log_level"] = parse_log_level(environ[self.log_level_var])
        if self.backtrace_var in environ:
            updates["backtrace"] = environ[self.backtrace_var].strip() not in ("", "0")
        return self.model_copy(update=updates)


def parse_log_level(value: str) -> LogLevel:
    """Parse a log level string case-insensitively."""
    try:
        return LogLevel(value.strip().lower())
    except ValueError:
        allowed = ", ".join(level.value for level in LogLevel)
        raise ValueError(
            f"unknown log level {value!r} (expected one of: {allowed})"
        ) from None


class ReleaseStageSpec(BaseModel):
    """Release Stage: minimal base, dependency set, configuration, entry point."""

    model_config = ConfigDict(frozen=True)

    base: ImageRef = ImageRef(repository="debian", tag="stable-slim")
    workdir: str = "/"
    dependencies: RuntimeDependencySet = RuntimeDependencySet()
    process: ProcessConfiguration = ProcessConfiguration()
    # Normally derived from the artifact handoff; when set explicitly it is
    # checked against the handoff by PipelineDefinition.check_handoff().
    entrypoint: list[str] | None = None

    @field_validator("workdir")
    @classmethod
    def _workdir_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"runtime workdir must be absolute, got {value!r}")
        return posixpath.normpath(value)


# ---------------------------------------------------------------------------
# Whole pipeline
# ---------------------------------------------------------------------------


class PipelineDefinition(BaseModel):
    """Complete two-stage pipeline definition."""

    model_config = ConfigDict(frozen=True)

    project_name: str = "ghs-games-backend"
    image_name: str = "ghs-games-backend"
    labels: dict[str, str] = {}
    build: BuildStageSpec = BuildStageSpec()
    release: ReleaseStageSpec = ReleaseStageSpec()
    artifact: ArtifactHandoff = ArtifactHandoff()

    @field_validator("image_name")
    @classmethod
    def _valid_image_name(cls, value: str) -> str:
        if not _IMAGE_NAME_RE.match(value):
            raise ValueError(f"invalid image name {value!r}")
        return value

    # ------------------------------------------------------------------
    # Derived handoff paths
    # ------------------------------------------------------------------

    @property
    def build_path(self) -> str:
        """Where the compiled artifact lives inside the toolchain image."""
        return posixpath.join(
            self.build.source.workdir, self.build.output_dir, self.artifact.name
        )

    @property
    def runtime_path(self) -> str:
        """Where the artifact is copied to inside the runtime image."""
        return posixpath.join(self.release.workdir, self.artifact.name)

    @property
    def entrypoint(self) -> list[str]:
        return list(self.release.entrypoint or [self.runtime_path])

    def check_handoff(self) -> None:
        """Validate the cross-stage contract at definition time.

        The entry point must invoke exactly the copied artifact, with no
        arguments. Raises ``ArtifactPathMismatch`` otherwise.
        """
        entrypoint = self.release.entrypoint
        if entrypoint is None:
            return
        resolved = (
            posixpath.normpath(posixpath.join(self.release.workdir, entrypoint[0]))
            if entrypoint
            else ""
        )
        if len(entrypoint) != 1 or resolved != self.runtime_path:
            raise ArtifactPathMismatch(
                f"Entry point {entrypoint!r} does not invoke the build artifact "
                f"{self.artifact.name!r} at {self.runtime_path} with no arguments."
            )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: str | Path) -> PipelineDefinition:
        """Load and validate a definition from a YAML file.

        A relative ``build.source.path`` is resolved against the file's
        directory. The handoff is checked before returning.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If YAML syntax is invalid.
            ValidationError: If schema validation fails.
            ArtifactPathMismatch: If the entry point does not match the artifact.
        """
        path = Path(path)
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: top level must be a mapping")

        build = _section(raw, "build", path)
        source = _section(build, "source", path)
        source_path = Path(source.get("path") or ".")
        if not source_path.is_absolute():
            source["path"] = str((path.parent / source_path).resolve())

        definition = cls.model_validate(raw)
        definition.check_handoff()
        return definition


def _section(parent: dict[str, Any], key: str, path: Path) -> dict[str, Any]:
    """Return ``parent[key]`` as a mapping; an empty YAML section becomes ``{}``."""
    value = parent.get(key)
    if value is None:
        value = parent[key] = {}
    if not isinstance(value, dict):
        raise ValueError(f"{path}: {key} must be a mapping, got {type(value).__name__}")
    return value
