"""Shared test fixtures for slimship."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest

from slimship.config import SlimshipSettings
from slimship.core.artifact_store import ContentAddressedStore
from slimship.core.containerfile import BUILDER_IMAGE_ARG
from slimship.core.engine import CommandResult
from slimship.core.orchestrator import Orchestrator
from slimship.core.prerequisite_graph import PrerequisiteGraph
from slimship.core.run_ledger import RunLedger
from slimship.core.stage_machine import StageMachine
from slimship.errors import EngineUnavailable, PipelineError
from slimship.models.definition import (
    BuildStageSpec,
    PipelineDefinition,
    SourceTree,
)
from slimship.models.stages import DEFAULT_STAGE_DEFINITIONS

# Manually installed packages of a stock debian:stable-slim image.
BASE_MANUAL_PACKAGES = ["apt", "base-files", "bash", "coreutils", "dpkg"]


# ---------------------------------------------------------------------------
# Scripted container engine
# ---------------------------------------------------------------------------


class FakeEngine:
    """In-memory ``ContainerEngine`` that answers like a healthy docker.

    The image contents it reports are derived from the pipeline definition,
    so by default every release check passes. Tests break individual
    behaviours through ``fail()`` and the public attributes.
    """

    def __init__(self, definition: PipelineDefinition) -> None:
        self.definition = definition
        self.calls: list[tuple[Any, ...]] = []
        self.images: dict[str, str] = {}
        self.failures: dict[str, str] = {}
        self.build_args: dict[str, dict[str, str]] = {}
        self.available = True
        self._counter = 0

        # Image content knobs
        self.artifact_paths: list[str] | None = None
        self.toolchain_found: list[str] = []
        self.extra_packages: list[str] = []
        self.apt_leftovers: list[str] = []
        self.env: dict[str, str] | None = None
        self.entrypoint: list[str] | None = None
        self.cmd: list[str] | None = None

    def fail(self, key: str, stderr: str = "boom") -> None:
        """Make an operation fail: ``pull:<image>``, ``build:<target>``,
        ``run:<program>``, ``tag``, ``push``."""
        self.failures[key] = stderr

    def _result(self, key: str, argv: list[str], stdout: str = "") -> CommandResult:
        if key in self.failures:
            return CommandResult(argv=argv, returncode=1, stderr=self.failures[key])
        return CommandResult(argv=argv, returncode=0, stdout=stdout)

    def _new_id(self) -> str:
        self._counter += 1
        return f"sha256:{self._counter:064x}"

    # ------------------------------------------------------------------
    # ContainerEngine
    # ------------------------------------------------------------------

    def version(self) -> CommandResult:
        self.calls.append(("version",))
        if not self.available:
            raise EngineUnavailable("Container engine 'docker' was not found on PATH.")
        return CommandResult(argv=["docker", "version"], returncode=0, stdout="27.0")

    def pull(self, image: str) -> CommandResult:
        self.calls.append(("pull", image))
        result = self._result(f"pull:{image}", ["docker", "pull", image])
        if result.ok:
            self.images.setdefault(image, self._new_id())
        return result

    def build(
        self,
        context: Path,
        containerfile: Path,
        *,
        target: str,
        tag: str,
        build_args: Mapping[str, str] | None = None,
    ) -> CommandResult:
        self.calls.append(("build", target, tag))
        self.build_args[target] = dict(build_args or {})
        argv = ["docker", "build", "--target", target, "--tag", tag]
        base = self.build_args[target].get(BUILDER_IMAGE_ARG)
        if base is not None and base not in self.images:
            return CommandResult(
                argv=argv, returncode=1, stderr=f"pull access denied for {base}"
            )
        result = self._result(f"build:{target}", argv)
        if result.ok:
            self.images[tag] = self._new_id()
        return result

    def run(self, image: str, command: list[str]) -> CommandResult:
        self.calls.append(("run", image, tuple(command)))
        argv = ["docker", "run", image, *command]
        program = command[0]
        definition = self.definition

        if program == "stat":
            return self._result("run:stat", argv, "1048576\n")
        if program == "find" and command[1] == "/var/lib/apt/lists":
            return self._result("run:find-lists", argv, "".join(f"{p}\n" for p in self.apt_leftovers))
        if program == "find":
            paths = (
                [definition.runtime_path]
                if self.artifact_paths is None
                else self.artifact_paths
            )
            return self._result("run:find", argv, "".join(f"{p}\n" for p in paths))
        if program == "sh":
            return self._result("run:sh", argv, "".join(f"{p}\n" for p in self.toolchain_found))
        if program == "apt-mark":
            packages = list(BASE_MANUAL_PACKAGES)
            if image != definition.release.base.reference:
                packages += definition.release.dependencies.packages + self.extra_packages
            return self._result("run:apt-mark", argv, "\n".join(sorted(packages)) + "\n")
        if program == "sha256sum":
            return self._result(
                "run:sha256sum", argv, f"{'ab' * 32}  {definition.runtime_path}\n"
            )
        return CommandResult(argv=argv, returncode=127, stderr=f"{program}: not found")

    def inspect_image(self, image: str) -> dict[str, Any]:
        self.calls.append(("inspect", image))
        if image not in self.images:
            raise PipelineError(f"Cannot inspect image {image}.", detail="No such image")
        env = self.env if self.env is not None else self.definition.release.process.to_env()
        return {
            "Id": self.images[image],
            "Config": {
                "Env": ["PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"]
                + [f"{k}={v}" for k, v in env.items()],
                "Entrypoint": (
                    self.entrypoint
                    if self.entrypoint is not None
                    else self.definition.entrypoint
                ),
                "Cmd": self.cmd,
            },
        }

    def image_exists(self, image: str) -> bool:
        return image in self.images

    def tag(self, source: str, target: str) -> CommandResult:
        self.calls.append(("tag", source, target))
        result = self._result("tag", ["docker", "tag", source, target])
        if result.ok:
            self.images[target] = self.images[source]
        return result

    def remove_image(self, image: str) -> CommandResult:
        self.calls.append(("remove", image))
        argv = ["docker", "image", "rm", image]
        if self.images.pop(image, None) is None:
            return CommandResult(argv=argv, returncode=1, stderr="No such image")
        return CommandResult(argv=argv, returncode=0)

    def push(self, image: str) -> CommandResult:
        self.calls.append(("push", image))
        return self._result("push", ["docker", "push", image])

    # ------------------------------------------------------------------
    # Assertions helpers
    # ------------------------------------------------------------------

    def called(self, op: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == op]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def source_tree(tmp_dir: Path) -> Path:
    """A minimal cargo project on disk."""
    root = tmp_dir / "backend"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text(
        '[package]\nname = "ghs_games_backend"\nversion = "0.1.0"\n'
    )
    (root / "src" / "main.rs").write_text('fn main() { println!("ok"); }\n')
    return root


@pytest.fixture
def definition(source_tree: Path) -> PipelineDefinition:
    """The default pipeline, pointed at the temp source tree."""
    return PipelineDefinition(
        labels={
            "maintainer": "email@mattglei.ch",
            "description": "Backend for the GHS games project",
        },
        build=BuildStageSpec(source=SourceTree(path=source_tree)),
    )


@pytest.fixture
def engine(definition: PipelineDefinition) -> FakeEngine:
    return FakeEngine(definition)


@pytest.fixture
def settings(tmp_dir: Path) -> SlimshipSettings:
    """Settings isolated from the caller's environment and .env file."""
    state = tmp_dir / ".slimship"
    return SlimshipSettings(
        _env_file=None,
        environment="development",
        debug=False,
        ledger_path=state / "ledger.db",
        artifact_store_path=state / "artifacts",
        work_dir=state / "work",
        keep_builder=False,
        allow_floating_tags=False,
    )


@pytest.fixture
def orchestrator(
    definition: PipelineDefinition, settings: SlimshipSettings, engine: FakeEngine
) -> Orchestrator:
    return Orchestrator(definition, settings, engine, run_id="ss-test-run-001")


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def graph() -> PrerequisiteGraph:
    """Provide a PrerequisiteGraph with the default pipeline stages."""
    return PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)


@pytest.fixture
def stage_machine(ledger: RunLedger, graph: PrerequisiteGraph) -> StageMachine:
    """Provide a StageMachine wired to test ledger and graph."""
    return StageMachine(ledger, graph)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "ss-test-run-001"


@pytest.fixture
def run_context(
    definition: PipelineDefinition,
    engine: FakeEngine,
    artifact_store: ContentAddressedStore,
    tmp_dir: Path,
    run_id: str,
) -> dict[str, Any]:
    """A run context as the orchestrator builds it."""
    return {
        "run_id": run_id,
        "definition": definition,
        "engine": engine,
        "artifact_store": artifact_store,
        "work_dir": tmp_dir / "work" / run_id,
        "tag": "1.0.0",
        "push": False,
        "keep_builder": False,
        "pipeline_version": "0.1.0",
        "stage_results": {},
    }


@pytest.fixture(autouse=True)
def _reset_slimship_logger():
    """Undo CLI logging setup so later tests can capture records."""
    yield
    logger = logging.getLogger("slimship")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
