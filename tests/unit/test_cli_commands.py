"""Tests for the slimship CLI — commands driven through Typer's CliRunner."""

from __future__ import annotations

import itertools
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from slimship import __version__
from slimship.cli.app import app
from slimship.cli.commands import build as build_module
from slimship.cli.commands import verify as verify_module
from slimship.core.orchestrator import Orchestrator
from slimship.core.prerequisite_graph import PrerequisiteNotMetError
from slimship.core.run_ledger import RunLedger
from slimship.core.stage_machine import StageMachine

runner = CliRunner()


class _EngineFactory:
    """Replaces ``DockerEngine`` so ``from_settings`` hands out the fake."""

    def __init__(self, engine) -> None:
        self.engine = engine

    def from_settings(self, settings):
        return self.engine


@pytest.fixture
def state_dir(tmp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every SLIMSHIP_* path into the temp dir and run from there."""
    state = tmp_dir / ".slimship"
    monkeypatch.chdir(tmp_dir)
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.setenv("SLIMSHIP_ENVIRONMENT", "development")
    monkeypatch.setenv("SLIMSHIP_DEBUG", "false")
    monkeypatch.setenv("SLIMSHIP_LEDGER_PATH", str(state / "ledger.db"))
    monkeypatch.setenv("SLIMSHIP_ARTIFACT_STORE_PATH", str(state / "artifacts"))
    monkeypatch.setenv("SLIMSHIP_WORK_DIR", str(state / "work"))
    monkeypatch.delenv("SLIMSHIP_DEFINITION_PATH", raising=False)
    return state


@pytest.fixture
def definition_file(tmp_dir: Path, source_tree: Path) -> Path:
    path = tmp_dir / "slimship.yaml"
    path.write_text(yaml.safe_dump({
        "labels": {"maintainer": "email@mattglei.ch"},
        "build": {"source": {"path": str(source_tree)}},
    }))
    return path


@pytest.fixture
def fake_docker(engine, monkeypatch: pytest.MonkeyPatch):
    """Route build and verify through the scripted engine."""
    counter = itertools.count(1)

    def _orchestrator(definition, settings, **kwargs):
        return Orchestrator(
            definition, settings, engine, run_id=f"ss-cli-{next(counter):03d}", **kwargs
        )

    monkeypatch.setattr(build_module, "Orchestrator", _orchestrator)
    monkeypatch.setattr(verify_module, "DockerEngine", _EngineFactory(engine))
    return engine


class TestApp:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_commands_registered(self):
        names = {command.name for command in app.registered_commands}
        assert names == {"build", "render", "verify", "env", "monitor", "runs", "compare"}


class TestRender:
    def test_prints_containerfile(self, state_dir: Path, definition_file: Path):
        result = runner.invoke(app, ["render", "-d", str(definition_file)])
        assert result.exit_code == 0, result.output
        assert "FROM rust:latest AS toolchain" in result.output
        assert "runtime-base" in result.output

    def test_writes_build_files(self, state_dir: Path, definition_file: Path, tmp_dir: Path):
        out = tmp_dir / "rendered"
        result = runner.invoke(app, ["render", "-d", str(definition_file), "-o", str(out)])
        assert result.exit_code == 0, result.output
        assert (out / "Containerfile").read_text().startswith("# syntax=docker/dockerfile:1")

    def test_default_definition_when_no_file(self, state_dir: Path):
        result = runner.invoke(app, ["render"])
        assert result.exit_code == 0, result.output
        assert "default pipeline definition" in result.output

    def test_missing_explicit_definition(self, state_dir: Path, tmp_dir: Path):
        result = runner.invoke(app, ["render", "-d", str(tmp_dir / "nope.yaml")])
        assert result.exit_code == 1
        assert "Definition not found" in result.output

    def test_invalid_definition(self, state_dir: Path, tmp_dir: Path):
        path = tmp_dir / "bad.yaml"
        path.write_text(yaml.safe_dump({"release": {"dependencies": {"packages": ["gcc"]}}}))
        result = runner.invoke(app, ["render", "-d", str(path)])
        assert result.exit_code == 1
        assert "Invalid definition" in result.output

    def test_invalid_yaml(self, state_dir: Path, tmp_dir: Path):
        path = tmp_dir / "broken.yaml"
        path.write_text("build: [unclosed\n")
        result = runner.invoke(app, ["render", "-d", str(path)])
        assert result.exit_code == 1
        assert "Invalid YAML" in result.output

    def test_empty_build_section_uses_defaults(self, state_dir: Path, tmp_dir: Path):
        path = tmp_dir / "sparse.yaml"
        path.write_text("build:\nproject_name: scoreboard\n")
        result = runner.invoke(app, ["render", "-d", str(path)])
        assert result.exit_code == 0, result.output
        assert "scoreboard: rendered by slimship" in result.output
        assert "FROM rust:latest AS toolchain" in result.output

    def test_section_that_is_not_a_mapping(self, state_dir: Path, tmp_dir: Path):
        path = tmp_dir / "list.yaml"
        path.write_text("build:\n  source:\n    - src/\n")
        result = runner.invoke(app, ["render", "-d", str(path)])
        assert result.exit_code == 1
        assert "source must be a mapping" in result.output

    def test_state_directory_excluded_from_default_context(
        self, state_dir: Path, tmp_dir: Path
    ):
        out = tmp_dir / "rendered"
        result = runner.invoke(app, ["render", "-o", str(out)])
        assert result.exit_code == 0, result.output
        patterns = (out / "Containerfile.dockerignore").read_text().splitlines()
        assert patterns == [".slimship/ledger.db*", ".slimship/artifacts*", ".slimship/work*"]


class TestEnv:
    def test_baked_defaults(self, state_dir: Path, definition_file: Path):
        result = runner.invoke(app, ["env", "-d", str(definition_file)])
        assert result.exit_code == 0, result.output
        assert "RUST_LOG" in result.output
        assert "image" in result.output
        assert "launch" not in result.output

    def test_launch_value_wins(self, state_dir: Path, definition_file: Path):
        result = runner.invoke(app, ["env", "RUST_LOG=debug", "-d", str(definition_file)])
        assert result.exit_code == 0, result.output
        assert "debug" in result.output
        assert "launch" in result.output

    def test_unknown_level(self, state_dir: Path, definition_file: Path):
        result = runner.invoke(app, ["env", "RUST_LOG=loud", "-d", str(definition_file)])
        assert result.exit_code == 1
        assert "unknown log level" in result.output

    def test_malformed_pair(self, state_dir: Path, definition_file: Path):
        result = runner.invoke(app, ["env", "RUST_LOG", "-d", str(definition_file)])
        assert result.exit_code == 2


class TestBuild:
    def test_success(self, state_dir: Path, definition_file: Path, fake_docker):
        result = runner.invoke(app, ["build", "-d", str(definition_file), "-t", "2.0.0"])
        assert result.exit_code == 0, result.output
        assert "Released" in result.output
        assert "ghs-games-backend:2.0.0" in fake_docker.images
        assert RunLedger(state_dir / "ledger.db").get_all_run_ids() == ["ss-cli-001"]

    def test_push_flag(self, state_dir: Path, definition_file: Path, fake_docker):
        result = runner.invoke(app, ["build", "-d", str(definition_file), "--push"])
        assert result.exit_code == 0, result.output
        assert fake_docker.called("push") == [("push", "ghs-games-backend:latest")]

    def test_keep_builder_flag(self, state_dir: Path, definition_file: Path, fake_docker):
        result = runner.invoke(app, ["build", "-d", str(definition_file), "--keep-builder"])
        assert result.exit_code == 0, result.output
        assert "ghs-games-backend-builder:ss-cli-001" in fake_docker.images

    def test_failure_exits_nonzero(self, state_dir: Path, definition_file: Path, fake_docker):
        fake_docker.fail("build:builder", "error: could not compile `ghs_games_backend`")
        result = runner.invoke(app, ["build", "-d", str(definition_file)])
        assert result.exit_code == 1
        assert "CompileError" in result.output
        assert "could not compile" in result.output

    def test_stage_defect_reported_without_traceback(
        self, state_dir: Path, definition_file: Path, fake_docker,
        monkeypatch: pytest.MonkeyPatch,
    ):
        def _socket_closed(image, command):
            raise OSError("docker socket closed")

        monkeypatch.setattr(fake_docker, "run", _socket_closed)
        result = runner.invoke(app, ["build", "-d", str(definition_file)])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Pipeline failed" in result.output
        assert "StageExecutionError" in result.output
        assert "docker socket closed" in result.output

    def test_stage_prerequisite_error_reported(
        self, state_dir: Path, definition_file: Path, fake_docker,
        monkeypatch: pytest.MonkeyPatch,
    ):
        def _refuse(self, run_id, stage_id, new_state, **kwargs):
            raise PrerequisiteNotMetError(f"Stage {stage_id} is blocked")

        monkeypatch.setattr(StageMachine, "transition", _refuse)
        result = runner.invoke(app, ["build", "-d", str(definition_file)])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "PrerequisiteNotMetError" in result.output
        assert "s1_build is blocked" in result.output

    def test_production_guard(
        self, state_dir: Path, definition_file: Path, fake_docker, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("SLIMSHIP_ENVIRONMENT", "production")
        result = runner.invoke(app, ["build", "-d", str(definition_file)])
        assert result.exit_code == 1
        assert "Production configuration guard failed" in result.output
        assert fake_docker.calls == []


class TestVerify:
    def test_passing_image(self, state_dir: Path, definition_file: Path, fake_docker):
        fake_docker.images["ghs-games-backend:1.0.0"] = "sha256:feed"
        result = runner.invoke(app, ["verify", "ghs-games-backend:1.0.0", "-d", str(definition_file)])
        assert result.exit_code == 0, result.output
        assert "All release checks passed" in result.output

    def test_failing_image(self, state_dir: Path, definition_file: Path, fake_docker):
        fake_docker.images["ghs-games-backend:1.0.0"] = "sha256:feed"
        fake_docker.toolchain_found = ["/usr/local/cargo/bin/cargo"]
        result = runner.invoke(app, ["verify", "ghs-games-backend:1.0.0", "-d", str(definition_file)])
        assert result.exit_code == 1
        assert "1 check(s) failed" in result.output

    def test_unknown_image(self, state_dir: Path, definition_file: Path, fake_docker):
        result = runner.invoke(app, ["verify", "nope:1", "-d", str(definition_file)])
        assert result.exit_code == 1
        assert "Pipeline failed" in result.output


class TestRunHistory:
    def _build(self, definition_file: Path) -> None:
        result = runner.invoke(app, ["build", "-d", str(definition_file)])
        assert result.exit_code == 0, result.output

    def test_monitor(self, state_dir: Path, definition_file: Path, fake_docker):
        self._build(definition_file)
        result = runner.invoke(app, ["monitor", "ss-cli-001", "--verify-chain"])
        assert result.exit_code == 0, result.output
        assert "is valid" in result.output
        assert "PASSED" in result.output

    def test_monitor_unknown_run(self, state_dir: Path, definition_file: Path, fake_docker):
        self._build(definition_file)
        result = runner.invoke(app, ["monitor", "ss-missing"])
        assert result.exit_code == 1
        assert "ss-cli-001" in result.output

    def test_monitor_without_ledger(self, state_dir: Path):
        result = runner.invoke(app, ["monitor", "ss-cli-001"])
        assert result.exit_code == 1
        assert "Ledger not found" in result.output

    def test_runs(self, state_dir: Path, definition_file: Path, fake_docker):
        self._build(definition_file)
        fake_docker.fail("build:builder", "error: could not compile")
        runner.invoke(app, ["build", "-d", str(definition_file)])
        result = runner.invoke(app, ["runs"])
        assert result.exit_code == 0, result.output
        assert "released" in result.output
        assert "failed" in result.output

    def test_compare_equivalent(self, state_dir: Path, definition_file: Path, fake_docker):
        self._build(definition_file)
        self._build(definition_file)
        result = runner.invoke(app, ["compare", "ss-cli-001", "ss-cli-002"])
        assert result.exit_code == 0, result.output
        assert "Functionally equivalent" in result.output

    def test_compare_different(
        self, state_dir: Path, definition_file: Path, fake_docker, source_tree: Path
    ):
        self._build(definition_file)
        changed = definition_file.parent / "debug.yaml"
        changed.write_text(yaml.safe_dump({
            "build": {"source": {"path": str(source_tree)}},
            "release": {"process": {"log_level": "debug"}},
        }))
        fake_docker.env = {"RUST_LOG": "debug", "RUST_BACKTRACE": "1"}
        self._build(changed)
        result = runner.invoke(app, ["compare", "ss-cli-001", "ss-cli-002"])
        assert result.exit_code == 1
        assert "Runs differ" in result.output

    def test_compare_unreleased_run(self, state_dir: Path, definition_file: Path, fake_docker):
        self._build(definition_file)
        result = runner.invoke(app, ["compare", "ss-cli-001", "ss-missing"])
        assert result.exit_code == 1
        assert "no released image" in result.output
