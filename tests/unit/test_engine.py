"""Tests for the DockerEngine adapter — argv construction and failure mapping."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from slimship.config import SlimshipSettings
from slimship.core.engine import (
    TIMEOUT_RETURNCODE,
    CommandResult,
    ContainerEngine,
    DockerEngine,
)
from slimship.errors import EngineUnavailable, PipelineError


class _Recorder:
    """Stands in for ``subprocess.run`` and records every argv."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.calls: list[list[str]] = []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def recorder(monkeypatch: pytest.MonkeyPatch) -> _Recorder:
    rec = _Recorder()
    monkeypatch.setattr(subprocess, "run", rec)
    return rec


class TestCommandResult:
    def test_ok(self):
        assert CommandResult(argv=["docker"], returncode=0).ok
        assert not CommandResult(argv=["docker"], returncode=1).ok

    def test_tail_prefers_stderr(self):
        result = CommandResult(argv=[], returncode=1, stdout="out", stderr="a\nb\nc")
        assert result.tail(2) == "b\nc"

    def test_tail_falls_back_to_stdout(self):
        assert CommandResult(argv=[], returncode=1, stdout="only out\n").tail() == "only out"


class TestDockerEngine:
    def test_build_argv(self, recorder: _Recorder):
        DockerEngine().build(
            Path("/src"), Path("/work/Containerfile"), target="builder", tag="app-builder:r1"
        )
        assert recorder.calls == [[
            "docker", "build",
            "--file", "/work/Containerfile",
            "--target", "builder",
            "--tag", "app-builder:r1",
            "/src",
        ]]

    def test_build_args_passed_before_context(self, recorder: _Recorder):
        DockerEngine().build(
            Path("/src"),
            Path("/work/Containerfile"),
            target="runtime",
            tag="app-candidate:r1",
            build_args={"BUILDER_IMAGE": "app-builder:r1", "A": "1"},
        )
        assert recorder.calls == [[
            "docker", "build",
            "--file", "/work/Containerfile",
            "--target", "runtime",
            "--tag", "app-candidate:r1",
            "--build-arg", "A=1",
            "--build-arg", "BUILDER_IMAGE=app-builder:r1",
            "/src",
        ]]

    def test_run_overrides_entrypoint(self, recorder: _Recorder):
        DockerEngine("podman").run("app:1", ["stat", "-c", "%s", "/app"])
        assert recorder.calls == [[
            "podman", "run", "--rm", "--entrypoint", "", "app:1", "stat", "-c", "%s", "/app",
        ]]

    def test_remove_does_not_force(self, recorder: _Recorder):
        DockerEngine().remove_image("app-candidate:r1")
        assert recorder.calls == [["docker", "image", "rm", "app-candidate:r1"]]

    def test_inspect_returns_first_object(self, recorder: _Recorder):
        recorder.stdout = json.dumps([{"Id": "sha256:abc", "Config": {}}])
        assert DockerEngine().inspect_image("app:1")["Id"] == "sha256:abc"

    def test_inspect_failure_raises(self, recorder: _Recorder):
        recorder.returncode = 1
        recorder.stderr = "No such image"
        with pytest.raises(PipelineError) as excinfo:
            DockerEngine().inspect_image("missing:1")
        assert excinfo.value.detail == "No such image"

    def test_image_exists(self, recorder: _Recorder):
        assert DockerEngine().image_exists("app:1") is True
        recorder.returncode = 1
        assert DockerEngine().image_exists("app:1") is False

    def test_missing_binary_raises_engine_unavailable(self, monkeypatch: pytest.MonkeyPatch):
        def _missing(argv, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", argv[0])

        monkeypatch.setattr(subprocess, "run", _missing)
        with pytest.raises(EngineUnavailable, match="not found"):
            DockerEngine("nerdctl").pull("rust:latest")

    def test_version_failure_raises_engine_unavailable(self, recorder: _Recorder):
        recorder.returncode = 1
        recorder.stderr = "Cannot connect to the Docker daemon"
        with pytest.raises(EngineUnavailable) as excinfo:
            DockerEngine().version()
        assert "daemon" in excinfo.value.detail

    def test_timeout_becomes_failed_result(self, monkeypatch: pytest.MonkeyPatch):
        def _slow(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"], output=b"step 1/4")

        monkeypatch.setattr(subprocess, "run", _slow)
        result = DockerEngine(build_timeout=5).build(
            Path("."), Path("Containerfile"), target="builder", tag="t:1"
        )
        assert result.returncode == TIMEOUT_RETURNCODE
        assert result.stdout == "step 1/4"
        assert "timed out after 5s" in result.stderr

    def test_from_settings(self):
        settings = SlimshipSettings(
            _env_file=None, engine_binary="podman", pull_timeout_seconds=5, build_timeout_seconds=7
        )
        engine = DockerEngine.from_settings(settings)
        assert (engine.binary, engine.pull_timeout, engine.build_timeout) == ("podman", 5, 7)


class TestProtocol:
    def test_docker_engine_satisfies_protocol(self):
        assert isinstance(DockerEngine(), ContainerEngine)

    def test_fake_engine_satisfies_protocol(self, engine):
        assert isinstance(engine, ContainerEngine)
