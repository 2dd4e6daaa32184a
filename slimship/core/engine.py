"""Container engine adapter.

Defines the ``ContainerEngine`` Protocol the stages drive, and
``DockerEngine``, which shells out to a docker-compatible CLI
(``docker`` or ``podman``). Every call is blocking and returns a
``CommandResult``; interpreting failures is left to the stages, which know
which error class a failed step maps to.
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from slimship.errors import EngineUnavailable, PipelineError

logger = logging.getLogger(__name__)

# Exit code reported when a command is killed for exceeding its timeout.
TIMEOUT_RETURNCODE = 124


class CommandResult(BaseModel):
    """Outcome of one engine invocation."""

    model_config = ConfigDict(frozen=True)

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Last *lines* of output, stderr preferred, for error reports."""
        text = self.stderr.strip() or self.stdout.strip()
        return "\n".join(text.splitlines()[-lines:])


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ContainerEngine(Protocol):
    """Protocol for container engine backends.

    Image arguments are full references (``repository:tag``) or ids.
    """

    def version(self) -> CommandResult: ...

    def pull(self, image: str) -> CommandResult: ...

    def build(
        self,
        context: Path,
        containerfile: Path,
        *,
        target: str,
        tag: str,
        build_args: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Build *target* of *containerfile* with *context* and tag it."""
        ...

    def run(self, image: str, command: list[str]) -> CommandResult:
        """Run *command* in a throwaway container, ignoring the entrypoint."""
        ...

    def inspect_image(self, image: str) -> dict[str, Any]: ...

    def image_exists(self, image: str) -> bool: ...

    def tag(self, source: str, target: str) -> CommandResult: ...

    def remove_image(self, image: str) -> CommandResult: ...

    def push(self, image: str) -> CommandResult: ...


# ---------------------------------------------------------------------------
# Docker-compatible CLI backend
# ---------------------------------------------------------------------------


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class DockerEngine:
    """Drives a docker-compatible CLI through ``subprocess.run``.

    Parameters
    ----------
    binary:
        Engine executable (``docker``, ``podman``, or an absolute path).
    pull_timeout, build_timeout:
        Seconds before a pull or build is killed.
    command_timeout:
        Seconds for every other call (inspect, run, tag, push, ...).
    """

    def __init__(
        self,
        binary: str = "docker",
        *,
        pull_timeout: int = 600,
        build_timeout: int = 3600,
        command_timeout: int = 300,
    ) -> None:
        self.binary = binary
        self.pull_timeout = pull_timeout
        self.build_timeout = build_timeout
        self.command_timeout = command_timeout

    @classmethod
    def from_settings(cls, settings: Any) -> DockerEngine:
        return cls(
            settings.engine_binary,
            pull_timeout=settings.pull_timeout_seconds,
            build_timeout=settings.build_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _invoke(self, args: list[str], *, timeout: int) -> CommandResult:
        argv = [self.binary, *args]
        logger.info("$ %s", shlex.join(argv))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise EngineUnavailable(
                f"Container engine {self.binary!r} was not found on PATH.",
                detail=str(exc),
            ) from exc
        except subprocess.TimeoutExpired as exc:
            logger.error("%s timed out after %ds", argv[1], timeout)
            return CommandResult(
                argv=argv,
                returncode=TIMEOUT_RETURNCODE,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr) + f"\ntimed out after {timeout}s",
            )
        return CommandResult(
            argv=argv,
            returncode=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def version(self) -> CommandResult:
        result = self._invoke(["version"], timeout=self.command_timeout)
        if not result.ok:
            raise EngineUnavailable(
                f"Container engine {self.binary!r} is installed but not usable.",
                detail=result.tail(),
            )
        return result

    def pull(self, image: str) -> CommandResult:
        return self._invoke(["pull", image], timeout=self.pull_timeout)

    def build(
        self,
        context: Path,
        containerfile: Path,
        *,
        target: str,
        tag: str,
        build_args: Mapping[str, str] | None = None,
    ) -> CommandResult:
        args = ["build", "--file", str(containerfile), "--target", target, "--tag", tag]
        for key, value in sorted((build_args or {}).items()):
            args += ["--build-arg", f"{key}={value}"]
        return self._invoke(
            [*args, str(context)],
            timeout=self.build_timeout,
        )

    def run(self, image: str, command: list[str]) -> CommandResult:
        return self._invoke(
            ["run", "--rm", "--entrypoint", "", image, *command],
            timeout=self.command_timeout,
        )

    def inspect_image(self, image: str) -> dict[str, Any]:
        result = self._invoke(
            ["image", "inspect", image], timeout=self.command_timeout
        )
        if not result.ok:
            raise PipelineError(
                f"Cannot inspect image {image}.", detail=result.tail()
            )
        payload = json.loads(result.stdout or "[]")
        if not payload:
            raise PipelineError(f"Engine returned no metadata for image {image}.")
        return payload[0]

    def image_exists(self, image: str) -> bool:
        return self._invoke(
            ["image", "inspect", image], timeout=self.command_timeout
        ).ok

    def tag(self, source: str, target: str) -> CommandResult:
        return self._invoke(["tag", source, target], timeout=self.command_timeout)

    def remove_image(self, image: str) -> CommandResult:
        return self._invoke(
            ["image", "rm", image], timeout=self.command_timeout
        )

    def push(self, image: str) -> CommandResult:
        return self._invoke(["push", image], timeout=self.pull_timeout)
