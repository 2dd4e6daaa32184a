"""Runtime settings — env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
SLIMSHIP_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class SlimshipSettings(BaseSettings):
    """Tool settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SLIMSHIP_ENVIRONMENT=production
        export SLIMSHIP_LOG_LEVEL=DEBUG
        export SLIMSHIP_ENGINE_BINARY=podman

    Or via .env file::

        SLIMSHIP_KEEP_BUILDER=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SLIMSHIP_",
        env_file_encoding="utf-8",
    )

    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Container engine
    engine_binary: str = "docker"
    pull_timeout_seconds: int = 600
    build_timeout_seconds: int = 3600

    # State
    definition_path: Path = Path("slimship.yaml")
    ledger_path: Path = Path(".slimship/ledger.db")
    artifact_store_path: Path = Path(".slimship/artifacts")
    work_dir: Path = Path(".slimship/work")

    # Release behaviour
    keep_builder: bool = False
    allow_floating_tags: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def state_paths(self) -> tuple[Path, ...]:
        """Files and directories slimship writes to on every run."""
        return (self.ledger_path, self.artifact_store_path, self.work_dir)
