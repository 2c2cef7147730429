"""Settings for the feature environment CLI.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Only the CLI layer reads settings. Orchestration components receive explicit values
(paths, tokens, timeouts) so they never depend on the process environment.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from feature_env_orchestrator.orchestrator.conflicts import ConflictPolicy


def _default_state_dir() -> Path:
    return Path.home() / ".hatch"


class EnvSettings(BaseSettings):
    """Settings for the feature environment CLI.

    Environment variables:
    - FEATURE_ENV_STATE_DIR      (optional)
    - FEATURE_ENV_GITHUB_TOKEN   (optional, needed for private repos and branch cleanup)
    - FEATURE_ENV_DATABASE_TOKEN (optional)
    - LOG_LEVEL                  (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EnvSettings(_env_file=path_to_env)`.
    """

    state_dir: Path = Field(
        default_factory=_default_state_dir,
        validation_alias="FEATURE_ENV_STATE_DIR",
        description="Directory holding projects.json and vms.json",
    )

    log_level: str = Field(
        default="WARNING",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="FEATURE_ENV_LOG_FORMAT",
        description="Log line format written to stderr",
    )

    github_token: str = Field(
        default="",
        validation_alias="FEATURE_ENV_GITHUB_TOKEN",
        description="GitHub token passed explicitly to git, gh and the REST API",
    )
    github_base_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_BASE_URL",
        description="GitHub API base URL (useful for GitHub Enterprise)",
    )
    database_token: str = Field(
        default="",
        validation_alias="FEATURE_ENV_DATABASE_TOKEN",
        description="Access token for the database-branching CLI",
    )

    compute_host: str = Field(
        default="exe.dev",
        validation_alias="FEATURE_ENV_COMPUTE_HOST",
        description="ssh control host of the compute-instance provider",
    )
    required_tools: list[str] = Field(
        default_factory=lambda: ["ssh", "git", "gh"],
        validation_alias="FEATURE_ENV_REQUIRED_TOOLS",
        description="CLIs that must be on PATH before orchestration starts",
    )

    base_branch: str = Field(default="main", validation_alias="FEATURE_ENV_BASE_BRANCH")
    test_branch_suffix: str = Field(
        default="-test",
        validation_alias="FEATURE_ENV_TEST_BRANCH_SUFFIX",
        description="Suffix of the isolated test database branch",
    )
    default_conflict_policy: ConflictPolicy = Field(
        default="fail",
        validation_alias="FEATURE_ENV_CONFLICT_STRATEGY",
    )

    command_timeout_seconds: float = Field(
        default=60.0, gt=0, validation_alias="FEATURE_ENV_COMMAND_TIMEOUT"
    )
    clone_timeout_seconds: float = Field(
        default=600.0, gt=0, validation_alias="FEATURE_ENV_CLONE_TIMEOUT"
    )
    instance_ready_timeout_seconds: float = Field(
        default=120.0, gt=0, validation_alias="FEATURE_ENV_READY_TIMEOUT"
    )
    instance_ready_poll_seconds: float = Field(
        default=3.0, gt=0, validation_alias="FEATURE_ENV_READY_POLL"
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return level

    @property
    def projects_file(self) -> Path:
        """Path where project records are persisted."""

        return self.state_dir.expanduser() / "projects.json"

    @property
    def environments_file(self) -> Path:
        """Path where feature environment records are persisted."""

        return self.state_dir.expanduser() / "vms.json"
