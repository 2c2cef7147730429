"""Prerequisite checks run before any orchestration.

All checks run; failures are accumulated so the caller sees every remediation step at
once. The hosting-target credential is never checked with a "whoami" call; commands that
need it receive the token explicitly.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from feature_env_orchestrator.orchestrator.gateway import CommandGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PrerequisiteConfig:
    required_tools: Sequence[str]
    github_token: str | None = None
    database_token: str | None = None


@dataclass(slots=True)
class PrerequisiteCheckResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors


def check_prerequisites(
    config: PrerequisiteConfig,
    *,
    gateway: CommandGateway,
    which: Callable[[str], str | None] = shutil.which,
) -> PrerequisiteCheckResult:
    result = PrerequisiteCheckResult()

    for tool in config.required_tools:
        if which(tool) is None:
            result.errors.append(f"Missing required CLI: {tool}. Install it and make sure it is on PATH.")

    env = {"GH_TOKEN": config.github_token} if config.github_token else None
    auth = gateway.run_local("gh", ["auth", "status"], env=env, timeout=30)
    if not auth.ok:
        diagnostic = auth.stderr.strip() or auth.stdout.strip() or "Not authenticated"
        result.errors.append(f"GitHub CLI not authenticated: {diagnostic}")

    if not config.database_token:
        result.warnings.append(
            "No database token configured; database branch commands will rely on the "
            "instance's own CLI login."
        )

    logger.info(
        "Prerequisite check finished",
        extra={"errors": len(result.errors), "warnings": len(result.warnings)},
    )
    return result


def format_prerequisite_results(result: PrerequisiteCheckResult) -> str:
    lines: list[str] = []
    if result.errors:
        lines.append("Errors:")
        lines.extend(f"  - {e}" for e in result.errors)
    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"  - {w}" for w in result.warnings)
    return "\n".join(lines)
