"""Lookup and conflict errors surfaced to the CLI with a remediation hint."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProjectNotFound(LookupError):
    """Raised when a project name is not in the project store."""

    name: str

    hint = "Run 'feature-env project list' to see available projects."

    def __str__(self) -> str:
        return f"Project not found: {self.name}"


@dataclass(frozen=True, slots=True)
class EnvironmentNotFound(LookupError):
    """Raised when no feature environment exists for the lookup key."""

    project: str
    feature: str

    hint = "Run 'feature-env list' to see available feature environments."

    def __str__(self) -> str:
        return f"Feature environment not found: {self.feature} (project: {self.project})"
