"""Persisted record models for projects and feature environments.

Records are stored as camelCase JSON so the files stay compatible with the
per-user state directory layout (`projects.json`, `vms.json`).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

STORE_VERSION = 1


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SourceControlRef(_CamelModel):
    """Where the project's repository lives."""

    url: str
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class HostingTarget(_CamelModel):
    """Deployed application the project is hosted as."""

    url: str = Field(default="")
    project_id: str = Field(default="")


class DatabaseProject(_CamelModel):
    """Parent project of the database-branching service."""

    project_ref: str = Field(default="")
    region: str = Field(default="")


class ProjectRecord(_CamelModel):
    """A long-lived project managed by the tool. Keyed by `name`."""

    name: str
    created_at: str = Field(default_factory=utc_now_iso)
    source_control: SourceControlRef
    hosting_target: HostingTarget = Field(default_factory=HostingTarget)
    database_project: DatabaseProject = Field(default_factory=DatabaseProject)


class EnvironmentRecord(_CamelModel):
    """One ephemeral feature environment. Keyed by the instance `name`.

    At most one record per (project, feature) pair is active at a time.
    """

    name: str
    remote_host: str
    project: str
    feature: str
    created_at: str = Field(default_factory=utc_now_iso)
    database_branches: list[str] = Field(default_factory=list)
    source_branch: str = Field(default="")


class ProjectFile(_CamelModel):
    version: Literal[1]
    projects: list[ProjectRecord] = Field(default_factory=list)


class EnvironmentFile(_CamelModel):
    version: Literal[1]
    vms: list[EnvironmentRecord] = Field(default_factory=list)
