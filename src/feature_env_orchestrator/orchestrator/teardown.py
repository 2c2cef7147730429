"""Best-effort teardown of a feature environment.

Order matters and is fixed: database branches (persistence disabled, then deleted),
then the remote source branch, then the instance. No failure aborts the sequence.
The environment record is removed afterwards regardless of remote failures; anything
that leaked is listed in the report for manual removal.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import requests

from feature_env_orchestrator.orchestrator.errors import EnvironmentNotFound, ProjectNotFound
from feature_env_orchestrator.orchestrator.gateway import CommandError, CommandGateway
from feature_env_orchestrator.orchestrator.github.client import GitHubClient
from feature_env_orchestrator.orchestrator.remote.compute import ComputeProvider
from feature_env_orchestrator.orchestrator.remote.database import DatabaseBranchService
from feature_env_orchestrator.state.records import EnvironmentRecord, ProjectRecord
from feature_env_orchestrator.state.store import EnvironmentStore, ProjectStore

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[ProjectRecord, EnvironmentRecord], bool]


@dataclass(slots=True)
class BranchDeletionReport:
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def all_deleted(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        if self.all_deleted:
            return f"Deleted {len(self.deleted)} database branches"
        return f"Deleted {len(self.deleted)} branches, failed: {', '.join(self.failed)}"


@dataclass(slots=True)
class TeardownReport:
    project: ProjectRecord
    environment: EnvironmentRecord
    cancelled: bool = False
    branches: BranchDeletionReport = field(default_factory=BranchDeletionReport)
    source_branch_deleted: bool | None = None
    instance_deleted: bool = False
    record_removed: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def deleted_resources(self) -> list[str]:
        items: list[str] = []
        if self.instance_deleted:
            items.append(f"Instance: {self.environment.name}")
        items.extend(f"Database branch: {b}" for b in self.branches.deleted)
        if self.source_branch_deleted:
            items.append(f"Git branch: {self.environment.source_branch}")
        return items

    @property
    def failed_resources(self) -> list[str]:
        items: list[str] = []
        if not self.cancelled and not self.instance_deleted:
            items.append(f"Instance: {self.environment.name}")
        items.extend(f"Database branch: {b}" for b in self.branches.failed)
        if self.source_branch_deleted is False:
            items.append(f"Git branch: {self.environment.source_branch}")
        return items

    @property
    def preserved_resources(self) -> list[str]:
        items = [f"Repository: {self.project.source_control.url}"]
        if self.project.hosting_target.url:
            items.append(f"Hosting: {self.project.hosting_target.url}")
        return items


class FeatureTeardown:
    """Destroy the remote resources of a feature environment and drop its record."""

    def __init__(
        self,
        *,
        projects: ProjectStore,
        environments: EnvironmentStore,
        gateway: CommandGateway,
        compute: ComputeProvider,
        github: GitHubClient | None = None,
        database_token: str | None = None,
        confirm: ConfirmFn | None = None,
    ) -> None:
        self._projects = projects
        self._environments = environments
        self._gateway = gateway
        self._compute = compute
        self._github = github
        self._database_token = database_token or None
        self._confirm = confirm

    def locate(self, project_name: str, feature: str) -> tuple[ProjectRecord, EnvironmentRecord]:
        project = self._projects.get(project_name)
        if project is None:
            raise ProjectNotFound(project_name)
        record = self._environments.find_by_feature(project_name, feature)
        if record is None:
            raise EnvironmentNotFound(project=project_name, feature=feature)
        return project, record

    def clean(self, *, project_name: str, feature: str, force: bool = False) -> TeardownReport:
        project, record = self.locate(project_name, feature)

        if not force and self._confirm is not None and not self._confirm(project, record):
            logger.info(
                "Teardown cancelled by user",
                extra={"project": project.name, "feature": feature},
            )
            return TeardownReport(project=project, environment=record, cancelled=True)

        report = TeardownReport(project=project, environment=record)

        self._delete_database_branches(project, record, report)
        self._delete_source_branch(project, record, report)
        self._delete_instance(record, report)

        report.record_removed = self._environments.remove(record.name)
        logger.info(
            "Feature environment removed",
            extra={
                "project": project.name,
                "feature": record.feature,
                "instance": record.name,
                "failed": len(report.failed_resources),
            },
        )
        return report

    def _delete_database_branches(
        self, project: ProjectRecord, record: EnvironmentRecord, report: TeardownReport
    ) -> None:
        if not record.database_branches:
            return

        database = DatabaseBranchService(
            self._gateway,
            host=record.remote_host,
            workdir=f"~/{project.source_control.repo}",
            token=self._database_token,
            project_ref=project.database_project.project_ref,
        )
        for branch in record.database_branches:
            failed = False
            # Delete is attempted even when disabling persistence fails.
            for operation in (database.disable_persistence, database.delete):
                try:
                    operation(branch)
                except (CommandError, ValueError) as e:
                    logger.warning(
                        "Database branch operation failed",
                        extra={"branch": branch, "operation": operation.__name__, "error": str(e)},
                    )
                    failed = True
            if failed:
                report.branches.failed.append(branch)
            else:
                report.branches.deleted.append(branch)

        if not report.branches.all_deleted:
            report.warnings.append(report.branches.summary())

    def _delete_source_branch(
        self, project: ProjectRecord, record: EnvironmentRecord, report: TeardownReport
    ) -> None:
        if self._github is None or not record.source_branch:
            return
        try:
            self._github.delete_branch(
                repository=project.source_control.full_name, branch=record.source_branch
            )
            report.source_branch_deleted = True
        except (requests.RequestException, ValueError) as e:
            logger.warning(
                "Failed to delete remote git branch",
                extra={"branch": record.source_branch, "error": str(e)},
            )
            report.source_branch_deleted = False
            report.warnings.append(
                "Could not delete remote branch. Delete manually: "
                f"git push origin --delete {record.source_branch}"
            )

    def _delete_instance(self, record: EnvironmentRecord, report: TeardownReport) -> None:
        try:
            self._compute.delete(record.name)
            report.instance_deleted = True
        except CommandError as e:
            logger.warning(
                "Failed to delete instance",
                extra={"instance": record.name, "error": str(e)},
            )
            report.warnings.append(
                "Failed to delete instance. You may need to delete it manually: "
                f"{self._compute.manual_delete_command(record.name)}"
            )
