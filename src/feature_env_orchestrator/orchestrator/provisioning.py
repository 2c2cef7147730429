"""Provisioning of a feature environment.

Creation is a linear sequence of remote steps:

    name_resolved -> instance_allocated -> repository_cloned -> branch_created
        -> database_branches_created -> environment_wired -> record_persisted

A failure at any step aborts the remaining ones and raises `ProvisioningError` naming
the failed step. The environment record is written only by the last step, so an
aborted run never leaves a record behind. Remote resources created before the abort
are not rolled back; the error lists them together with the manual cleanup commands.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

from feature_env_orchestrator.orchestrator.conflicts import (
    ConflictPolicy,
    NameConflictError,
    resolve_name_conflict,
)
from feature_env_orchestrator.orchestrator.errors import ProjectNotFound
from feature_env_orchestrator.orchestrator.gateway import CommandError, CommandGateway
from feature_env_orchestrator.orchestrator.remote.compute import (
    ComputeProvider,
    Instance,
    InstanceNotReady,
)
from feature_env_orchestrator.orchestrator.remote.database import DatabaseBranchService
from feature_env_orchestrator.orchestrator.remote.workspace import RemoteWorkspace
from feature_env_orchestrator.state.records import EnvironmentRecord, ProjectRecord
from feature_env_orchestrator.state.store import EnvironmentStore, ProjectStore

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = "apps/web/.env.local"
MAX_RENAME_ATTEMPTS = 5

_FEATURE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$")


class ProvisioningStep(str, Enum):
    NAME_RESOLVED = "name_resolved"
    INSTANCE_ALLOCATED = "instance_allocated"
    REPOSITORY_CLONED = "repository_cloned"
    BRANCH_CREATED = "branch_created"
    DATABASE_BRANCHES_CREATED = "database_branches_created"
    ENVIRONMENT_WIRED = "environment_wired"
    RECORD_PERSISTED = "record_persisted"


PROVISIONING_ORDER: tuple[ProvisioningStep, ...] = tuple(ProvisioningStep)


class IllegalTransitionError(ValueError):
    pass


def next_step(current: ProvisioningStep | None) -> ProvisioningStep:
    if current is None:
        return PROVISIONING_ORDER[0]
    index = PROVISIONING_ORDER.index(current)
    if index + 1 >= len(PROVISIONING_ORDER):
        raise IllegalTransitionError(f"No step after {current.value}")
    return PROVISIONING_ORDER[index + 1]


@dataclass(frozen=True, slots=True)
class ProvisioningError(Exception):
    """A provisioning step failed; later steps were not attempted."""

    step: ProvisioningStep
    reason: str
    completed: tuple[ProvisioningStep, ...] = ()
    instance: Instance | None = None
    manual_cleanup: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"Provisioning failed at step '{self.step.value}': {self.reason}"


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    project: ProjectRecord
    environment: EnvironmentRecord
    warnings: tuple[str, ...] = ()


@dataclass(slots=True)
class _Run:
    """Mutable bookkeeping for a single `create` call."""

    on_step: Callable[[ProvisioningStep], None] | None
    current: ProvisioningStep | None = None
    completed: list[ProvisioningStep] = field(default_factory=list)
    instance: Instance | None = None
    database_branches: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def advance(self, to: ProvisioningStep) -> None:
        expected = next_step(self.current)
        if to is not expected:
            raise IllegalTransitionError(
                f"Illegal transition: {self.current.value if self.current else 'start'} -> {to.value}"
            )
        self.current = to
        self.completed.append(to)
        logger.info("Provisioning step completed", extra={"step": to.value})
        if self.on_step is not None:
            self.on_step(to)


class FeatureProvisioner:
    """Create a feature environment end-to-end and record it on full success."""

    def __init__(
        self,
        *,
        projects: ProjectStore,
        environments: EnvironmentStore,
        gateway: CommandGateway,
        compute: ComputeProvider,
        github_token: str | None = None,
        database_token: str | None = None,
        base_branch: str = "main",
        test_branch_suffix: str = "-test",
        env_file: str = DEFAULT_ENV_FILE,
        clone_timeout_seconds: float = 600.0,
        connection_attempts: int = 10,
        connection_poll_seconds: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        on_step: Callable[[ProvisioningStep], None] | None = None,
    ) -> None:
        self._projects = projects
        self._environments = environments
        self._gateway = gateway
        self._compute = compute
        self._github_token = github_token or None
        self._database_token = database_token or None
        self._base_branch = base_branch
        self._test_branch_suffix = test_branch_suffix
        self._env_file = env_file
        self._clone_timeout = clone_timeout_seconds
        self._connection_attempts = max(1, connection_attempts)
        self._connection_poll = connection_poll_seconds
        self._sleep = sleep
        self._on_step = on_step

    def resolve_feature_name(
        self, project: str, feature: str, policy: ConflictPolicy = "fail"
    ) -> str:
        """Return a feature name with no active environment in `project`."""

        if not _FEATURE_NAME.match(feature):
            raise ValueError(f"Invalid feature name: {feature!r}")

        candidate = feature
        for _ in range(MAX_RENAME_ATTEMPTS):
            if self._environments.find_by_feature(project, candidate) is None:
                return candidate
            candidate = resolve_name_conflict(feature, policy)
        raise NameConflictError(feature)

    def create(
        self,
        *,
        project_name: str,
        feature: str,
        conflict_policy: ConflictPolicy = "fail",
    ) -> ProvisioningResult:
        project = self._projects.get(project_name)
        if project is None:
            raise ProjectNotFound(project_name)

        run = _Run(on_step=self._on_step)

        feature_name = self.resolve_feature_name(project.name, feature, conflict_policy)
        if feature_name != feature:
            logger.info(
                "Feature renamed to avoid conflict",
                extra={"project": project.name, "requested": feature, "feature": feature_name},
            )
        run.advance(ProvisioningStep.NAME_RESOLVED)

        with self._step(run, ProvisioningStep.INSTANCE_ALLOCATED):
            run.instance = self._compute.allocate()
            self._compute.wait_until_ready(run.instance.remote_host)
        instance = run.instance
        assert instance is not None

        repo = project.source_control.repo
        workspace = RemoteWorkspace(
            self._gateway,
            host=instance.remote_host,
            repo=repo,
            token=self._github_token,
            clone_timeout_seconds=self._clone_timeout,
        )
        database = DatabaseBranchService(
            self._gateway,
            host=instance.remote_host,
            workdir=workspace.path,
            token=self._database_token,
            project_ref=project.database_project.project_ref,
        )

        with self._step(run, ProvisioningStep.REPOSITORY_CLONED):
            workspace.clone(project.source_control.url)

        with self._step(run, ProvisioningStep.BRANCH_CREATED):
            workspace.create_branch(feature_name, base=self._base_branch)

        primary_branch = feature_name
        test_branch = f"{feature_name}{self._test_branch_suffix}"
        with self._step(run, ProvisioningStep.DATABASE_BRANCHES_CREATED):
            for branch in (primary_branch, test_branch):
                database.create(branch, persistent=True)
                run.database_branches.append(branch)

        with self._step(run, ProvisioningStep.ENVIRONMENT_WIRED):
            url = self._wait_for_connection_url(database, primary_branch)
            if url is None:
                run.warnings.append(
                    f"Could not read connection details for database branch {primary_branch}; "
                    f"update DATABASE_URL in {self._env_file} manually."
                )
            else:
                workspace.set_env_value(self._env_file, "DATABASE_URL", url)
            workspace.push(feature_name)

        record = EnvironmentRecord(
            name=instance.name,
            remote_host=instance.remote_host,
            project=project.name,
            feature=feature_name,
            database_branches=list(run.database_branches),
            source_branch=feature_name,
        )
        with self._step(run, ProvisioningStep.RECORD_PERSISTED):
            self._environments.upsert(record)

        logger.info(
            "Feature environment created",
            extra={"project": project.name, "feature": feature_name, "instance": instance.name},
        )
        return ProvisioningResult(project=project, environment=record, warnings=tuple(run.warnings))

    def _wait_for_connection_url(self, database: DatabaseBranchService, branch: str) -> str | None:
        for attempt in range(self._connection_attempts):
            url = database.connection_url(branch)
            if url is not None:
                return url
            if attempt + 1 < self._connection_attempts:
                self._sleep(self._connection_poll)
        return None

    @contextmanager
    def _step(self, run: _Run, step: ProvisioningStep) -> Iterator[None]:
        try:
            yield
        except (CommandError, InstanceNotReady, ValueError, OSError) as e:
            cleanup = self._manual_cleanup(run)
            logger.error(
                "Provisioning step failed",
                extra={
                    "step": step.value,
                    "error": str(e),
                    "instance": run.instance.name if run.instance else None,
                },
            )
            raise ProvisioningError(
                step=step,
                reason=str(e),
                completed=tuple(run.completed),
                instance=run.instance,
                manual_cleanup=cleanup,
            ) from e
        run.advance(step)

    def _manual_cleanup(self, run: _Run) -> tuple[str, ...]:
        hints: list[str] = []
        if run.instance is not None:
            hints.extend(
                f"Delete database branch {b} (from {run.instance.remote_host})"
                for b in run.database_branches
            )
            hints.append(self._compute.manual_delete_command(run.instance.name))
        return tuple(hints)
