"""CLI entrypoint for feature environments.

Commands:
- check                 verify local tools and GitHub authentication
- project add|list|remove
- feature <name>        provision a feature environment
- list                  show recorded feature environments
- clean <name>          tear a feature environment down
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError

from feature_env_orchestrator import __version__
from feature_env_orchestrator.orchestrator.config import EnvSettings
from feature_env_orchestrator.orchestrator.conflicts import CONFLICT_POLICIES, NameConflictError
from feature_env_orchestrator.orchestrator.errors import EnvironmentNotFound, ProjectNotFound
from feature_env_orchestrator.orchestrator.gateway import (
    CommandError,
    CommandGateway,
    SubprocessGateway,
)
from feature_env_orchestrator.orchestrator.github.client import GitHubClient
from feature_env_orchestrator.orchestrator.logging import configure_logging
from feature_env_orchestrator.orchestrator.prerequisites import (
    PrerequisiteCheckResult,
    PrerequisiteConfig,
    check_prerequisites,
    format_prerequisite_results,
)
from feature_env_orchestrator.orchestrator.provisioning import (
    FeatureProvisioner,
    ProvisioningError,
    ProvisioningStep,
)
from feature_env_orchestrator.orchestrator.remote.compute import ComputeProvider
from feature_env_orchestrator.orchestrator.teardown import FeatureTeardown, TeardownReport
from feature_env_orchestrator.state.records import (
    DatabaseProject,
    EnvironmentRecord,
    HostingTarget,
    ProjectRecord,
    SourceControlRef,
)
from feature_env_orchestrator.state.store import EnvironmentStore, ProjectStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feature-env",
        description="Provision and tear down per-feature development environments",
    )
    parser.add_argument(
        "--version", action="version", version=f"feature-env-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("check", help="Check required CLIs and GitHub authentication")

    project = subparsers.add_parser("project", help="Manage registered projects")
    project_sub = project.add_subparsers(dest="project_command", required=True)

    project_add = project_sub.add_parser("add", help="Register an existing project")
    project_add.add_argument("name", help="Project name (unique)")
    project_add.add_argument(
        "--repo",
        "--repository",
        dest="repository",
        required=True,
        help="Repository in the form 'owner/repo'",
    )
    project_add.add_argument(
        "--repo-url",
        default=None,
        help="Clone URL (defaults to the GitHub URL of --repo)",
    )
    project_add.add_argument("--hosting-url", default="", help="Deployed application URL")
    project_add.add_argument("--hosting-project-id", default="", help="Hosting project ID")
    project_add.add_argument(
        "--db-project-ref", default="", help="Database-branching service project reference"
    )
    project_add.add_argument("--db-region", default="", help="Database project region")
    project_add.add_argument(
        "--replace",
        action="store_true",
        help="Overwrite an existing project with the same name",
    )

    project_list = project_sub.add_parser("list", help="List registered projects")
    project_list.add_argument("--json", action="store_true", help="Output as JSON")

    project_remove = project_sub.add_parser("remove", help="Forget a registered project")
    project_remove.add_argument("name", help="Project name")

    feature = subparsers.add_parser(
        "feature",
        help="Create an instance, git branch and database branches for a feature",
    )
    feature.add_argument("feature_name", help="Feature (and git branch) name")
    feature.add_argument("--project", required=True, help="Project name")
    feature.add_argument(
        "--conflict-strategy",
        choices=CONFLICT_POLICIES,
        default=None,
        help="What to do if the feature already has an environment (default: fail)",
    )
    feature.add_argument(
        "--skip-checks", action="store_true", help="Skip the prerequisite checks"
    )

    list_cmd = subparsers.add_parser("list", help="List feature environments")
    list_cmd.add_argument("--project", default=None, help="Only show this project")
    list_cmd.add_argument("--json", action="store_true", help="Output as JSON")
    list_cmd.add_argument(
        "--remote",
        action="store_true",
        help="Also query the instance provider for live status",
    )

    clean = subparsers.add_parser(
        "clean", help="Delete a feature environment and its database branches"
    )
    clean.add_argument("feature_name", help="Feature name to clean up")
    clean.add_argument("--project", required=True, help="Project name")
    clean.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    clean.add_argument("--skip-checks", action="store_true", help="Skip the prerequisite checks")

    return parser


def _prerequisite_config(settings: EnvSettings) -> PrerequisiteConfig:
    return PrerequisiteConfig(
        required_tools=tuple(settings.required_tools),
        github_token=settings.github_token or None,
        database_token=settings.database_token or None,
    )


def _print_prerequisites(result: PrerequisiteCheckResult) -> None:
    text = format_prerequisite_results(result)
    if text:
        print(text, file=sys.stderr if not result.passed else sys.stdout)


def _github_client(settings: EnvSettings) -> GitHubClient | None:
    if not settings.github_token:
        return None
    return GitHubClient(token=settings.github_token, base_url=settings.github_base_url)


def _compute(settings: EnvSettings, gateway: CommandGateway) -> ComputeProvider:
    return ComputeProvider(
        gateway,
        control_host=settings.compute_host,
        ready_timeout_seconds=settings.instance_ready_timeout_seconds,
        ready_poll_seconds=settings.instance_ready_poll_seconds,
    )


def _print_step(step: ProvisioningStep) -> None:
    print(f"  ok  {step.value.replace('_', ' ')}")


def _confirm_teardown(project: ProjectRecord, record: EnvironmentRecord) -> bool:
    try:
        answer = input(
            "Are you sure you want to delete this feature environment and its "
            "database branches? [y/N] "
        )
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return answer.strip().lower() in {"y", "yes"}


def _print_teardown_plan(feature: str, project: ProjectRecord, record: EnvironmentRecord) -> None:
    print(f"Feature: {feature}")
    print(f"  Project: {project.name}")
    print(f"  Instance: {record.name}")
    if record.source_branch:
        print(f"  Git branch: {record.source_branch}")
    if record.database_branches:
        print(f"  Database branches: {', '.join(record.database_branches)}")


def _print_teardown_report(report: TeardownReport) -> None:
    for warning in report.warnings:
        print(f"Warning: {warning}", file=sys.stderr)

    failed = report.failed_resources
    print("Feature cleanup complete!" if not failed else "Feature cleanup finished with failures.")
    print("Deleted resources:")
    for item in report.deleted_resources or ["(none)"]:
        print(f"  {item}")
    if failed:
        print(f"Failed to delete ({len(failed)}), remove manually:")
        for item in failed:
            print(f"  {item}")
    print("Project preserved:")
    for item in report.preserved_resources:
        print(f"  {item}")


def _print_environment(record: EnvironmentRecord, status: str | None = None) -> None:
    suffix = f" [{status}]" if status else ""
    print(f"{record.name} ({record.project}) [feature: {record.feature}]{suffix}")
    print(f"  SSH:     ssh {record.remote_host}")
    print(f"  Created: {record.created_at}")
    if record.source_branch:
        print(f"  Branch:  {record.source_branch}")
    if record.database_branches:
        print(f"  Database branches: {', '.join(record.database_branches)}")


def _warn_if_recovered(*stores: ProjectStore | EnvironmentStore) -> None:
    for store in stores:
        if store.last_warning:
            print(f"Warning: {store.last_warning}", file=sys.stderr)


def main(argv: list[str] | None = None, *, gateway: CommandGateway | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EnvSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your environment / .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_format)

    gateway = gateway or SubprocessGateway(default_timeout=settings.command_timeout_seconds)
    projects = ProjectStore.at(settings.projects_file)
    environments = EnvironmentStore.at(settings.environments_file)

    try:
        if args.command == "check":
            result = check_prerequisites(_prerequisite_config(settings), gateway=gateway)
            _print_prerequisites(result)
            if not result.passed:
                return 1
            print("All prerequisites satisfied.")
            return 0

        if args.command == "project":
            if args.project_command == "add":
                if projects.get(args.name) is not None and not args.replace:
                    raise NameConflictError(args.name)

                owner, _, repo = args.repository.strip("/").partition("/")
                if not owner or not repo:
                    print("--repo must be in the form 'owner/repo'", file=sys.stderr)
                    return 1

                url = args.repo_url
                github = _github_client(settings) if url is None else None
                if github is not None:
                    try:
                        info = github.get_repository(f"{owner}/{repo}")
                    finally:
                        github.close()
                    url, owner, repo = info.url, info.owner, info.repo
                if url is None:
                    url = f"https://github.com/{owner}/{repo}"

                record = ProjectRecord(
                    name=args.name,
                    source_control=SourceControlRef(url=url, owner=owner, repo=repo),
                    hosting_target=HostingTarget(
                        url=args.hosting_url, project_id=args.hosting_project_id
                    ),
                    database_project=DatabaseProject(
                        project_ref=args.db_project_ref, region=args.db_region
                    ),
                )
                projects.upsert(record)
                logger.info(
                    "Project persisted",
                    extra={"path": projects.location, "project": record.name},
                )
                print(f"Registered project {record.name}: {url}")
                return 0

            if args.project_command == "list":
                records = projects.list()
                _warn_if_recovered(projects)
                if args.json:
                    print(
                        json.dumps(
                            [p.model_dump(mode="json", by_alias=True) for p in records], indent=2
                        )
                    )
                    return 0
                if not records:
                    print("No projects found. Run 'feature-env project add <name>' to add one.")
                    return 0
                for p in records:
                    print(f"{p.name}: {p.source_control.url}")
                return 0

            if args.project_command == "remove":
                if projects.get(args.name) is None:
                    raise ProjectNotFound(args.name)
                active = environments.list_by_project(args.name)
                if active:
                    print(
                        f"Project {args.name} still has {len(active)} feature environment(s): "
                        f"{', '.join(r.feature for r in active)}. Clean them up first.",
                        file=sys.stderr,
                    )
                    return 1
                projects.remove(args.name)
                print(f"Removed project {args.name}")
                return 0

        if args.command == "feature":
            if not args.skip_checks:
                result = check_prerequisites(_prerequisite_config(settings), gateway=gateway)
                _print_prerequisites(result)
                if not result.passed:
                    return 1

            provisioner = FeatureProvisioner(
                projects=projects,
                environments=environments,
                gateway=gateway,
                compute=_compute(settings, gateway),
                github_token=settings.github_token,
                database_token=settings.database_token,
                base_branch=settings.base_branch,
                test_branch_suffix=settings.test_branch_suffix,
                clone_timeout_seconds=settings.clone_timeout_seconds,
                on_step=_print_step,
            )
            print(f"Creating feature environment: {args.feature_name} (project: {args.project})")
            created = provisioner.create(
                project_name=args.project,
                feature=args.feature_name,
                conflict_policy=args.conflict_strategy or settings.default_conflict_policy,
            )
            _warn_if_recovered(projects, environments)
            for warning in created.warnings:
                print(f"Warning: {warning}", file=sys.stderr)

            env = created.environment
            print("Feature environment created successfully!")
            print(f"  Instance:          {env.name}")
            print(f"  Project:           {env.project}")
            print(f"  Git branch:        {env.source_branch}")
            print(f"  Database branches: {', '.join(env.database_branches)}")
            print(f"  SSH:               ssh {env.remote_host}")
            print(f"When done: feature-env clean {env.feature} --project {env.project}")
            return 0

        if args.command == "list":
            records = (
                environments.list_by_project(args.project)
                if args.project
                else environments.list()
            )
            _warn_if_recovered(environments)
            if args.json:
                print(
                    json.dumps(
                        [r.model_dump(mode="json", by_alias=True) for r in records], indent=2
                    )
                )
                return 0
            if not records:
                print("No feature environments found.")
                return 0

            statuses: dict[str, str] = {}
            if args.remote:
                statuses = {i.name: i.status for i in _compute(settings, gateway).list_instances()}
            print(f"Found {len(records)} feature environment{'' if len(records) == 1 else 's'}:")
            for r in records:
                status = statuses.get(r.name, "missing") if args.remote else None
                _print_environment(r, status)
            return 0

        if args.command == "clean":
            if not args.skip_checks:
                result = check_prerequisites(_prerequisite_config(settings), gateway=gateway)
                _print_prerequisites(result)
                if not result.passed:
                    return 1

            github = _github_client(settings)
            try:
                teardown = FeatureTeardown(
                    projects=projects,
                    environments=environments,
                    gateway=gateway,
                    compute=_compute(settings, gateway),
                    github=github,
                    database_token=settings.database_token,
                    confirm=_confirm_teardown,
                )
                project_record, env_record = teardown.locate(args.project, args.feature_name)
                _print_teardown_plan(args.feature_name, project_record, env_record)

                report = teardown.clean(
                    project_name=args.project, feature=args.feature_name, force=args.force
                )
            finally:
                if github is not None:
                    github.close()

            if report.cancelled:
                print("Operation cancelled.")
                return 0
            _print_teardown_report(report)
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (ProjectNotFound, EnvironmentNotFound) as e:
        logger.warning(str(e))
        print(f"Error: {e}", file=sys.stderr)
        print(e.hint, file=sys.stderr)
        return 1

    except NameConflictError as e:
        logger.warning(str(e), extra={"conflicting_name": e.name})
        print(f"Error: {e}", file=sys.stderr)
        return 3

    except ProvisioningError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.completed:
            print(
                f"Completed steps: {', '.join(s.value for s in e.completed)}",
                file=sys.stderr,
            )
        if e.manual_cleanup:
            print("Resources left in place, remove manually:", file=sys.stderr)
            for hint in e.manual_cleanup:
                print(f"  {hint}", file=sys.stderr)
        return 1

    except CommandError as e:
        logger.error("Remote command failed", extra={"error": str(e)})
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        logger.exception("Command failed")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
