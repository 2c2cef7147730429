"""Unit tests for the remote git workspace and database branch service."""

from __future__ import annotations

import pytest
from conftest import DATABASE_URL, FakeGateway

from feature_env_orchestrator.orchestrator.gateway import CommandError
from feature_env_orchestrator.orchestrator.remote.database import DatabaseBranchService
from feature_env_orchestrator.orchestrator.remote.workspace import RemoteWorkspace

HOST = "fortune-sprite.exe.xyz"


def _database(gateway: FakeGateway, **kwargs: str) -> DatabaseBranchService:
    return DatabaseBranchService(gateway, host=HOST, workdir="~/web", **kwargs)


def test_clone_without_token_uses_plain_git(gateway: FakeGateway) -> None:
    RemoteWorkspace(gateway, host=HOST, repo="web", clone_timeout_seconds=300).clone(
        "https://github.com/acme/web"
    )

    (call,) = gateway.calls
    assert call.target == HOST
    assert call.command == "git clone https://github.com/acme/web ~/web"
    assert call.timeout == 300


def test_token_is_passed_through_environment_not_url(gateway: FakeGateway) -> None:
    RemoteWorkspace(gateway, host=HOST, repo="web", token="ghp_secret").clone(
        "https://github.com/acme/web"
    )

    (call,) = gateway.calls
    assert call.command.startswith("git -c credential.helper=")
    assert "https://github.com/acme/web" in call.command
    assert "ghp_secret" not in call.command
    assert call.env == {"FEATURE_ENV_GIT_TOKEN": "ghp_secret"}


def test_create_branch_from_base(gateway: FakeGateway) -> None:
    RemoteWorkspace(gateway, host=HOST, repo="web").create_branch("login", base="develop")

    assert gateway.commands() == [
        "cd ~/web && git fetch origin && git checkout -b login origin/develop"
    ]


def test_set_env_value_replaces_existing_key(gateway: FakeGateway) -> None:
    RemoteWorkspace(gateway, host=HOST, repo="web").set_env_value(
        "apps/web/.env.local", "DATABASE_URL", DATABASE_URL
    )

    (call,) = gateway.calls
    command = call.command
    assert command.startswith("cd ~/web && mkdir -p apps/web && touch apps/web/.env.local")
    assert "grep -v '^DATABASE_URL='" in command
    assert "printf '%s=%s\\n' DATABASE_URL \"$FEATURE_ENV_VALUE\" >> apps/web/.env.local.tmp" in command
    assert DATABASE_URL not in command
    assert call.env == {"FEATURE_ENV_VALUE": DATABASE_URL}
    assert command.endswith("mv apps/web/.env.local.tmp apps/web/.env.local")


def test_push_failure_raises(gateway: FakeGateway) -> None:
    gateway.on_remote("push -u origin", exit_code=1, stderr="permission denied")

    with pytest.raises(CommandError):
        RemoteWorkspace(gateway, host=HOST, repo="web").push("login")


def test_workspace_requires_repo(gateway: FakeGateway) -> None:
    with pytest.raises(ValueError):
        RemoteWorkspace(gateway, host=HOST, repo=" ")


def test_database_cli_passes_token_in_env_and_project_ref(gateway: FakeGateway) -> None:
    _database(gateway, token="sbp_token", project_ref="abcd1234").create("login")

    (call,) = gateway.calls
    assert call.command == (
        "cd ~/web && supabase branches create login --persistent --project-ref abcd1234"
    )
    assert call.env == {"SUPABASE_ACCESS_TOKEN": "sbp_token"}


def test_database_failure_message_does_not_leak_token(gateway: FakeGateway) -> None:
    gateway.on_remote(
        "create login", exit_code=1, stderr="auth failed for token sbp_SECRET"
    )

    with pytest.raises(CommandError) as exc_info:
        _database(gateway, token="sbp_SECRET").create("login")

    message = str(exc_info.value)
    assert "sbp_SECRET" not in message
    assert "auth failed for token ***" in message


def test_connection_url_reads_db_url(gateway: FakeGateway) -> None:
    assert _database(gateway).connection_url("login") == DATABASE_URL


@pytest.mark.parametrize("stdout", ["{}", '{"db_url": ""}', "not json"])
def test_connection_url_missing_returns_none(gateway: FakeGateway, stdout: str) -> None:
    gateway.on_remote("--output json", stdout=stdout)

    assert _database(gateway).connection_url("login") is None


def test_delete_disables_persistence_then_deletes(gateway: FakeGateway) -> None:
    service = _database(gateway)

    service.disable_persistence("login")
    service.delete("login")

    assert gateway.commands() == [
        "cd ~/web && supabase branches update login --persistent=false",
        "cd ~/web && supabase branches delete login --force",
    ]


def test_already_deleted_branch_counts_as_success(gateway: FakeGateway) -> None:
    gateway.on_remote("delete login", exit_code=1, stderr="Error: branch not found")

    _database(gateway).delete("login")


def test_other_delete_failures_raise(gateway: FakeGateway) -> None:
    gateway.on_remote("delete login", exit_code=1, stderr="Unauthorized")

    with pytest.raises(CommandError):
        _database(gateway).delete("login")
