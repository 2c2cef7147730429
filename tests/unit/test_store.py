"""Unit tests for the local project and environment stores."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from feature_env_orchestrator.state.records import EnvironmentRecord, ProjectRecord
from feature_env_orchestrator.state.store import EnvironmentStore, ProjectStore


def test_missing_file_loads_as_empty_store(tmp_path: Path) -> None:
    store = ProjectStore.at(tmp_path / "projects.json")

    assert store.list() == []
    assert store.last_warning is None
    assert not (tmp_path / "projects.json").exists()


def test_project_store_roundtrip_uses_camel_case_on_disk(
    project_store: ProjectStore, project: ProjectRecord, tmp_path: Path
) -> None:
    project_store.upsert(project)

    raw = json.loads((tmp_path / "state" / "projects.json").read_text(encoding="utf-8"))
    assert raw["version"] == 1
    assert raw["projects"] == [
        {
            "name": "acme",
            "createdAt": "2025-01-01T00:00:00+00:00",
            "sourceControl": {
                "url": "https://github.com/acme/web",
                "owner": "acme",
                "repo": "web",
            },
            "hostingTarget": {"url": "https://acme.vercel.app", "projectId": "prj_123"},
            "databaseProject": {"projectRef": "abcd1234", "region": "us-east-1"},
        }
    ]

    loaded = ProjectStore.at(tmp_path / "state" / "projects.json").get("acme")
    assert loaded == project


def test_environment_store_reads_existing_document(tmp_path: Path) -> None:
    path = tmp_path / "vms.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "vms": [
                    {
                        "name": "fortune-sprite",
                        "remoteHost": "fortune-sprite.exe.xyz",
                        "project": "acme",
                        "feature": "login",
                        "createdAt": "2025-01-02T00:00:00+00:00",
                        "databaseBranches": ["login", "login-test"],
                    }
                ],
            }
        ),
        encoding="utf-8",
    )

    record = EnvironmentStore.at(path).find_by_feature("acme", "login")

    assert record is not None
    assert record.remote_host == "fortune-sprite.exe.xyz"
    assert record.database_branches == ["login", "login-test"]
    assert record.source_branch == ""


def test_upsert_replaces_record_with_same_key(
    environment_store: EnvironmentStore, environment: EnvironmentRecord
) -> None:
    environment_store.upsert(environment)
    environment_store.upsert(environment.model_copy(update={"feature": "signup"}))

    records = environment_store.list()
    assert len(records) == 1
    assert records[0].feature == "signup"


def test_remove_reports_whether_a_record_existed(
    environment_store: EnvironmentStore, environment: EnvironmentRecord
) -> None:
    environment_store.upsert(environment)

    assert environment_store.remove("fortune-sprite") is True
    assert environment_store.remove("fortune-sprite") is False
    assert environment_store.list() == []


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"version": 2, "projects": []}),
        json.dumps({"projects": []}),
        json.dumps({"version": 1, "projects": [{"name": "missing-source-control"}]}),
    ],
)
def test_corrupt_or_unsupported_document_loads_as_empty_with_warning(
    tmp_path: Path, content: str, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "projects.json"
    path.write_text(content, encoding="utf-8")
    store = ProjectStore.at(path)

    with caplog.at_level(logging.WARNING, logger="feature_env_orchestrator.state.store"):
        assert store.list() == []

    assert store.last_warning is not None
    assert str(path) in store.last_warning
    assert any("corrupt" in r.getMessage() for r in caplog.records)


def test_save_after_corrupt_load_rewrites_a_valid_document(
    tmp_path: Path, project: ProjectRecord
) -> None:
    path = tmp_path / "projects.json"
    path.write_text("garbage", encoding="utf-8")
    store = ProjectStore.at(path)

    store.upsert(project)

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["version"] == 1
    assert [p["name"] for p in raw["projects"]] == ["acme"]


def test_save_leaves_no_temporary_files(
    tmp_path: Path, project_store: ProjectStore, project: ProjectRecord
) -> None:
    project_store.upsert(project)
    project_store.remove(project.name)

    assert sorted(p.name for p in (tmp_path / "state").iterdir()) == ["projects.json"]


def test_in_memory_store_holds_serialized_document(environment: EnvironmentRecord) -> None:
    store = EnvironmentStore.in_memory()
    store.upsert(environment)

    assert store.location == "<memory>"
    assert store.list_by_project("acme") == [environment]
    assert store.list_by_project("other") == []


def test_add_and_remove_database_branch(
    environment_store: EnvironmentStore, environment: EnvironmentRecord
) -> None:
    environment_store.upsert(environment)

    updated = environment_store.add_database_branch("fortune-sprite", "login-preview")
    assert updated.database_branches == ["login", "login-test", "login-preview"]

    again = environment_store.add_database_branch("fortune-sprite", "login-preview")
    assert again.database_branches == ["login", "login-test", "login-preview"]

    removed = environment_store.remove_database_branch("fortune-sprite", "login-test")
    assert removed.database_branches == ["login", "login-preview"]
    assert environment_store.get("fortune-sprite") == removed


def test_database_branch_update_requires_existing_environment(
    environment_store: EnvironmentStore,
) -> None:
    with pytest.raises(LookupError):
        environment_store.add_database_branch("missing", "x")
