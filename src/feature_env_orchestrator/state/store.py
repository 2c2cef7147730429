"""Versioned JSON record stores for projects and feature environments.

Each store owns exactly one document shaped as `{"version": 1, "<records>": [...]}`.
A missing document loads as an empty container. A document that fails to parse or
carries another version also loads as an empty container: the data loss is accepted,
but it is logged and exposed via `RecordStore.last_warning`.

Storage is pluggable through a small backend protocol so orchestration code can be
exercised against an in-memory store.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import ClassVar, Generic, Protocol, TypeVar

from pydantic import BaseModel

from feature_env_orchestrator.state.records import (
    STORE_VERSION,
    EnvironmentFile,
    EnvironmentRecord,
    ProjectFile,
    ProjectRecord,
)

logger = logging.getLogger(__name__)

ContainerT = TypeVar("ContainerT", bound=BaseModel)
RecordT = TypeVar("RecordT", bound=BaseModel)


class StoreBackend(Protocol):
    """Raw text storage for a single store document."""

    @property
    def location(self) -> str: ...

    def read_text(self) -> str | None: ...

    def write_text(self, text: str) -> None: ...


class FileBackend:
    """Local file backend with atomic replace-on-write."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @property
    def location(self) -> str:
        return str(self._path)

    def read_text(self) -> str | None:
        if not self._path.exists():
            return None
        return self._path.read_text(encoding="utf-8")

    def write_text(self, text: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class MemoryBackend:
    """In-process backend, mainly for tests."""

    def __init__(self, text: str | None = None) -> None:
        self.text = text

    @property
    def location(self) -> str:
        return "<memory>"

    def read_text(self) -> str | None:
        return self.text

    def write_text(self, text: str) -> None:
        self.text = text


class RecordStore(Generic[ContainerT, RecordT]):
    """Key-value record collection persisted as one versioned document.

    Subclasses declare the container model and the name of its records list.
    Records are keyed by their `name` attribute.
    """

    container_model: ClassVar[type[BaseModel]]
    records_field: ClassVar[str]

    def __init__(self, backend: StoreBackend) -> None:
        self._backend = backend
        self.last_warning: str | None = None

    @classmethod
    def at(cls, path: Path):  # type: ignore[no-untyped-def]
        return cls(FileBackend(path))

    @classmethod
    def in_memory(cls, text: str | None = None):  # type: ignore[no-untyped-def]
        return cls(MemoryBackend(text))

    @property
    def location(self) -> str:
        return self._backend.location

    def _empty(self) -> ContainerT:
        return self.container_model(version=STORE_VERSION)  # type: ignore[return-value]

    def load(self) -> ContainerT:
        self.last_warning = None
        try:
            raw = self._backend.read_text()
            if raw is None:
                return self._empty()
            container = self.container_model.model_validate_json(raw)
        except ValueError as e:
            # Covers JSON syntax errors and shape/version mismatches (ValidationError).
            reason = _first_line(str(e))
            self.last_warning = (
                f"Record store at {self.location} is unreadable or has an unsupported "
                f"version; starting from an empty store ({reason})"
            )
            logger.warning(
                "Record store is corrupt; treating as empty",
                extra={"path": self.location, "reason": reason},
            )
            return self._empty()

        return container  # type: ignore[return-value]

    def save(self, container: ContainerT) -> None:
        payload = container.model_dump(mode="json", by_alias=True)
        self._backend.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
        logger.debug(
            "Record store saved",
            extra={"path": self.location, "count": len(payload[self.records_field])},
        )

    def _records(self, container: ContainerT) -> list[RecordT]:
        records: list[RecordT] = getattr(container, self.records_field)
        return records

    def _replace_records(self, container: ContainerT, records: list[RecordT]) -> None:
        setattr(container, self.records_field, records)

    def list(self) -> list[RecordT]:
        return list(self._records(self.load()))

    def get(self, key: str) -> RecordT | None:
        for record in self._records(self.load()):
            if record.name == key:  # type: ignore[attr-defined]
                return record
        return None

    def upsert(self, record: RecordT) -> None:
        container = self.load()
        key = record.name  # type: ignore[attr-defined]
        records = [r for r in self._records(container) if r.name != key]  # type: ignore[attr-defined]
        records.append(record)
        self._replace_records(container, records)
        self.save(container)

    def remove(self, key: str) -> bool:
        """Remove the record with `key`. Returns False if nothing was stored under it."""

        container = self.load()
        records = self._records(container)
        kept = [r for r in records if r.name != key]  # type: ignore[attr-defined]
        if len(kept) == len(records):
            return False
        self._replace_records(container, kept)
        self.save(container)
        return True


class ProjectStore(RecordStore[ProjectFile, ProjectRecord]):
    """Store of `ProjectRecord` keyed by project name."""

    container_model = ProjectFile
    records_field = "projects"


class EnvironmentStore(RecordStore[EnvironmentFile, EnvironmentRecord]):
    """Store of `EnvironmentRecord` keyed by instance name."""

    container_model = EnvironmentFile
    records_field = "vms"

    def find_by_feature(self, project: str, feature: str) -> EnvironmentRecord | None:
        for record in self.list():
            if record.project == project and record.feature == feature:
                return record
        return None

    def list_by_project(self, project: str) -> list[EnvironmentRecord]:
        return [r for r in self.list() if r.project == project]

    def add_database_branch(self, name: str, branch: str) -> EnvironmentRecord:
        record = self._require(name)
        if branch in record.database_branches:
            return record
        updated = record.model_copy(
            update={"database_branches": [*record.database_branches, branch]}
        )
        self.upsert(updated)
        return updated

    def remove_database_branch(self, name: str, branch: str) -> EnvironmentRecord:
        record = self._require(name)
        updated = record.model_copy(
            update={"database_branches": [b for b in record.database_branches if b != branch]}
        )
        self.upsert(updated)
        return updated

    def _require(self, name: str) -> EnvironmentRecord:
        record = self.get(name)
        if record is None:
            raise LookupError(f"Environment not found: {name}")
        return record


def _first_line(text: str) -> str:
    return text.strip().splitlines()[0] if text.strip() else "unknown error"
