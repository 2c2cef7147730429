"""Name-conflict resolution and credential generation."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from typing import Literal

ConflictPolicy = Literal["fail", "suffix"]
CONFLICT_POLICIES: tuple[ConflictPolicy, ...] = ("fail", "suffix")

SUFFIX_SEPARATOR = "-"
SUFFIX_BYTES = 3  # six hex characters

PASSWORD_LENGTH = 24
PASSWORD_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits


@dataclass(frozen=True, slots=True)
class NameConflictError(Exception):
    """Raised for an existing name under the `fail` policy."""

    name: str

    def __str__(self) -> str:
        return (
            f'Name "{self.name}" already exists. '
            "Use --conflict-strategy=suffix to auto-rename."
        )


def generate_unique_suffix() -> str:
    return secrets.token_hex(SUFFIX_BYTES)


def append_unique_suffix(name: str) -> str:
    return f"{name}{SUFFIX_SEPARATOR}{generate_unique_suffix()}"


def resolve_name_conflict(name: str, policy: ConflictPolicy) -> str:
    """Return a replacement for a name that is already taken.

    Uniqueness of the suffixed name is not checked here; callers re-check against
    their store.
    """

    if policy == "fail":
        raise NameConflictError(name)
    if policy == "suffix":
        return append_unique_suffix(name)
    raise ValueError(f"Unknown conflict policy: {policy!r}")


def generate_db_password(length: int = PASSWORD_LENGTH) -> str:
    """Random alphanumeric password, each character drawn uniformly from the alphabet."""

    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
