"""Remote command gateway.

Two capabilities are exposed: run a shell command on a named host over ssh, and run a
named CLI locally. Secrets never appear in argv: remote secrets are fed to the remote
shell on stdin and exported there, local secrets go through the process environment.
Results redact every secret value from their displayed form.

Both return a `CommandResult`; transport problems (missing binary, timeout) are reported
as results with conventional exit codes rather than raised, so callers classify every
outcome the same way.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124
REDACTED = "***"

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_SSH_OPTIONS: tuple[str, ...] = (
    "-o",
    "StrictHostKeyChecking=accept-new",
    "-o",
    "ConnectTimeout=10",
    "-o",
    "ServerAliveInterval=30",
    "-o",
    "ServerAliveCountMax=10",
)


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    secrets: tuple[str, ...] = field(default=(), repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def display(self) -> str:
        return self.redact(shlex.join(self.argv))

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            if secret:
                text = text.replace(secret, REDACTED)
        return text

    def check(self) -> CommandResult:
        """Return self, or raise `CommandError` if the command failed."""

        if not self.ok:
            raise CommandError(self)
        return self


@dataclass(frozen=True, slots=True)
class CommandError(RuntimeError):
    """A gateway call completed with a non-zero exit code."""

    result: CommandResult

    def __str__(self) -> str:
        detail = _tail(self.result.stderr) or _tail(self.result.stdout) or "no output"
        detail = self.result.redact(detail)
        return f"{self.result.display} failed (exit {self.result.exit_code}): {detail}"


class CommandGateway(Protocol):
    def run_remote(
        self,
        host: str,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult: ...

    def run_local(
        self,
        program: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult: ...


class SubprocessGateway:
    """`CommandGateway` backed by `subprocess.run` and the local `ssh` client."""

    def __init__(
        self,
        *,
        ssh_options: Sequence[str] = DEFAULT_SSH_OPTIONS,
        default_timeout: float | None = 60.0,
    ) -> None:
        self._ssh_options = tuple(ssh_options)
        self._default_timeout = default_timeout

    def run_remote(
        self,
        host: str,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run `command` on `host`; `env` is exported in the remote shell first.

        Only the variable names appear in the ssh argv. The values are written to the
        ssh process's stdin and read by the remote shell before `command` runs.
        """

        if not host.strip():
            raise ValueError("host is required")
        stdin: str | None = None
        if env:
            command, stdin = _export_from_stdin(env, command)
        return self._run(
            ["ssh", *self._ssh_options, host, command],
            env=None,
            timeout=timeout,
            stdin=stdin,
            secrets=tuple(env.values()) if env else (),
        )

    def run_local(
        self,
        program: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        return self._run(
            [program, *args],
            env=env,
            timeout=timeout,
            secrets=tuple(env.values()) if env else (),
        )

    def _run(
        self,
        argv: list[str],
        *,
        env: Mapping[str, str] | None,
        timeout: float | None,
        stdin: str | None = None,
        secrets: tuple[str, ...] = (),
    ) -> CommandResult:
        effective_timeout = timeout if timeout is not None else self._default_timeout
        merged_env: dict[str, str] | None = None
        if env:
            merged_env = os.environ.copy()
            merged_env.update(env)

        logger.debug("Running command", extra={"argv": argv[0], "timeout": effective_timeout})
        try:
            p = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                input=stdin,
                env=merged_env,
                timeout=effective_timeout,
            )
        except FileNotFoundError:
            return CommandResult(
                argv=tuple(argv),
                exit_code=EXIT_NOT_FOUND,
                stderr=f"{argv[0]}: command not found",
                secrets=secrets,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv=tuple(argv),
                exit_code=EXIT_TIMEOUT,
                stderr=f"timed out after {effective_timeout}s",
                secrets=secrets,
            )

        result = CommandResult(
            argv=tuple(argv),
            exit_code=p.returncode,
            stdout=p.stdout.strip(),
            stderr=p.stderr.strip(),
            secrets=secrets,
        )
        if not result.ok:
            logger.debug(
                "Command exited non-zero",
                extra={"argv": argv[0], "exit_code": result.exit_code},
            )
        return result


def _export_from_stdin(env: Mapping[str, str], command: str) -> tuple[str, str]:
    """Return `command` prefixed with reads of `env` from stdin, and the stdin text."""

    for key, value in env.items():
        if not _ENV_NAME.match(key):
            raise ValueError(f"Invalid environment variable name: {key!r}")
        if "\n" in value or "\r" in value:
            raise ValueError(f"Value of {key} must be a single line")
    reads = " && ".join(f"IFS= read -r {key}" for key in env)
    prefix = f"{reads} && export {' '.join(env)}"
    return f"{prefix} && {command}", "".join(f"{value}\n" for value in env.values())


def _tail(text: str, limit: int = 300) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]
