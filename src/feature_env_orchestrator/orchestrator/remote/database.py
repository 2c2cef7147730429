"""Database branches, driven by the branching service's CLI on the feature instance."""

from __future__ import annotations

import json
import logging
import shlex

from feature_env_orchestrator.orchestrator.gateway import CommandGateway, CommandResult

logger = logging.getLogger(__name__)

# Diagnostics meaning the branch is already gone; deleting it again is a success.
ALREADY_GONE_MARKERS: tuple[str, ...] = ("not found", "does not exist", "no such branch")


class DatabaseBranchService:
    """Create and delete database branches from inside the project checkout."""

    def __init__(
        self,
        gateway: CommandGateway,
        *,
        host: str,
        workdir: str,
        token: str | None = None,
        project_ref: str | None = None,
    ) -> None:
        self._gateway = gateway
        self._host = host
        self._workdir = workdir
        self._token = token or None
        self._project_ref = project_ref or None

    def _cli(self, *args: str) -> str:
        parts = ["supabase", "branches", *args]
        if self._project_ref is not None:
            parts += ["--project-ref", self._project_ref]
        return f"cd {self._workdir} && {shlex.join(parts)}"

    def _run(self, *args: str) -> CommandResult:
        env = {"SUPABASE_ACCESS_TOKEN": self._token} if self._token is not None else None
        return self._gateway.run_remote(self._host, self._cli(*args), env=env)

    def create(self, branch: str, *, persistent: bool = True) -> None:
        args = ["create", branch]
        if persistent:
            args.append("--persistent")
        self._run(*args).check()
        logger.info("Database branch created", extra={"branch": branch, "persistent": persistent})

    def connection_url(self, branch: str) -> str | None:
        """Return the branch's `db_url`, or None when the service does not report one yet."""

        result = self._run("get", branch, "--output", "json").check()
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("Unparseable branch details", extra={"branch": branch})
            return None
        url = data.get("db_url") if isinstance(data, dict) else None
        return url if isinstance(url, str) and url.strip() else None

    def disable_persistence(self, branch: str) -> None:
        self._tolerate_missing(self._run("update", branch, "--persistent=false"))

    def delete(self, branch: str) -> None:
        self._tolerate_missing(self._run("delete", branch, "--force"))
        logger.info("Database branch deleted", extra={"branch": branch})

    @staticmethod
    def _tolerate_missing(result: CommandResult) -> None:
        if result.ok:
            return
        lowered = result.stderr.lower()
        if any(marker in lowered for marker in ALREADY_GONE_MARKERS):
            logger.debug("Database branch already gone", extra={"exit_code": result.exit_code})
            return
        result.check()
