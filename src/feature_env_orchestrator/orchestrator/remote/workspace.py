"""Git checkout of the project repository on a feature instance."""

from __future__ import annotations

import logging
import posixpath
import shlex

from feature_env_orchestrator.orchestrator.gateway import CommandGateway, CommandResult

logger = logging.getLogger(__name__)

# Reads the token from FEATURE_ENV_GIT_TOKEN, exported by the gateway from stdin.
_CREDENTIAL_HELPER = (
    '!f() { echo username=x-access-token; echo "password=$FEATURE_ENV_GIT_TOKEN"; }; f'
)


class RemoteWorkspace:
    """Runs git in `~/<repo>` on the instance reachable at `host`."""

    def __init__(
        self,
        gateway: CommandGateway,
        *,
        host: str,
        repo: str,
        token: str | None = None,
        clone_timeout_seconds: float = 600.0,
    ) -> None:
        if not repo.strip():
            raise ValueError("repo is required")
        self._gateway = gateway
        self._host = host
        self._repo = repo
        self._token = token or None
        self._clone_timeout = clone_timeout_seconds

    @property
    def path(self) -> str:
        return f"~/{self._repo}"

    def _git(self) -> str:
        if self._token is None:
            return "git"
        return f"git -c credential.helper={shlex.quote(_CREDENTIAL_HELPER)}"

    def _run(self, command: str, *, timeout: float | None = None) -> CommandResult:
        env = {"FEATURE_ENV_GIT_TOKEN": self._token} if self._token is not None else None
        return self._gateway.run_remote(self._host, command, env=env, timeout=timeout)

    def _in_repo(self, command: str) -> str:
        return f"cd {self.path} && {command}"

    def clone(self, url: str) -> None:
        self._run(
            f"{self._git()} clone {shlex.quote(url)} {self.path}",
            timeout=self._clone_timeout,
        ).check()
        logger.info("Repository cloned", extra={"remote_host": self._host, "repo": self._repo})

    def create_branch(self, branch: str, *, base: str = "main") -> None:
        quoted = shlex.quote(branch)
        self._run(
            self._in_repo(
                f"{self._git()} fetch origin && git checkout -b {quoted} "
                f"{shlex.quote('origin/' + base)}"
            ),
        ).check()
        logger.info("Branch created", extra={"remote_host": self._host, "branch": branch})

    def set_env_value(self, relpath: str, key: str, value: str) -> None:
        """Set `KEY=value` in a dotenv file inside the checkout, appending if absent.

        The value travels through the gateway environment, not the command line.
        """

        target = shlex.quote(relpath)
        parent = shlex.quote(posixpath.dirname(relpath) or ".")
        pattern = shlex.quote(f"^{key}=")
        self._gateway.run_remote(
            self._host,
            self._in_repo(
                f"mkdir -p {parent} && touch {target} && "
                f"{{ grep -v {pattern} {target} || true; }} > {target}.tmp && "
                f"printf '%s=%s\\n' {shlex.quote(key)} \"$FEATURE_ENV_VALUE\" >> {target}.tmp && "
                f"mv {target}.tmp {target}"
            ),
            env={"FEATURE_ENV_VALUE": value},
        ).check()

    def push(self, branch: str) -> None:
        self._run(
            self._in_repo(f"{self._git()} push -u origin {shlex.quote(branch)}"),
        ).check()
        logger.info("Branch pushed", extra={"remote_host": self._host, "branch": branch})
