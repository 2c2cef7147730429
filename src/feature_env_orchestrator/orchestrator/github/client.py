"""GitHub client used to register projects and remove feature branches.

Wraps PyGithub for repository lookups and a `requests` session for the raw REST
calls, keeping GitHub traffic out of CLI and orchestration code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

import requests
from github import Auth, Github

logger = logging.getLogger(__name__)

PROTECTED_BRANCHES = frozenset({"main", "master"})


@dataclass(frozen=True, slots=True)
class RepositoryInfo:
    url: str
    owner: str
    repo: str


class GitHubClient:
    """Small wrapper around PyGithub and the REST API for the calls we need."""

    def __init__(
        self,
        *,
        token: str,
        base_url: str = "https://api.github.com",
        github_api: Github | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")

        self._rest_base_url = base_url.rstrip("/")
        self._github = github_api or Github(auth=Auth.Token(token), base_url=base_url)
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "feature-env-orchestrator",
            }
        )

    def _repo_url(self, *, repository: str, path: str) -> str:
        path = path.lstrip("/")
        return f"{self._rest_base_url}/repos/{repository}/{path}"

    def get_repository(self, full_name: str) -> RepositoryInfo:
        """Resolve "owner/repo" to its canonical URL and names."""

        if "/" not in full_name.strip("/"):
            raise ValueError("repository must be in the form 'owner/repo'")
        repo = self._github.get_repo(full_name.strip("/"))
        logger.debug("Resolved repository", extra={"repo": repo.full_name})
        return RepositoryInfo(url=repo.html_url, owner=repo.owner.login, repo=repo.name)

    def delete_branch(self, *, repository: str, branch: str) -> bool:
        """Delete a branch ref. A branch that is already gone counts as deleted.

        Raises:
            ValueError: for an empty or default-like branch name.
            requests.HTTPError: for any other failure response.
        """

        if not branch.strip():
            raise ValueError("branch is required")
        if branch in PROTECTED_BRANCHES:
            raise ValueError(f"Refusing to delete protected branch: {branch}")

        url = self._repo_url(
            repository=repository, path=f"git/refs/heads/{quote(branch, safe='/')}"
        )
        resp = self._session.delete(url, timeout=30)
        if resp.status_code in {204, 404, 422}:
            logger.info(
                "Deleted remote branch",
                extra={"repo": repository, "branch": branch, "status_code": resp.status_code},
            )
            return True
        resp.raise_for_status()
        return True

    def close(self) -> None:
        self._session.close()
        self._github.close()
