"""Mapping of configured ``owner/repo`` keys to their :class:`RepoClient`.

Built once at startup from configuration and handed to whatever needs it;
there is no module-level registry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stacksmith.client import RepoClient
from stacksmith.github_api import GitHubClient, parse_repo

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)


class RepoNotConfiguredError(LookupError):
    """Raised when a tool names a repository that has no configured client."""

    def __init__(self, repo: str | None, configured: list[str]) -> None:
        if repo is None:
            msg = "No repositories configured. Set GITHUB_REPOS or add [github] repos to .stacksmith.toml."
        else:
            available = ", ".join(configured) or "none"
            msg = f"Repository '{repo}' is not configured (configured: {available})."
        super().__init__(msg)
        self.repo = repo


class RepoRegistry:
    """Ordered ``"owner/repo" -> RepoClient`` mapping. The first entry is the default repo."""

    def __init__(self, clients: Iterable[RepoClient] = ()) -> None:
        self._clients: dict[str, RepoClient] = {}
        for client in clients:
            self.add(client)

    @classmethod
    def from_repos(cls, repos: Iterable[str], api: GitHubClient | None = None) -> RepoRegistry:
        """Create one client per ``owner/repo`` string, all sharing one transport."""
        api = api or GitHubClient()
        registry = cls()
        for repo in repos:
            owner, name = parse_repo(repo)
            registry.add(RepoClient(api, owner, name))
        logger.info("Configured %d repositories: %s", len(registry), ", ".join(registry.keys()))
        return registry

    def add(self, client: RepoClient) -> None:
        self._clients[_key(client.full_name)] = client

    def remove(self, repo: str) -> bool:
        return self._clients.pop(_key(repo), None) is not None

    def get(self, repo: str | None = None) -> RepoClient:
        """Return the client for *repo*, or the default repo when omitted.

        Raises:
            RepoNotConfiguredError: If the repo is unknown or nothing is configured.
        """
        if repo is None:
            if not self._clients:
                raise RepoNotConfiguredError(None, [])
            return next(iter(self._clients.values()))
        client = self._clients.get(_key(repo))
        if client is None:
            raise RepoNotConfiguredError(repo, self.keys())
        return client

    def keys(self) -> list[str]:
        return [client.full_name for client in self._clients.values()]

    def __contains__(self, repo: object) -> bool:
        return isinstance(repo, str) and _key(repo) in self._clients

    def __iter__(self) -> Iterator[RepoClient]:
        return iter(list(self._clients.values()))

    def __len__(self) -> int:
        return len(self._clients)


def _key(repo: str) -> str:
    # GitHub owner and repo names are case-insensitive
    return repo.strip().lower()
