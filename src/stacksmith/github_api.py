"""GitHub REST/GraphQL transport built on httpx.

Authentication priority (resolved once per client, then cached):
1. Token passed to :class:`GitHubClient`
2. ``GH_TOKEN`` env var
3. ``GITHUB_TOKEN`` env var
4. ``gh auth token`` subprocess — reads local ``~/.config/gh/hosts.yml``, no network
5. Raises :exc:`GitHubAuthError` with setup URL
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess  # noqa: S404
from typing import Any

import httpx

from stacksmith.cache import MISS, TTLCache, make_key

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"
TOKEN_CREATE_URL = "https://github.com/settings/tokens/new?scopes=repo&description=stacksmith"  # noqa: S105

_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class GitHubError(Exception):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubError):
    """Raised when GitHub authentication fails or no token is available."""

    def __init__(self, detail: str = "") -> None:
        msg = (
            "GitHub token not found. "
            "Set GH_TOKEN or GITHUB_TOKEN env var, or run 'gh auth login'.\n"
            f"Create a token (permissions pre-filled): {TOKEN_CREATE_URL}"
        )
        if detail:
            msg = f"{detail}\n{msg}"
        super().__init__(msg, status_code=_HTTP_UNAUTHORIZED)


# ---------------------------------------------------------------------------
# Repo parsing
# ---------------------------------------------------------------------------


def parse_repo(repo: str) -> tuple[str, str]:
    """Parse an ``owner/repo`` string into a ``(owner, repo_name)`` tuple.

    Raises:
        GitHubError: If the string is not in ``owner/repo`` format.
    """
    owner, _, repo_name = repo.strip().partition("/")
    if not owner or not repo_name or "/" in repo_name:
        msg = f"Invalid repo format {repo!r}. Expected 'owner/repo'."
        raise GitHubError(msg)
    return owner, repo_name


# ---------------------------------------------------------------------------
# Token resolution
# ---------------------------------------------------------------------------


def resolve_token_sync() -> str | None:
    """Resolve a GitHub token from the environment. Safe to run in a thread."""
    token = os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        logger.debug("GitHub token resolved from env var")
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        return None

    if result.returncode == 0 and result.stdout.strip():
        logger.debug("GitHub token resolved from gh auth token")
        return result.stdout.strip()
    return None


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def raise_for_status(response: httpx.Response) -> None:
    """Raise the appropriate :exc:`GitHubError` subclass for non-2xx responses."""
    if response.is_success:
        return

    if response.status_code == _HTTP_UNAUTHORIZED:
        raise GitHubAuthError

    try:
        body = response.json()
        msg = body.get("message", response.text)
    except Exception:
        msg = response.text

    if response.status_code == _HTTP_FORBIDDEN:
        if "rate limit" in msg.lower():
            msg = f"GitHub API rate limit exceeded: {msg}"
            raise GitHubError(msg, status_code=_HTTP_FORBIDDEN)
        msg = f"GitHub API access forbidden: {msg}"
        raise GitHubAuthError(msg)

    msg = f"GitHub API error {response.status_code}: {msg}"
    raise GitHubError(msg, status_code=response.status_code)


def parse_next_link(link_header: str) -> str | None:
    """Parse a ``Link:`` header and return the ``next`` URL if present."""
    if not link_header:
        return None
    match = re.search(r'<([^>]+)>;\s*rel="next"', link_header)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GitHubClient:
    """Authenticated GitHub API transport shared by every configured repository."""

    def __init__(
        self,
        token: str | None = None,
        *,
        api_url: str = GITHUB_API_URL,
        graphql_url: str = GITHUB_GRAPHQL_URL,
        cache: TTLCache | None = None,
    ) -> None:
        self._token = token
        self._token_resolved = token is not None
        self.api_url = api_url.rstrip("/")
        self.graphql_url = graphql_url
        self.cache = cache if cache is not None else TTLCache()

    async def get_token(self) -> str:
        """Return the GitHub token, resolving it lazily on first call.

        Raises:
            GitHubAuthError: If no token can be found.
        """
        if not self._token_resolved:
            self._token = await asyncio.to_thread(resolve_token_sync)
            self._token_resolved = True
        if self._token is None:
            raise GitHubAuthError
        return self._token

    def reset_token(self) -> None:
        """Forget the resolved token so the next call resolves it again."""
        self._token = None
        self._token_resolved = False

    async def _headers(self) -> dict[str, str]:
        token = await self.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a GraphQL query or mutation.

        Queries are cached. Mutations bypass and invalidate the cache.

        Returns:
            Parsed JSON response dict (full envelope including ``data``).

        Raises:
            GitHubError: On GraphQL errors or HTTP failure.
            GitHubAuthError: On authentication failure.
        """
        is_mutation = query.strip().lower().startswith("mutation")
        key = make_key("graphql", query, variables)

        if not is_mutation:
            cached = self.cache.get(key)
            if cached is not MISS:
                return cached

        headers = await self._headers()
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        logger.debug("GraphQL %s", "mutation" if is_mutation else "query")
        async with httpx.AsyncClient() as client:
            response = await client.post(self.graphql_url, headers=headers, json=payload)

        raise_for_status(response)
        result: dict[str, Any] = response.json()

        errors = result.get("errors")
        if errors:
            messages = "; ".join(e.get("message", str(e)) for e in errors)
            msg = f"GraphQL error: {messages}"
            raise GitHubError(msg)

        if is_mutation:
            self.cache.clear()
        else:
            self.cache.put(key, result)

        return result

    async def rest(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        paginate: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute a REST API call.

        GET requests are cached. Non-GET requests bypass and invalidate the cache.

        Args:
            endpoint: Endpoint path (e.g. ``/repos/owner/repo/pulls``).
            method: HTTP method (default ``GET``).
            paginate: Follow ``Link:`` headers and return one flat list.
            **kwargs: Query parameters (GET) or JSON body fields (non-GET).

        Raises:
            GitHubError: On HTTP failure.
            GitHubAuthError: On authentication failure.
        """
        is_read = method.upper() == "GET"
        key = make_key("rest", endpoint, method, paginate, kwargs)

        if is_read:
            cached = self.cache.get(key)
            if cached is not MISS:
                return cached

        url = f"{self.api_url}{endpoint}"
        headers = await self._headers()

        if paginate:
            result = await self._paginate(url, headers, **kwargs)
        else:
            result = await self._single(url, method, headers, **kwargs)

        if is_read:
            self.cache.put(key, result)
        else:
            self.cache.clear()

        return result

    @staticmethod
    async def _single(url: str, method: str, headers: dict[str, str], **kwargs: Any) -> Any:
        upper = method.upper()
        params = dict(kwargs) if upper == "GET" and kwargs else None
        json_body = dict(kwargs) if upper != "GET" and kwargs else None

        async with httpx.AsyncClient() as client:
            response = await client.request(method, url, headers=headers, params=params, json=json_body)

        raise_for_status(response)
        if not response.content:
            return None
        return response.json()

    @staticmethod
    async def _paginate(url: str, headers: dict[str, str], **kwargs: Any) -> list[Any]:
        """Follow ``Link:`` headers to collect all pages into a flat list."""
        results: list[Any] = []
        next_url: str | None = url
        first = True

        async with httpx.AsyncClient() as client:
            while next_url:
                # Link URLs already carry the query string
                params = dict(kwargs) if first and kwargs else None
                response = await client.get(next_url, headers=headers, params=params)
                raise_for_status(response)
                page = response.json()
                if isinstance(page, list):
                    results.extend(page)
                elif page is not None:
                    results.append(page)
                next_url = parse_next_link(response.headers.get("link", ""))
                first = False

        return results
