"""Builders for GitHub records used across the test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from stacksmith.models import BranchRef, Comment, GithubUser, PullRequest, Review, ReviewState

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def make_pr(number: int, head: str, base: str = "main", **overrides: Any) -> PullRequest:
    data: dict[str, Any] = {
        "number": number,
        "title": f"PR {number}",
        "state": "open",
        "created_at": at(number),
        "updated_at": at(number),
        "head": BranchRef(ref=head, sha=f"sha-{number}"),
        "base": BranchRef(ref=base),
    }
    data.update(overrides)
    return PullRequest(**data)


def make_review(login: str, state: ReviewState | str, minutes: int | None) -> Review:
    return Review(
        user=GithubUser(login=login),
        state=ReviewState(state),
        submitted_at=None if minutes is None else at(minutes),
    )


def make_comment(comment_id: int, minutes: int = 0, **overrides: Any) -> Comment:
    data: dict[str, Any] = {"id": comment_id, "created_at": at(minutes)}
    data.update(overrides)
    return Comment(**data)


def pr_payload(number: int, head: str, base: str = "main", **overrides: Any) -> dict[str, Any]:
    """Raw REST payload for a pull request."""
    return make_pr(number, head, base, **overrides).model_dump(mode="json")


def fake_repo_client(owner: str = "octo", repo: str = "api", prs: list[PullRequest] | None = None) -> MagicMock:
    """A RepoClient stand-in whose GitHub calls are AsyncMocks."""
    client = MagicMock()
    client.owner = owner
    client.repo = repo
    client.full_name = f"{owner}/{repo}"
    client.list_prs = AsyncMock(return_value=prs or [])
    client.get_pr = AsyncMock()
    client.list_reviews = AsyncMock(return_value=[])
    client.list_review_comments = AsyncMock(return_value=[])
    client.review_threads = AsyncMock(return_value=[])
    return client
