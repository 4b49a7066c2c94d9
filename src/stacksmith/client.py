"""Repository-scoped GitHub operations.

``RepoClient`` binds a shared :class:`~stacksmith.github_api.GitHubClient`
transport to one ``owner/repo`` and maps raw API payloads onto the pydantic
records in :mod:`stacksmith.models`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from stacksmith.models import CheckRun, Comment, Commit, DiffFile, PullRequest, Review, ReviewThreadNode

if TYPE_CHECKING:
    from stacksmith.github_api import GitHubClient

logger = logging.getLogger(__name__)

MergeMethod = Literal["merge", "squash", "rebase"]

# Pseudo-check posted by Graphite; it never reflects CI state.
EXCLUDED_CHECKS = frozenset({"Graphite / mergeability_check"})

_REVIEW_THREADS_QUERY = """
query($owner: String!, $repo: String!, $pr: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $pr) {
      reviewThreads(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          isOutdated
          comments(first: 100) {
            nodes { databaseId }
          }
        }
      }
    }
  }
}
"""

_RESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}
"""

_UNRESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  unresolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}
"""


class RepoClient:
    """GitHub capability handle for a single repository."""

    def __init__(self, api: GitHubClient, owner: str, repo: str) -> None:
        self.api = api
        self.owner = owner
        self.repo = repo

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __repr__(self) -> str:
        return f"RepoClient({self.full_name!r})"

    def _path(self, suffix: str) -> str:
        return f"/repos/{self.owner}/{self.repo}{suffix}"

    # -- Pull requests -------------------------------------------------------

    async def list_prs(
        self,
        state: Literal["open", "closed", "all"] = "open",
        *,
        per_page: int = 50,
        sort: str = "updated",
        direction: str = "desc",
        paginate: bool = False,
    ) -> list[PullRequest]:
        """List PRs, most recently updated first. ``paginate`` follows every page."""
        data = await self.api.rest(
            self._path("/pulls"),
            paginate=paginate,
            state=state,
            per_page=per_page,
            sort=sort,
            direction=direction,
        )
        return [PullRequest.model_validate(item) for item in data or []]

    async def get_pr(self, pr_number: int) -> PullRequest:
        data = await self.api.rest(self._path(f"/pulls/{pr_number}"))
        return PullRequest.model_validate(data)

    async def merge_pr(self, pr_number: int, merge_method: MergeMethod = "merge") -> dict[str, Any]:
        """Merge a PR. Returns GitHub's ``{merged, message, sha}`` payload."""
        data = await self.api.rest(self._path(f"/pulls/{pr_number}/merge"), "PUT", merge_method=merge_method)
        return data or {}

    async def close_pr(self, pr_number: int) -> PullRequest:
        data = await self.api.rest(self._path(f"/pulls/{pr_number}"), "PATCH", state="closed")
        return PullRequest.model_validate(data)

    async def approve_pr(self, pr_number: int, body: str = "") -> Review:
        payload: dict[str, Any] = {"event": "APPROVE"}
        if body:
            payload["body"] = body
        data = await self.api.rest(self._path(f"/pulls/{pr_number}/reviews"), "POST", **payload)
        return Review.model_validate(data)

    async def request_reviewers(self, pr_number: int, reviewers: list[str]) -> None:
        await self.api.rest(self._path(f"/pulls/{pr_number}/requested_reviewers"), "POST", reviewers=reviewers)

    async def list_commits(self, pr_number: int) -> list[Commit]:
        data = await self.api.rest(self._path(f"/pulls/{pr_number}/commits"), paginate=True, per_page=100)
        return [Commit.model_validate(item) for item in data]

    async def list_files(self, pr_number: int) -> list[DiffFile]:
        data = await self.api.rest(self._path(f"/pulls/{pr_number}/files"), paginate=True, per_page=100)
        return [DiffFile.model_validate(item) for item in data]

    # -- Reviews and comments ------------------------------------------------

    async def list_reviews(self, pr_number: int) -> list[Review]:
        data = await self.api.rest(self._path(f"/pulls/{pr_number}/reviews"), paginate=True, per_page=100)
        return [Review.model_validate(item) for item in data]

    async def list_review_comments(self, pr_number: int) -> list[Comment]:
        """Inline (code) review comments on a PR."""
        data = await self.api.rest(self._path(f"/pulls/{pr_number}/comments"), paginate=True, per_page=100)
        return [Comment.model_validate(item) for item in data]

    async def list_issue_comments(self, pr_number: int) -> list[Comment]:
        """PR-level conversation comments (no file anchor)."""
        data = await self.api.rest(self._path(f"/issues/{pr_number}/comments"), paginate=True, per_page=100)
        return [Comment.model_validate(item) for item in data]

    async def create_issue_comment(self, pr_number: int, body: str) -> Comment:
        data = await self.api.rest(self._path(f"/issues/{pr_number}/comments"), "POST", body=body)
        return Comment.model_validate(data)

    async def create_review_comment(  # noqa: PLR0913
        self,
        pr_number: int,
        body: str,
        *,
        commit_id: str,
        path: str,
        line: int,
        start_line: int | None = None,
        side: Literal["LEFT", "RIGHT"] | None = None,
        start_side: Literal["LEFT", "RIGHT"] | None = None,
    ) -> Comment:
        """Create an inline comment; ``start_line`` makes it a multi-line comment."""
        payload: dict[str, Any] = {"body": body, "commit_id": commit_id, "path": path, "line": line}
        if start_line is not None:
            payload["start_line"] = start_line
        if side is not None:
            payload["side"] = side
        if start_side is not None:
            payload["start_side"] = start_side
        data = await self.api.rest(self._path(f"/pulls/{pr_number}/comments"), "POST", **payload)
        return Comment.model_validate(data)

    async def reply_to_review_comment(self, pr_number: int, comment_id: int, body: str) -> Comment:
        data = await self.api.rest(
            self._path(f"/pulls/{pr_number}/comments/{comment_id}/replies"),
            "POST",
            body=body,
        )
        return Comment.model_validate(data)

    async def delete_review_comment(self, comment_id: int) -> None:
        await self.api.rest(self._path(f"/pulls/comments/{comment_id}"), "DELETE")

    async def delete_issue_comment(self, comment_id: int) -> None:
        await self.api.rest(self._path(f"/issues/comments/{comment_id}"), "DELETE")

    # -- Review threads (GraphQL) --------------------------------------------

    async def review_threads(self, pr_number: int) -> list[ReviewThreadNode]:
        """Fetch every review thread of a PR with its resolution state."""
        nodes: list[ReviewThreadNode] = []
        cursor: str | None = None

        while True:
            variables: dict[str, Any] = {"owner": self.owner, "repo": self.repo, "pr": pr_number}
            if cursor:
                variables["cursor"] = cursor
            result = await self.api.graphql(_REVIEW_THREADS_QUERY, variables)
            pr_data = (result.get("data") or {}).get("repository", {}).get("pullRequest") or {}
            threads_data = pr_data.get("reviewThreads") or {}
            for raw in threads_data.get("nodes") or []:
                comment_nodes = (raw.get("comments") or {}).get("nodes") or []
                nodes.append(
                    ReviewThreadNode(
                        id=raw["id"],
                        is_resolved=bool(raw.get("isResolved")),
                        is_outdated=bool(raw.get("isOutdated")),
                        comment_ids=[c["databaseId"] for c in comment_nodes if c.get("databaseId") is not None],
                    )
                )

            page_info = threads_data.get("pageInfo") or {}
            if page_info.get("hasNextPage") and page_info.get("endCursor"):
                cursor = page_info["endCursor"]
            else:
                break

        logger.debug("Fetched %d review threads for %s#%d", len(nodes), self.full_name, pr_number)
        return nodes

    async def resolve_thread(self, thread_id: str) -> bool:
        result = await self.api.graphql(_RESOLVE_THREAD_MUTATION, {"threadId": thread_id})
        thread = (result.get("data") or {}).get("resolveReviewThread", {}).get("thread") or {}
        return bool(thread.get("isResolved"))

    async def unresolve_thread(self, thread_id: str) -> bool:
        """Reopen a thread. Returns the thread's resolved flag afterwards."""
        result = await self.api.graphql(_UNRESOLVE_THREAD_MUTATION, {"threadId": thread_id})
        thread = (result.get("data") or {}).get("unresolveReviewThread", {}).get("thread") or {}
        return bool(thread.get("isResolved"))

    # -- Checks and workflow runs --------------------------------------------

    async def list_check_runs(self, ref: str) -> list[CheckRun]:
        """Check runs for a commit ref, without Graphite's pseudo-check."""
        data = await self.api.rest(self._path(f"/commits/{ref}/check-runs"), per_page=100) or {}
        return [CheckRun.model_validate(item) for item in data.get("check_runs", []) if item.get("name") not in EXCLUDED_CHECKS]

    async def get_check_run(self, check_run_id: int) -> dict[str, Any]:
        return await self.api.rest(self._path(f"/check-runs/{check_run_id}"))

    async def list_workflow_runs(self, head_sha: str) -> list[dict[str, Any]]:
        data = await self.api.rest(self._path("/actions/runs"), head_sha=head_sha, per_page=100) or {}
        return data.get("workflow_runs", [])

    async def list_workflow_jobs(self, run_id: int) -> list[dict[str, Any]]:
        data = await self.api.rest(self._path(f"/actions/runs/{run_id}/jobs")) or {}
        return data.get("jobs", [])

    async def rerun_workflow(self, run_id: int) -> None:
        await self.api.rest(self._path(f"/actions/runs/{run_id}/rerun"), "POST")

    async def rerequest_check_run(self, check_run_id: int) -> None:
        await self.api.rest(self._path(f"/check-runs/{check_run_id}/rerequest"), "POST")
