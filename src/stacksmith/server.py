"""FastMCP server for stacksmith.

Exposes stacked-PR views and review actions over GitHub as MCP tools.
Everything a tool needs (configured repositories, the known-stack store, the
active config) lives in a :class:`Services` value owned by the server built
by :func:`create_server`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

from fastmcp import FastMCP
from fastmcp.server.lifespan import lifespan
from fastmcp.server.middleware.error_handling import ErrorHandlingMiddleware
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.server.middleware.ping import PingMiddleware
from fastmcp.server.middleware.timing import TimingMiddleware
from pydantic import Field

from stacksmith.config import Config, load_config
from stacksmith.github_api import GitHubAuthError, GitHubClient, GitHubError, resolve_token_sync
from stacksmith.middleware import WriteOperationMiddleware
from stacksmith.models import (
    CheckRunsResult,
    CommentResult,
    ConfigInfo,
    DiffResult,
    MergeResult,
    MultiRepoStacksResult,
    PRDetailResult,
    PRListResult,
    ReviewStatusResult,
    StackListResult,
    StackResult,
    StackReviewSummary,
    ThreadsResult,
)
from stacksmith.registry import RepoNotConfiguredError, RepoRegistry
from stacksmith.store import StackStore, StoreError
from stacksmith.tools import checks, reviews, stack, threads

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from stacksmith.client import RepoClient
    from stacksmith.models import Stack

logger = logging.getLogger(__name__)

_HTTP_NOT_FOUND = 404
_HTTP_UNPROCESSABLE = 422


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Everything the tools operate on, built once per server."""

    config: Config
    registry: RepoRegistry
    store: StackStore
    config_path: Path | None = None


def build_services(config: Config, config_path: Path | None = None, api: GitHubClient | None = None) -> Services:
    """Create the repo registry and stack store described by *config*."""
    return Services(
        config=config,
        registry=RepoRegistry.from_repos(config.github.repos, api or GitHubClient()),
        store=StackStore(config.stacks.metadata_path),
        config_path=config_path,
    )


class _ServiceHolder:
    """Lazily loads services from config on first use unless given up front."""

    def __init__(self, services: Services | None) -> None:
        self.services = services

    def get(self) -> Services:
        if self.services is None:
            config, path = load_config()
            self.services = build_services(config, path)
        return self.services


def check_prerequisites() -> None:
    """Verify that a GitHub token can be resolved."""
    if resolve_token_sync() is None:
        logger.error("No GitHub token found. Set GH_TOKEN or GITHUB_TOKEN, or run: gh auth login")
        raise GitHubAuthError
    logger.info("GitHub token found")


# ---------------------------------------------------------------------------
# Error hints
# ---------------------------------------------------------------------------


def _recovery_error(  # noqa: PLR0911
    exc: Exception,
    *,
    tool_name: str,
    pr_number: int | None = None,
    repo: str | None = None,
) -> str:
    """Build an actionable error message with recovery hints.

    Classifies errors into categories and suggests specific next steps
    so agents can self-correct instead of retrying blindly.
    """
    msg = str(exc)
    low = msg.lower()

    # Auth errors: not retryable, needs human intervention
    if isinstance(exc, GitHubAuthError):
        return f"{tool_name} failed: GitHub authentication failed. {msg}"

    # Repo not in the registry
    if isinstance(exc, RepoNotConfiguredError):
        return f"{tool_name} failed: {msg} Call list_repos() to see configured repositories."

    # Broken metadata file
    if isinstance(exc, StoreError):
        return f"{tool_name} failed: {msg}. Fix or delete the file; known stacks are rebuilt from open PRs."

    # Rate limit: retryable after delay
    if "rate limit" in low:
        return f"{tool_name} failed: GitHub API rate limit hit. Wait 60 seconds and retry."

    # Not found: likely bad PR number or repo
    if (isinstance(exc, GitHubError) and exc.status_code == _HTTP_NOT_FOUND) or "not found" in low:
        hints = [f"{tool_name} failed: resource not found — {msg}."]
        if pr_number:
            hints.append(f"Verify PR #{pr_number} exists.")
        hints.append(f"Verify repo '{repo}' is correct." if repo else "Try passing repo='owner/repo' explicitly.")
        return " ".join(hints)

    # GitHub refused the write (e.g. commenting on an unchanged line, unmergeable PR)
    if isinstance(exc, GitHubError) and exc.status_code == _HTTP_UNPROCESSABLE:
        return f"{tool_name} failed: GitHub rejected the request — {msg}. Check the arguments; retrying will not help."

    # GraphQL errors
    if "graphql" in low:
        return f"{tool_name} failed: GitHub GraphQL error — {msg}. This may be a transient issue; retry once."

    # Generic fallback
    parts = [f"{tool_name} failed: {msg}."]
    if pr_number:
        parts.append(f"Verify PR #{pr_number} exists.")
    if not repo:
        parts.append("Try passing repo='owner/repo' explicitly.")
    return " ".join(parts)


_INSTRUCTIONS = """\
stacksmith — review stacked pull requests across one or more GitHub repositories.

## Stacks

A stack is a chain of open PRs where each PR's base branch is the previous PR's
head branch (works with Graphite, git-town, or manual stacking). `list_stacks`
infers stacks from the open PRs of a repo and remembers them, so a stack keeps
its id and name while PRs are added, merged, or closed. Stacks whose PRs have all
merged stay listed. `list_all_stacks` does the same for every configured repo and
reports per-repo failures without hiding the others.

## Review workflow

1. `list_stacks()` — pick a stack; PRs are ordered root first (`stackOrder` 0).
2. `stack_review_summary(stack_id)` — approvals, drafts, conflicts, unresolved threads,
   and whether the whole stack is `ready_to_merge`.
3. `list_threads(pr_number, status="unresolved")` — open conversations per PR. When
   `authoritative` is false, resolution state was unavailable and every thread is
   reported unresolved; do not act on that as if it were real.
4. Reply, resolve, approve, or re-run checks with the command tools.
5. Merge from the root up: merge the PR with `stackOrder` 0 first.

## Repo parameter

Every tool takes an optional `repo` ("owner/repo"). When omitted, the first
configured repository is used. Call `list_repos` to see what is configured.
"""


# ---------------------------------------------------------------------------
# Server factory
# ---------------------------------------------------------------------------


def create_server(services: Services | None = None) -> FastMCP:  # noqa: C901, PLR0915
    """Build the stacksmith MCP server.

    Args:
        services: Preconfigured services. When omitted, they are loaded from
            ``.stacksmith.toml`` and the environment at startup.
    """
    holder = _ServiceHolder(services)

    @lifespan
    async def startup(server: FastMCP) -> AsyncIterator[dict[str, object] | None]:  # noqa: ARG001, RUF029
        """Load configuration and check the GitHub token on server startup."""
        if holder.services is None:
            check_prerequisites()
            holder.get()
        svc = holder.get()
        if not len(svc.registry):
            logger.warning("No repositories configured; set GITHUB_REPOS or run 'stacksmith repos add owner/repo'")
        yield {}

    mcp = FastMCP("stacksmith", lifespan=startup, instructions=_INSTRUCTIONS)

    mcp.add_middleware(ErrorHandlingMiddleware(include_traceback=True, transform_errors=True))
    mcp.add_middleware(TimingMiddleware())
    mcp.add_middleware(LoggingMiddleware(include_payloads=True, max_payload_length=500))
    mcp.add_middleware(PingMiddleware(interval_ms=30_000))
    mcp.add_middleware(WriteOperationMiddleware())

    def _client(repo: str | None) -> RepoClient:
        return holder.get().registry.get(repo)

    # -- Stacks -------------------------------------------------------------

    @mcp.tool(tags={"discovery"})
    def list_repos() -> list[str]:
        """List the configured repositories ("owner/repo"). The first one is the default."""
        return holder.get().registry.keys()

    @mcp.tool(tags={"query"})
    async def list_stacks(repo: str | None = None) -> StackListResult:
        """List stacks for a repository, inferred from its open PRs.

        Known stacks keep their id and name across calls; stacks whose PRs have
        all merged or closed are still listed.

        Args:
            repo: Repository in "owner/repo" format. Defaults to the first configured repo.

        Returns:
            Stacks with their PRs ordered root first.
        """
        try:
            svc = holder.get()
            client = svc.registry.get(repo)
            stacks = await stack.refresh_stacks(client, svc.store, svc.config.stacks)
            return StackListResult(repo=client.full_name, stacks=stacks)
        except Exception as exc:
            logger.exception("list_stacks failed for %s", repo)
            return StackListResult(repo=repo or "", error=_recovery_error(exc, tool_name="list_stacks", repo=repo))
        except asyncio.CancelledError:
            logger.warning("list_stacks cancelled for %s", repo)
            return StackListResult(repo=repo or "", error="Cancelled")

    @mcp.tool(tags={"query"})
    async def list_all_stacks() -> MultiRepoStacksResult:
        """List stacks across every configured repository, most recently updated first.

        Each repository is refreshed independently: `repos` reports which ones
        failed, and stacks from the others are still returned.
        """
        try:
            svc = holder.get()
            return await stack.refresh_all_stacks(svc.registry, svc.store, svc.config.stacks)
        except Exception as exc:
            logger.exception("list_all_stacks failed")
            return MultiRepoStacksResult(error=_recovery_error(exc, tool_name="list_all_stacks", repo="*"))
        except asyncio.CancelledError:
            logger.warning("list_all_stacks cancelled")
            return MultiRepoStacksResult(error="Cancelled")

    async def _find_stack(stack_id: str, repo: str | None) -> tuple[RepoClient, Stack]:
        svc = holder.get()
        clients = [svc.registry.get(repo)] if repo is not None else list(svc.registry)
        if not clients:
            raise RepoNotConfiguredError(None, [])
        failures: list[str] = []
        for client in clients:
            try:
                stacks = await stack.refresh_stacks(client, svc.store, svc.config.stacks)
            except Exception as exc:
                # An explicit repo reports its own failure; a search moves on
                if repo is not None:
                    raise
                logger.warning("Refreshing stacks for %s failed while searching for %s: %s", client.full_name, stack_id, exc)
                failures.append(f"{client.full_name}: {exc}")
                continue
            found = stack.get_stack_by_id(stacks, stack_id)
            if found is not None:
                return client, found
        msg = f"Stack '{stack_id}' not found."
        if failures:
            msg += f" Could not refresh {'; '.join(failures)}."
        msg += " Call list_stacks() for valid ids."
        raise LookupError(msg)

    @mcp.tool(tags={"query"})
    async def get_stack(stack_id: str, repo: str | None = None) -> StackResult:
        """Get one stack by id.

        Args:
            stack_id: Stack id from `list_stacks`.
            repo: Repository in "owner/repo" format. Searches every configured repo if omitted.
        """
        try:
            _, found = await _find_stack(stack_id, repo)
            return StackResult(stack=found)
        except Exception as exc:
            logger.exception("get_stack failed for %s", stack_id)
            return StackResult(error=_recovery_error(exc, tool_name="get_stack", repo=repo))
        except asyncio.CancelledError:
            logger.warning("get_stack cancelled for %s", stack_id)
            return StackResult(error="Cancelled")

    @mcp.tool(tags={"query"})
    async def stack_review_summary(stack_id: str, repo: str | None = None) -> StackReviewSummary:
        """Summarize review state and merge readiness for a whole stack.

        Present the result as one line per count, and call out what blocks
        `ready_to_merge` (missing approvals, drafts, conflicts, unresolved threads).

        Args:
            stack_id: Stack id from `list_stacks`.
            repo: Repository in "owner/repo" format. Searches every configured repo if omitted.
        """
        try:
            client, found = await _find_stack(stack_id, repo)
            return await reviews.collect_stack_review(client, found)
        except Exception as exc:
            logger.exception("stack_review_summary failed for %s", stack_id)
            return StackReviewSummary(
                stack_id=stack_id,
                error=_recovery_error(exc, tool_name="stack_review_summary", repo=repo),
            )
        except asyncio.CancelledError:
            logger.warning("stack_review_summary cancelled for %s", stack_id)
            return StackReviewSummary(stack_id=stack_id, error="Cancelled")

    # -- Pull requests ------------------------------------------------------

    @mcp.tool(tags={"query"})
    async def list_prs(
        repo: str | None = None,
        state: Literal["open", "closed", "all"] = "open",
        limit: Annotated[int, Field(ge=1, le=100)] = 50,
    ) -> PRListResult:
        """List pull requests, most recently updated first.

        Args:
            repo: Repository in "owner/repo" format. Defaults to the first configured repo.
            state: "open", "closed", or "all".
            limit: How many PRs to return (default 50, max 100).
        """
        try:
            client = _client(repo)
            prs = await client.list_prs(state, per_page=limit)
            return PRListResult(repo=client.full_name, prs=prs)
        except Exception as exc:
            logger.exception("list_prs failed for %s", repo)
            return PRListResult(repo=repo or "", error=_recovery_error(exc, tool_name="list_prs", repo=repo))
        except asyncio.CancelledError:
            logger.warning("list_prs cancelled for %s", repo)
            return PRListResult(repo=repo or "", error="Cancelled")

    @mcp.tool(tags={"query"})
    async def get_pr(pr_number: int, repo: str | None = None) -> PRDetailResult:
        """Get a PR with its commits and combined review status."""
        try:
            client = _client(repo)
            pr, commits, review_list = await asyncio.gather(
                client.get_pr(pr_number),
                client.list_commits(pr_number),
                client.list_reviews(pr_number),
            )
            return PRDetailResult(pr=pr, commits=commits, review_status=reviews.compute_review_status(review_list))
        except Exception as exc:
            logger.exception("get_pr failed for PR #%s", pr_number)
            return PRDetailResult(error=_recovery_error(exc, tool_name="get_pr", pr_number=pr_number, repo=repo))
        except asyncio.CancelledError:
            logger.warning("get_pr cancelled for PR #%s", pr_number)
            return PRDetailResult(error="Cancelled")

    @mcp.tool(tags={"query"})
    async def get_pr_diff(pr_number: int, repo: str | None = None) -> DiffResult:
        """Get the changed files of a PR with their patches."""
        try:
            files = await _client(repo).list_files(pr_number)
            return DiffResult(pr_number=pr_number, files=files)
        except Exception as exc:
            logger.exception("get_pr_diff failed for PR #%s", pr_number)
            return DiffResult(
                pr_number=pr_number,
                error=_recovery_error(exc, tool_name="get_pr_diff", pr_number=pr_number, repo=repo),
            )
        except asyncio.CancelledError:
            logger.warning("get_pr_diff cancelled for PR #%s", pr_number)
            return DiffResult(pr_number=pr_number, error="Cancelled")

    # -- Threads and reviews ------------------------------------------------

    @mcp.tool(tags={"query"})
    async def list_threads(
        pr_number: int,
        repo: str | None = None,
        status: Literal["resolved", "unresolved"] | None = None,
    ) -> ThreadsResult:
        """List inline review threads for a PR.

        `info` always counts every thread, whatever `status` filter is applied.
        When `authoritative` is false, GitHub's resolution state could not be
        fetched and all threads are reported unresolved.

        Args:
            pr_number: The PR number.
            repo: Repository in "owner/repo" format. Defaults to the first configured repo.
            status: Filter by "resolved" or "unresolved". Returns all if not set.
        """
        try:
            result = await threads.fetch_conversation_threads(_client(repo), pr_number)
            if status is not None:
                result.threads = threads.filter_threads(result.threads, resolved=status == "resolved")
            return result
        except Exception as exc:
            logger.exception("list_threads failed for PR #%s", pr_number)
            return ThreadsResult(
                pr_number=pr_number,
                error=_recovery_error(exc, tool_name="list_threads", pr_number=pr_number, repo=repo),
            )
        except asyncio.CancelledError:
            logger.warning("list_threads cancelled for PR #%s", pr_number)
            return ThreadsResult(pr_number=pr_number, error="Cancelled")

    @mcp.tool(tags={"query"})
    async def review_status(pr_number: int, repo: str | None = None) -> ReviewStatusResult:
        """Combined review status of a PR from each reviewer's latest review.

        `mergeable` is true only when the status is APPROVED.
        """
        try:
            return await reviews.pr_review_status(_client(repo), pr_number)
        except Exception as exc:
            logger.exception("review_status failed for PR #%s", pr_number)
            return ReviewStatusResult(
                pr_number=pr_number,
                error=_recovery_error(exc, tool_name="review_status", pr_number=pr_number, repo=repo),
            )
        except asyncio.CancelledError:
            logger.warning("review_status cancelled for PR #%s", pr_number)
            return ReviewStatusResult(pr_number=pr_number, error="Cancelled")

    @mcp.tool(tags={"query"})
    async def list_checks(pr_number: int, repo: str | None = None) -> CheckRunsResult:
        """List check runs on a PR's head commit with a passed/failed/pending summary."""
        try:
            return await checks.list_checks(_client(repo), pr_number)
        except Exception as exc:
            logger.exception("list_checks failed for PR #%s", pr_number)
            return CheckRunsResult(
                pr_number=pr_number,
                error=_recovery_error(exc, tool_name="list_checks", pr_number=pr_number, repo=repo),
            )
        except asyncio.CancelledError:
            logger.warning("list_checks cancelled for PR #%s", pr_number)
            return CheckRunsResult(pr_number=pr_number, error="Cancelled")

    # -- Commands -----------------------------------------------------------

    @mcp.tool(tags={"command"})
    async def comment_on_pr(pr_number: int, body: str, repo: str | None = None) -> CommentResult:
        """Post a PR-level comment."""
        try:
            return CommentResult(comment=await _client(repo).create_issue_comment(pr_number, body))
        except Exception as exc:
            logger.exception("comment_on_pr failed for PR #%s", pr_number)
            return CommentResult(error=_recovery_error(exc, tool_name="comment_on_pr", pr_number=pr_number, repo=repo))

    @mcp.tool(tags={"command"})
    async def add_review_comment(  # noqa: PLR0913
        pr_number: int,
        body: str,
        path: str,
        line: int,
        commit_id: str | None = None,
        start_line: int | None = None,
        side: Literal["LEFT", "RIGHT"] | None = None,
        repo: str | None = None,
    ) -> CommentResult:
        """Add an inline comment on a changed line (or line range) of a PR.

        Args:
            pr_number: The PR number.
            body: Comment text.
            path: File path relative to the repo root.
            line: Line to comment on (last line of a range).
            commit_id: Commit to anchor to. Defaults to the PR head commit.
            start_line: First line of a multi-line comment.
            side: "RIGHT" for the new version (default), "LEFT" for the old.
            repo: Repository in "owner/repo" format. Defaults to the first configured repo.
        """
        try:
            client = _client(repo)
            if commit_id is None:
                commit_id = (await client.get_pr(pr_number)).head.sha
            comment = await client.create_review_comment(
                pr_number,
                body,
                commit_id=commit_id,
                path=path,
                line=line,
                start_line=start_line,
                side=side,
                start_side=side if start_line is not None else None,
            )
            return CommentResult(comment=comment)
        except Exception as exc:
            logger.exception("add_review_comment failed for PR #%s", pr_number)
            return CommentResult(
                error=_recovery_error(exc, tool_name="add_review_comment", pr_number=pr_number, repo=repo),
            )

    @mcp.tool(tags={"command"})
    async def reply_to_comment(pr_number: int, comment_id: int, body: str, repo: str | None = None) -> CommentResult:
        """Reply to an inline review comment; the reply joins that comment's thread.

        Args:
            pr_number: The PR number.
            comment_id: Database id of the comment being answered (any comment in the thread).
            body: Reply text.
            repo: Repository in "owner/repo" format. Defaults to the first configured repo.
        """
        try:
            return CommentResult(comment=await _client(repo).reply_to_review_comment(pr_number, comment_id, body))
        except Exception as exc:
            logger.exception("reply_to_comment failed for comment %s on PR #%s", comment_id, pr_number)
            return CommentResult(
                error=_recovery_error(exc, tool_name="reply_to_comment", pr_number=pr_number, repo=repo),
            )

    @mcp.tool(tags={"command"})
    async def delete_comment(
        comment_id: int,
        kind: Literal["review", "issue"] = "review",
        repo: str | None = None,
    ) -> str:
        """Delete a comment.

        Args:
            comment_id: Database id of the comment.
            kind: "review" for inline comments, "issue" for PR-level comments.
            repo: Repository in "owner/repo" format. Defaults to the first configured repo.
        """
        try:
            client = _client(repo)
            if kind == "issue":
                await client.delete_issue_comment(comment_id)
            else:
                await client.delete_review_comment(comment_id)
        except Exception as exc:
            logger.exception("delete_comment failed for %s comment %s", kind, comment_id)
            return _recovery_error(exc, tool_name="delete_comment", repo=repo)
        return f"Deleted {kind} comment {comment_id}"

    @mcp.tool(tags={"command"})
    async def approve_pr(pr_number: int, body: str = "", repo: str | None = None) -> str:
        """Approve a PR, optionally with a review body."""
        try:
            review = await _client(repo).approve_pr(pr_number, body)
        except Exception as exc:
            logger.exception("approve_pr failed for PR #%s", pr_number)
            return _recovery_error(exc, tool_name="approve_pr", pr_number=pr_number, repo=repo)
        return f"Approved PR #{pr_number} (review {review.id})"

    @mcp.tool(tags={"command"})
    async def merge_pr(
        pr_number: int,
        merge_method: Literal["merge", "squash", "rebase"] = "merge",
        repo: str | None = None,
    ) -> MergeResult:
        """Merge a PR. In a stack, merge the root PR (stackOrder 0) first.

        Args:
            pr_number: The PR number.
            merge_method: "merge", "squash", or "rebase".
            repo: Repository in "owner/repo" format. Defaults to the first configured repo.
        """
        try:
            data = await _client(repo).merge_pr(pr_number, merge_method)
            return MergeResult(merged=bool(data.get("merged")), message=data.get("message", ""), sha=data.get("sha"))
        except GitHubError as exc:
            logger.exception("merge_pr failed for PR #%s", pr_number)
            hint = {
                405: "PR is not mergeable: check conflicts, required reviews, and required checks.",
                409: "PR head was modified: review the new commits and retry.",
            }.get(exc.status_code)
            error = hint or _recovery_error(exc, tool_name="merge_pr", pr_number=pr_number, repo=repo)
            return MergeResult(error=error)
        except Exception as exc:
            logger.exception("merge_pr failed for PR #%s", pr_number)
            return MergeResult(error=_recovery_error(exc, tool_name="merge_pr", pr_number=pr_number, repo=repo))

    @mcp.tool(tags={"command"})
    async def close_pr(pr_number: int, repo: str | None = None) -> str:
        """Close a PR without merging."""
        try:
            pr = await _client(repo).close_pr(pr_number)
        except Exception as exc:
            logger.exception("close_pr failed for PR #%s", pr_number)
            return _recovery_error(exc, tool_name="close_pr", pr_number=pr_number, repo=repo)
        return f"Closed PR #{pr.number}: {pr.title}"

    @mcp.tool(tags={"command"})
    async def request_reviewers(pr_number: int, reviewers: list[str], repo: str | None = None) -> str:
        """Request reviews from GitHub users."""
        try:
            await _client(repo).request_reviewers(pr_number, reviewers)
        except Exception as exc:
            logger.exception("request_reviewers failed for PR #%s", pr_number)
            return _recovery_error(exc, tool_name="request_reviewers", pr_number=pr_number, repo=repo)
        return f"Requested review from {', '.join(reviewers)} on PR #{pr_number}"

    @mcp.tool(tags={"command"})
    async def resolve_thread(thread_id: str, repo: str | None = None) -> str:
        """Resolve a review thread by its node id (PRRT_...) from `list_threads`.

        Threads with a `thread-<id>` id were rebuilt without GitHub's thread data
        and cannot be resolved; call `list_threads` again for real ids.
        """
        try:
            if thread_id.startswith("thread-"):
                msg = f"'{thread_id}' is not a GitHub thread id (thread data was unavailable)"
                raise ValueError(msg)
            resolved = await _client(repo).resolve_thread(thread_id)
        except Exception as exc:
            logger.exception("resolve_thread failed for %s", thread_id)
            return _recovery_error(exc, tool_name="resolve_thread", repo=repo)
        return f"Resolved {thread_id}" if resolved else f"GitHub did not mark {thread_id} as resolved"

    @mcp.tool(tags={"command"})
    async def unresolve_thread(thread_id: str, repo: str | None = None) -> str:
        """Reopen a resolved review thread by its node id (PRRT_...)."""
        try:
            still_resolved = await _client(repo).unresolve_thread(thread_id)
        except Exception as exc:
            logger.exception("unresolve_thread failed for %s", thread_id)
            return _recovery_error(exc, tool_name="unresolve_thread", repo=repo)
        return f"GitHub still reports {thread_id} as resolved" if still_resolved else f"Reopened {thread_id}"

    @mcp.tool(tags={"command"})
    async def rerun_check(check_run_id: int, repo: str | None = None) -> str:
        """Re-run a single check (by check run id from `list_checks`)."""
        try:
            target = await checks.rerun_check(_client(repo), check_run_id)
        except Exception as exc:
            logger.exception("rerun_check failed for %s", check_run_id)
            return _recovery_error(exc, tool_name="rerun_check", repo=repo)
        return f"Re-running {target}"

    @mcp.tool(tags={"command"})
    async def rerun_all_checks(pr_number: int, repo: str | None = None) -> str:
        """Re-run every finished workflow run on a PR's head commit."""
        try:
            count = await checks.rerun_all_checks(_client(repo), pr_number)
        except Exception as exc:
            logger.exception("rerun_all_checks failed for PR #%s", pr_number)
            return _recovery_error(exc, tool_name="rerun_all_checks", pr_number=pr_number, repo=repo)
        return f"Re-running {count} workflow run(s) for PR #{pr_number}"

    # -- Config -------------------------------------------------------------

    @mcp.tool(tags={"discovery"})
    def show_config() -> ConfigInfo:
        """Show the active stacksmith configuration and the configured repositories."""
        svc = holder.get()
        return ConfigInfo(
            config=svc.config.model_dump(mode="json"),
            source=str(svc.config_path) if svc.config_path else "defaults",
            repos=svc.registry.keys(),
        )

    # -- Prompts ------------------------------------------------------------

    @mcp.prompt
    def review_stack() -> str:
        """Review pass over one stack, root PR first."""
        return """\
You are reviewing a stack of PRs. Follow these steps in order:

1. **Pick the stack** — call `list_stacks()` and choose a stack; note its `id`.
2. **Status** — call `stack_review_summary(stack_id)` to see approvals, drafts,
   conflicts, and unresolved threads.
3. **Per PR, root first** — for each PR by `stackOrder`:
   - `get_pr_diff(pr_number)` to read the change.
   - `list_threads(pr_number, status="unresolved")` to see open conversations.
   - `list_checks(pr_number)`; re-run flaky failures with `rerun_check`.
4. **Respond** — `reply_to_comment` or `add_review_comment`; `resolve_thread` once addressed.
5. **Verify** — call `stack_review_summary(stack_id)` again.
"""

    @mcp.prompt
    def ship_stack() -> str:
        """Pre-merge check before merging a stack."""
        return """\
You are preparing to merge a stack. Run these final checks:

1. `stack_review_summary(stack_id)` — `ready_to_merge` must be true. If not, list
   exactly what blocks it (missing approvals, drafts, conflicts, unresolved threads) and STOP.
2. `list_checks(pr_number)` for every PR — any failure? STOP and report it.
3. Merge with `merge_pr`, starting at `stackOrder` 0 and moving up one PR at a time.
   After each merge call `list_stacks()`: the next PR should now target the trunk.
"""

    return mcp


mcp = create_server()
