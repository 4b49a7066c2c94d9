"""Review thread grouping and unresolved-thread accounting.

Threads come from two places:

- **Authoritative**: GitHub's GraphQL ``reviewThreads`` carry the real
  resolved/outdated flags and the database ids of their comments.
- **Heuristic**: when GraphQL is unavailable, threads are rebuilt from REST
  ``in_reply_to_id`` links and every thread is reported unresolved.

``fetch_conversation_threads`` always returns usable threads and says which
of the two it used.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from stacksmith.github_api import GitHubError
from stacksmith.models import CommentThread, ThreadResolutionInfo, ThreadsResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stacksmith.client import RepoClient
    from stacksmith.models import Comment, ReviewThreadNode

logger = logging.getLogger(__name__)


def _by_creation(comments: Sequence[Comment]) -> list[Comment]:
    return sorted(comments, key=lambda c: c.created_at.timestamp())


def group_into_threads(comments: Sequence[Comment]) -> list[CommentThread]:
    """Rebuild threads from reply links (fallback path).

    Roots are inline comments (``path`` and ``line`` set) with no
    ``in_reply_to_id``; issue comments never start a thread. Replies are the
    comments pointing at a root, oldest first.
    """
    inline = [c for c in comments if c.path]

    replies_by_parent: dict[int, list[Comment]] = {}
    for comment in comments:
        if comment.in_reply_to_id:
            replies_by_parent.setdefault(comment.in_reply_to_id, []).append(comment)

    threads: list[CommentThread] = []
    for comment in inline:
        if comment.in_reply_to_id or not comment.line:
            continue
        threads.append(
            CommentThread(
                id=comment.conversation_id or f"thread-{comment.id}",
                parent_comment=comment,
                replies=_by_creation(replies_by_parent.get(comment.id, [])),
                resolved=False,
                path=comment.path or "",
                line=comment.line,
            )
        )
    return threads


def match_review_threads(comments: Sequence[Comment], nodes: Sequence[ReviewThreadNode]) -> list[CommentThread]:
    """Attach REST comments to GraphQL review threads by shared comment ids.

    The earliest matched comment is the parent and supplies the thread's
    path; replies may omit theirs. Nodes matching no comment are skipped.
    """
    threads: list[CommentThread] = []

    for node in nodes:
        ids = set(node.comment_ids)
        members = _by_creation([c for c in comments if c.id in ids])
        if not members:
            continue
        parent, *replies = (c.model_copy(update={"conversation_id": node.id}) for c in members)
        threads.append(
            CommentThread(
                id=node.id,
                parent_comment=parent,
                replies=replies,
                resolved=node.is_resolved,
                outdated=node.is_outdated,
                path=parent.path or "",
                line=parent.line,
            )
        )
    return threads


def resolution_info(threads: Sequence[CommentThread]) -> ThreadResolutionInfo:
    """Count threads, unresolved threads, and unresolved threads per file."""
    by_file = unresolved_count_by_file(threads)
    return ThreadResolutionInfo(
        total_threads=len(threads),
        unresolved_count=sum(by_file.values()),
        by_file=by_file,
    )


def unresolved_count_by_file(threads: Sequence[CommentThread]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for thread in threads:
        if not thread.resolved:
            counts[thread.path] = counts.get(thread.path, 0) + 1
    return counts


def threads_for_file(threads: Sequence[CommentThread], path: str) -> list[CommentThread]:
    return [t for t in threads if t.path == path]


def filter_threads(threads: Sequence[CommentThread], resolved: bool | None = None) -> list[CommentThread]:
    """Keep threads with the given resolution state; ``None`` keeps all."""
    if resolved is None:
        return list(threads)
    return [t for t in threads if t.resolved == resolved]


def find_thread(threads: Sequence[CommentThread], thread_id: str) -> CommentThread | None:
    return next((t for t in threads if t.id == thread_id), None)


async def fetch_conversation_threads(client: RepoClient, pr_number: int) -> ThreadsResult:
    """Fetch a PR's threads, preferring GitHub's own resolution state.

    REST comment fetch failures propagate. A failing GraphQL thread query
    degrades to ``group_into_threads`` with ``authoritative=False`` and the
    failure recorded in ``error``.
    """
    comments = await client.list_review_comments(pr_number)

    try:
        nodes = await client.review_threads(pr_number)
    except (GitHubError, httpx.HTTPError) as exc:
        logger.warning(
            "Review thread query failed for %s#%d, falling back to reply links: %s",
            client.full_name,
            pr_number,
            exc,
        )
        threads = group_into_threads(comments)
        return ThreadsResult(
            pr_number=pr_number,
            threads=threads,
            authoritative=False,
            info=resolution_info(threads),
            error=f"Thread resolution unavailable ({exc}); all threads reported unresolved",
        )

    threads = match_review_threads(comments, nodes)
    return ThreadsResult(pr_number=pr_number, threads=threads, authoritative=True, info=resolution_info(threads))
