"""Combined review status per PR and merge readiness per stack."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from stacksmith.models import (
    CombinedReviewStatus,
    ReviewCounts,
    ReviewState,
    ReviewStatusInfo,
    ReviewStatusResult,
    StackReviewSummary,
)
from stacksmith.tools.threads import fetch_conversation_threads

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from stacksmith.client import RepoClient
    from stacksmith.models import PullRequest, Review, Stack, ThreadResolutionInfo

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)

_LABELS: dict[CombinedReviewStatus, str] = {
    CombinedReviewStatus.APPROVED: "Approved",
    CombinedReviewStatus.CHANGES_REQUESTED: "Changes Requested",
    CombinedReviewStatus.COMMENTED: "Commented",
    CombinedReviewStatus.NO_REVIEWS: "No Reviews",
}

_SHORT_LABELS: dict[CombinedReviewStatus, str] = {
    CombinedReviewStatus.APPROVED: "✓ Approved",
    CombinedReviewStatus.CHANGES_REQUESTED: "✗ Changes",
    CombinedReviewStatus.COMMENTED: "💬 Commented",
    CombinedReviewStatus.NO_REVIEWS: "◷ No Reviews",
}


def _submitted(review: Review) -> datetime:
    # Unsubmitted (PENDING) reviews sort before anything with a timestamp
    if review.submitted_at is None:
        return _EPOCH
    if review.submitted_at.tzinfo is None:
        return review.submitted_at.replace(tzinfo=UTC)
    return review.submitted_at


def latest_reviews(reviews: Sequence[Review]) -> list[Review]:
    """Most recent review per reviewer login, in first-seen reviewer order."""
    latest: dict[str, Review] = {}
    for review in reviews:
        existing = latest.get(review.user.login)
        if existing is None or _submitted(review) > _submitted(existing):
            latest[review.user.login] = review
    return list(latest.values())


def compute_review_status(reviews: Sequence[Review]) -> ReviewStatusInfo:
    """Reduce review events to one status.

    Logic, over each reviewer's latest review:
    - Any CHANGES_REQUESTED → CHANGES_REQUESTED
    - Else any APPROVED → APPROVED
    - Else any COMMENTED → COMMENTED
    - Else → NO_REVIEWS

    DISMISSED and PENDING reviews count toward nothing, ``total_reviews``
    included.
    """
    approved = changes = commented = 0
    for review in latest_reviews(reviews):
        if review.state == ReviewState.APPROVED:
            approved += 1
        elif review.state == ReviewState.CHANGES_REQUESTED:
            changes += 1
        elif review.state == ReviewState.COMMENTED:
            commented += 1

    if changes:
        status = CombinedReviewStatus.CHANGES_REQUESTED
    elif approved:
        status = CombinedReviewStatus.APPROVED
    elif commented:
        status = CombinedReviewStatus.COMMENTED
    else:
        status = CombinedReviewStatus.NO_REVIEWS

    return ReviewStatusInfo(
        status=status,
        approval_count=approved,
        changes_requested_count=changes,
        commented_count=commented,
        total_reviews=approved + changes + commented,
    )


def is_mergeable_by_review_status(info: ReviewStatusInfo) -> bool:
    """Only an APPROVED status allows merging; no reviews never does."""
    return info.status == CombinedReviewStatus.APPROVED


def review_status_label(status: CombinedReviewStatus) -> str:
    return _LABELS[CombinedReviewStatus(status)]


def review_status_short_label(status: CombinedReviewStatus) -> str:
    return _SHORT_LABELS[CombinedReviewStatus(status)]


def _has_conflicts(mergeable: bool | None, mergeable_state: str) -> bool:
    return mergeable is False or mergeable_state == "dirty"


def summarize_stack(
    stack: Stack,
    review_statuses: Mapping[int, ReviewStatusInfo],
    thread_infos: Mapping[int, ThreadResolutionInfo] | None = None,
) -> StackReviewSummary:
    """Tally review state across a stack and decide whether it can merge.

    ``review_statuses`` and ``thread_infos`` are keyed by PR number; a PR
    missing from ``review_statuses`` counts as having no reviews.

    The stack is ready to merge when it has open PRs and every open PR is
    approved, not a draft, free of conflicts, and has no unresolved threads.
    """
    thread_infos = thread_infos or {}
    counts = ReviewCounts()
    open_prs = merged_prs = draft_prs = unresolved = 0
    has_conflicts = False
    all_approved = True

    for pr in stack.prs:
        if pr.merged_at is not None:
            merged_prs += 1
            continue
        if pr.state != "open":
            continue
        open_prs += 1
        if pr.draft:
            draft_prs += 1
        if _has_conflicts(pr.mergeable, pr.mergeable_state):
            has_conflicts = True

        info = review_statuses.get(pr.number, ReviewStatusInfo())
        counts.total_reviewers += info.total_reviews
        if info.status == CombinedReviewStatus.APPROVED:
            counts.approved += 1
        elif info.status == CombinedReviewStatus.CHANGES_REQUESTED:
            counts.changes_requested += 1
        elif info.status == CombinedReviewStatus.COMMENTED:
            counts.commented += 1
        else:
            counts.pending += 1
        if not is_mergeable_by_review_status(info):
            all_approved = False

        threads = thread_infos.get(pr.number)
        if threads is not None:
            unresolved += threads.unresolved_count

    all_approved = all_approved and open_prs > 0
    ready = all_approved and not draft_prs and not has_conflicts and not unresolved
    logger.debug("Stack %s: %d open, approved=%s, ready=%s", stack.id, open_prs, all_approved, ready)

    return StackReviewSummary(
        stack_id=stack.id,
        total_prs=len(stack.prs),
        open_prs=open_prs,
        merged_prs=merged_prs,
        draft_prs=draft_prs,
        review_counts=counts,
        has_conflicts=has_conflicts,
        all_approved=all_approved,
        unresolved_threads=unresolved,
        ready_to_merge=ready,
    )


# ---------------------------------------------------------------------------
# Fetching over GitHub
# ---------------------------------------------------------------------------


async def pr_review_status(client: RepoClient, pr_number: int) -> ReviewStatusResult:
    """Combined review status of one PR with its display label."""
    info = compute_review_status(await client.list_reviews(pr_number))
    return ReviewStatusResult(
        pr_number=pr_number,
        info=info,
        label=review_status_label(info.status),
        mergeable=is_mergeable_by_review_status(info),
    )


async def collect_stack_review(client: RepoClient, stack: Stack) -> StackReviewSummary:
    """Fetch fresh PR state, reviews, and threads for a stack's open PRs and summarize.

    PR lists from GitHub omit mergeability, so each open PR is re-fetched.
    """
    open_numbers = [pr.number for pr in stack.prs if pr.state == "open" and pr.merged_at is None]

    async def _one(number: int) -> tuple[PullRequest, ReviewStatusInfo, ThreadResolutionInfo]:
        pr, reviews, threads = await asyncio.gather(
            client.get_pr(number),
            client.list_reviews(number),
            fetch_conversation_threads(client, number),
        )
        return pr, compute_review_status(reviews), threads.info

    fetched = await asyncio.gather(*(_one(number) for number in open_numbers))

    fresh = {pr.number: pr for pr, _, _ in fetched}
    refreshed = stack.model_copy(
        update={
            "prs": [
                p.model_copy(
                    update={
                        "state": fresh[p.number].state,
                        "merged_at": fresh[p.number].merged_at,
                        "draft": fresh[p.number].draft,
                        "mergeable": fresh[p.number].mergeable,
                        "mergeable_state": fresh[p.number].mergeable_state,
                    }
                )
                if p.number in fresh
                else p
                for p in stack.prs
            ]
        }
    )
    statuses = {pr.number: info for pr, info, _ in fetched}
    thread_infos = {pr.number: threads for pr, _, threads in fetched}
    return summarize_stack(refreshed, statuses, thread_infos)
