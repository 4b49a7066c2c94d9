"""Pydantic models for stacksmith."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# -- GitHub records ----------------------------------------------------------


class GithubUser(BaseModel):
    """A GitHub account as embedded in PRs, reviews, and comments."""

    model_config = ConfigDict(extra="ignore")

    login: str = Field(default="unknown", description="GitHub username")
    id: int = Field(default=0, description="GitHub user ID")
    avatar_url: str = Field(default="", description="Avatar image URL")
    html_url: str = Field(default="", description="Profile URL")


class Label(BaseModel):
    """A label attached to a pull request."""

    model_config = ConfigDict(extra="ignore")

    id: int = 0
    name: str
    color: str = ""
    description: str | None = None


class BranchRef(BaseModel):
    """One end (head or base) of a pull request."""

    model_config = ConfigDict(extra="ignore")

    ref: str = Field(description="Branch name")
    sha: str = Field(default="", description="Commit SHA the branch points at")


class PullRequest(BaseModel):
    """A pull request as returned by the GitHub REST API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    number: int = Field(description="PR number, unique per repository")
    title: str = Field(default="", description="PR title")
    body: str | None = Field(default=None, description="PR description")
    state: str = Field(default="open", description="'open' or 'closed'")
    html_url: str = Field(default="", description="PR URL")
    user: GithubUser | None = Field(default=None, description="PR author")
    created_at: datetime = Field(description="When the PR was opened")
    updated_at: datetime = Field(description="When the PR was last updated")
    closed_at: datetime | None = None
    merged_at: datetime | None = None
    draft: bool = False
    head: BranchRef = Field(description="Branch the PR merges from")
    base: BranchRef = Field(description="Branch the PR merges into")
    labels: list[Label] = Field(default_factory=list)
    assignees: list[GithubUser] = Field(default_factory=list)
    requested_reviewers: list[GithubUser] = Field(default_factory=list)
    mergeable: bool | None = Field(default=None, description="GitHub mergeability; None while GitHub computes it")
    mergeable_state: str = Field(default="", description="e.g. 'clean', 'dirty', 'blocked'")


class ReviewState(StrEnum):
    """State of a submitted (or pending) PR review."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    DISMISSED = "DISMISSED"
    PENDING = "PENDING"


class Review(BaseModel):
    """A PR review event."""

    model_config = ConfigDict(extra="ignore")

    id: int = 0
    user: GithubUser = Field(default_factory=GithubUser)
    body: str | None = ""
    state: ReviewState
    html_url: str = ""
    submitted_at: datetime | None = Field(default=None, description="Unset for PENDING reviews")


class Comment(BaseModel):
    """A PR comment. Inline review comments carry ``path``/``line``; issue comments don't."""

    model_config = ConfigDict(extra="ignore")

    id: int
    user: GithubUser = Field(default_factory=GithubUser)
    body: str = ""
    created_at: datetime
    updated_at: datetime | None = None
    html_url: str = ""
    path: str | None = None
    line: int | None = None
    commit_id: str | None = None
    in_reply_to_id: int | None = None
    conversation_id: str | None = Field(default=None, description="Review thread node ID, when known")


class CommitAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "unknown"
    email: str = ""
    date: datetime | None = None


class CommitDetail(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = ""
    author: CommitAuthor = Field(default_factory=CommitAuthor)


class Commit(BaseModel):
    """A commit on a PR."""

    model_config = ConfigDict(extra="ignore")

    sha: str
    commit: CommitDetail = Field(default_factory=CommitDetail)
    html_url: str = ""
    author: GithubUser | None = None


class DiffFile(BaseModel):
    """One changed file in a PR diff."""

    model_config = ConfigDict(extra="ignore")

    sha: str | None = None
    filename: str
    status: str = Field(description="added, removed, modified, renamed, copied, changed, unchanged")
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str | None = None
    previous_filename: str | None = None


class CheckRun(BaseModel):
    """A check run attached to a commit."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    status: str = Field(description="queued, in_progress, or completed")
    conclusion: str | None = Field(default=None, description="success, failure, neutral, cancelled, skipped, ...")
    started_at: datetime | None = None
    completed_at: datetime | None = None
    html_url: str | None = None
    details_url: str | None = None


class ReviewThreadNode(BaseModel):
    """Authoritative review thread state from the GraphQL API."""

    id: str = Field(description="GraphQL node ID (PRRT_...)")
    is_resolved: bool = False
    is_outdated: bool = False
    comment_ids: list[int] = Field(default_factory=list, description="REST database IDs of the thread's comments")


# -- Stacks ------------------------------------------------------------------


class StackedPR(PullRequest):
    """A pull request positioned inside a stack."""

    stack_order: int = Field(alias="stackOrder", description="Chain position, 0 = root")
    stack_id: str = Field(alias="stackId")
    stack_name: str = Field(alias="stackName")
    repo_owner: str | None = Field(default=None, alias="repoOwner")
    repo_name: str | None = Field(default=None, alias="repoName")


class Stack(BaseModel):
    """An ordered chain of dependent PRs (root first)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(description="Stable stack identity")
    name: str = Field(description="Human-readable label")
    description: str = ""
    created_at: datetime = Field(description="Fixed at first observation")
    updated_at: datetime = Field(description="Latest PR update in the chain")
    repo_owner: str | None = Field(default=None, alias="repoOwner")
    repo_name: str | None = Field(default=None, alias="repoName")
    prs: list[StackedPR] = Field(default_factory=list)

    @property
    def pr_numbers(self) -> list[int]:
        return [pr.number for pr in self.prs]


class StackEntry(BaseModel):
    """``(number, order)`` pair of the compact stack form."""

    number: int
    order: int


class StackSummary(BaseModel):
    """Compact stack: identity plus ordered PR numbers."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str = ""
    created_at: datetime
    updated_at: datetime
    repo_owner: str | None = Field(default=None, alias="repoOwner")
    repo_name: str | None = Field(default=None, alias="repoName")
    prs: list[StackEntry] = Field(default_factory=list)


# -- Threads -----------------------------------------------------------------


class CommentThread(BaseModel):
    """An inline conversation: a parent comment and its replies."""

    id: str = Field(description="Review thread node ID, or 'thread-<parent id>' when inferred")
    parent_comment: Comment
    replies: list[Comment] = Field(default_factory=list, description="Ordered by creation time, oldest first")
    resolved: bool = False
    outdated: bool = False
    path: str = Field(description="File path of the parent comment")
    line: int | None = Field(default=None, description="Line of the parent comment")


class ThreadResolutionInfo(BaseModel):
    """Unresolved-thread counts for a PR."""

    total_threads: int = 0
    unresolved_count: int = 0
    by_file: dict[str, int] = Field(default_factory=dict, description="Unresolved threads per file; zero counts omitted")


class ThreadsResult(BaseModel):
    """Threads for a PR plus whether resolution state is authoritative."""

    pr_number: int = 0
    threads: list[CommentThread] = Field(default_factory=list)
    authoritative: bool = Field(default=False, description="False when resolution state is the reply-chain heuristic")
    info: ThreadResolutionInfo = Field(default_factory=ThreadResolutionInfo)
    error: str | None = Field(default=None, description="Why the result is degraded, or why the request failed")


# -- Reviews -----------------------------------------------------------------


class CombinedReviewStatus(StrEnum):
    """One status summarizing every reviewer's latest review."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    NO_REVIEWS = "NO_REVIEWS"


class ReviewStatusInfo(BaseModel):
    """Counts over the latest review per reviewer."""

    status: CombinedReviewStatus = CombinedReviewStatus.NO_REVIEWS
    approval_count: int = 0
    changes_requested_count: int = 0
    commented_count: int = 0
    total_reviews: int = 0


class ReviewStatusResult(BaseModel):
    pr_number: int = 0
    info: ReviewStatusInfo = Field(default_factory=ReviewStatusInfo)
    label: str = ""
    mergeable: bool = Field(default=False, description="True only when the combined status is APPROVED")
    error: str | None = None


class ReviewCounts(BaseModel):
    """Per-stack tally of PR review statuses."""

    approved: int = 0
    changes_requested: int = 0
    commented: int = 0
    pending: int = Field(default=0, description="PRs with no reviews yet")
    total_reviewers: int = 0


class StackReviewSummary(BaseModel):
    """Merge readiness of a whole stack."""

    stack_id: str = ""
    total_prs: int = 0
    open_prs: int = 0
    merged_prs: int = 0
    draft_prs: int = 0
    review_counts: ReviewCounts = Field(default_factory=ReviewCounts)
    has_conflicts: bool = False
    all_approved: bool = False
    unresolved_threads: int = 0
    ready_to_merge: bool = False
    error: str | None = None


# -- Checks ------------------------------------------------------------------


class CheckSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    pending: int = 0
    state: str = Field(default="none", description="failure, pending, success, or none")


class CheckRunsResult(BaseModel):
    pr_number: int = 0
    runs: list[CheckRun] = Field(default_factory=list)
    summary: CheckSummary = Field(default_factory=CheckSummary)
    error: str | None = None


# -- Tool result envelopes ---------------------------------------------------


class StackListResult(BaseModel):
    repo: str = ""
    stacks: list[Stack] = Field(default_factory=list)
    error: str | None = None


class StackResult(BaseModel):
    stack: Stack | None = None
    error: str | None = None


class RepoRefreshStatus(BaseModel):
    """Outcome of refreshing one repository in a multi-repo listing."""

    repo: str
    ok: bool
    stack_count: int = 0
    error: str | None = None


class MultiRepoStacksResult(BaseModel):
    stacks: list[Stack] = Field(default_factory=list, description="Stacks from every repo that succeeded, newest first")
    repos: list[RepoRefreshStatus] = Field(default_factory=list)
    error: str | None = None


class PRListResult(BaseModel):
    repo: str = ""
    prs: list[PullRequest] = Field(default_factory=list)
    error: str | None = None


class PRDetailResult(BaseModel):
    pr: PullRequest | None = None
    commits: list[Commit] = Field(default_factory=list)
    review_status: ReviewStatusInfo | None = None
    error: str | None = None


class DiffResult(BaseModel):
    pr_number: int = 0
    files: list[DiffFile] = Field(default_factory=list)
    error: str | None = None


class CommentResult(BaseModel):
    comment: Comment | None = None
    error: str | None = None


class MergeResult(BaseModel):
    merged: bool = False
    message: str = ""
    sha: str | None = None
    error: str | None = None


class ConfigInfo(BaseModel):
    """Active stacksmith configuration with metadata."""

    config: dict = Field(description="Full configuration as a dictionary")
    source: str = Field(default="defaults", description="Path of the loaded config file, or 'defaults'")
    repos: list[str] = Field(default_factory=list, description="Repositories with a configured client")
