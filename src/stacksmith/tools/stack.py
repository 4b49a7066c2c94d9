"""Stack inference from branch adjacency, plus refresh over GitHub and the store.

A stack is a chain of open PRs where each PR's base branch is the previous
PR's head branch. ``infer_stacks`` partitions a flat PR list into such chains
and, given previously known stacks, carries their identity forward so a stack
keeps its id, name, and creation time while PRs are opened, merged, or closed.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING

from fastmcp.utilities.async_utils import call_sync_fn_in_threadpool

from stacksmith.config import NamePolicy, StacksConfig
from stacksmith.models import MultiRepoStacksResult, RepoRefreshStatus, Stack, StackEntry, StackSummary, StackedPR
from stacksmith.store import same_repo

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from stacksmith.client import RepoClient
    from stacksmith.models import PullRequest
    from stacksmith.registry import RepoRegistry
    from stacksmith.store import StackStore

logger = logging.getLogger(__name__)

BRANCH_PREFIXES = ("feature", "feat", "fix", "bugfix", "hotfix", "chore", "refactor", "docs", "test", "wip")

_PREFIX_RE = re.compile(rf"^(?:{'|'.join(BRANCH_PREFIXES)})/", re.IGNORECASE)
_WORD_SPLIT_RE = re.compile(r"[-_/]+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")

_PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def slugify(branch: str) -> str:
    """Lower-case *branch* and collapse every non-alphanumeric run to ``-``."""
    return _SLUG_RE.sub("-", branch.lower())


def clean_branch_name(branch: str) -> str:
    """Turn ``feature/add-user_auth`` into ``Add User Auth``."""
    stripped = _PREFIX_RE.sub("", branch, count=1)
    words = [w for w in _WORD_SPLIT_RE.split(stripped) if w]
    name = " ".join(w[:1].upper() + w[1:] for w in words)
    return name or branch


def _describe(chain: Sequence[PullRequest]) -> str:
    if len(chain) > 1:
        return f"Stack from {chain[0].base.ref} with {len(chain)} PRs"
    return f"Single PR: {chain[0].title}"


def _latest_update(chain: Sequence[PullRequest]) -> datetime:
    return max(chain, key=lambda pr: pr.updated_at.timestamp()).updated_at


# ---------------------------------------------------------------------------
# Chain discovery
# ---------------------------------------------------------------------------


def _index_prs(prs: Sequence[PullRequest]) -> tuple[dict[str, PullRequest], dict[str, list[PullRequest]]]:
    """Build lookup indices for PRs by head branch and by base branch."""
    by_head: dict[str, PullRequest] = {}
    by_base: dict[str, list[PullRequest]] = {}
    for pr in prs:
        by_head[pr.head.ref] = pr
        by_base.setdefault(pr.base.ref, []).append(pr)
    return by_head, by_base


def _discover_chains(prs: Sequence[PullRequest]) -> list[list[PullRequest]]:
    """Partition *prs* into root-first chains.

    Every PR lands in exactly one chain. The visited set is what stops the
    walks on self-referencing branches and head/base cycles.
    """
    by_head, by_base = _index_prs(prs)
    visited: set[int] = set()
    chains: list[list[PullRequest]] = []

    for pr in prs:
        if pr.number in visited:
            continue

        chain = [pr]
        visited.add(pr.number)

        # Walk DOWN to the root: the parent is the PR whose head is our base
        current = pr
        while True:
            parent = by_head.get(current.base.ref)
            if parent is None or parent.number in visited:
                break
            chain.insert(0, parent)
            visited.add(parent.number)
            current = parent

        # Walk UP from the tail: the first unvisited PR based on the tail's head
        tail = chain[-1]
        while True:
            child = next((c for c in by_base.get(tail.head.ref, []) if c.number not in visited), None)
            if child is None:
                break
            chain.append(child)
            visited.add(child.number)
            tail = child

        chains.append(chain)

    return chains


# ---------------------------------------------------------------------------
# Inference and reconciliation
# ---------------------------------------------------------------------------


def _without_prs(stack: Stack, numbers: set[int]) -> Stack | None:
    """Drop PRs now owned by another chain; ``None`` when nothing is left."""
    remaining = [pr for pr in stack.prs if pr.number not in numbers]
    if len(remaining) == len(stack.prs):
        return stack
    if not remaining:
        return None
    prs = [pr.model_copy(update={"stack_order": order}) for order, pr in enumerate(remaining)]
    return stack.model_copy(update={"prs": prs})


def _pick_known_stack(
    chain: Sequence[PullRequest],
    candidates: Sequence[tuple[int, Stack]],
    claimed: set[int],
) -> tuple[int, Stack] | None:
    """Choose the known stack a chain inherits from.

    Candidates are unclaimed known stacks sharing a PR number with the chain.
    The earliest ``created_at`` wins; position in the known list breaks ties.
    """
    numbers = {pr.number for pr in chain}
    overlapping = [
        (position, known)
        for position, known in candidates
        if position not in claimed and numbers.intersection(known.pr_numbers)
    ]
    if not overlapping:
        return None
    return min(overlapping, key=lambda item: (item[1].created_at.timestamp(), item[0]))


def _fresh_id(root: PullRequest, owner: str | None, name: str | None, *, namespace: bool, taken: set[str]) -> str:
    base = slugify(root.head.ref)
    if namespace and owner and name:
        base = f"{owner}-{name}-{base}"
    stack_id = base
    suffix = 2
    while stack_id in taken:
        stack_id = f"{base}-{suffix}"
        suffix += 1
    return stack_id


def _build_stack(  # noqa: PLR0913
    chain: Sequence[PullRequest],
    *,
    stack_id: str,
    name: str,
    created_at: datetime,
    owner: str | None,
    repo: str | None,
) -> Stack:
    prs = [
        StackedPR.model_validate({
            **pr.model_dump(),
            "stack_order": order,
            "stack_id": stack_id,
            "stack_name": name,
            "repo_owner": owner,
            "repo_name": repo,
        })
        for order, pr in enumerate(chain)
    ]
    return Stack(
        id=stack_id,
        name=name,
        description=_describe(chain),
        created_at=created_at,
        updated_at=_latest_update(chain),
        repo_owner=owner,
        repo_name=repo,
        prs=prs,
    )


def infer_stacks(  # noqa: PLR0913
    prs: Sequence[PullRequest],
    known_stacks: Sequence[Stack] | None = None,
    *,
    repo_owner: str | None = None,
    repo_name: str | None = None,
    name_policy: NamePolicy | str = NamePolicy.TITLE,
    namespace_ids: bool = True,
) -> list[Stack]:
    """Partition *prs* into stacks, reconciling against *known_stacks*.

    Strategy:
    1. Discover root-first chains by walking base/head branch links
    2. A chain overlapping a known stack of the same repo inherits its
       ``id``/``name``/``created_at``; PRs, description, and ``updated_at``
       come from the chain
    3. Other chains get a fresh id derived from the root branch
    4. Known stacks no chain inherited (e.g. fully merged) are appended, minus
       any PRs that now belong to a chain; one left with no PRs is dropped

    Pure: no I/O, never raises on well-typed input. Repo names compare
    case-insensitively, as GitHub does.

    Returns:
        Chains in discovery order, then the carried-forward known stacks in
        their original order. Each PR number appears in at most one stack.
    """
    policy = NamePolicy(name_policy)
    candidates = [
        (position, known)
        for position, known in enumerate(known_stacks or [])
        if same_repo(known, repo_owner, repo_name)
    ]
    taken_ids = {known.id for _, known in candidates}
    claimed: set[int] = set()
    result: list[Stack] = []

    for chain in _discover_chains(prs):
        match = _pick_known_stack(chain, candidates, claimed)
        if match is not None:
            position, known = match
            claimed.add(position)
            stack_id, name, created_at = known.id, known.name, known.created_at
        else:
            root = chain[0]
            stack_id = _fresh_id(root, repo_owner, repo_name, namespace=namespace_ids, taken=taken_ids)
            name = root.title if policy is NamePolicy.TITLE else clean_branch_name(root.head.ref)
            created_at = root.created_at
        taken_ids.add(stack_id)
        result.append(
            _build_stack(chain, stack_id=stack_id, name=name, created_at=created_at, owner=repo_owner, repo=repo_name)
        )

    in_chains = {number for stack in result for number in stack.pr_numbers}
    for position, known in candidates:
        if position in claimed:
            continue
        carried = _without_prs(known, in_chains)
        if carried is not None:
            result.append(carried)
    return result


def get_stack_by_id(stacks: Sequence[Stack], stack_id: str) -> Stack | None:
    return next((s for s in stacks if s.id == stack_id), None)


def to_stack_summary(stack: Stack) -> StackSummary:
    """Compact form: identity plus ``(number, order)`` pairs."""
    return StackSummary(
        id=stack.id,
        name=stack.name,
        description=stack.description,
        created_at=stack.created_at,
        updated_at=stack.updated_at,
        repo_owner=stack.repo_owner,
        repo_name=stack.repo_name,
        prs=[StackEntry(number=pr.number, order=pr.stack_order) for pr in stack.prs],
    )


# ---------------------------------------------------------------------------
# Refresh over GitHub + store
# ---------------------------------------------------------------------------


async def refresh_stacks(client: RepoClient, store: StackStore, options: StacksConfig | None = None) -> list[Stack]:
    """Fetch open PRs for one repo, reconcile with its known stacks, and persist.

    The store lock is held across load and save so concurrent refreshes in
    this process never interleave their writes.
    """
    options = options or StacksConfig()
    prs = await client.list_prs("open", per_page=_PAGE_SIZE, paginate=True)
    if len(prs) > options.max_open_prs:
        logger.warning(
            "%s has %d open PRs; inferring stacks from the %d most recently updated",
            client.full_name,
            len(prs),
            options.max_open_prs,
        )
        prs = prs[: options.max_open_prs]

    async with store.lock:
        known = await call_sync_fn_in_threadpool(store.load_repo, client.owner, client.repo)
        stacks = infer_stacks(
            prs,
            known,
            repo_owner=client.owner,
            repo_name=client.repo,
            name_policy=options.name_policy,
            namespace_ids=options.namespace_ids,
        )
        await call_sync_fn_in_threadpool(store.save_repo, client.owner, client.repo, stacks)

    logger.info("Refreshed %s: %d open PRs in %d stacks", client.full_name, len(prs), len(stacks))
    return stacks


async def refresh_all_stacks(
    registry: RepoRegistry,
    store: StackStore,
    options: StacksConfig | None = None,
) -> MultiRepoStacksResult:
    """Refresh every configured repo concurrently.

    One repo failing never hides the others: each repo reports its own
    status, and stacks from the successful ones are merged newest first.
    """
    clients = list(registry)
    outcomes = await asyncio.gather(
        *(refresh_stacks(client, store, options) for client in clients),
        return_exceptions=True,
    )

    merged: list[Stack] = []
    statuses: list[RepoRefreshStatus] = []
    for client, outcome in zip(clients, outcomes, strict=True):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.warning("Refreshing stacks for %s failed: %s", client.full_name, outcome)
            statuses.append(RepoRefreshStatus(repo=client.full_name, ok=False, error=str(outcome) or type(outcome).__name__))
            continue
        merged.extend(outcome)
        statuses.append(RepoRefreshStatus(repo=client.full_name, ok=True, stack_count=len(outcome)))

    merged.sort(key=lambda s: s.updated_at.timestamp(), reverse=True)
    return MultiRepoStacksResult(stacks=merged, repos=statuses)
