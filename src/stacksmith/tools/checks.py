"""Check-run summaries and re-running CI for a PR."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from stacksmith.github_api import GitHubError
from stacksmith.models import CheckRunsResult, CheckSummary

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Any

    from stacksmith.client import RepoClient
    from stacksmith.models import CheckRun

logger = logging.getLogger(__name__)

PASSED_CONCLUSIONS = frozenset({"success", "skipped", "cancelled", "neutral"})
FAILED_CONCLUSIONS = frozenset({"failure", "timed_out", "action_required"})
PENDING_STATUSES = frozenset({"queued", "in_progress"})
RERUNNABLE_STATUSES = frozenset({"completed", "failure"})


def summarize_checks(runs: Sequence[CheckRun]) -> CheckSummary:
    """Count passed/failed/pending runs and derive an overall state."""
    passed = sum(1 for r in runs if r.conclusion in PASSED_CONCLUSIONS)
    failed = sum(1 for r in runs if r.conclusion in FAILED_CONCLUSIONS)
    pending = sum(1 for r in runs if r.status in PENDING_STATUSES)

    if not runs:
        state = "none"
    elif failed:
        state = "failure"
    elif pending:
        state = "pending"
    else:
        state = "success"

    return CheckSummary(total=len(runs), passed=passed, failed=failed, pending=pending, state=state)


async def list_checks(client: RepoClient, pr_number: int) -> CheckRunsResult:
    """Check runs on the PR's head commit with a summary."""
    pr = await client.get_pr(pr_number)
    runs = await client.list_check_runs(pr.head.sha)
    return CheckRunsResult(pr_number=pr_number, runs=runs, summary=summarize_checks(runs))


async def _find_workflow_run(client: RepoClient, check_run: dict[str, Any]) -> int | None:
    """Workflow run whose jobs include this check, else the first completed run."""
    runs = await client.list_workflow_runs(check_run.get("head_sha", ""))
    completed = [run for run in runs if run.get("status") == "completed"]

    for run in completed:
        jobs = await client.list_workflow_jobs(run["id"])
        if any(job.get("name") == check_run.get("name") for job in jobs):
            return run["id"]

    return completed[0]["id"] if completed else None


async def rerun_check(client: RepoClient, check_run_id: int) -> str:
    """Re-run one check.

    Actions checks are re-run through their workflow run (only the workflow
    containing the check). Other checks are re-requested through the
    Checks API.

    Returns:
        What was re-run, e.g. ``"workflow run 123"``.
    """
    check_run = await client.get_check_run(check_run_id)

    if check_run.get("check_suite"):
        run_id = await _find_workflow_run(client, check_run)
        if run_id is not None:
            await client.rerun_workflow(run_id)
            logger.info("Re-ran workflow run %d for check %r", run_id, check_run.get("name"))
            return f"workflow run {run_id}"

    await client.rerequest_check_run(check_run_id)
    logger.info("Re-requested check run %d", check_run_id)
    return f"check run {check_run_id}"


async def rerun_all_checks(client: RepoClient, pr_number: int) -> int:
    """Re-run every finished workflow run on the PR head commit.

    Individual re-run failures are logged and skipped.

    Returns:
        Number of workflow runs successfully re-run.
    """
    pr = await client.get_pr(pr_number)
    runs = [run for run in await client.list_workflow_runs(pr.head.sha) if run.get("status") in RERUNNABLE_STATUSES]

    async def _rerun(run: dict[str, Any]) -> bool:
        try:
            await client.rerun_workflow(run["id"])
        except GitHubError as exc:
            logger.warning("Failed to re-run workflow %r (%s): %s", run.get("name"), run["id"], exc)
            return False
        return True

    results = await asyncio.gather(*(_rerun(run) for run in runs))
    rerun = sum(results)
    logger.info("Re-ran %d/%d workflow runs for %s#%d", rerun, len(runs), client.full_name, pr_number)
    return rerun
