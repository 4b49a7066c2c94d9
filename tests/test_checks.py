"""Tests for check-run summaries and CI re-runs."""

from __future__ import annotations

from unittest.mock import AsyncMock

from helpers.factories import fake_repo_client, make_pr

from stacksmith.github_api import GitHubError
from stacksmith.models import CheckRun
from stacksmith.tools.checks import list_checks, rerun_all_checks, rerun_check, summarize_checks


def _run(run_id: int, status: str = "completed", conclusion: str | None = "success", name: str | None = None) -> CheckRun:
    return CheckRun(id=run_id, name=name or f"check-{run_id}", status=status, conclusion=conclusion)


class TestSummarizeChecks:
    def test_empty_is_none(self):
        summary = summarize_checks([])
        assert summary.state == "none"
        assert summary.total == 0

    def test_all_passing(self):
        runs = [_run(1), _run(2, conclusion="skipped"), _run(3, conclusion="neutral")]
        summary = summarize_checks(runs)
        assert (summary.total, summary.passed, summary.failed, summary.pending) == (3, 3, 0, 0)
        assert summary.state == "success"

    def test_failure_wins_over_pending(self):
        runs = [_run(1, conclusion="failure"), _run(2, status="in_progress", conclusion=None), _run(3)]
        summary = summarize_checks(runs)
        assert summary.failed == 1
        assert summary.pending == 1
        assert summary.state == "failure"

    def test_pending(self):
        runs = [_run(1, status="queued", conclusion=None), _run(2)]
        assert summarize_checks(runs).state == "pending"

    def test_timed_out_counts_as_failed(self):
        assert summarize_checks([_run(1, conclusion="timed_out")]).failed == 1


class TestListChecks:
    async def test_uses_head_sha(self):
        client = fake_repo_client()
        client.get_pr.return_value = make_pr(4, "feat/a")
        client.list_check_runs = AsyncMock(return_value=[_run(1), _run(2, conclusion="failure")])

        result = await list_checks(client, 4)

        client.list_check_runs.assert_awaited_once_with("sha-4")
        assert result.pr_number == 4
        assert len(result.runs) == 2
        assert result.summary.state == "failure"


class TestRerunCheck:
    async def test_reruns_workflow_containing_the_check(self):
        client = fake_repo_client()
        client.get_check_run = AsyncMock(return_value={"id": 5, "name": "lint", "head_sha": "abc", "check_suite": {"id": 1}})
        client.list_workflow_runs = AsyncMock(
            return_value=[
                {"id": 100, "status": "completed"},
                {"id": 200, "status": "completed"},
                {"id": 300, "status": "in_progress"},
            ]
        )
        client.list_workflow_jobs = AsyncMock(side_effect=lambda run_id: [{"name": "lint"}] if run_id == 200 else [{"name": "test"}])
        client.rerun_workflow = AsyncMock()
        client.rerequest_check_run = AsyncMock()

        target = await rerun_check(client, 5)

        assert target == "workflow run 200"
        client.list_workflow_runs.assert_awaited_once_with("abc")
        client.rerun_workflow.assert_awaited_once_with(200)
        client.rerequest_check_run.assert_not_called()

    async def test_falls_back_to_first_completed_run(self):
        client = fake_repo_client()
        client.get_check_run = AsyncMock(return_value={"id": 5, "name": "lint", "head_sha": "abc", "check_suite": {"id": 1}})
        client.list_workflow_runs = AsyncMock(return_value=[{"id": 100, "status": "completed"}])
        client.list_workflow_jobs = AsyncMock(return_value=[{"name": "other"}])
        client.rerun_workflow = AsyncMock()

        assert await rerun_check(client, 5) == "workflow run 100"

    async def test_rerequests_check_without_workflow_run(self):
        client = fake_repo_client()
        client.get_check_run = AsyncMock(return_value={"id": 5, "name": "external", "head_sha": "abc", "check_suite": None})
        client.rerequest_check_run = AsyncMock()

        assert await rerun_check(client, 5) == "check run 5"
        client.rerequest_check_run.assert_awaited_once_with(5)


class TestRerunAllChecks:
    async def test_reruns_finished_runs_and_skips_failures(self, caplog):
        client = fake_repo_client()
        client.get_pr.return_value = make_pr(4, "feat/a")
        client.list_workflow_runs = AsyncMock(
            return_value=[
                {"id": 1, "name": "ci", "status": "completed"},
                {"id": 2, "name": "lint", "status": "completed"},
                {"id": 3, "name": "deploy", "status": "in_progress"},
            ]
        )

        async def rerun(run_id):
            if run_id == 2:
                raise GitHubError("GitHub API error 403: forbidden", status_code=403)

        client.rerun_workflow = AsyncMock(side_effect=rerun)

        count = await rerun_all_checks(client, 4)

        assert count == 1
        client.list_workflow_runs.assert_awaited_once_with("sha-4")
        assert sorted(call.args[0] for call in client.rerun_workflow.await_args_list) == [1, 2]
        assert "Failed to re-run workflow 'lint'" in caplog.text
