"""Tests for review thread grouping and resolution accounting."""

from __future__ import annotations

import httpx
import pytest
from helpers.factories import fake_repo_client, make_comment

from stacksmith.github_api import GitHubError
from stacksmith.models import CommentThread, ReviewThreadNode
from stacksmith.tools.threads import (
    fetch_conversation_threads,
    filter_threads,
    find_thread,
    group_into_threads,
    match_review_threads,
    resolution_info,
    threads_for_file,
    unresolved_count_by_file,
)


def _thread(thread_id: str, path: str, *, resolved: bool = False) -> CommentThread:
    return CommentThread(
        id=thread_id,
        parent_comment=make_comment(1, path=path, line=1),
        resolved=resolved,
        path=path,
        line=1,
    )


class TestGroupIntoThreads:
    def test_reply_joins_its_root(self):
        comments = [
            make_comment(1, path="a.ts", line=5),
            make_comment(2, minutes=1, in_reply_to_id=1),
        ]

        threads = group_into_threads(comments)

        assert len(threads) == 1
        thread = threads[0]
        assert thread.id == "thread-1"
        assert thread.parent_comment.id == 1
        assert [r.id for r in thread.replies] == [2]
        assert thread.resolved is False
        assert thread.outdated is False
        assert thread.path == "a.ts"
        assert thread.line == 5

    def test_replies_ordered_oldest_first(self):
        comments = [
            make_comment(1, path="a.py", line=3),
            make_comment(3, minutes=9, path="a.py", in_reply_to_id=1),
            make_comment(2, minutes=4, path="a.py", in_reply_to_id=1),
        ]
        assert [r.id for r in group_into_threads(comments)[0].replies] == [2, 3]

    def test_issue_comments_excluded(self):
        comments = [make_comment(1, body="LGTM"), make_comment(2, path="b.py", line=1)]
        assert [t.parent_comment.id for t in group_into_threads(comments)] == [2]

    def test_root_without_line_skipped(self):
        # File-level comments have a path but no line
        assert group_into_threads([make_comment(1, path="a.py")]) == []

    def test_conversation_id_used_when_known(self):
        comments = [make_comment(1, path="a.py", line=2, conversation_id="PRRT_abc")]
        assert group_into_threads(comments)[0].id == "PRRT_abc"

    def test_empty(self):
        assert group_into_threads([]) == []


class TestMatchReviewThreads:
    def test_earliest_comment_is_parent(self):
        comments = [
            make_comment(11, minutes=5, path="a.py", line=3),
            make_comment(10, minutes=1, path="a.py", line=3),
            make_comment(12, minutes=9, path="a.py", line=3),
        ]
        nodes = [ReviewThreadNode(id="PRRT_1", is_resolved=True, is_outdated=True, comment_ids=[10, 11, 12])]

        threads = match_review_threads(comments, nodes)

        assert len(threads) == 1
        thread = threads[0]
        assert thread.id == "PRRT_1"
        assert thread.parent_comment.id == 10
        assert [r.id for r in thread.replies] == [11, 12]
        assert thread.resolved is True
        assert thread.outdated is True
        assert {c.conversation_id for c in [thread.parent_comment, *thread.replies]} == {"PRRT_1"}

    def test_reply_without_path_kept(self):
        comments = [
            make_comment(1, path="a.ts", line=5),
            make_comment(2, minutes=1, in_reply_to_id=1),
        ]
        nodes = [ReviewThreadNode(id="PRRT_1", comment_ids=[1, 2])]

        threads = match_review_threads(comments, nodes)

        assert [r.id for r in threads[0].replies] == [2]
        assert threads[0].path == "a.ts"
        assert threads[0].line == 5

    def test_nodes_without_matching_comments_skipped(self):
        comments = [make_comment(1, path="a.py", line=1)]
        nodes = [ReviewThreadNode(id="PRRT_gone", comment_ids=[99]), ReviewThreadNode(id="PRRT_1", comment_ids=[1])]
        assert [t.id for t in match_review_threads(comments, nodes)] == ["PRRT_1"]


class TestResolutionInfo:
    def test_counts_and_by_file(self):
        threads = [
            _thread("t1", "a.py"),
            _thread("t2", "a.py"),
            _thread("t3", "b.py", resolved=True),
            _thread("t4", "c.py"),
        ]

        info = resolution_info(threads)

        assert info.total_threads == 4
        assert info.unresolved_count == 3
        assert info.by_file == {"a.py": 2, "c.py": 1}

    def test_fully_resolved_file_omitted(self):
        assert unresolved_count_by_file([_thread("t1", "a.py", resolved=True)]) == {}

    def test_empty(self):
        info = resolution_info([])
        assert (info.total_threads, info.unresolved_count, info.by_file) == (0, 0, {})


class TestThreadHelpers:
    def test_threads_for_file(self):
        threads = [_thread("t1", "a.py"), _thread("t2", "b.py")]
        assert [t.id for t in threads_for_file(threads, "b.py")] == ["t2"]

    def test_filter_threads(self):
        threads = [_thread("t1", "a.py"), _thread("t2", "a.py", resolved=True)]
        assert [t.id for t in filter_threads(threads, resolved=False)] == ["t1"]
        assert [t.id for t in filter_threads(threads, resolved=True)] == ["t2"]
        assert [t.id for t in filter_threads(threads)] == ["t1", "t2"]

    def test_find_thread(self):
        threads = [_thread("t1", "a.py")]
        assert find_thread(threads, "t1") is threads[0]
        assert find_thread(threads, "nope") is None


class TestFetchConversationThreads:
    async def test_authoritative_path(self):
        client = fake_repo_client()
        client.list_review_comments.return_value = [
            make_comment(1, path="a.py", line=4),
            make_comment(2, minutes=3, path="a.py", in_reply_to_id=1),
        ]
        client.review_threads.return_value = [ReviewThreadNode(id="PRRT_x", is_resolved=True, comment_ids=[1, 2])]

        result = await fetch_conversation_threads(client, 7)

        assert result.pr_number == 7
        assert result.authoritative is True
        assert result.error is None
        assert result.threads[0].resolved is True
        assert result.info.unresolved_count == 0

    async def test_graphql_failure_falls_back(self, caplog):
        client = fake_repo_client()
        client.list_review_comments.return_value = [
            make_comment(1, path="a.py", line=4),
            make_comment(2, minutes=3, path="a.py", in_reply_to_id=1),
        ]
        client.review_threads.side_effect = GitHubError("GraphQL error: something broke")

        result = await fetch_conversation_threads(client, 7)

        assert result.authoritative is False
        assert "something broke" in result.error
        assert [t.id for t in result.threads] == ["thread-1"]
        assert result.threads[0].resolved is False
        assert result.info.unresolved_count == 1
        assert "falling back" in caplog.text

    async def test_transport_failure_falls_back(self):
        client = fake_repo_client()
        client.list_review_comments.return_value = [make_comment(1, path="a.py", line=4)]
        client.review_threads.side_effect = httpx.ConnectError("connection refused")

        result = await fetch_conversation_threads(client, 7)

        assert result.authoritative is False
        assert len(result.threads) == 1

    async def test_rest_failure_propagates(self):
        client = fake_repo_client()
        client.list_review_comments.side_effect = GitHubError("GitHub API error 404: Not Found", status_code=404)

        with pytest.raises(GitHubError, match="404"):
            await fetch_conversation_threads(client, 7)
