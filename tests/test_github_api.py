"""Tests for the github_api module (httpx-based GitHub transport)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
import respx
from httpx import Response

from stacksmith.github_api import (
    _HTTP_FORBIDDEN,
    _HTTP_UNAUTHORIZED,
    GitHubAuthError,
    GitHubClient,
    GitHubError,
    parse_next_link,
    parse_repo,
    raise_for_status,
    resolve_token_sync,
)

# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class TestGitHubAuthError:
    def test_default_message_contains_setup_url(self):
        err = GitHubAuthError()
        assert "GH_TOKEN" in str(err)
        assert "github.com/settings/tokens" in str(err)

    def test_detail_prepended(self):
        err = GitHubAuthError("Access denied")
        assert str(err).startswith("Access denied")
        assert "GH_TOKEN" in str(err)

    def test_status_code_is_401(self):
        assert GitHubAuthError().status_code == _HTTP_UNAUTHORIZED


# ---------------------------------------------------------------------------
# parse_repo
# ---------------------------------------------------------------------------


class TestParseRepo:
    def test_valid_repo(self):
        assert parse_repo("owner/repo") == ("owner", "repo")

    def test_strips_whitespace(self):
        assert parse_repo(" owner/repo ") == ("owner", "repo")

    @pytest.mark.parametrize("bad", ["noslash", "owner/", "/repo", "a/b/c"])
    def test_invalid(self, bad):
        with pytest.raises(GitHubError, match="Invalid repo format"):
            parse_repo(bad)


# ---------------------------------------------------------------------------
# resolve_token_sync
# ---------------------------------------------------------------------------


class TestResolveTokenSync:
    def test_returns_gh_token_env(self, monkeypatch):
        monkeypatch.setenv("GH_TOKEN", "tok_from_env")
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        assert resolve_token_sync() == "tok_from_env"

    def test_returns_github_token_env(self, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.setenv("GITHUB_TOKEN", "tok_github")
        assert resolve_token_sync() == "tok_github"

    def test_falls_back_to_gh_auth_token(self, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        mock_result = MagicMock()
        mock_result.returncode = 0
        mock_result.stdout = "ghp_fallback\n"
        with patch("subprocess.run", return_value=mock_result):
            assert resolve_token_sync() == "ghp_fallback"

    def test_returns_none_when_gh_not_found(self, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert resolve_token_sync() is None

    def test_returns_none_when_gh_fails(self, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        mock_result = MagicMock()
        mock_result.returncode = 1
        mock_result.stdout = ""
        with patch("subprocess.run", return_value=mock_result):
            assert resolve_token_sync() is None


# ---------------------------------------------------------------------------
# GitHubClient.get_token
# ---------------------------------------------------------------------------


class TestGetToken:
    async def test_explicit_token(self):
        assert await GitHubClient(token="tok_explicit").get_token() == "tok_explicit"

    async def test_raises_when_no_token(self, monkeypatch):
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with patch("subprocess.run", side_effect=FileNotFoundError), pytest.raises(GitHubAuthError):
            await GitHubClient().get_token()

    async def test_resolved_once_until_reset(self, monkeypatch):
        monkeypatch.setenv("GH_TOKEN", "first")
        client = GitHubClient()
        assert await client.get_token() == "first"

        monkeypatch.setenv("GH_TOKEN", "second")
        assert await client.get_token() == "first"

        client.reset_token()
        assert await client.get_token() == "second"


# ---------------------------------------------------------------------------
# raise_for_status
# ---------------------------------------------------------------------------


class TestRaiseForStatus:
    def test_success_does_not_raise(self):
        raise_for_status(Response(200))

    def test_401_raises_auth_error(self):
        with pytest.raises(GitHubAuthError):
            raise_for_status(Response(401))

    def test_403_rate_limit_raises_github_error(self):
        with pytest.raises(GitHubError, match="rate limit") as exc_info:
            raise_for_status(Response(403, json={"message": "API rate limit exceeded for ..."}))
        assert not isinstance(exc_info.value, GitHubAuthError)
        assert exc_info.value.status_code == _HTTP_FORBIDDEN

    def test_403_forbidden_raises_auth_error(self):
        with pytest.raises(GitHubAuthError, match="forbidden"):
            raise_for_status(Response(403, json={"message": "Forbidden"}))

    def test_500_raises_github_error(self):
        with pytest.raises(GitHubError, match="500") as exc_info:
            raise_for_status(Response(500, json={"message": "Internal Server Error"}))
        assert exc_info.value.status_code == 500

    def test_non_json_body_uses_text(self):
        with pytest.raises(GitHubError, match="Unprocessable"):
            raise_for_status(Response(422, text="Unprocessable"))


# ---------------------------------------------------------------------------
# parse_next_link
# ---------------------------------------------------------------------------


class TestParseNextLink:
    def test_parses_next_link(self):
        header = '<https://api.github.com/repos?page=2>; rel="next", <https://api.github.com/repos?page=5>; rel="last"'
        assert parse_next_link(header) == "https://api.github.com/repos?page=2"

    def test_returns_none_when_no_next(self):
        assert parse_next_link('<https://api.github.com/repos?page=1>; rel="prev"') is None

    def test_returns_none_for_empty_string(self):
        assert parse_next_link("") is None


# ---------------------------------------------------------------------------
# graphql
# ---------------------------------------------------------------------------


class TestGraphQL:
    async def test_successful_query(self):
        api = GitHubClient(token="tok_test")
        with respx.mock:
            route = respx.post("https://api.github.com/graphql").mock(
                return_value=Response(200, json={"data": {"viewer": {"login": "user"}}}),
            )
            result = await api.graphql("query { viewer { login } }")

        assert result["data"]["viewer"]["login"] == "user"
        assert route.calls[0].request.headers["Authorization"] == "Bearer tok_test"

    async def test_graphql_errors_raise(self):
        api = GitHubClient(token="t")
        with respx.mock:
            respx.post("https://api.github.com/graphql").mock(
                return_value=Response(200, json={"errors": [{"message": "Field 'x' doesn't exist"}]}),
            )
            with pytest.raises(GitHubError, match="GraphQL error: Field 'x' doesn't exist"):
                await api.graphql("query { x }")

    async def test_queries_are_cached(self):
        api = GitHubClient(token="t")
        with respx.mock:
            route = respx.post("https://api.github.com/graphql").mock(
                return_value=Response(200, json={"data": {"n": 1}}),
            )
            await api.graphql("query { n }", {"a": 1})
            await api.graphql("query { n }", {"a": 1})
            await api.graphql("query { n }", {"a": 2})

        assert route.call_count == 2

    async def test_mutation_clears_cache(self):
        api = GitHubClient(token="t")
        with respx.mock:
            route = respx.post("https://api.github.com/graphql").mock(
                return_value=Response(200, json={"data": {"ok": True}}),
            )
            await api.graphql("query { n }")
            await api.graphql("mutation { resolve }")
            await api.graphql("query { n }")

        assert route.call_count == 3
        assert len(api.cache) == 1


# ---------------------------------------------------------------------------
# rest
# ---------------------------------------------------------------------------


class TestRest:
    async def test_get_sends_query_params(self):
        api = GitHubClient(token="t")
        with respx.mock:
            route = respx.get("https://api.github.com/repos/o/r/pulls").mock(
                return_value=Response(200, json=[{"number": 1}]),
            )
            result = await api.rest("/repos/o/r/pulls", state="open", per_page=50)

        assert result == [{"number": 1}]
        request = route.calls[0].request
        assert request.url.params["state"] == "open"
        assert request.url.params["per_page"] == "50"

    async def test_post_sends_json_body(self):
        api = GitHubClient(token="t")
        with respx.mock:
            route = respx.post("https://api.github.com/repos/o/r/issues/1/comments").mock(
                return_value=Response(201, json={"id": 5, "body": "hi"}),
            )
            result = await api.rest("/repos/o/r/issues/1/comments", "POST", body="hi")

        assert result["id"] == 5
        assert json.loads(route.calls[0].request.content) == {"body": "hi"}

    async def test_empty_response_returns_none(self):
        api = GitHubClient(token="t")
        with respx.mock:
            respx.delete("https://api.github.com/repos/o/r/pulls/comments/1").mock(return_value=Response(204))
            assert await api.rest("/repos/o/r/pulls/comments/1", "DELETE") is None

    async def test_paginates_link_headers(self):
        api = GitHubClient(token="t")
        next_url = "https://api.github.com/repos/o/r/pulls/1/commits?page=2"
        with respx.mock:
            respx.get(next_url).mock(return_value=Response(200, json=[{"sha": "b"}]))
            respx.get("https://api.github.com/repos/o/r/pulls/1/commits").mock(
                return_value=Response(200, json=[{"sha": "a"}], headers={"link": f'<{next_url}>; rel="next"'}),
            )
            result = await api.rest("/repos/o/r/pulls/1/commits", paginate=True)

        assert result == [{"sha": "a"}, {"sha": "b"}]

    async def test_get_cached_and_write_invalidates(self):
        api = GitHubClient(token="t")
        with respx.mock:
            get_route = respx.get("https://api.github.com/repos/o/r/pulls/1").mock(
                return_value=Response(200, json={"number": 1}),
            )
            respx.patch("https://api.github.com/repos/o/r/pulls/1").mock(
                return_value=Response(200, json={"number": 1, "state": "closed"}),
            )
            await api.rest("/repos/o/r/pulls/1")
            await api.rest("/repos/o/r/pulls/1")
            assert get_route.call_count == 1

            await api.rest("/repos/o/r/pulls/1", "PATCH", state="closed")
            await api.rest("/repos/o/r/pulls/1")
            assert get_route.call_count == 2

    async def test_error_status_raises(self):
        api = GitHubClient(token="t")
        with respx.mock:
            respx.get("https://api.github.com/repos/o/r/pulls/999").mock(
                return_value=Response(404, json={"message": "Not Found"}),
            )
            with pytest.raises(GitHubError, match="404") as exc_info:
                await api.rest("/repos/o/r/pulls/999")

        assert exc_info.value.status_code == 404

    async def test_custom_api_url(self):
        api = GitHubClient(token="t", api_url="https://ghe.example.com/api/v3/")
        with respx.mock:
            route = respx.get("https://ghe.example.com/api/v3/user").mock(return_value=Response(200, json={}))
            await api.rest("/user")
        assert route.called
