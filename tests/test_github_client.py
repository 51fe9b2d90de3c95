"""Unit tests for the GitHub API client and repository provisioning."""

import asyncio
import json

import httpx
import pytest

from fakes import FakeGitHub
from hugohost.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
    encode_content,
)
from hugohost.github.repository import RepositoryProvisioner, is_name_taken


def run_async(coro):
    return asyncio.run(coro)


def _client_for(handler, **kwargs) -> GitHubClient:
    return GitHubClient(token="ghp_test", transport=httpx.MockTransport(handler), **kwargs)


class TestEncodeContent:

    def test_text_is_utf8_base64(self):
        assert encode_content("hé") == "aMOp"

    def test_bytes_are_sent_unchanged(self):
        assert encode_content(b"\x00\xff") == "AP8="

    def test_other_types_rejected(self):
        with pytest.raises(TypeError):
            encode_content(42)


class TestRequestErrors:

    def test_error_carries_stage_and_provider_message(self):
        def handler(request):
            return httpx.Response(
                422,
                json={
                    "message": "Validation Failed",
                    "errors": [{"resource": "Repository", "field": "name", "code": "invalid"}],
                },
            )

        client = _client_for(handler)
        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(client.create_repository("bad name", "desc"))

        error = exc_info.value
        assert error.status_code == 422
        assert error.stage == "create_repository"
        assert error.provider_message == "Validation Failed (Repository name invalid)"
        assert error.validation_errors() == [
            {"resource": "Repository", "field": "name", "code": "invalid"}
        ]

    def test_rate_limit_from_exhausted_quota(self):
        def handler(request):
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "retry-after": "30"},
                json={"message": "API rate limit exceeded"},
            )

        client = _client_for(handler)
        with pytest.raises(RateLimitError) as exc_info:
            run_async(client.get_authenticated_user())
        assert exc_info.value.retry_after == 30

    def test_forbidden_without_rate_limit_is_plain_error(self):
        def handler(request):
            return httpx.Response(403, json={"message": "Resource not accessible by integration"})

        client = _client_for(handler)
        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(client.get_authenticated_user())
        assert not isinstance(exc_info.value, RateLimitError)
        assert exc_info.value.provider_message == "Resource not accessible by integration"

    def test_no_retries_by_default(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"message": "unavailable"})

        client = _client_for(handler)
        with pytest.raises(GitHubAPIError):
            run_async(client.get_authenticated_user())
        assert len(calls) == 1

    def test_configured_retries_recover_from_transient_status(self):
        responses = [
            httpx.Response(502, json={"message": "bad gateway"}),
            httpx.Response(200, json={"login": "octocat"}),
        ]

        def handler(request):
            return responses.pop(0)

        client = _client_for(handler, max_retries=2, base_delay=0.0)
        assert run_async(client.get_authenticated_user()) == "octocat"

    def test_transport_failure_raises_api_error_without_status(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = _client_for(handler)
        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(client.get_repository("octocat", "blog"))
        assert exc_info.value.status_code is None
        assert exc_info.value.stage == "get_repository"

    def test_sends_token_and_api_version(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={"login": "octocat"})

        client = _client_for(handler)
        run_async(client.get_authenticated_user())
        assert seen["authorization"] == "Bearer ghp_test"
        assert seen["x-github-api-version"] == "2022-11-28"


class TestGitDataCalls:

    def test_branch_tip_of_empty_repository_is_none(self):
        fake = FakeGitHub()
        fake.add_repository("blog")
        client = GitHubClient(token="t", transport=fake.transport)
        assert run_async(client.get_branch_tip("octocat", "blog", "main")) is None

    def test_branch_tip_of_missing_branch_is_none(self):
        fake = FakeGitHub()
        fake.add_repository("blog")
        fake.write_commit("octocat/blog", "main", {"README.md": "x"}, "init")
        client = GitHubClient(token="t", transport=fake.transport)
        assert run_async(client.get_branch_tip("octocat", "blog", "gh-pages")) is None

    def test_branch_tip_other_errors_propagate(self):
        fake = FakeGitHub()
        fake.add_repository("blog")
        fake.fail("get_ref", 401, {"message": "Bad credentials"})
        client = GitHubClient(token="t", transport=fake.transport)
        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(client.get_branch_tip("octocat", "blog", "main"))
        assert exc_info.value.status_code == 401
        assert exc_info.value.stage == "resolve_tip"

    def test_create_tree_omits_base_tree_for_root(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"sha": "t1"})

        client = _client_for(handler)
        run_async(client.create_tree("o", "r", [{"path": "a", "mode": "100644", "type": "blob", "sha": "b"}]))
        assert "base_tree" not in bodies[0]

    def test_fast_forward_sends_force_false(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={})

        client = _client_for(handler)
        run_async(client.fast_forward_branch("o", "r", "main", "abc"))
        assert bodies == [{"sha": "abc", "force": False}]


class TestRepositoryProvisioner:

    def test_creates_public_empty_repository(self):
        fake = FakeGitHub()
        client = GitHubClient(token="t", transport=fake.transport)

        info = run_async(RepositoryProvisioner(client).ensure_repository(None, "my-blog", "A blog"))

        assert info.full_name == "octocat/my-blog"
        assert info.url == "https://github.com/octocat/my-blog"
        assert info.default_branch == "main"
        assert info.owner == "octocat"

    def test_existing_name_resolves_existing_repository(self):
        fake = FakeGitHub()
        fake.add_repository("my-blog", default_branch="trunk")
        client = GitHubClient(token="t", transport=fake.transport)

        info = run_async(RepositoryProvisioner(client).ensure_repository(None, "my-blog", "A blog"))

        assert info.full_name == "octocat/my-blog"
        assert info.default_branch == "trunk"
        assert ("GET", "/user") in fake.calls

    def test_known_owner_skips_user_lookup(self):
        fake = FakeGitHub()
        fake.add_repository("my-blog")
        client = GitHubClient(token="t", transport=fake.transport)

        run_async(RepositoryProvisioner(client).ensure_repository("octocat", "my-blog", "A blog"))

        assert ("GET", "/user") not in fake.calls

    def test_repeated_provisioning_is_idempotent(self):
        fake = FakeGitHub()
        client = GitHubClient(token="t", transport=fake.transport)
        provisioner = RepositoryProvisioner(client)

        first = run_async(provisioner.ensure_repository(None, "my-blog", "A blog"))
        second = run_async(provisioner.ensure_repository(None, "my-blog", "A blog"))

        assert first == second
        assert len(fake.repos) == 1

    def test_other_validation_errors_propagate_with_detail(self):
        fake = FakeGitHub()
        fake.fail(
            "create_repository",
            422,
            {
                "message": "Repository creation failed.",
                "errors": [{"resource": "Repository", "field": "name", "code": "custom",
                            "message": "name is too long (maximum is 100 characters)"}],
            },
        )
        client = GitHubClient(token="t", transport=fake.transport)

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(RepositoryProvisioner(client).ensure_repository(None, "x" * 101, "desc"))

        assert "name is too long" in exc_info.value.provider_message

    def test_is_name_taken_requires_422(self):
        error = GitHubAPIError(
            "conflict",
            status_code=409,
            provider_message="name already exists on this account",
        )
        assert is_name_taken(error) is False
