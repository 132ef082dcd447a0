"""Tests for bearer token validation."""

import pytest
from conftest import API, TOKEN, FakeGitHub

from tildeplayer_storage.exceptions import ErrorKind
from tildeplayer_storage.remote import CredentialValidator, GitHubApiClient
from tildeplayer_storage.remote.credentials import parse_scopes


def make_validator(fake_github: FakeGitHub, scope: str = "gist") -> CredentialValidator:
    return CredentialValidator(GitHubApiClient(API, session=fake_github), required_scope=scope)


class TestParseScopes:
    """Tests for the scope header parser."""

    def test_comma_separated(self) -> None:
        assert parse_scopes("gist, repo,user") == ["gist", "repo", "user"]

    def test_empty(self) -> None:
        assert parse_scopes(None) == []
        assert parse_scopes("") == []


class TestCredentialValidator:
    """Tests for CredentialValidator.validate."""

    @pytest.mark.asyncio
    async def test_valid_token(self, fake_github: FakeGitHub) -> None:
        verdict = await make_validator(fake_github).validate(TOKEN)

        assert verdict.usable
        assert verdict.login == "octocat"
        assert "gist" in verdict.scopes

    @pytest.mark.asyncio
    async def test_empty_token_makes_no_call(self, fake_github: FakeGitHub) -> None:
        verdict = await make_validator(fake_github).validate("  ")

        assert not verdict.valid
        assert fake_github.remote_calls == 0

    @pytest.mark.asyncio
    async def test_rejected_token(self, fake_github: FakeGitHub) -> None:
        verdict = await make_validator(fake_github).validate("nope")

        assert not verdict.valid
        assert not verdict.usable
        assert verdict.error_kind is ErrorKind.UNAUTHORIZED
        assert fake_github.count("GET", "gists") == 0

    @pytest.mark.asyncio
    async def test_missing_scope(self, fake_github: FakeGitHub) -> None:
        """Test that an authenticated token without the scope is valid but unusable."""
        fake_github.tokens["readonly"] = ("reader", "repo")
        verdict = await make_validator(fake_github).validate("readonly")

        assert verdict.valid
        assert not verdict.has_required_scope
        assert not verdict.usable
        assert "gist" in verdict.reason

    @pytest.mark.asyncio
    async def test_identity_call_failure(self, fake_github: FakeGitHub) -> None:
        """Test that a failed identity call is reported without raising."""
        fake_github.fail_next(502)
        verdict = await make_validator(fake_github).validate(TOKEN)
        assert not verdict.valid
        assert verdict.error_kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_rate_limited_scope_call(self, fake_github: FakeGitHub) -> None:
        validator = make_validator(fake_github)
        original = fake_github.request
        calls = {"n": 0}

        def request(method, url, headers=None, json=None):
            calls["n"] += 1
            if calls["n"] == 2:
                fake_github.fail_next(403, {"X-RateLimit-Remaining": "0"})
            return original(method, url, headers=headers, json=json)

        fake_github.request = request
        verdict = await validator.validate(TOKEN)

        assert verdict.valid
        assert not verdict.usable
        assert verdict.error_kind is ErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_custom_scope(self, fake_github: FakeGitHub) -> None:
        verdict = await make_validator(fake_github, scope="repo").validate(TOKEN)
        assert verdict.usable
