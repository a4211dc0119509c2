"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from gallery_auth.core.clock import ManualClock
from gallery_auth.core.errors import OAuthExchangeFailed
from gallery_auth.core.models import ExternalIdentity
from gallery_auth.core.tokens import TokenIssuer
from gallery_auth.utils.environment import AuthSettings

TEST_SECRET = "test-signing-secret-0123456789abcdef0123456789"
T0 = 1_700_000_000


def pytest_configure(config):
    """Add integration marker."""
    config.addinivalue_line(
        "markers", "integration: mark test as requiring integration with real services"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested.

    Tests marked with 'ci_safe' are always run because they stub all external
    calls and are safe for CI.
    """
    if not config.getoption("--integration", default=False):
        skip_integration = pytest.mark.skip(reason="Need --integration option to run")
        for item in items:
            if "integration" in item.keywords and "ci_safe" not in item.keywords:
                item.add_marker(skip_integration)


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


# --------------------------------------------------------------------------- #
# Fakes                                                                       #
# --------------------------------------------------------------------------- #
class FakeGithubProvider:
    """In-memory stand-in for :class:`GithubIdentityProvider`."""

    provider_name = "github"

    def __init__(
        self,
        identity: ExternalIdentity | None = None,
        *,
        primary_email: str | None = None,
        valid_codes: tuple[str, ...] = ("abc",),
    ) -> None:
        self.identity = identity or ExternalIdentity(provider_id="42", login="octo")
        self.primary_email = primary_email
        self.valid_codes = valid_codes
        self.calls: list[tuple[str, Any]] = []

    def build_authorize_url(self, redirect_uri: str, nonce: str) -> str:
        return f"https://github.test/login/oauth/authorize?state={nonce}&redirect_uri={redirect_uri}"

    def exchange_code(self, code: str, redirect_uri: str) -> str:
        self.calls.append(("exchange_code", code))
        if code not in self.valid_codes:
            raise OAuthExchangeFailed("bad_verification_code")
        return f"gho_{code}"

    def fetch_profile(self, provider_token: str) -> ExternalIdentity:
        self.calls.append(("fetch_profile", provider_token))
        return self.identity

    def fetch_verified_primary_email(self, provider_token: str) -> str | None:
        self.calls.append(("fetch_verified_primary_email", provider_token))
        return self.primary_email


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def auth_settings(tmp_path: Path) -> AuthSettings:
    return AuthSettings(
        jwt_secret=TEST_SECRET,
        github_client_id="client-id",
        github_client_secret="client-secret",
        oauth_redirect_uri="http://localhost:3000/auth/github/callback",
        github_api_url="https://api.github.test",
        github_token_url="https://github.test/login/oauth/access_token",
        identity_dir=tmp_path / "identities",
    )


@pytest.fixture
def issuer(auth_settings: AuthSettings, clock: ManualClock) -> TokenIssuer:
    return TokenIssuer(
        auth_settings.jwt_secret,
        access_ttl=auth_settings.access_ttl_seconds,
        refresh_ttl=auth_settings.refresh_ttl_seconds,
        clock=clock,
    )


@pytest.fixture
def fake_provider() -> FakeGithubProvider:
    return FakeGithubProvider()


@pytest.fixture
def provider_factory():
    """Build fake providers returning a specific identity."""
    return FakeGithubProvider
