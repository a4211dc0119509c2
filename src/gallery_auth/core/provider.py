"""GitHub identity exchanger.

Talks to the external OAuth provider: builds the authorize URL, trades an
authorization code for a provider token and reads the profile plus the
verified primary email.  Every failure is terminal for the current login
attempt; nothing here retries because authorization codes are single-use.
"""

from __future__ import annotations

import logging
from typing import Any, Final
from urllib.parse import urlencode

import requests

from gallery_auth.core.errors import (
    OAuthExchangeFailed,
    OAuthUnavailable,
    ProfileFetchFailed,
)
from gallery_auth.core.models import ExternalIdentity
from gallery_auth.utils.environment import AuthSettings
from gallery_auth.utils.logging import mask_sensitive

_LOG = logging.getLogger("gallery-auth.core.provider")

USER_AGENT: Final[str] = "story-gallery"
OAUTH_SCOPE: Final[str] = "read:user user:email"
_TIMEOUT: Final[tuple[int, int]] = (5, 20)


class GithubIdentityProvider:
    """Identity exchanger for GitHub OAuth apps."""

    provider_name: Final[str] = "github"

    def __init__(self, settings: AuthSettings, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._http = session or requests.Session()

    # ------------------------------------------------------------------ #
    # Authorization request                                              #
    # ------------------------------------------------------------------ #
    def build_authorize_url(self, redirect_uri: str, nonce: str) -> str:
        """Return the provider authorize URL for one login attempt."""
        client_id = self._settings.github_client_id
        if not client_id:
            raise ValueError("GitHub OAuth environment not configured")
        query = urlencode(
            {
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "scope": OAUTH_SCOPE,
                "state": nonce,
                "allow_signup": "true",
            }
        )
        return f"{self._settings.github_authorize_url}?{query}"

    # ------------------------------------------------------------------ #
    # Code exchange                                                      #
    # ------------------------------------------------------------------ #
    def exchange_code(self, code: str, redirect_uri: str) -> str:
        """Trade *code* for a provider access token."""
        payload = {
            "client_id": self._settings.github_client_id,
            "client_secret": self._settings.github_client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        try:
            resp = self._http.post(
                self._settings.github_token_url,
                json=payload,
                headers={
                    "Accept": "application/json",
                    "User-Agent": USER_AGENT,
                },
                timeout=_TIMEOUT,
            )
        except requests.RequestException as exc:
            _LOG.warning("GitHub token endpoint unreachable: %s", exc)
            raise OAuthUnavailable() from exc

        if not resp.ok:
            raise OAuthExchangeFailed(
                f"GitHub token endpoint returned {resp.status_code}."
            )

        data = self._json(resp)
        if data is None:
            raise OAuthExchangeFailed("GitHub token response was not JSON.")
        if data.get("error"):
            raise OAuthExchangeFailed(
                str(data.get("error_description") or data["error"])
            )
        access_token = data.get("access_token")
        if not access_token:
            raise OAuthExchangeFailed("GitHub access token missing.")

        _LOG.debug(
            "Exchanged code=%s for provider token", mask_sensitive(code, 4)
        )
        return str(access_token)

    # ------------------------------------------------------------------ #
    # Profile                                                            #
    # ------------------------------------------------------------------ #
    def fetch_profile(self, provider_token: str) -> ExternalIdentity:
        try:
            resp = self._http.get(
                f"{self._settings.github_api_url}/user",
                headers=self._api_headers(provider_token),
                timeout=_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise ProfileFetchFailed() from exc

        if not resp.ok:
            raise ProfileFetchFailed(
                f"GitHub profile request returned {resp.status_code}."
            )
        data = self._json(resp)
        if data is None:
            raise ProfileFetchFailed("GitHub profile response was not JSON.")

        provider_id = str(data.get("id") or "").strip()
        login = data.get("login")
        if not provider_id:
            raise ProfileFetchFailed("GitHub profile id missing.")
        if not isinstance(login, str) or not login:
            raise ProfileFetchFailed("GitHub profile login missing.")

        return ExternalIdentity(
            provider_id=provider_id,
            login=login,
            display_name=data.get("name") or None,
            email=data.get("email") or None,
            avatar_url=data.get("avatar_url") or None,
        )

    def fetch_verified_primary_email(self, provider_token: str) -> str | None:
        """Return the primary, verified email or ``None``; never raises."""
        try:
            resp = self._http.get(
                f"{self._settings.github_api_url}/user/emails",
                headers=self._api_headers(provider_token),
                timeout=_TIMEOUT,
            )
        except requests.RequestException as exc:
            _LOG.info("GitHub email lookup failed: %s", exc)
            return None
        if not resp.ok:
            return None

        try:
            records = resp.json()
        except ValueError:
            return None
        if not isinstance(records, list):
            return None
        for record in records:
            if (
                isinstance(record, dict)
                and record.get("primary")
                and record.get("verified")
                and record.get("email")
            ):
                return str(record["email"])
        return None

    # ---------------- internal helpers --------------------------------- #
    @staticmethod
    def _api_headers(provider_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {provider_token}",
            "User-Agent": USER_AGENT,
            "Accept": "application/vnd.github+json",
        }

    @staticmethod
    def _json(resp: requests.Response) -> dict[str, Any] | None:
        try:
            data = resp.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
