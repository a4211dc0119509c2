"""IssuanceService – server-side login completion and credential renewal.

This service encapsulates the *business logic* behind the browser OAuth flow.
Handlers in :mod:`gallery_auth.servers.auth` call the thin façade methods
below and only translate results into HTTP responses.

Each login attempt walks a fixed state machine and stops at the first
failure::

    AWAITING_CODE → STATE_VALIDATED → CODE_EXCHANGED → PROFILE_FETCHED
                  → IDENTITY_UPSERTED → CREDENTIALS_MINTED

The handshake cookie is validated before the provider is contacted, so
forged callbacks never spend provider quota.  No server-side session state is
kept: issued credentials are self-contained.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from gallery_auth.core.clock import Clock, default_clock
from gallery_auth.core.errors import AuthError, CredentialError, HandshakeMissingOrForged, RefreshRejected
from gallery_auth.core.log_utils import get_auth_logger
from gallery_auth.core.models import CredentialPair, HandshakeState, LocalIdentity
from gallery_auth.core.provider import GithubIdentityProvider
from gallery_auth.core.state import decode_state, encode_state, new_nonce, sanitize_redirect_path
from gallery_auth.core.store import DiskIdentityStore, IdentityStore, default_store
from gallery_auth.core.tokens import TokenIssuer
from gallery_auth.utils.environment import AuthSettings

_LOG = logging.getLogger("gallery-auth.core.service")


class LoginStage(str, Enum):
    AWAITING_CODE = "awaiting_code"
    STATE_VALIDATED = "state_validated"
    CODE_EXCHANGED = "code_exchanged"
    PROFILE_FETCHED = "profile_fetched"
    IDENTITY_UPSERTED = "identity_upserted"
    CREDENTIALS_MINTED = "credentials_minted"
    FAILED = "failed"


_TERMINAL_STAGES = (LoginStage.CREDENTIALS_MINTED, LoginStage.FAILED)


@dataclass
class LoginAttempt:
    """Progress of one callback through the login state machine."""

    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    stage: LoginStage = LoginStage.AWAITING_CODE
    failure_reason: str | None = None

    @property
    def finished(self) -> bool:
        return self.stage in _TERMINAL_STAGES

    def advance(self, stage: LoginStage) -> None:
        if self.finished:
            raise RuntimeError(f"login attempt already {self.stage.value}")
        self.stage = stage

    def fail(self, reason: str) -> None:
        if self.finished:
            return
        self.stage = LoginStage.FAILED
        self.failure_reason = reason


@dataclass(frozen=True)
class LoginStart:
    """Everything the HTTP layer needs to send the user to the provider."""

    authorize_url: str
    state_cookie: str
    return_path: str


@dataclass(frozen=True)
class LoginResult:
    """Credential pair issued for *user*, plus where the user should land."""

    credentials: CredentialPair
    user: LocalIdentity
    redirect_to: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            **self.credentials.to_payload(),
            "user": self.user.projection().to_payload(),
        }
        if self.redirect_to is not None:
            payload["redirectTo"] = self.redirect_to
        return payload


# --------------------------------------------------------------------------- #
# Public service                                                              #
# --------------------------------------------------------------------------- #
class IssuanceService:
    """Application service orchestrating login completion and token renewal."""

    def __init__(
        self,
        settings: AuthSettings,
        *,
        store: IdentityStore | None = None,
        provider: GithubIdentityProvider | None = None,
        issuer: TokenIssuer | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.settings = settings
        self.store = store or (
            default_store()
            if settings.identity_dir is None
            else DiskIdentityStore(base_dir=settings.identity_dir)
        )
        self.provider = provider or GithubIdentityProvider(settings)
        self.issuer = issuer or TokenIssuer(
            settings.jwt_secret,
            access_ttl=settings.access_ttl_seconds,
            refresh_ttl=settings.refresh_ttl_seconds,
            clock=clock,
        )
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Login start                                                        #
    # ------------------------------------------------------------------ #
    def start_login(self, redirect_to: str | None) -> LoginStart:
        """Return the provider URL and the handshake cookie value."""
        redirect_uri = self.settings.oauth_redirect_uri
        if not redirect_uri:
            raise ValueError("OAuth redirect URI not configured")
        return_path = sanitize_redirect_path(redirect_to, self.settings.default_redirect)
        nonce = new_nonce()
        authorize_url = self.provider.build_authorize_url(redirect_uri, nonce)
        state_cookie = encode_state(HandshakeState(nonce=nonce, return_path=return_path))
        _LOG.debug("Prepared login start nonce=%s**** return_path=%s", nonce[:6], return_path)
        return LoginStart(
            authorize_url=authorize_url,
            state_cookie=state_cookie,
            return_path=return_path,
        )

    def retry_path(self, return_path: str | None = None) -> str:
        """Path that restarts the login flow, offered alongside failures."""
        target = sanitize_redirect_path(return_path, self.settings.default_redirect)
        return f"/auth/{self.provider.provider_name}?{urlencode({'redirectTo': target})}"

    # ------------------------------------------------------------------ #
    # Login completion                                                   #
    # ------------------------------------------------------------------ #
    def complete_login(
        self,
        *,
        code: str | None,
        state: str | None,
        state_cookie: str | None,
        correlation_id: str | None = None,
        attempt: LoginAttempt | None = None,
    ) -> LoginResult:
        """Validate the handshake, exchange the code and mint credentials."""
        attempt = attempt or LoginAttempt()
        log = get_auth_logger(
            base_logger_name="gallery-auth.core.service",
            attempt_id=attempt.attempt_id,
            provider=self.provider.provider_name,
            correlation_id=correlation_id,
        )
        try:
            handshake = self._validate_handshake(code, state, state_cookie)
            attempt.advance(LoginStage.STATE_VALIDATED)

            provider_token = self.provider.exchange_code(
                code or "", self.settings.oauth_redirect_uri
            )
            attempt.advance(LoginStage.CODE_EXCHANGED)

            external = self.provider.fetch_profile(provider_token)
            if not external.email:
                external = replace(
                    external,
                    email=self.provider.fetch_verified_primary_email(provider_token),
                )
            attempt.advance(LoginStage.PROFILE_FETCHED)

            user = self.store.upsert(external, now=int(self._clock()))
            attempt.advance(LoginStage.IDENTITY_UPSERTED)

            credentials = self.issuer.issue_pair(user.id)
            attempt.advance(LoginStage.CREDENTIALS_MINTED)
        except AuthError as exc:
            attempt.fail(exc.code)
            log.warning("Login attempt failed: %s (%s)", exc.code, exc)
            raise
        except Exception as exc:
            attempt.fail("internal_error")
            log.error("Login attempt crashed at stage=%s", attempt.stage.value, exc_info=True)
            raise

        log.bind(user_id=user.id).info("Login completed for login=%s", user.login)
        return LoginResult(
            credentials=credentials,
            user=user,
            redirect_to=sanitize_redirect_path(
                handshake.return_path, self.settings.default_redirect
            ),
        )

    @staticmethod
    def _validate_handshake(
        code: str | None, state: str | None, state_cookie: str | None
    ) -> HandshakeState:
        if not isinstance(code, str) or not isinstance(state, str) or not code or not state:
            raise HandshakeMissingOrForged("Missing OAuth parameters.")
        stored = decode_state(state_cookie)
        if stored is None:
            raise HandshakeMissingOrForged()
        if not hmac.compare_digest(stored.nonce.encode(), state.encode()):
            raise HandshakeMissingOrForged()
        return stored

    # ------------------------------------------------------------------ #
    # Renewal & session probe                                            #
    # ------------------------------------------------------------------ #
    def refresh(self, refresh_token: str | None) -> LoginResult:
        """Exchange a refresh credential for a brand-new pair."""
        if not refresh_token:
            raise RefreshRejected("Refresh token required.")
        try:
            claims = self.issuer.verify(refresh_token, "refresh")
        except CredentialError as exc:
            _LOG.info("Refresh rejected: %s", exc.code)
            raise RefreshRejected() from exc

        user = self.store.get(claims.subject)
        if user is None:
            raise RefreshRejected("User not found.")

        credentials = self.issuer.issue_pair(user.id)
        _LOG.info("Refreshed credentials for user_id=%s****", user.id[:6])
        return LoginResult(credentials=credentials, user=user)

    def current_user(self, access_token: str) -> LocalIdentity:
        """Resolve the owner of *access_token*; raises ``CredentialError``."""
        claims = self.issuer.verify(access_token, "access")
        user = self.store.get(claims.subject)
        if user is None:
            raise CredentialError("Credential subject no longer exists.")
        return user
