"""Client-side credential cache and refresh coordinator.

:class:`SessionManager` is constructed once per client runtime and owns:

* the in-memory mirror of the cached session (synced from durable storage at
  construction and on :meth:`SessionManager.reload`),
* the single in-flight refresh task, shared by every concurrent caller,
* the single in-flight profile fetch.

Every authenticated request should obtain its credential through
:meth:`SessionManager.get_valid_access_token`.  ``None`` means "not
authenticated": callers prompt for login or omit the credential.

Failure handling
----------------
A failed refresh clears the whole cached session **before** ``None`` is
returned; a refresh result is applied all-or-nothing.  A ``401``/``403`` from
the profile endpoint triggers exactly one forced refresh and one retry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Final
from urllib.parse import urlencode

import httpx

from gallery_auth.core.clock import Clock, default_clock
from gallery_auth.core.models import CachedSession, CredentialPair, UserProfile
from gallery_auth.core.state import sanitize_redirect_path
from gallery_auth.core.tokens import peek_subject
from gallery_auth.utils.environment import ClientSettings
from gallery_auth.utils.logging import mask_sensitive

from .broadcast import SessionBroadcaster
from .storage import MemorySessionStorage, SessionStorage

_LOG = logging.getLogger("gallery-auth.client.session")

ACCESS_TOKEN_SKEW_SECONDS: Final[int] = 5
_UNAUTHORIZED: Final[tuple[int, ...]] = (401, 403)
_TIMEOUT: Final[float] = 20.0


class LoginFailed(RuntimeError):
    """The API refused to complete a login.

    Attributes
    ----------
    reason:
        Machine-readable error code returned by the API (or a local one).
    retry:
        Path that restarts the login flow, when the API offered one.
    """

    def __init__(self, reason: str, message: str | None = None, retry: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason = reason
        self.retry = retry


class SessionManager:
    """Owns the cached credential pair, the cached user and their lifecycle."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        storage: SessionStorage | None = None,
        http: httpx.AsyncClient | None = None,
        broadcaster: SessionBroadcaster | None = None,
        clock: Clock = default_clock,
        skew_seconds: int = ACCESS_TOKEN_SKEW_SECONDS,
    ) -> None:
        self.settings = settings or ClientSettings.from_env()
        self.storage = storage or MemorySessionStorage()
        self.broadcaster = broadcaster or SessionBroadcaster()
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=self.settings.api_url, timeout=_TIMEOUT)
        self._clock = clock
        self._skew = skew_seconds

        self._session: CachedSession | None = None
        self._refresh_task: asyncio.Task[str | None] | None = None
        self._profile_task: asyncio.Task[UserProfile | None] | None = None
        self.reload()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def reload(self) -> CachedSession | None:
        """Re-sync the in-memory mirror from durable storage."""
        session = self.storage.load()
        if session is not None and not self._is_consistent(session):
            _LOG.warning("Cached user does not match cached credential; clearing session")
            self.storage.clear()
            session = None
        self._session = session
        return session

    @staticmethod
    def _is_consistent(session: CachedSession) -> bool:
        if session.user is None:
            return True
        return peek_subject(session.credentials.access_token) == session.user.id

    # ------------------------------------------------------------------ #
    # Cache accessors & mutations                                        #
    # ------------------------------------------------------------------ #
    def cached_user(self) -> UserProfile | None:
        return self._session.user if self._session else None

    def cached_credentials(self) -> CredentialPair | None:
        return self._session.credentials if self._session else None

    def is_authenticated(self) -> bool:
        """Whether a usable refresh credential is cached (no network call)."""
        if self._session is None:
            return False
        return self._clock() < self._session.credentials.refresh_expires_at

    def persist(self, credentials: CredentialPair, user: UserProfile | None = None) -> None:
        """Replace the cached session wholesale and notify subscribers.

        Raises
        ------
        ValueError
            *user* does not own *credentials*.
        """
        session = CachedSession(credentials=credentials, user=user)
        if not self._is_consistent(session):
            raise ValueError("user does not match the credential subject")
        self.storage.save(session)
        self._session = session
        self.broadcaster.emit(user)

    def adopt_user(self, user: UserProfile) -> bool:
        """Attach *user* to the credentials another context just stored.

        Returns ``False`` when no matching credentials are available.
        """
        session = self.reload()
        if session is None:
            return False
        candidate = CachedSession(credentials=session.credentials, user=user)
        if not self._is_consistent(candidate):
            _LOG.warning("Refusing to adopt user not owning the cached credential")
            return False
        self.storage.save(candidate)
        self._session = candidate
        self.broadcaster.emit(user)
        return True

    def clear(self) -> None:
        """Drop the cached session (storage first, then the mirror) and notify."""
        self.storage.clear()
        self._session = None
        self.broadcaster.emit(None)

    # ------------------------------------------------------------------ #
    # Credentials                                                        #
    # ------------------------------------------------------------------ #
    def _url(self, path: str) -> str:
        return self.settings.build_api_url(path)

    def authorize_url(self, redirect_to: str | None = None) -> str:
        """API URL that starts the provider login and returns to *redirect_to*."""
        target = sanitize_redirect_path(redirect_to, "/")
        return self._url(f"/auth/github?{urlencode({'redirectTo': target})}")

    async def get_valid_access_token(self) -> str | None:
        """Return a non-expired access credential, refreshing when needed."""
        session = self._session
        if session is not None:
            expires_at = session.credentials.access_expires_at
            if self._clock() < expires_at - self._skew:
                return session.credentials.access_token
        return await self.refresh()

    async def refresh(self) -> str | None:
        """Renew the credential pair; concurrent callers share one request.

        Callers are shielded from each other: cancelling one waiter (for
        example through its own timeout) never cancels the shared refresh.
        """
        task = self._refresh_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._refresh_once())
            task.add_done_callback(self._forget_refresh)
            self._refresh_task = task
        return await asyncio.shield(task)

    def _forget_refresh(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _refresh_once(self) -> str | None:
        session = self._session
        if session is None:
            return None
        credentials = session.credentials
        if self._clock() >= credentials.refresh_expires_at:
            _LOG.info("Refresh credential expired; clearing session")
            self.clear()
            return None

        try:
            resp = await self._http.post(
                self._url("/auth/token"),
                json={"refreshToken": credentials.refresh_token},
            )
        except httpx.HTTPError as exc:
            _LOG.warning("Refresh request failed: %s", exc)
            self.clear()
            return None

        if not resp.is_success:
            _LOG.info("Refresh rejected with status=%s", resp.status_code)
            self.clear()
            return None

        try:
            payload = resp.json()
            if not isinstance(payload, dict):
                raise ValueError("refresh response is not an object")
            renewed = CredentialPair.from_payload(payload)
            user_payload = payload.get("user")
            user = UserProfile.from_payload(user_payload) if isinstance(user_payload, dict) else None
            self.persist(renewed, user)
        except ValueError as exc:
            _LOG.warning("Unusable refresh response: %s", exc)
            self.clear()
            return None

        _LOG.debug("Refreshed access credential %s", mask_sensitive(renewed.access_token, 6))
        return renewed.access_token

    # ------------------------------------------------------------------ #
    # Profile                                                            #
    # ------------------------------------------------------------------ #
    async def get_current_user_profile(self) -> UserProfile | None:
        """Fetch ``/users/me``; concurrent callers share one fetch."""
        task = self._profile_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._load_profile())
            task.add_done_callback(self._forget_profile)
            self._profile_task = task
        return await asyncio.shield(task)

    def _forget_profile(self, task: asyncio.Task) -> None:
        if self._profile_task is task:
            self._profile_task = None

    async def _load_profile(self) -> UserProfile | None:
        token = await self.get_valid_access_token()
        if token is None:
            return None

        unauthorized, user = await self._fetch_profile(token)
        if unauthorized:
            token = await self.refresh()
            if token is None:
                return None
            unauthorized, user = await self._fetch_profile(token)
            if unauthorized:
                _LOG.info("Profile still unauthorized after refresh; clearing session")
                self.clear()
                return None

        if user is not None and self._session is not None:
            try:
                self.persist(self._session.credentials, user)
            except ValueError:
                _LOG.warning("Profile does not match the cached credential; clearing session")
                self.clear()
                return None
        return user

    async def _fetch_profile(self, token: str) -> tuple[bool, UserProfile | None]:
        """Return ``(unauthorized, user)``; non-auth failures yield ``(False, None)``."""
        try:
            resp = await self._http.get(
                self._url("/users/me"),
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            _LOG.warning("Profile request failed: %s", exc)
            return False, None

        if resp.status_code in _UNAUTHORIZED:
            return True, None
        if not resp.is_success:
            _LOG.warning("Profile request returned status=%s", resp.status_code)
            return False, None
        try:
            payload = resp.json()
            return False, UserProfile.from_payload(payload["user"])
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            _LOG.warning("Unusable profile response: %s", exc)
            return False, None

    # ------------------------------------------------------------------ #
    # Login & logout                                                     #
    # ------------------------------------------------------------------ #
    async def exchange_code(self, code: str, state: str | None) -> tuple[CachedSession, str | None]:
        """Trade a provider callback for credentials and persist them.

        Returns the stored session and the server-sanitised ``redirectTo``.

        Raises
        ------
        LoginFailed
            The API rejected the exchange or could not be reached.
        """
        try:
            resp = await self._http.post(
                self._url("/auth/github/token"),
                json={"code": code, "state": state},
            )
        except httpx.HTTPError as exc:
            raise LoginFailed("network_error", f"Token exchange failed: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise LoginFailed("invalid_response", f"Token exchange failed ({resp.status_code}).")

        if not resp.is_success:
            raise LoginFailed(
                str(payload.get("error") or "login_failed"),
                str(payload.get("message") or f"Token exchange failed ({resp.status_code})."),
                payload.get("retry"),
            )

        try:
            credentials = CredentialPair.from_payload(payload)
            user_payload = payload.get("user")
            user = UserProfile.from_payload(user_payload) if isinstance(user_payload, dict) else None
            self.persist(credentials, user)
        except ValueError as exc:
            raise LoginFailed("invalid_response", str(exc)) from exc

        redirect_to = payload.get("redirectTo")
        session = CachedSession(credentials=credentials, user=user)
        return session, redirect_to if isinstance(redirect_to, str) else None

    async def logout(self) -> None:
        """Tell the API (best effort) and drop the local session."""
        session = self._session
        headers = (
            {"Authorization": f"Bearer {session.credentials.access_token}"} if session else {}
        )
        try:
            await self._http.post(self._url("/auth/logout"), headers=headers)
        except httpx.HTTPError as exc:
            _LOG.info("Logout request failed, clearing locally: %s", exc)
        finally:
            self.clear()
