"""Popup login bridge and the callback surface that feeds it.

The opener side (:class:`PopupBridge`) opens the API login URL in a detached
window and waits for exactly one structured message from the callback surface
running inside that window.  The protocol has two states::

    AWAITING_RESULT ──(message | popup closed | timeout)──▶ RESOLVED

Messages are trusted only when they come from the opener's own origin and
carry the ``gallery:oauth`` type.  Anything that arrives after resolution is
ignored.  When the popup is blocked the bridge falls back to a full-page
navigation and no message relay is needed.

Window handling is abstracted behind :class:`WindowHost` and
:class:`PopupWindow` so the protocol can run against any windowing layer
(and against fakes in tests).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Final, Mapping, Protocol

from gallery_auth.core.models import UserProfile
from gallery_auth.core.state import sanitize_redirect_path

from .session import LoginFailed, SessionManager

_LOG = logging.getLogger("gallery-auth.client.popup")

OAUTH_MESSAGE_TYPE: Final[str] = "gallery:oauth"
POPUP_WIDTH: Final[int] = 600
POPUP_HEIGHT: Final[int] = 720
POPUP_NAME: Final[str] = "gallery-oauth"


class OAuthStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class OAuthMessage:
    """Cross-window message posted by the callback surface to its opener."""

    status: OAuthStatus
    user: UserProfile | None = None
    reason: str | None = None
    redirect_to: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": OAUTH_MESSAGE_TYPE, "status": self.status.value}
        if self.user is not None:
            payload["user"] = self.user.to_payload()
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.redirect_to is not None:
            payload["redirectTo"] = self.redirect_to
        return payload

    @classmethod
    def parse(cls, data: Any) -> "OAuthMessage | None":
        """Return the message carried by *data*, or ``None`` if it is not one of ours."""
        if not isinstance(data, Mapping) or data.get("type") != OAUTH_MESSAGE_TYPE:
            return None
        try:
            status = OAuthStatus(data.get("status"))
        except ValueError:
            return None

        redirect_to = data.get("redirectTo")
        redirect_to = redirect_to if isinstance(redirect_to, str) else None
        if status is OAuthStatus.SUCCESS:
            user = data.get("user")
            if not isinstance(user, Mapping):
                return None
            try:
                profile = UserProfile.from_payload(user)
            except ValueError:
                return None
            return cls(status=status, user=profile, redirect_to=redirect_to)

        reason = data.get("reason")
        return cls(
            status=status,
            reason=str(reason) if reason else "Login did not complete.",
            redirect_to=redirect_to,
        )


# --------------------------------------------------------------------------- #
# Window abstraction                                                          #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class WindowGeometry:
    left: int
    top: int
    width: int
    height: int


class PopupWindow(Protocol):
    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...


class WindowHost(Protocol):
    """The opener's browsing context."""

    origin: str

    def geometry(self) -> WindowGeometry: ...

    def open_popup(self, url: str, name: str, features: str) -> PopupWindow | None:
        """Open a detached window; ``None`` when the popup was blocked."""
        ...

    def navigate(self, url: str) -> None: ...


def popup_features(opener: WindowGeometry) -> str:
    """Window features for a popup centered on *opener*."""
    left = opener.left + max(0, (opener.width - POPUP_WIDTH) // 2)
    top = opener.top + max(0, (opener.height - POPUP_HEIGHT) // 2)
    return f"width={POPUP_WIDTH},height={POPUP_HEIGHT},left={left},top={top}"


# --------------------------------------------------------------------------- #
# Opener side                                                                 #
# --------------------------------------------------------------------------- #
class BridgeState(str, Enum):
    AWAITING_RESULT = "awaiting_result"
    RESOLVED = "resolved"


class PopupOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    CLOSED = "closed"
    TIMED_OUT = "timed_out"
    REDIRECTED = "redirected"


@dataclass(frozen=True)
class PopupResult:
    outcome: PopupOutcome
    user: UserProfile | None = None
    reason: str | None = None
    redirect_to: str | None = None


class PopupBridge:
    """Opener half of the popup login protocol."""

    def __init__(
        self,
        session: SessionManager,
        host: WindowHost,
        *,
        poll_interval: float = 0.5,
        timeout: float = 300.0,
    ) -> None:
        self._session = session
        self._host = host
        self._poll_interval = poll_interval
        self._timeout = timeout
        self.state = BridgeState.RESOLVED
        self._popup: PopupWindow | None = None
        self._result: asyncio.Future[PopupResult] | None = None

    async def login(self, redirect_to: str | None = None) -> PopupResult:
        """Run one popup login and return how it ended."""
        if self.state is BridgeState.AWAITING_RESULT:
            raise RuntimeError("a popup login is already in progress")

        url = self._session.authorize_url(redirect_to)
        features = popup_features(self._host.geometry())
        popup = self._host.open_popup(url, POPUP_NAME, features)
        if popup is None:
            _LOG.info("Popup blocked; falling back to full-page redirect")
            self._host.navigate(url)
            return PopupResult(
                PopupOutcome.REDIRECTED,
                redirect_to=sanitize_redirect_path(redirect_to, "/"),
            )

        loop = asyncio.get_running_loop()
        self._popup = popup
        self._result = loop.create_future()
        self.state = BridgeState.AWAITING_RESULT

        deadline = loop.time() + self._timeout
        try:
            while not self._result.done():
                if popup.closed:
                    self._resolve(PopupResult(PopupOutcome.CLOSED, reason="Login did not complete."))
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self._resolve(PopupResult(PopupOutcome.TIMED_OUT, reason="Login did not complete."))
                    break
                await asyncio.wait({self._result}, timeout=min(self._poll_interval, remaining))
            return self._result.result()
        finally:
            self.state = BridgeState.RESOLVED
            self._popup = None

    def receive_message(self, origin: str, data: Any) -> bool:
        """Deliver a cross-window message; returns ``True`` when it resolved the login."""
        if self.state is not BridgeState.AWAITING_RESULT or self._result is None or self._result.done():
            return False
        if origin != self._host.origin:
            _LOG.debug("Ignoring message from foreign origin %s", origin)
            return False
        message = OAuthMessage.parse(data)
        if message is None:
            return False

        if message.status is OAuthStatus.ERROR:
            # Popup stays open so the user can read the reason or retry.
            _LOG.info("Popup login failed: %s", message.reason)
            self._resolve(
                PopupResult(
                    PopupOutcome.ERROR,
                    reason=message.reason,
                    redirect_to=message.redirect_to,
                )
            )
            return True

        user = message.user
        if user is None or not self._session.adopt_user(user):
            self._resolve(
                PopupResult(
                    PopupOutcome.ERROR,
                    reason="Signed-in session was not found.",
                    redirect_to=message.redirect_to,
                )
            )
            return True

        popup = self._popup
        if popup is not None and not popup.closed:
            popup.close()
        self._resolve(
            PopupResult(
                PopupOutcome.SUCCESS,
                user=user,
                redirect_to=message.redirect_to,
            )
        )
        return True

    def _resolve(self, result: PopupResult) -> None:
        if self._result is not None and not self._result.done():
            self._result.set_result(result)


# --------------------------------------------------------------------------- #
# Popup side                                                                  #
# --------------------------------------------------------------------------- #
PostMessage = Callable[[dict[str, Any], str], None]


class CallbackSurface:
    """Completes the login inside the popup (or the main window after a redirect).

    Parameters
    ----------
    session:
        Session manager sharing durable storage with the opener.
    origin:
        This window's origin; messages are only ever posted to it.
    post_to_opener:
        ``postMessage`` of the opener window, or ``None`` when there is none.
    """

    def __init__(
        self,
        session: SessionManager,
        *,
        origin: str,
        post_to_opener: PostMessage | None = None,
    ) -> None:
        self._session = session
        self._origin = origin
        self._post = post_to_opener

    async def complete(self, params: Mapping[str, str]) -> OAuthMessage:
        """Finish the provider callback described by *params* and notify the opener."""
        redirect_to = sanitize_redirect_path(params.get("redirectTo"), "/")
        message = await self._complete(params, redirect_to)
        self._notify(message)
        return message

    async def _complete(self, params: Mapping[str, str], redirect_to: str) -> OAuthMessage:
        provider_error = params.get("error")
        if provider_error:
            _LOG.info("Provider declined the authorization request: %s", provider_error)
            return OAuthMessage(OAuthStatus.ERROR, reason=provider_error, redirect_to=redirect_to)

        code = params.get("code")
        if not code:
            return OAuthMessage(OAuthStatus.ERROR, reason="Missing OAuth code.", redirect_to=redirect_to)

        try:
            _, server_redirect = await self._session.exchange_code(code, params.get("state"))
        except LoginFailed as exc:
            _LOG.info("Token exchange failed: %s", exc.reason)
            return OAuthMessage(OAuthStatus.ERROR, reason=str(exc), redirect_to=redirect_to)
        redirect_to = server_redirect or redirect_to

        user = await self._session.get_current_user_profile()
        if user is None:
            # The opener will report a failure; do not leave it a live session.
            self._session.clear()
            return OAuthMessage(
                OAuthStatus.ERROR,
                reason="Unable to load the current user profile.",
                redirect_to=redirect_to,
            )
        return OAuthMessage(OAuthStatus.SUCCESS, user=user, redirect_to=redirect_to)

    def _notify(self, message: OAuthMessage) -> None:
        if self._post is None:
            return
        try:
            self._post(message.to_payload(), self._origin)
        except Exception:  # broad: the opener may have gone away
            _LOG.debug("Could not notify opener", exc_info=True)
