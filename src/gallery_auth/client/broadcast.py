"""Same-process session change notifications.

Every view that needs to know "am I logged in" subscribes here instead of
polling the session manager.  Listeners receive the new user projection, or
``None`` after logout or a failed refresh.
"""

from __future__ import annotations

import logging
from typing import Callable

from gallery_auth.core.models import UserProfile

_LOG = logging.getLogger("gallery-auth.client.broadcast")

SessionListener = Callable[[UserProfile | None], None]


class SessionBroadcaster:
    """Fan-out of session changes to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener*; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, user: UserProfile | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception:  # broad: one view must not break the others
                _LOG.exception("Session listener %r failed", listener)

    def __len__(self) -> int:
        return len(self._listeners)
