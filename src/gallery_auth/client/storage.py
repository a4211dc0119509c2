"""Durable storage for the client's cached session.

A session is stored as one JSON document::

    {"credentials": {"accessToken": ..., "accessTokenExpiresAt": ...,
                     "refreshToken": ..., "refreshTokenExpiresAt": ...},
     "user": {"id": ..., "login": ..., ...} | null}

Credentials and user are always written together so a reader never observes
a pair from one login next to the user of another.

Environment variables
---------------------
GALLERY_SESSION_FILE
    Location of the session file used by :class:`FileSessionStorage`.
    Defaults to ``~/.gallery-auth/session.json`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Mapping, Protocol, runtime_checkable

from gallery_auth.core.models import CachedSession, CredentialPair, UserProfile

_LOG = logging.getLogger("gallery-auth.client.storage")


def session_to_payload(session: CachedSession) -> dict[str, Any]:
    return {
        "credentials": session.credentials.to_payload(),
        "user": session.user.to_payload() if session.user else None,
    }


def session_from_payload(payload: Mapping[str, Any]) -> CachedSession:
    """Rebuild a session; raises ``ValueError`` when the document is unusable."""
    credentials = payload.get("credentials")
    if not isinstance(credentials, Mapping):
        raise ValueError("session document has no credentials")
    user = payload.get("user")
    if user is not None and not isinstance(user, Mapping):
        raise ValueError("session user is not an object")
    return CachedSession(
        credentials=CredentialPair.from_payload(credentials),
        user=UserProfile.from_payload(user) if user is not None else None,
    )


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #
@runtime_checkable
class SessionStorage(Protocol):
    """Minimal persistence contract for one cached session."""

    def load(self) -> CachedSession | None: ...

    def save(self, session: CachedSession) -> None: ...

    def clear(self) -> None: ...


class MemorySessionStorage(SessionStorage):
    """Process-local storage; shared by every manager holding the same instance."""

    def __init__(self, session: CachedSession | None = None) -> None:
        self._session = session

    def load(self) -> CachedSession | None:
        return self._session

    def save(self, session: CachedSession) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileSessionStorage(SessionStorage):
    """JSON-file implementation of :class:`SessionStorage`."""

    def __init__(self, path: str | os.PathLike | None = None) -> None:
        self.path = Path(
            path
            or os.getenv("GALLERY_SESSION_FILE")
            or Path.home() / ".gallery-auth" / "session.json"
        ).expanduser()

    def load(self) -> CachedSession | None:
        if not self.path.exists():
            return None
        try:
            with self.path.open(encoding="utf-8") as fh:
                payload = json.load(fh)
            if not isinstance(payload, dict):
                raise ValueError("session document is not an object")
            return session_from_payload(payload)
        except (OSError, ValueError) as exc:
            _LOG.warning("Discarding unreadable session file %s: %s", self.path, exc)
            return None

    def save(self, session: CachedSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(f"{self.path.suffix}.{uuid.uuid4().hex[:8]}.tmp")
        fd = os.open(tmp, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(session_to_payload(session), fh, separators=(",", ":"))
        os.replace(tmp, self.path)  # atomic on POSIX

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
