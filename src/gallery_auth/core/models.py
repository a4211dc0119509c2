"""Typed, immutable records shared by the server and the client runtime."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Literal, Mapping

TokenKind = Literal["access", "refresh"]


@dataclass(frozen=True, slots=True)
class HandshakeState:
    """Anti-forgery value carried in the short-lived handshake cookie."""

    nonce: str
    return_path: str


@dataclass(frozen=True, slots=True)
class ExternalIdentity:
    """Read-only snapshot of the provider profile for one login."""

    provider_id: str
    login: str
    display_name: str | None = None
    email: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True, slots=True)
class UserProfile:
    """Projection of a local identity exposed to clients."""

    id: str
    login: str
    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    is_privileged: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "login": self.login,
            "name": self.name,
            "email": self.email,
            "avatarUrl": self.avatar_url,
            "isCreator": self.is_privileged,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "UserProfile":
        """Build a profile from its JSON form; raises ``ValueError`` when unusable."""
        user_id = payload.get("id")
        login = payload.get("login")
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("user payload missing id")
        if not isinstance(login, str):
            raise ValueError("user payload missing login")
        return cls(
            id=user_id,
            login=login,
            name=payload.get("name"),
            email=payload.get("email"),
            avatar_url=payload.get("avatarUrl"),
            is_privileged=bool(payload.get("isCreator", False)),
        )


@dataclass(frozen=True, slots=True)
class LocalIdentity:
    """The application's own user record, keyed by the provider id."""

    id: str
    provider_id: str
    login: str
    created_at: int
    updated_at: int
    last_login_at: int
    display_name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    is_privileged: bool = False

    def with_login(self, external: ExternalIdentity, *, now: int) -> "LocalIdentity":
        """Return a copy refreshed from *external*; identity fields stay untouched."""
        return replace(
            self,
            login=external.login,
            display_name=external.display_name or external.login,
            email=external.email,
            avatar_url=external.avatar_url,
            updated_at=now,
            last_login_at=now,
        )

    def projection(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            login=self.login,
            name=self.display_name,
            email=self.email,
            avatar_url=self.avatar_url,
            is_privileged=self.is_privileged,
        )


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Verified contents of a self-issued credential."""

    subject: str
    kind: TokenKind
    issued_at: int
    expires_at: int


@dataclass(frozen=True, slots=True)
class CredentialPair:
    """Access + refresh credentials issued together; instants are UNIX seconds."""

    access_token: str
    access_expires_at: int
    refresh_token: str
    refresh_expires_at: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "accessTokenExpiresAt": self.access_expires_at,
            "refreshToken": self.refresh_token,
            "refreshTokenExpiresAt": self.refresh_expires_at,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CredentialPair":
        """Build a pair from its JSON form; raises ``ValueError`` when unusable."""
        access_token = payload.get("accessToken")
        refresh_token = payload.get("refreshToken")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("payload missing accessToken")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise ValueError("payload missing refreshToken")
        try:
            access_expires_at = int(payload["accessTokenExpiresAt"])
            refresh_expires_at = int(payload["refreshTokenExpiresAt"])
        except (KeyError, TypeError, ValueError):
            raise ValueError("payload has invalid expiry instants") from None
        return cls(
            access_token=access_token,
            access_expires_at=access_expires_at,
            refresh_token=refresh_token,
            refresh_expires_at=refresh_expires_at,
        )


@dataclass(frozen=True, slots=True)
class CachedSession:
    """Client-side record: the credential pair and the user it belongs to."""

    credentials: CredentialPair
    user: UserProfile | None = None
