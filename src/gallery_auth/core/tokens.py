"""Self-issued credential minting and verification.

Credentials are HS256 JWTs signed with a single shared secret.  Every token
carries ``sub`` (local user id), ``kind`` (``access`` or ``refresh``), ``iat``
and ``exp``.  Access and refresh tokens are structurally identical, so the
declared ``kind`` is checked on every verification.

Rotating the secret invalidates every outstanding credential; clients then
fall back to a fresh login.
"""

from __future__ import annotations

import logging

import jwt

from gallery_auth.core.clock import Clock, default_clock
from gallery_auth.core.errors import (
    CredentialExpired,
    CredentialInvalid,
    CredentialKindMismatch,
)
from gallery_auth.core.models import CredentialPair, TokenClaims, TokenKind
from gallery_auth.utils.environment import (
    ACCESS_TOKEN_TTL_SECONDS,
    REFRESH_TOKEN_TTL_SECONDS,
)

logger = logging.getLogger("gallery-auth.core.tokens")

JWT_ALGORITHM = "HS256"
_TOKEN_KINDS: tuple[str, ...] = ("access", "refresh")


class TokenIssuer:
    """Mint and verify access/refresh credentials for local users."""

    def __init__(
        self,
        secret: str,
        *,
        access_ttl: int = ACCESS_TOKEN_TTL_SECONDS,
        refresh_ttl: int = REFRESH_TOKEN_TTL_SECONDS,
        clock: Clock = default_clock,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    def mint(
        self, user_id: str, kind: TokenKind, ttl: int, *, now: int | None = None
    ) -> str:
        """Return a signed token for *user_id* valid for *ttl* seconds from *now*."""
        if kind not in _TOKEN_KINDS:
            raise ValueError(f"unsupported token kind: {kind!r}")
        issued_at = int(self._clock()) if now is None else int(now)
        payload = {
            "sub": user_id,
            "kind": kind,
            "iat": issued_at,
            "exp": issued_at + int(ttl),
        }
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def verify(self, token: str, expected_kind: TokenKind) -> TokenClaims:
        """Validate *token* and return its claims.

        Raises
        ------
        CredentialInvalid
            Bad signature or malformed token.
        CredentialKindMismatch
            Declared kind differs from *expected_kind* (checked before expiry).
        CredentialExpired
            ``now >= exp``.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "iat", "exp"],
                },
            )
        except jwt.InvalidTokenError:
            raise CredentialInvalid() from None

        subject = payload.get("sub")
        kind = payload.get("kind")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        if (
            not isinstance(subject, str)
            or not subject
            or not isinstance(issued_at, int)
            or not isinstance(expires_at, int)
        ):
            raise CredentialInvalid("Credential claims are malformed.")

        if kind != expected_kind:
            logger.debug("Rejected %s token presented as %s", kind, expected_kind)
            raise CredentialKindMismatch()

        if self._clock() >= expires_at:
            raise CredentialExpired()

        return TokenClaims(
            subject=subject,
            kind=expected_kind,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def issue_pair(self, user_id: str) -> CredentialPair:
        """Mint a fresh access/refresh pair sharing one issue instant."""
        now = int(self._clock())
        return CredentialPair(
            access_token=self.mint(user_id, "access", self.access_ttl, now=now),
            access_expires_at=now + self.access_ttl,
            refresh_token=self.mint(user_id, "refresh", self.refresh_ttl, now=now),
            refresh_expires_at=now + self.refresh_ttl,
        )


def peek_subject(token: str) -> str | None:
    """Read ``sub`` from *token* **without** verifying it.

    Clients hold no secret; they only use this to check that a cached user
    belongs to the cached access token.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) else None
