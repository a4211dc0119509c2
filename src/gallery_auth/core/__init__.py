"""Authentication core package.

This namespace hosts the **HTTP-agnostic** building blocks behind the gallery
login flow: handshake state, provider exchange, identity persistence and
self-issued credentials.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
state
    Handshake ``state`` encoding / decoding and redirect sanitising.
models
    Immutable dataclasses for identities, credentials and cached sessions.
errors
    Exception types used by the auth logic.
tokens
    Credential minting and verification.
provider
    GitHub identity exchanger.
store
    Disk-backed identity store.
service
    Login and renewal orchestration.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, ManualClock, default_clock  # noqa: F401
from .errors import (  # noqa: F401
    AuthError,
    CredentialError,
    CredentialExpired,
    CredentialInvalid,
    CredentialKindMismatch,
    HandshakeMissingOrForged,
    OAuthDenied,
    OAuthExchangeFailed,
    OAuthUnavailable,
    ProfileFetchFailed,
    RefreshRejected,
)
from .log_utils import get_auth_logger  # noqa: F401
from .models import (  # noqa: F401
    CachedSession,
    CredentialPair,
    ExternalIdentity,
    HandshakeState,
    LocalIdentity,
    TokenClaims,
    UserProfile,
)
from .provider import GithubIdentityProvider  # noqa: F401
from .service import IssuanceService, LoginAttempt, LoginResult, LoginStage, LoginStart  # noqa: F401
from .state import decode_state, encode_state, sanitize_redirect_path  # noqa: F401
from .store import DiskIdentityStore, IdentityStore  # noqa: F401
from .tokens import TokenIssuer  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "ManualClock",
    "default_clock",
    # errors
    "AuthError",
    "CredentialError",
    "CredentialExpired",
    "CredentialInvalid",
    "CredentialKindMismatch",
    "HandshakeMissingOrForged",
    "OAuthDenied",
    "OAuthExchangeFailed",
    "OAuthUnavailable",
    "ProfileFetchFailed",
    "RefreshRejected",
    # models
    "CachedSession",
    "CredentialPair",
    "ExternalIdentity",
    "HandshakeState",
    "LocalIdentity",
    "TokenClaims",
    "UserProfile",
    # state
    "decode_state",
    "encode_state",
    "sanitize_redirect_path",
    # building blocks
    "DiskIdentityStore",
    "GithubIdentityProvider",
    "IdentityStore",
    "TokenIssuer",
    # orchestration
    "IssuanceService",
    "LoginAttempt",
    "LoginResult",
    "LoginStage",
    "LoginStart",
    # logging helpers
    "get_auth_logger",
]
