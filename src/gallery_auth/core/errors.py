"""Exception types raised by the auth core.

Only lightweight, **data-carrying** exceptions live here so that the HTTP layer
and the client runtime can turn them into responses or user-facing messages.
None of them ever carries a token, code or state value.
"""

from __future__ import annotations


class AuthError(RuntimeError):
    """Base class for every expected authentication failure."""

    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.code, "message": str(self)}


# --------------------------------------------------------------------------- #
# Login handshake                                                             #
# --------------------------------------------------------------------------- #
class HandshakeMissingOrForged(AuthError):
    """State cookie absent, undecodable or not matching the callback state."""

    code = "handshake_invalid"
    default_message = "Invalid or expired OAuth state."


class OAuthDenied(AuthError):
    """The user declined the authorization request at the provider."""

    code = "oauth_denied"
    default_message = "The provider declined the authorization request."


class OAuthExchangeFailed(AuthError):
    """The provider rejected the authorization code."""

    code = "oauth_exchange_failed"
    default_message = "The provider rejected the authorization code."


class OAuthUnavailable(AuthError):
    """The provider could not be reached."""

    code = "oauth_unavailable"
    status_code = 502
    default_message = "The identity provider is unavailable."


class ProfileFetchFailed(AuthError):
    """The provider profile could not be loaded with the exchanged token."""

    code = "profile_fetch_failed"
    status_code = 502
    default_message = "Unable to fetch the provider profile."


# --------------------------------------------------------------------------- #
# Credentials                                                                 #
# --------------------------------------------------------------------------- #
class CredentialError(AuthError):
    """A self-issued credential failed verification."""

    code = "credential_error"
    status_code = 401
    default_message = "Invalid credential."


class CredentialInvalid(CredentialError):
    """Signature mismatch or malformed token."""

    code = "credential_invalid"
    default_message = "Credential signature is invalid."


class CredentialExpired(CredentialError):
    code = "credential_expired"
    default_message = "Credential has expired."


class CredentialKindMismatch(CredentialError):
    """An access token was presented where a refresh token was expected, or vice versa."""

    code = "credential_kind_mismatch"
    default_message = "Credential kind does not match."


class RefreshRejected(AuthError):
    """The refresh credential is invalid, expired or no longer maps to a user."""

    code = "refresh_rejected"
    status_code = 401
    default_message = "Invalid or expired refresh token."
