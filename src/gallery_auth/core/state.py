"""Handshake state codec for the OAuth web-flow.

The handshake state binds a provider callback to the login attempt that
started it.  It carries two values:

1. ``nonce`` – random value sent to the provider as the OAuth ``state``
2. ``redirectTo`` – same-site path the user returns to after login

Format (plain text before base64-url encoding)::

    {"nonce": "<nonce>", "redirectTo": "<path>"}

The encoded value lives in an ``HttpOnly``, origin-scoped, short-lived cookie,
so the codec is a reversible packing only: integrity and confidentiality come
from the cookie transport, not from this module.

Logging
-------
Only the truncated nonce is ever logged; full state strings are *never*
written to logs.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid
from typing import Final

from gallery_auth.core.models import HandshakeState

_LOG = logging.getLogger("gallery-auth.core.state")

DEFAULT_RETURN_PATH: Final[str] = "/generate"


def _b64e(data: str) -> str:
    """Base64-URL encode *without* padding."""
    return base64.urlsafe_b64encode(data.encode("utf-8")).rstrip(b"=").decode("ascii")


def _b64d(data: str) -> str:
    """Decode base64-URL data that may lack padding."""
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len).decode("utf-8")


def new_nonce() -> str:
    """Return a fresh, unguessable nonce for one login attempt."""
    return uuid.uuid4().hex


def sanitize_redirect_path(
    candidate: str | None, fallback: str = DEFAULT_RETURN_PATH
) -> str:
    """Return *candidate* when it is a same-site absolute path, else *fallback*.

    Protocol-relative values (``//evil.example``) and full URLs are rejected so
    the post-login redirect can never leave the site.
    """
    if not candidate or not candidate.startswith("/"):
        return fallback
    if candidate.startswith("//") or candidate.startswith("/\\"):
        return fallback
    return candidate


def encode_state(state: HandshakeState) -> str:
    """Pack *state* into an opaque, cookie-safe string."""
    raw = json.dumps(
        {"nonce": state.nonce, "redirectTo": state.return_path},
        separators=(",", ":"),
    )
    encoded = _b64e(raw)
    _LOG.debug("Encoded handshake state nonce=%s****", state.nonce[:6])
    return encoded


def decode_state(value: str | None) -> HandshakeState | None:
    """Unpack a handshake cookie value.

    Returns ``None`` for anything that is not a value produced by
    :func:`encode_state`.  Malformed input is a routine case (expired cookie,
    tampering), so this function never raises.
    """
    if not value:
        return None
    try:
        payload = json.loads(_b64d(value))
    except (ValueError, binascii.Error):  # JSONDecodeError and UnicodeDecodeError are ValueErrors
        return None
    if not isinstance(payload, dict):
        return None
    nonce = payload.get("nonce")
    return_path = payload.get("redirectTo")
    if not isinstance(nonce, str) or not nonce or not isinstance(return_path, str):
        return None
    return HandshakeState(nonce=nonce, return_path=return_path)
