"""Environment-driven configuration for the auth server and the client runtime."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Tuple

logger = logging.getLogger("gallery-auth.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")

ACCESS_TOKEN_TTL_SECONDS: Final[int] = 60 * 90
REFRESH_TOKEN_TTL_SECONDS: Final[int] = 60 * 60 * 24 * 14
DEFAULT_POST_LOGIN_REDIRECT: Final[str] = "/generate"

_JWT_SECRET_ENV: Final[str] = "GALLERY_JWT_SECRET"


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%s, using %s", name, value, default)
        return default
    return value


@dataclass(frozen=True)
class AuthSettings:
    """Server-side settings: signing secret, provider client and cookie policy."""

    jwt_secret: str
    github_client_id: str = ""
    github_client_secret: str = ""
    oauth_redirect_uri: str = ""
    github_authorize_url: str = "https://github.com/login/oauth/authorize"
    github_token_url: str = "https://github.com/login/oauth/access_token"
    github_api_url: str = "https://api.github.com"
    access_ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS
    refresh_ttl_seconds: int = REFRESH_TOKEN_TTL_SECONDS
    secure_cookies: bool = False
    identity_dir: Path | None = None
    default_redirect: str = DEFAULT_POST_LOGIN_REDIRECT
    cors_origins: Tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> "AuthSettings":
        secret = os.getenv(_JWT_SECRET_ENV)
        if not secret:
            # Ephemeral secret: every restart invalidates all issued credentials.
            secret = uuid.uuid4().hex + uuid.uuid4().hex
            logger.warning(
                "Environment variable %s not set – generated transient secret. "
                "Issued credentials will stop verifying after process restart.",
                _JWT_SECRET_ENV,
            )
        identity_dir = os.getenv("GALLERY_IDENTITY_DIR")
        return cls(
            jwt_secret=secret,
            github_client_id=os.getenv("GITHUB_CLIENT_ID", ""),
            github_client_secret=os.getenv("GITHUB_CLIENT_SECRET", ""),
            oauth_redirect_uri=os.getenv("GALLERY_OAUTH_REDIRECT_URI", ""),
            github_authorize_url=os.getenv(
                "GITHUB_AUTHORIZE_URL", cls.github_authorize_url
            ),
            github_token_url=os.getenv("GITHUB_TOKEN_URL", cls.github_token_url),
            github_api_url=os.getenv("GITHUB_API_URL", cls.github_api_url).rstrip("/"),
            access_ttl_seconds=_int_env(
                "GALLERY_ACCESS_TTL_SECONDS", ACCESS_TOKEN_TTL_SECONDS
            ),
            refresh_ttl_seconds=_int_env(
                "GALLERY_REFRESH_TTL_SECONDS", REFRESH_TOKEN_TTL_SECONDS
            ),
            secure_cookies=_truthy(os.getenv("GALLERY_SECURE_COOKIES")),
            identity_dir=Path(identity_dir).expanduser() if identity_dir else None,
            default_redirect=os.getenv(
                "GALLERY_DEFAULT_REDIRECT", DEFAULT_POST_LOGIN_REDIRECT
            ),
            cors_origins=tuple(
                origin.strip().rstrip("/")
                for origin in os.getenv("GALLERY_CORS_ORIGINS", "").split(",")
                if origin.strip()
            ),
        )

    def is_provider_configured(self) -> bool:
        return all(
            [self.github_client_id, self.github_client_secret, self.oauth_redirect_uri]
        )


@dataclass(frozen=True)
class ClientSettings:
    """Client runtime settings: where the API lives and where the session is cached."""

    api_url: str = ""
    origin: str = "http://localhost:3000"
    session_file: Path | None = None

    @classmethod
    def from_env(cls) -> "ClientSettings":
        session_file = os.getenv("GALLERY_SESSION_FILE")
        return cls(
            api_url=os.getenv("GALLERY_API_URL", "").rstrip("/"),
            origin=os.getenv("GALLERY_ORIGIN", cls.origin).rstrip("/"),
            session_file=Path(session_file).expanduser() if session_file else None,
        )

    def build_api_url(self, path: str) -> str:
        """Join *path* onto the API base URL (relative when no base is set)."""
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self.api_url}{normalized}" if self.api_url else normalized
