"""Tests for environment-driven settings and logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from gallery_auth.utils.environment import (
    ACCESS_TOKEN_TTL_SECONDS,
    REFRESH_TOKEN_TTL_SECONDS,
    AuthSettings,
    ClientSettings,
)
from gallery_auth.utils.logging import mask_sensitive

_AUTH_VARS = (
    "GALLERY_JWT_SECRET",
    "GITHUB_CLIENT_ID",
    "GITHUB_CLIENT_SECRET",
    "GALLERY_OAUTH_REDIRECT_URI",
    "GITHUB_API_URL",
    "GALLERY_ACCESS_TTL_SECONDS",
    "GALLERY_REFRESH_TTL_SECONDS",
    "GALLERY_SECURE_COOKIES",
    "GALLERY_IDENTITY_DIR",
    "GALLERY_DEFAULT_REDIRECT",
    "GALLERY_CORS_ORIGINS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _AUTH_VARS + ("GALLERY_API_URL", "GALLERY_ORIGIN", "GALLERY_SESSION_FILE"):
        monkeypatch.delenv(name, raising=False)


def test_auth_settings_from_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GALLERY_JWT_SECRET", "s" * 48)
    monkeypatch.setenv("GITHUB_CLIENT_ID", "cid")
    monkeypatch.setenv("GITHUB_CLIENT_SECRET", "csecret")
    monkeypatch.setenv("GALLERY_OAUTH_REDIRECT_URI", "http://localhost:3000/auth/github/callback")
    monkeypatch.setenv("GITHUB_API_URL", "https://ghe.example.test/api/v3/")
    monkeypatch.setenv("GALLERY_ACCESS_TTL_SECONDS", "600")
    monkeypatch.setenv("GALLERY_SECURE_COOKIES", "yes")
    monkeypatch.setenv("GALLERY_IDENTITY_DIR", str(tmp_path))
    monkeypatch.setenv("GALLERY_CORS_ORIGINS", "http://localhost:3000/, https://gallery.example.test")

    settings = AuthSettings.from_env()

    assert settings.jwt_secret == "s" * 48
    assert settings.github_api_url == "https://ghe.example.test/api/v3"
    assert settings.access_ttl_seconds == 600
    assert settings.refresh_ttl_seconds == REFRESH_TOKEN_TTL_SECONDS
    assert settings.secure_cookies is True
    assert settings.identity_dir == tmp_path
    assert settings.default_redirect == "/generate"
    assert settings.cors_origins == ("http://localhost:3000", "https://gallery.example.test")
    assert settings.is_provider_configured() is True


def test_missing_secret_generates_transient_one(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="gallery-auth.utils.environment"):
        first = AuthSettings.from_env()
    second = AuthSettings.from_env()

    assert len(first.jwt_secret) >= 32
    assert first.jwt_secret != second.jwt_secret
    assert "GALLERY_JWT_SECRET" in caplog.text
    assert first.is_provider_configured() is False


@pytest.mark.parametrize("raw", ["abc", "-5", "0", ""])
def test_invalid_ttl_falls_back_to_default(monkeypatch, raw: str) -> None:
    monkeypatch.setenv("GALLERY_ACCESS_TTL_SECONDS", raw)
    assert AuthSettings.from_env().access_ttl_seconds == ACCESS_TOKEN_TTL_SECONDS


def test_client_settings(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GALLERY_API_URL", "https://api.example.test/")
    monkeypatch.setenv("GALLERY_SESSION_FILE", str(tmp_path / "s.json"))

    settings = ClientSettings.from_env()

    assert settings.api_url == "https://api.example.test"
    assert settings.origin == "http://localhost:3000"
    assert settings.session_file == tmp_path / "s.json"
    assert settings.build_api_url("users/me") == "https://api.example.test/users/me"
    assert ClientSettings().build_api_url("/users/me") == "/users/me"


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, ""), ("", ""), ("abc", "***"), ("abcdefgh", "abcd****")],
)
def test_mask_sensitive(value, expected) -> None:
    assert mask_sensitive(value) == expected
