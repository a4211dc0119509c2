"""Unit tests for the auth HTTP endpoints (login start, code exchange, refresh,
session probe, logout) driven through ``httpx.ASGITransport``."""

from __future__ import annotations

from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from starlette.applications import Starlette

from gallery_auth.core.models import HandshakeState
from gallery_auth.core.service import IssuanceService
from gallery_auth.core.state import decode_state, encode_state
from gallery_auth.core.store import DiskIdentityStore
from gallery_auth.servers import create_app
from gallery_auth.servers.auth import STATE_COOKIE_NAME, register_auth_routes

START_PATH = "/auth/github?redirectTo=%2Farticles%2F3"


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture()
def svc(auth_settings, fake_provider, clock) -> IssuanceService:
    return IssuanceService(
        auth_settings,
        store=DiskIdentityStore(base_dir=auth_settings.identity_dir),
        provider=fake_provider,
        clock=clock,
    )


@pytest.fixture()
async def client(svc):
    """Async HTTP client bound to the Starlette app."""
    transport = httpx.ASGITransport(app=create_app(service=svc))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _state_cookie(nonce: str = "nonce-1", return_path: str = "/articles/3") -> str:
    return encode_state(HandshakeState(nonce=nonce, return_path=return_path))


async def _exchange(client: httpx.AsyncClient, body: dict, cookie: str | None = None) -> httpx.Response:
    headers = {"Cookie": f"{STATE_COOKIE_NAME}={cookie}"} if cookie else {}
    return await client.post("/auth/github/token", json=body, headers=headers)


async def _login(client: httpx.AsyncClient) -> dict:
    resp = await _exchange(client, {"code": "abc", "state": "nonce-1"}, _state_cookie())
    assert resp.status_code == 200, resp.text
    return resp.json()


# --------------------------------------------------------------------------- #
# Health & correlation                                                        #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_healthz(client: httpx.AsyncClient):
    resp = await client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Correlation-ID"]


@pytest.mark.anyio
async def test_correlation_id_is_echoed(client: httpx.AsyncClient):
    resp = await client.get("/healthz", headers={"X-Correlation-ID": "trace-123"})
    assert resp.headers["X-Correlation-ID"] == "trace-123"


# --------------------------------------------------------------------------- #
# GET /auth/github                                                            #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_start_redirects_and_sets_handshake_cookie(client: httpx.AsyncClient):
    resp = await client.get(START_PATH, headers={"Accept": "text/html"})

    assert resp.status_code == 303
    location = resp.headers["location"]
    assert location.startswith("https://github.test/login/oauth/authorize")

    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith(f"{STATE_COOKIE_NAME}=")
    attributes = [part.strip().lower() for part in set_cookie.split(";")[1:]]
    assert "httponly" in attributes
    assert "samesite=lax" in attributes
    assert "path=/" in attributes
    assert "max-age=5400" in attributes
    assert "secure" not in attributes

    value = set_cookie.split(";", 1)[0].split("=", 1)[1].strip('"')
    state = decode_state(value)
    assert state is not None
    assert state.return_path == "/articles/3"
    assert parse_qs(urlparse(location).query)["state"] == [state.nonce]


@pytest.mark.anyio
async def test_start_json_accept_returns_json(client: httpx.AsyncClient):
    resp = await client.get(START_PATH, headers={"Accept": "application/json"})
    assert resp.status_code == 200
    assert resp.json()["authorize_url"].startswith("https://github.test/")
    assert STATE_COOKIE_NAME in resp.headers["set-cookie"]


@pytest.mark.anyio
async def test_start_format_overrides_accept(client: httpx.AsyncClient):
    as_json = await client.get(START_PATH + "&format=json", headers={"Accept": "text/html"})
    assert as_json.status_code == 200
    as_redirect = await client.get(
        START_PATH + "&format=redirect", headers={"Accept": "application/json"}
    )
    assert as_redirect.status_code == 303


@pytest.mark.anyio
async def test_start_secure_cookie_when_configured(auth_settings, fake_provider, clock):
    settings = replace(auth_settings, secure_cookies=True)
    svc = IssuanceService(
        settings,
        store=DiskIdentityStore(base_dir=settings.identity_dir),
        provider=fake_provider,
        clock=clock,
    )
    transport = httpx.ASGITransport(app=create_app(service=svc))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get(START_PATH, headers={"Accept": "text/html"})
    attributes = [part.strip().lower() for part in resp.headers["set-cookie"].split(";")[1:]]
    assert "secure" in attributes


# --------------------------------------------------------------------------- #
# POST /auth/github/token                                                     #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_exchange_success_returns_pair_and_clears_cookie(client: httpx.AsyncClient, svc):
    resp = await _exchange(client, {"code": "abc", "state": "nonce-1"}, _state_cookie())

    assert resp.status_code == 200
    body = resp.json()
    assert body["user"]["login"] == "octo"
    assert body["redirectTo"] == "/articles/3"
    subject = svc.issuer.verify(body["accessToken"], "access").subject
    assert subject == body["user"]["id"]
    assert body["accessTokenExpiresAt"] < body["refreshTokenExpiresAt"]

    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith(f"{STATE_COOKIE_NAME}=")
    assert "max-age=0" in set_cookie.lower()


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("body", "cookie"),
    [
        ({"code": "abc", "state": "nonce-1"}, None),
        ({"code": "abc", "state": "forged"}, _state_cookie()),
        ({"state": "nonce-1"}, _state_cookie()),
        ({"code": "abc", "state": "nonce-1"}, "garbage"),
        ({"code": "abc", "state": 123}, _state_cookie()),
        ({"code": ["abc"], "state": "nonce-1"}, _state_cookie()),
    ],
)
async def test_exchange_handshake_failures(client, fake_provider, body, cookie):
    resp = await _exchange(client, body, cookie)

    assert resp.status_code == 400
    payload = resp.json()
    assert payload["error"] == "handshake_invalid"
    assert payload["retry"].startswith("/auth/github?redirectTo=")
    assert "max-age=0" in resp.headers["set-cookie"].lower()
    assert fake_provider.calls == []


@pytest.mark.anyio
async def test_exchange_provider_rejection(client, fake_provider):
    resp = await _exchange(client, {"code": "stale", "state": "nonce-1"}, _state_cookie())
    assert resp.status_code == 400
    assert resp.json()["error"] == "oauth_exchange_failed"
    assert resp.json()["retry"] == "/auth/github?redirectTo=%2Farticles%2F3"


@pytest.mark.anyio
async def test_exchange_provider_denied(client, fake_provider):
    resp = await _exchange(
        client, {"error": "access_denied", "state": "nonce-1"}, _state_cookie()
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "oauth_denied"
    assert fake_provider.calls == []


@pytest.mark.anyio
async def test_exchange_unexpected_error_is_500_with_retry(client, svc, monkeypatch):
    def _boom(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(svc.store, "upsert", _boom)
    resp = await _exchange(client, {"code": "abc", "state": "nonce-1"}, _state_cookie())

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "login_failed"
    assert "disk full" not in body["message"]
    assert body["retry"] == "/auth/github?redirectTo=%2Farticles%2F3"


def _record_correlation_ids(svc: IssuanceService, monkeypatch) -> list:
    seen: list = []
    real_complete = svc.complete_login

    def _recording(**kwargs):
        seen.append(kwargs.get("correlation_id"))
        return real_complete(**kwargs)

    monkeypatch.setattr(svc, "complete_login", _recording)
    return seen


@pytest.mark.anyio
async def test_exchange_forwards_request_correlation_id(client, svc, monkeypatch):
    seen = _record_correlation_ids(svc, monkeypatch)
    resp = await client.post(
        "/auth/github/token",
        json={"code": "abc", "state": "nonce-1"},
        headers={"Cookie": f"{STATE_COOKIE_NAME}={_state_cookie()}", "X-Correlation-ID": "trace-9"},
    )
    assert resp.status_code == 200
    assert seen == ["trace-9"]


@pytest.mark.anyio
async def test_exchange_without_correlation_middleware_passes_none(svc, monkeypatch):
    seen = _record_correlation_ids(svc, monkeypatch)
    app = Starlette()
    register_auth_routes(app, svc)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as bare:
        resp = await _exchange(bare, {"code": "abc", "state": "nonce-1"}, _state_cookie())

    assert resp.status_code == 200
    assert seen == [None]


@pytest.mark.anyio
async def test_exchange_malformed_body(client):
    resp = await client.post(
        "/auth/github/token",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "handshake_invalid"


# --------------------------------------------------------------------------- #
# POST /auth/token                                                            #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_refresh_returns_new_pair(client: httpx.AsyncClient, clock):
    login = await _login(client)
    clock.advance(30)

    resp = await client.post("/auth/token", json={"refreshToken": login["refreshToken"]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["user"]["id"] == login["user"]["id"]
    assert "redirectTo" not in body
    assert body["accessToken"] != login["accessToken"]


@pytest.mark.anyio
@pytest.mark.parametrize("field", ["accessToken", None, "garbage"])
async def test_refresh_rejected(client: httpx.AsyncClient, field):
    login = await _login(client)
    if field is None:
        body = {}
    elif field == "garbage":
        body = {"refreshToken": "garbage"}
    else:
        body = {"refreshToken": login[field]}

    resp = await client.post("/auth/token", json=body)

    assert resp.status_code == 401
    assert resp.json()["error"] == "refresh_rejected"


# --------------------------------------------------------------------------- #
# GET /users/me, POST /auth/logout                                            #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_users_me(client: httpx.AsyncClient):
    login = await _login(client)

    resp = await client.get(
        "/users/me", headers={"Authorization": f"Bearer {login['accessToken']}"}
    )

    assert resp.status_code == 200
    assert resp.json() == {"user": login["user"]}


@pytest.mark.anyio
async def test_users_me_unauthorized(client: httpx.AsyncClient, clock):
    login = await _login(client)

    missing = await client.get("/users/me")
    assert missing.status_code == 401

    wrong_kind = await client.get(
        "/users/me", headers={"Authorization": f"Bearer {login['refreshToken']}"}
    )
    assert wrong_kind.status_code == 401
    assert wrong_kind.json()["error"] == "credential_kind_mismatch"

    clock.advance(login["accessTokenExpiresAt"] - clock.now)
    expired = await client.get(
        "/users/me", headers={"Authorization": f"Bearer {login['accessToken']}"}
    )
    assert expired.status_code == 401
    assert expired.json()["error"] == "credential_expired"


@pytest.mark.anyio
async def test_logout_is_idempotent(client: httpx.AsyncClient):
    for _ in range(2):
        resp = await client.post("/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
