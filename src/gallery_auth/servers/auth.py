"""Browser-based OAuth and credential endpoints.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters.
2. Delegate business logic to ``IssuanceService``.
3. Return an appropriate Starlette ``Response`` type.

The base path is configurable (default: ``/auth``) so that reverse-proxies can
mount the application under arbitrary prefixes.

SECURITY NOTE
-------------
• No raw secrets (state, codes, access / refresh tokens, client secrets) are
  ever logged.
• Correlation IDs, if present in ``request.state.correlation_id``, are included
  in INFO logs to aid troubleshooting.
• The handshake cookie is deleted on every outcome of the token exchange, so a
  state value can be consumed at most once.

This module is HTTP-only and MUST remain free from heavy business logic.
"""

from __future__ import annotations

import logging
from typing import Any, Final

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from gallery_auth.core.errors import AuthError, CredentialError, CredentialInvalid, OAuthDenied
from gallery_auth.core.service import IssuanceService
from gallery_auth.core.state import decode_state

_LOG = logging.getLogger("gallery-auth.servers.auth")

STATE_COOKIE_NAME: Final[str] = "gallery_oauth_state"
STATE_COOKIE_MAX_AGE: Final[int] = 60 * 90


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


def _error_response(exc: AuthError, **extra: Any) -> JSONResponse:
    return JSONResponse({**exc.to_payload(), **extra}, status_code=exc.status_code)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _json_body(request: Request) -> dict[str, Any]:
    """Return the JSON object body, or ``{}`` when it is absent or malformed."""
    try:
        payload = await request.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def register_auth_routes(
    app: Starlette, svc: IssuanceService, *, base_path: str = "/auth"
) -> None:
    """Attach the login, renewal and session endpoints to *app*."""
    provider = svc.provider.provider_name
    secure_cookies = svc.settings.secure_cookies

    # ----- GET /auth/github ----------------------------------------------- #
    async def _start_login(request: Request) -> Response:
        redirect_to = request.query_params.get("redirectTo")
        try:
            start = svc.start_login(redirect_to)
        except ValueError as exc:
            _LOG.error(
                "Login start unavailable: %s correlation_id=%s",
                exc,
                _correlation_id(request),
            )
            return JSONResponse(
                {"error": "oauth_not_configured", "message": "Unable to start login."},
                status_code=500,
            )

        _LOG.info(
            "Login start provider=%s return_path=%s correlation_id=%s",
            provider,
            start.return_path,
            _correlation_id(request),
        )

        # ------------------------------------------------------------------
        # Content negotiation + explicit override for browser vs API clients
        # ------------------------------------------------------------------
        fmt_param = request.query_params.get("format")
        accept_header = (request.headers.get("accept") or "").lower()

        response: Response
        if fmt_param == "json":
            response = JSONResponse({"authorize_url": start.authorize_url})
        elif fmt_param == "redirect" or "text/html" in accept_header or not accept_header:
            # 303 See Other for GET safety across methods
            response = RedirectResponse(start.authorize_url, status_code=303)
        else:
            response = JSONResponse({"authorize_url": start.authorize_url})

        response.set_cookie(
            STATE_COOKIE_NAME,
            start.state_cookie,
            max_age=STATE_COOKIE_MAX_AGE,
            path="/",
            httponly=True,
            samesite="lax",
            secure=secure_cookies,
        )
        return response

    # ----- POST /auth/github/token ---------------------------------------- #
    async def _exchange_code(request: Request) -> Response:
        body = await _json_body(request)
        state_cookie = request.cookies.get(STATE_COOKIE_NAME)
        handshake = decode_state(state_cookie)
        retry = svc.retry_path(handshake.return_path if handshake else None)

        response: Response
        try:
            if body.get("error"):
                raise OAuthDenied(str(body.get("error_description") or body["error"]))
            result = await run_in_threadpool(
                svc.complete_login,
                code=body.get("code"),
                state=body.get("state"),
                state_cookie=state_cookie,
                correlation_id=_correlation_id(request),
            )
        except AuthError as exc:
            _LOG.info(
                "Login failed error=%s correlation_id=%s",
                exc.code,
                _correlation_id(request),
            )
            response = _error_response(exc, retry=retry)
        except Exception:  # broad: mapped to user-visible failure
            _LOG.exception(
                "Login crashed correlation_id=%s", _correlation_id(request)
            )
            response = JSONResponse(
                {
                    "error": "login_failed",
                    "message": "Login could not be completed.",
                    "retry": retry,
                },
                status_code=500,
            )
        else:
            _LOG.info(
                "Login success provider=%s correlation_id=%s",
                provider,
                _correlation_id(request),
            )
            response = JSONResponse(result.to_payload())

        response.delete_cookie(
            STATE_COOKIE_NAME,
            path="/",
            httponly=True,
            samesite="lax",
            secure=secure_cookies,
        )
        return response

    # ----- POST /auth/token ----------------------------------------------- #
    async def _refresh(request: Request) -> Response:
        body = await _json_body(request)
        refresh_token = body.get("refreshToken")
        try:
            result = await run_in_threadpool(
                svc.refresh, refresh_token if isinstance(refresh_token, str) else None
            )
        except AuthError as exc:
            return _error_response(exc)
        _LOG.info("Credentials refreshed correlation_id=%s", _correlation_id(request))
        return JSONResponse(result.to_payload())

    # ----- POST /auth/logout ---------------------------------------------- #
    async def _logout(request: Request) -> Response:
        # Credentials are self-contained; the client discards its own copy.
        _LOG.info("Logout correlation_id=%s", _correlation_id(request))
        return JSONResponse({"success": True})

    # ----- GET /users/me -------------------------------------------------- #
    async def _me(request: Request) -> Response:
        token = _bearer_token(request)
        if token is None:
            return _error_response(CredentialInvalid("Missing bearer credential."))
        try:
            user = await run_in_threadpool(svc.current_user, token)
        except CredentialError as exc:
            return _error_response(exc)
        return JSONResponse({"user": user.projection().to_payload()})

    app.add_route(f"{base_path}/{provider}", _start_login, methods=["GET"])
    app.add_route(f"{base_path}/{provider}/token", _exchange_code, methods=["POST"])
    app.add_route(f"{base_path}/token", _refresh, methods=["POST"])
    app.add_route(f"{base_path}/logout", _logout, methods=["POST"])
    app.add_route("/users/me", _me, methods=["GET"])
