"""Starlette application factory for the gallery auth service."""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from gallery_auth.core.service import IssuanceService
from gallery_auth.utils.environment import AuthSettings

from .auth import register_auth_routes
from .correlation import CorrelationIdMiddleware

logger = logging.getLogger("gallery-auth.servers.app")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(
    settings: AuthSettings | None = None,
    service: IssuanceService | None = None,
) -> Starlette:
    """Build the ASGI app.

    Parameters
    ----------
    settings:
        Server settings; read from the environment when omitted.
    service:
        Pre-wired issuance service (tests inject fakes through it).  Built from
        *settings* when omitted.
    """
    if service is not None:
        settings = service.settings
    settings = settings or AuthSettings.from_env()
    svc = service or IssuanceService(settings)

    if not settings.is_provider_configured():
        logger.warning(
            "GitHub OAuth is not fully configured; login start will fail until "
            "GITHUB_CLIENT_ID, GITHUB_CLIENT_SECRET and GALLERY_OAUTH_REDIRECT_URI are set."
        )

    middleware = [Middleware(CorrelationIdMiddleware)]
    if settings.cors_origins:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=list(settings.cors_origins),
                allow_credentials=True,
                allow_methods=["GET", "POST"],
                allow_headers=["Authorization", "Content-Type"],
            )
        )

    app = Starlette(
        routes=[Route("/healthz", health_check, methods=["GET"])],
        middleware=middleware,
    )
    app.state.issuance_service = svc
    register_auth_routes(app, svc)
    logger.info("Auth routes registered provider=%s", svc.provider.provider_name)
    return app
