"""Fixtures for end-to-end tests wiring the API and the client runtime together."""

from __future__ import annotations

import httpx
import pytest

from gallery_auth.core.clock import ManualClock
from gallery_auth.core.service import IssuanceService
from gallery_auth.core.store import DiskIdentityStore
from gallery_auth.servers import create_app
from gallery_auth.utils.environment import AuthSettings


@pytest.fixture
def service(auth_settings: AuthSettings, fake_provider, clock: ManualClock) -> IssuanceService:
    return IssuanceService(
        auth_settings,
        store=DiskIdentityStore(base_dir=auth_settings.identity_dir),
        provider=fake_provider,
        clock=clock,
    )


@pytest.fixture
def api_transport(service: IssuanceService) -> httpx.ASGITransport:
    return httpx.ASGITransport(app=create_app(service=service))
