"""
tests.test_smoke

Minimal smoke tests to validate the service can boot and serve core endpoints.

Responsibilities:
- Ensure the FastAPI app starts with an ephemeral signing key in test mode.
- Ensure readiness tracks the presence of a signing key.
"""

from __future__ import annotations

import httpx
import pytest

from fleet_trust.api.app import create_app
from fleet_trust.errors import NoSigningKey
from fleet_trust.settings import Settings


@pytest.mark.asyncio
async def test_health_endpoints() -> None:
    app = create_app(settings=Settings(env="test"))

    # httpx ASGITransport does not manage lifespan automatically; do it explicitly.
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            r = await client.get("/healthz")
            assert r.status_code == 200
            assert r.json()["status"] == "ok"

            r = await client.get("/readyz")
            assert r.status_code == 200
            assert r.json()["status"] == "ready"
            assert r.json()["catalog_revision"]
            assert r.headers["x-request-id"]


@pytest.mark.asyncio
async def test_readyz_fails_without_signing_key() -> None:
    app = create_app(settings=Settings(env="test"))
    core = app.state.core
    core.keyring.revoke(core.keyring.signing_key().kid)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        r = await client.get("/readyz")
    assert r.status_code == 503
    assert r.json() == {"status": "not_ready", "reason": "NO_SIGNING_KEY"}


def test_prod_without_signing_key_refuses_to_start() -> None:
    with pytest.raises(NoSigningKey):
        create_app(settings=Settings(env="prod"))


# --- Module Notes -----------------------------------------------------------
# Endpoint behavior beyond liveness is covered in tests/test_api.py.
