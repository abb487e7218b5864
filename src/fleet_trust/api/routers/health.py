"""
fleet_trust.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`) requiring a usable policy signing key.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from fleet_trust.api.deps import TrustCore, trust_core

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", response_model=None)
async def readyz(core: TrustCore = Depends(trust_core)) -> dict[str, str] | JSONResponse:
    # Signing keys can be revoked at runtime; without one no policy can be issued.
    if not core.keyring.has_signing_key():
        return JSONResponse(
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "reason": "NO_SIGNING_KEY"},
        )
    return {"status": "ready", "catalog_revision": core.catalog.revision}


# --- Module Notes -----------------------------------------------------------
# Kubernetes typically uses /healthz for liveness and /readyz for readiness gating.
