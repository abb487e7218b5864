"""
fleet_trust.api.routers.credentials

Credential attempt guard endpoints.

Responsibilities:
- Precheck a login/PIN/override attempt against lockout and rate limits.
- Record the verification outcome so lockouts start and clear.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from fleet_trust.abuse.rate_limit import Identity, IdentityKind, Purpose
from fleet_trust.api.deps import TrustCore, client_origin, trust_core
from fleet_trust.api.errors import error_response
from fleet_trust.auth.deps import require_roles
from fleet_trust.auth.models import INTERNAL_SYSTEM_ROLE
from fleet_trust.errors import ErrorKind

router = APIRouter(
    prefix="/v1/credentials",
    tags=["credentials"],
    dependencies=[Depends(require_roles(INTERNAL_SYSTEM_ROLE))],
)


class AttemptIn(BaseModel):
    purpose: Purpose
    identity_kind: IdentityKind
    identity: str = Field(min_length=1, max_length=256)
    # Network origin of the end client; defaults to the caller's address.
    origin: str | None = None


class OutcomeIn(AttemptIn):
    success: bool


@router.post("/precheck")
async def precheck(
    request: Request, body: AttemptIn, core: TrustCore = Depends(trust_core)
) -> dict[str, Any]:
    identity = Identity(body.identity_kind, body.identity)
    result = core.guard.precheck(body.purpose, identity, body.origin or client_origin(request))
    if not result.allowed:
        raise error_response(
            result.error_kind or ErrorKind.rate_limited,
            "Attempt refused",
            retry_after=result.retry_after,
            extra={"remaining_attempts": result.remaining_attempts},
        )
    return {"allowed": True, "remaining_attempts": result.remaining_attempts}


@router.post("/outcome")
async def record_outcome(body: OutcomeIn, core: TrustCore = Depends(trust_core)) -> dict[str, Any]:
    identity = Identity(body.identity_kind, body.identity)
    result = core.guard.record_outcome(body.purpose, identity, success=body.success)
    status = result.lockout
    return {
        "locked": not result.allowed,
        "remaining_attempts": result.remaining_attempts,
        "retry_after": result.retry_after,
        "stage": status.stage if status else 0,
        "code": str(result.error_kind) if result.error_kind else None,
    }
