"""
fleet_trust.api.routers.policy

Policy issuance, verification and key distribution endpoints.

Responsibilities:
- Issue signed policies for devices from caller-supplied inputs.
- Verify envelopes and report the failure class.
- Publish the verification keys devices should trust.
- Retire ROTATING_OUT keys unused for longer than the rotation grace period
  (key operators only).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from fleet_trust.api.deps import TrustCore, trust_core
from fleet_trust.api.errors import error_response
from fleet_trust.auth.deps import require_roles
from fleet_trust.auth.models import INTERNAL_SYSTEM_ROLE, ServiceRole
from fleet_trust.errors import ErrorKind
from fleet_trust.policy.models import PolicyInputs, SessionWindow
from fleet_trust.settings import Settings, get_settings

router = APIRouter(
    prefix="/v1/policy",
    tags=["policy"],
    dependencies=[Depends(require_roles(INTERNAL_SYSTEM_ROLE))],
)


class WindowIn(BaseModel):
    days: list[str]
    start: str
    end: str


class IssueRequest(BaseModel):
    # Optional on the wire so missing inputs surface as INCOMPLETE_INPUT, not 422.
    device_id: str | None = None
    team_id: str | None = None
    organization_id: str | None = None
    timezone: str | None = None
    allowed_windows: list[WindowIn] | None = None
    force: bool = False


class IssueResponse(BaseModel):
    envelope: str
    kid: str | None
    issued_at: str
    expires_at: str
    cached: bool
    policy: dict[str, Any]


class VerifyRequest(BaseModel):
    envelope: str = Field(min_length=1)


class VerifyResponse(BaseModel):
    valid: bool
    kid: str | None = None
    policy: dict[str, Any] | None = None


@router.get("/keys")
async def list_keys(core: TrustCore = Depends(trust_core)) -> dict[str, Any]:
    return {"keys": core.keyring.public_keys()}


@router.post("/keys/retire-stale", dependencies=[Depends(require_roles(ServiceRole.key_operator))])
async def retire_stale_keys(
    core: TrustCore = Depends(trust_core),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    retired = core.keyring.retire_stale(settings.key_rotation_grace_seconds)
    if retired:
        # Cached envelopes may be signed by a key devices will no longer accept.
        core.issuer.invalidate()
    return {"retired": retired, "keys": core.keyring.public_keys()}


@router.post("/issue", response_model=IssueResponse)
async def issue_policy(body: IssueRequest, core: TrustCore = Depends(trust_core)) -> IssueResponse:
    try:
        windows = (
            tuple(
                SessionWindow(days=tuple(w.days), start=w.start, end=w.end)
                for w in body.allowed_windows
            )
            if body.allowed_windows is not None
            else None
        )
    except ValueError as e:
        raise error_response(ErrorKind.malformed, str(e)) from e

    result = core.issuer.issue(
        PolicyInputs(
            device_id=body.device_id,
            team_id=body.team_id,
            organization_id=body.organization_id,
            timezone=body.timezone,
            allowed_windows=windows,
        ),
        force=body.force,
    )
    if not result.ok or result.envelope is None or result.document is None:
        kind = result.error_kind or ErrorKind.incomplete_input
        raise error_response(kind, "Policy could not be issued", extra={"missing": list(result.missing)})

    return IssueResponse(
        envelope=result.envelope.compact(),
        kid=result.envelope.kid,
        issued_at=result.document.meta.issued_at,
        expires_at=result.document.meta.expires_at,
        cached=result.cached,
        policy=result.document.to_dict(),
    )


@router.post("/verify", response_model=VerifyResponse)
async def verify_policy(body: VerifyRequest, core: TrustCore = Depends(trust_core)) -> VerifyResponse:
    result = core.verifier.verify(body.envelope)
    if not result.valid or result.payload is None:
        kind = result.error_kind or ErrorKind.malformed
        raise error_response(kind, result.detail or "Policy verification failed", extra={"kid": result.kid})
    return VerifyResponse(valid=True, kid=result.kid, policy=result.payload.to_dict())


# --- Module Notes -----------------------------------------------------------
# Device-facing delivery of the envelope belongs to the calling backend; this
# service only produces and checks it.
