"""
fleet_trust.api.routers.authz

Authorization check endpoint.

Responsibilities:
- Accept a principal (with caller-fetched assignments) and a target context.
- Return the boundary decision, mapping denials to 403.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import AwareDatetime, BaseModel, Field

from fleet_trust.api.deps import TrustCore, trust_core
from fleet_trust.api.errors import error_response
from fleet_trust.auth.deps import require_roles
from fleet_trust.auth.models import INTERNAL_SYSTEM_ROLE
from fleet_trust.authz.models import (
    Action,
    BoundaryContext,
    Membership,
    Principal,
    Resource,
    RoleAssignment,
    ScopeKind,
)
from fleet_trust.errors import ErrorKind

router = APIRouter(
    prefix="/v1/authz",
    tags=["authz"],
    dependencies=[Depends(require_roles(INTERNAL_SYSTEM_ROLE))],
)


class AssignmentIn(BaseModel):
    role: str
    scope: ScopeKind
    scope_id: str | None = None
    level: int | None = None
    expires_at: AwareDatetime | None = None


class PrincipalIn(BaseModel):
    id: str = Field(min_length=1)
    assignments_version: int = 0
    assignments: list[AssignmentIn] = Field(default_factory=list)


class MembershipIn(BaseModel):
    scope: ScopeKind
    scope_id: str
    expires_at: AwareDatetime | None = None


class ContextIn(BaseModel):
    target_scope: ScopeKind
    target_id: str
    resource_id: str | None = None
    organization_id: str | None = None
    region_id: str | None = None
    team_id: str | None = None
    project_id: str | None = None
    direct_assignment: bool = False
    memberships: list[MembershipIn] = Field(default_factory=list)


class CheckRequest(BaseModel):
    principal: PrincipalIn
    resource: Resource
    action: Action
    context: ContextIn


@router.post("/check")
async def check(body: CheckRequest, core: TrustCore = Depends(trust_core)) -> dict[str, Any]:
    try:
        principal = Principal(
            id=body.principal.id,
            assignments_version=body.principal.assignments_version,
            assignments=tuple(
                RoleAssignment(
                    role=a.role,
                    scope=a.scope,
                    scope_id=a.scope_id,
                    level=a.level,
                    expires_at=a.expires_at,
                )
                for a in body.principal.assignments
            ),
        )
    except ValueError as e:
        raise error_response(ErrorKind.malformed, str(e)) from e

    ctx = body.context
    context = BoundaryContext(
        target_scope=ctx.target_scope,
        target_id=ctx.target_id,
        resource_id=ctx.resource_id,
        organization_id=ctx.organization_id,
        region_id=ctx.region_id,
        team_id=ctx.team_id,
        project_id=ctx.project_id,
        direct_assignment=ctx.direct_assignment,
        memberships=tuple(
            Membership(scope=m.scope, scope_id=m.scope_id, expires_at=m.expires_at)
            for m in ctx.memberships
        ),
    )

    decision = core.evaluator.authorize(principal, body.resource, body.action, context)
    if decision.error_kind is not None:
        raise error_response(decision.error_kind, "Access denied", extra=decision.as_audit())
    return decision.as_audit()


# --- Module Notes -----------------------------------------------------------
# Expiry timestamps must carry an offset (`AwareDatetime`) to compare with the UTC clock.
