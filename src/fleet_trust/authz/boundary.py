"""
fleet_trust.authz.boundary

Boundary enforcement on top of raw permissions.

Responsibilities:
- Turn (principal, resource, action, target context) into an allow/deny `Decision`.
- Restrict team/region grants to the principal's live memberships and assignments.
- Emit one audit-worthy log event per decision (storage is external).

Evaluation order (first decisive match wins):
  1. no effective grant                        -> deny NO_PERMISSION
  2. SYSTEM grant, or ORGANIZATION grant anchored
     at the target's organization              -> allow
  3. USER grant on the principal's own record  -> allow
  4. direct resource-level assignment          -> allow
  5. team/region containing the target, with a
     grant that covers TEAM/REGION and comes
     from an assignment anchored there         -> allow
  6. otherwise                                 -> deny OUT_OF_SCOPE
"""

from __future__ import annotations

from datetime import datetime

from fleet_trust.authz.models import (
    Action,
    BoundaryContext,
    Decision,
    DecisionReason,
    Grant,
    Principal,
    Resource,
    ScopeKind,
)
from fleet_trust.authz.resolver import PermissionResolver
from fleet_trust.clock import ClockSource
from fleet_trust.observability.logging import get_logger

log = get_logger(__name__)


class BoundaryEvaluator:
    def __init__(self, *, resolver: PermissionResolver, clock: ClockSource) -> None:
        self._resolver = resolver
        self._clock = clock

    def authorize(
        self,
        principal: Principal,
        resource: Resource,
        action: Action,
        context: BoundaryContext,
    ) -> Decision:
        effective = self._resolver.resolve(principal)
        grant = effective.lookup(resource, action)
        if grant is None:
            decision = Decision(
                allow=False,
                reason=DecisionReason.no_permission,
                resource=resource,
                action=action,
            )
        else:
            reason = self._within_boundary(principal, grant, context, self._clock.now())
            decision = Decision(
                allow=reason is not None,
                reason=reason or DecisionReason.out_of_scope,
                resource=resource,
                action=action,
                granted_scope=grant.scope,
                roles=grant.roles,
            )

        log.info(
            "authorization_decision",
            principal_id=principal.id,
            target_scope=str(context.target_scope),
            target_id=context.target_id,
            resource_id=context.resource_id,
            **decision.as_audit(),
        )
        return decision

    def _within_boundary(
        self,
        principal: Principal,
        grant: Grant,
        context: BoundaryContext,
        now: datetime,
    ) -> DecisionReason | None:
        # Cross-scope grants.
        if ScopeKind.system in grant.scopes:
            return DecisionReason.system_scope
        if ScopeKind.organization in grant.scopes:
            org_id = context.owner(ScopeKind.organization)
            # A SYSTEM-level assignment anchors an ORGANIZATION grant to every organization.
            if grant.anchored_ids(ScopeKind.system) or (
                org_id is not None and org_id in grant.anchored_ids(ScopeKind.organization)
            ):
                return DecisionReason.organization_scope

        # Acting on one's own USER-scope record ignores team boundaries.
        if (
            context.target_scope is ScopeKind.user
            and context.target_id == principal.id
            and ScopeKind.user in grant.scopes
        ):
            return DecisionReason.self_scope

        if context.direct_assignment:
            return DecisionReason.direct_assignment
        project_id = context.owner(ScopeKind.project)
        if (
            project_id is not None
            and grant.scope.covers(ScopeKind.project)
            and project_id in grant.anchored_ids(ScopeKind.project)
        ):
            return DecisionReason.direct_assignment

        if grant.scope.covers(ScopeKind.team):
            team_id = context.owner(ScopeKind.team)
            if team_id is not None and _is_member(ScopeKind.team, team_id, grant, context, now):
                return DecisionReason.team_membership

        if grant.scope.covers(ScopeKind.region):
            region_id = context.owner(ScopeKind.region)
            if region_id is not None and _is_member(
                ScopeKind.region, region_id, grant, context, now
            ):
                return DecisionReason.region_membership

        return None


def _is_member(
    scope: ScopeKind, scope_id: str, grant: Grant, context: BoundaryContext, now: datetime
) -> bool:
    # The grant itself must come from an assignment anchored at this team/region.
    # Membership elsewhere never carries a role across to another team.
    if scope_id not in grant.anchored_ids(scope):
        return False
    # Explicit membership records veto once expired, even before upstream cleanup.
    records = [m for m in context.memberships if m.scope is scope and m.scope_id == scope_id]
    return not records or any(m.is_active(now) for m in records)


# --- Module Notes -----------------------------------------------------------
# Decisions are values; the HTTP adapter maps `Decision.error_kind` to a status code.
