"""
tests.test_boundary

Boundary enforcement over effective permissions.

Responsibilities:
- Team/region containment, cross-scope roles, self-scope and direct assignment.
- The supervisor end-to-end scenario (own team allowed, other team denied).
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from fleet_trust.authz.boundary import BoundaryEvaluator
from fleet_trust.authz.catalog import PermissionCatalog
from fleet_trust.authz.models import (
    Action,
    BoundaryContext,
    DecisionReason,
    Membership,
    Principal,
    Resource,
    RoleAssignment,
    ScopeKind,
)
from fleet_trust.authz.resolver import PermissionResolver
from fleet_trust.clock import ManualClock
from fleet_trust.errors import ErrorKind


@pytest.fixture
def evaluator(catalog: PermissionCatalog, clock: ManualClock) -> BoundaryEvaluator:
    return BoundaryEvaluator(resolver=PermissionResolver(catalog=catalog, clock=clock), clock=clock)


def _supervisor_of(team: str) -> Principal:
    return Principal(id="sup-1", assignments=(RoleAssignment("FIELD_SUPERVISOR", ScopeKind.team, team),))


def _device_in(team: str, *, memberships=()) -> BoundaryContext:
    return BoundaryContext(
        target_scope=ScopeKind.team,
        target_id=team,
        resource_id=f"device-of-{team}",
        memberships=tuple(memberships),
    )


def test_supervisor_manages_devices_of_own_team_only(evaluator: BoundaryEvaluator) -> None:
    principal = _supervisor_of("T")
    membership = (Membership(ScopeKind.team, "T"),)

    own = evaluator.authorize(principal, Resource.devices, Action.manage, _device_in("T", memberships=membership))
    assert own.allow
    assert own.reason is DecisionReason.team_membership
    assert own.granted_scope is ScopeKind.team

    other = evaluator.authorize(principal, Resource.devices, Action.manage, _device_in("U", memberships=membership))
    assert not other.allow
    assert other.reason is DecisionReason.out_of_scope
    assert other.error_kind is ErrorKind.out_of_scope


def test_role_held_in_one_team_does_not_carry_to_another(evaluator: BoundaryEvaluator) -> None:
    principal = Principal(
        id="sup-2",
        assignments=(
            RoleAssignment("FIELD_SUPERVISOR", ScopeKind.team, "T1"),
            RoleAssignment("TEAM_MEMBER", ScopeKind.team, "T2"),
        ),
    )
    memberships = (Membership(ScopeKind.team, "T1"), Membership(ScopeKind.team, "T2"))

    manage_t2 = evaluator.authorize(
        principal, Resource.devices, Action.manage, _device_in("T2", memberships=memberships)
    )
    assert not manage_t2.allow
    assert manage_t2.reason is DecisionReason.out_of_scope

    manage_t1 = evaluator.authorize(
        principal, Resource.devices, Action.manage, _device_in("T1", memberships=memberships)
    )
    assert manage_t1.allow
    assert manage_t1.roles == frozenset({"FIELD_SUPERVISOR"})

    # The TEAM_MEMBER grant in T2 still applies there.
    read_t2 = evaluator.authorize(
        principal, Resource.devices, Action.read, _device_in("T2", memberships=memberships)
    )
    assert read_t2.allow
    assert read_t2.reason is DecisionReason.team_membership


def test_membership_record_alone_does_not_grant(evaluator: BoundaryEvaluator) -> None:
    principal = _supervisor_of("T")
    context = _device_in("U", memberships=(Membership(ScopeKind.team, "U"),))
    decision = evaluator.authorize(principal, Resource.devices, Action.manage, context)
    assert not decision.allow
    assert decision.reason is DecisionReason.out_of_scope


def test_missing_permission_is_no_permission(evaluator: BoundaryEvaluator) -> None:
    principal = Principal(id="m1", assignments=(RoleAssignment("TEAM_MEMBER", ScopeKind.team, "T"),))
    decision = evaluator.authorize(principal, Resource.devices, Action.delete, _device_in("T"))
    assert not decision.allow
    assert decision.error_kind is ErrorKind.no_permission
    assert decision.granted_scope is None


def test_expired_membership_is_treated_as_absent(evaluator: BoundaryEvaluator, clock: ManualClock) -> None:
    principal = _supervisor_of("T")
    expired = Membership(ScopeKind.team, "T", expires_at=clock.now() - timedelta(minutes=1))
    decision = evaluator.authorize(
        principal, Resource.devices, Action.manage, _device_in("T", memberships=(expired,))
    )
    assert not decision.allow
    assert decision.reason is DecisionReason.out_of_scope


def test_membership_expiring_later_still_counts(evaluator: BoundaryEvaluator, clock: ManualClock) -> None:
    principal = _supervisor_of("T")
    live = Membership(ScopeKind.team, "T", expires_at=clock.now() + timedelta(hours=1))
    context = _device_in("T", memberships=(live,))
    assert evaluator.authorize(principal, Resource.devices, Action.manage, context).allow

    clock.advance(timedelta(hours=1))
    assert not evaluator.authorize(principal, Resource.devices, Action.manage, context).allow


def test_regional_manager_reaches_teams_in_region(evaluator: BoundaryEvaluator) -> None:
    principal = Principal(id="rm", assignments=(RoleAssignment("REGIONAL_MANAGER", ScopeKind.region, "R1"),))
    inside = BoundaryContext(target_scope=ScopeKind.team, target_id="T9", region_id="R1")
    outside = BoundaryContext(target_scope=ScopeKind.team, target_id="T7", region_id="R2")

    allowed = evaluator.authorize(principal, Resource.devices, Action.update, inside)
    assert allowed.allow
    assert allowed.reason is DecisionReason.region_membership

    assert not evaluator.authorize(principal, Resource.devices, Action.update, outside).allow


def test_system_admin_crosses_every_boundary(evaluator: BoundaryEvaluator) -> None:
    principal = Principal(id="root", assignments=(RoleAssignment("SYSTEM_ADMIN", ScopeKind.system),))
    context = BoundaryContext(target_scope=ScopeKind.team, target_id="anything", organization_id="org-9")
    decision = evaluator.authorize(principal, Resource.system_settings, Action.update, context)
    assert decision.allow
    assert decision.reason is DecisionReason.system_scope


def test_organization_grant_requires_matching_org(evaluator: BoundaryEvaluator) -> None:
    principal = Principal(id="aud", assignments=(RoleAssignment("AUDITOR", ScopeKind.organization, "org-1"),))
    same = BoundaryContext(target_scope=ScopeKind.team, target_id="T", organization_id="org-1")
    other = BoundaryContext(target_scope=ScopeKind.team, target_id="T", organization_id="org-2")

    decision = evaluator.authorize(principal, Resource.audit_logs, Action.read, same)
    assert decision.allow
    assert decision.reason is DecisionReason.organization_scope
    assert not evaluator.authorize(principal, Resource.audit_logs, Action.read, other).allow


def test_system_assigned_auditor_reads_any_org(evaluator: BoundaryEvaluator) -> None:
    principal = Principal(id="aud", assignments=(RoleAssignment("AUDITOR", ScopeKind.system),))
    context = BoundaryContext(target_scope=ScopeKind.organization, target_id="org-42")
    decision = evaluator.authorize(principal, Resource.audit_logs, Action.read, context)
    assert decision.allow
    assert decision.granted_scope is ScopeKind.organization


def test_self_scope_ignores_team_boundary(evaluator: BoundaryEvaluator) -> None:
    principal = Principal(id="m1", assignments=(RoleAssignment("TEAM_MEMBER", ScopeKind.team, "T"),))
    own_record = BoundaryContext(target_scope=ScopeKind.user, target_id="m1", team_id="U")
    someone_else = BoundaryContext(target_scope=ScopeKind.user, target_id="m2", team_id="U")

    decision = evaluator.authorize(principal, Resource.users, Action.update, own_record)
    assert decision.allow
    assert decision.reason is DecisionReason.self_scope
    assert not evaluator.authorize(principal, Resource.users, Action.update, someone_else).allow


def test_direct_assignment_allows(evaluator: BoundaryEvaluator) -> None:
    principal = Principal(id="m1", assignments=(RoleAssignment("TEAM_MEMBER", ScopeKind.team, "T"),))
    context = BoundaryContext(
        target_scope=ScopeKind.project, target_id="P1", team_id="U", direct_assignment=True
    )
    decision = evaluator.authorize(principal, Resource.projects, Action.read, context)
    assert decision.allow
    assert decision.reason is DecisionReason.direct_assignment


def test_decision_audit_shape(evaluator: BoundaryEvaluator) -> None:
    decision = evaluator.authorize(
        _supervisor_of("T"),
        Resource.devices,
        Action.manage,
        _device_in("T", memberships=(Membership(ScopeKind.team, "T"),)),
    )
    assert decision.as_audit() == {
        "allow": True,
        "reason": "TEAM_MEMBERSHIP",
        "resource": "DEVICES",
        "action": "MANAGE",
        "granted_scope": "TEAM",
        "roles": ["FIELD_SUPERVISOR"],
    }


# --- Module Notes -----------------------------------------------------------
# A team/region grant needs an assignment anchored at that team/region; explicit
# membership records for it can only veto (once expired), never grant.
