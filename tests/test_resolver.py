"""
tests.test_resolver

Effective permission resolution and caching.
"""

from __future__ import annotations

from datetime import timedelta

from fleet_trust.authz.catalog import PermissionCatalog
from fleet_trust.authz.models import Action, Principal, Resource, RoleAssignment, ScopeKind
from fleet_trust.authz.resolver import PermissionResolver
from fleet_trust.clock import ManualClock


def _resolver(catalog: PermissionCatalog, clock: ManualClock, ttl: float = 300.0):
    return PermissionResolver(catalog=catalog, clock=clock, ttl_seconds=ttl)


def test_wider_scope_wins(clock: ManualClock) -> None:
    catalog = PermissionCatalog.from_mapping(
        {
            "roles": {
                "TEAM_VIEWER": {
                    "level": 1,
                    "assignable_scopes": ["TEAM"],
                    "permission_scope": "TEAM",
                    "permissions": ["DEVICES:READ"],
                },
                "REGION_VIEWER": {
                    "level": 2,
                    "assignable_scopes": ["REGION"],
                    "permission_scope": "REGION",
                    "permissions": ["DEVICES:READ"],
                },
            }
        }
    )
    principal = Principal(
        id="u1",
        assignments=(
            RoleAssignment("TEAM_VIEWER", ScopeKind.team, "t1"),
            RoleAssignment("REGION_VIEWER", ScopeKind.region, "r1"),
        ),
    )
    effective = _resolver(catalog, clock).resolve(principal)
    assert effective.granted_scope(Resource.devices, Action.read) is ScopeKind.region
    grant = effective.lookup(Resource.devices, Action.read)
    assert grant is not None
    assert grant.anchored_ids(ScopeKind.team) == {"t1"}
    assert grant.anchored_ids(ScopeKind.region) == {"r1"}


def test_permission_capped_by_assignment_scope(catalog: PermissionCatalog, clock) -> None:
    # DEVICE_MANAGER grants at REGION, but a TEAM assignment only reaches the team.
    principal = Principal(id="u1", assignments=(RoleAssignment("DEVICE_MANAGER", ScopeKind.team, "t1"),))
    effective = _resolver(catalog, clock).resolve(principal)
    assert effective.granted_scope(Resource.devices, Action.manage) is ScopeKind.team


def test_expired_and_unknown_assignments_grant_nothing(catalog: PermissionCatalog, clock) -> None:
    principal = Principal(
        id="u1",
        assignments=(
            RoleAssignment(
                "SYSTEM_ADMIN", ScopeKind.system, expires_at=clock.now() - timedelta(seconds=1)
            ),
            RoleAssignment("GHOST_ROLE", ScopeKind.team, "t1"),
            # FIELD_SUPERVISOR is not assignable at REGION.
            RoleAssignment("FIELD_SUPERVISOR", ScopeKind.region, "r1"),
        ),
    )
    effective = _resolver(catalog, clock).resolve(principal)
    assert effective.grants == {}
    assert effective.roles == ()
    assert not effective.allows(Resource.system_settings, Action.manage)


def test_manage_implies_other_actions(catalog: PermissionCatalog, clock) -> None:
    principal = Principal(id="u1", assignments=(RoleAssignment("SYSTEM_ADMIN", ScopeKind.system),))
    effective = _resolver(catalog, clock).resolve(principal)
    assert effective.allows(Resource.devices, Action.delete)
    grant = effective.lookup(Resource.devices, Action.delete)
    assert grant is not None
    assert grant.action is Action.delete
    assert grant.scope is ScopeKind.system
    assert effective.allows(Resource.support_tickets, Action.execute)


def test_cache_returns_same_set_until_version_bump(catalog: PermissionCatalog, clock) -> None:
    resolver = _resolver(catalog, clock)
    member = RoleAssignment("TEAM_MEMBER", ScopeKind.team, "t1")
    p1 = Principal(id="u1", assignments=(member,), assignments_version=1)

    first = resolver.resolve(p1)
    second = resolver.resolve(p1)
    assert second is first

    p2 = Principal(
        id="u1",
        assignments=(member, RoleAssignment("FIELD_SUPERVISOR", ScopeKind.team, "t1")),
        assignments_version=2,
    )
    third = resolver.resolve(p2)
    assert third is not first
    assert not third.same_grants(first)
    assert third.allows(Resource.supervisor_pins, Action.execute)
    assert not first.allows(Resource.supervisor_pins, Action.execute)


def test_ttl_and_assignment_expiry_bound_cache(catalog: PermissionCatalog, clock) -> None:
    resolver = _resolver(catalog, clock, ttl=300)
    temp = RoleAssignment(
        "FIELD_SUPERVISOR", ScopeKind.team, "t1", expires_at=clock.now() + timedelta(seconds=60)
    )
    principal = Principal(id="u1", assignments=(temp,), assignments_version=7)

    first = resolver.resolve(principal)
    assert first.expires_at == clock.now() + timedelta(seconds=60)
    assert first.allows(Resource.devices, Action.manage)

    clock.advance(61)
    after_expiry = resolver.resolve(principal)
    assert after_expiry is not first
    assert not after_expiry.allows(Resource.devices, Action.manage)


def test_ttl_expiry_recomputes(catalog: PermissionCatalog, clock) -> None:
    resolver = _resolver(catalog, clock, ttl=30)
    principal = Principal(id="u1", assignments=(RoleAssignment("AUDITOR", ScopeKind.organization, "o1"),))
    first = resolver.resolve(principal)
    clock.advance(31)
    second = resolver.resolve(principal)
    assert second is not first
    assert second.same_grants(first)


def test_invalidate_forces_recompute(catalog: PermissionCatalog, clock) -> None:
    resolver = _resolver(catalog, clock)
    principal = Principal(id="u1", assignments=(RoleAssignment("AUDITOR", ScopeKind.organization, "o1"),))
    first = resolver.resolve(principal)
    resolver.invalidate("u1")
    assert resolver.resolve(principal) is not first
