"""
fleet_trust.authz.models

Authorization domain models.

Responsibilities:
- Define the closed enumerations for scopes, resources and actions.
- Define principals, role assignments and the effective permission set.
- Define the per-request boundary context and the decision returned to callers.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fleet_trust.errors import ErrorKind


class ScopeKind(enum.StrEnum):
    # Declared widest-first; `breadth` gives the ordering used for "wider scope wins".
    system = "SYSTEM"
    organization = "ORGANIZATION"
    region = "REGION"
    team = "TEAM"
    project = "PROJECT"
    user = "USER"

    @property
    def breadth(self) -> int:
        return _BREADTH[self]

    def covers(self, other: ScopeKind) -> bool:
        return self.breadth >= other.breadth


_BREADTH: dict[ScopeKind, int] = {
    ScopeKind.system: 6,
    ScopeKind.organization: 5,
    ScopeKind.region: 4,
    ScopeKind.team: 3,
    ScopeKind.project: 2,
    ScopeKind.user: 1,
}


def widest(scopes: frozenset[ScopeKind] | set[ScopeKind]) -> ScopeKind:
    return max(scopes, key=lambda s: s.breadth)


class Resource(enum.StrEnum):
    teams = "TEAMS"
    users = "USERS"
    devices = "DEVICES"
    supervisor_pins = "SUPERVISOR_PINS"
    telemetry = "TELEMETRY"
    policy = "POLICY"
    auth = "AUTH"
    projects = "PROJECTS"
    organization = "ORGANIZATION"
    support_tickets = "SUPPORT_TICKETS"
    audit_logs = "AUDIT_LOGS"
    system_settings = "SYSTEM_SETTINGS"
    role_management = "ROLE_MANAGEMENT"


class Action(enum.StrEnum):
    create = "CREATE"
    read = "READ"
    update = "UPDATE"
    delete = "DELETE"
    execute = "EXECUTE"
    # MANAGE satisfies every other action on the same resource.
    manage = "MANAGE"


@dataclass(frozen=True, slots=True)
class Permission:
    resource: Resource
    action: Action
    scope: ScopeKind

    @property
    def key(self) -> tuple[Resource, Action]:
        return (self.resource, self.action)


@dataclass(frozen=True, slots=True)
class RoleAssignment:
    role: str
    scope: ScopeKind
    scope_id: str | None = None
    level: int | None = None
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.scope is not ScopeKind.system and not self.scope_id:
            raise ValueError(f"{self.scope} assignment of {self.role!r} requires a scope_id")

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or now < self.expires_at


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated actor plus the role assignments the caller fetched for it.

    `assignments_version` is the change counter from the assignment store; callers bump
    it whenever assignments change so cached permission sets are recomputed.
    """

    id: str
    assignments: tuple[RoleAssignment, ...] = ()
    assignments_version: int = 0


@dataclass(frozen=True, slots=True)
class Grant:
    """
    One effective (resource, action) pair.

    `scopes` holds every scope kind granted for the pair; `anchors` holds the
    (assignment scope, scope id) of each contributing assignment.
    """

    resource: Resource
    action: Action
    scopes: frozenset[ScopeKind]
    anchors: frozenset[tuple[ScopeKind, str]]
    roles: frozenset[str]

    @property
    def scope(self) -> ScopeKind:
        return widest(self.scopes)

    def anchored_ids(self, scope: ScopeKind) -> frozenset[str]:
        return frozenset(scope_id for kind, scope_id in self.anchors if kind is scope)

    def merged(self, other: Grant) -> Grant:
        return Grant(
            resource=self.resource,
            action=self.action,
            scopes=self.scopes | other.scopes,
            anchors=self.anchors | other.anchors,
            roles=self.roles | other.roles,
        )


@dataclass(frozen=True)
class EffectivePermissionSet:
    principal_id: str
    version: int
    grants: dict[tuple[Resource, Action], Grant]
    roles: tuple[str, ...]
    catalog_revision: str
    computed_at: datetime
    expires_at: datetime

    def lookup(self, resource: Resource, action: Action) -> Grant | None:
        exact = self.grants.get((resource, action))
        manage = self.grants.get((resource, Action.manage))
        if exact is None:
            if manage is None:
                return None
            # Report the requested action, not MANAGE.
            return Grant(
                resource=resource,
                action=action,
                scopes=manage.scopes,
                anchors=manage.anchors,
                roles=manage.roles,
            )
        if manage is None or action is Action.manage:
            return exact
        return exact.merged(manage)

    def allows(self, resource: Resource, action: Action) -> bool:
        return self.lookup(resource, action) is not None

    def granted_scope(self, resource: Resource, action: Action) -> ScopeKind | None:
        grant = self.lookup(resource, action)
        return grant.scope if grant is not None else None

    def is_fresh(self, *, now: datetime, version: int, catalog_revision: str) -> bool:
        return (
            self.version == version
            and self.catalog_revision == catalog_revision
            and now < self.expires_at
        )

    def same_grants(self, other: EffectivePermissionSet) -> bool:
        return self.grants == other.grants and self.roles == other.roles


@dataclass(frozen=True, slots=True)
class Membership:
    scope: ScopeKind
    scope_id: str
    expires_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or now < self.expires_at


@dataclass(frozen=True, slots=True)
class BoundaryContext:
    """
    Target of one authorization check.

    The parent ids (`organization_id`, `region_id`, `team_id`, `project_id`) locate the
    target inside the hierarchy; `memberships` are the principal's team/region links.
    """

    target_scope: ScopeKind
    target_id: str
    resource_id: str | None = None
    organization_id: str | None = None
    region_id: str | None = None
    team_id: str | None = None
    project_id: str | None = None
    direct_assignment: bool = False
    memberships: tuple[Membership, ...] = ()

    def owner(self, scope: ScopeKind) -> str | None:
        """Id of the `scope`-level container holding the target (the target itself counts)."""
        if self.target_scope is scope:
            return self.target_id
        return {
            ScopeKind.organization: self.organization_id,
            ScopeKind.region: self.region_id,
            ScopeKind.team: self.team_id,
            ScopeKind.project: self.project_id,
        }.get(scope)


class DecisionReason(enum.StrEnum):
    system_scope = "SYSTEM_SCOPE"
    organization_scope = "ORGANIZATION_SCOPE"
    self_scope = "SELF_SCOPE"
    direct_assignment = "DIRECT_ASSIGNMENT"
    team_membership = "TEAM_MEMBERSHIP"
    region_membership = "REGION_MEMBERSHIP"
    no_permission = "NO_PERMISSION"
    out_of_scope = "OUT_OF_SCOPE"


@dataclass(frozen=True, slots=True)
class Decision:
    allow: bool
    reason: DecisionReason
    resource: Resource
    action: Action
    granted_scope: ScopeKind | None = None
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def error_kind(self) -> ErrorKind | None:
        if self.allow:
            return None
        if self.reason is DecisionReason.no_permission:
            return ErrorKind.no_permission
        return ErrorKind.out_of_scope

    def as_audit(self) -> dict[str, Any]:
        return {
            "allow": self.allow,
            "reason": str(self.reason),
            "resource": str(self.resource),
            "action": str(self.action),
            "granted_scope": str(self.granted_scope) if self.granted_scope else None,
            "roles": sorted(self.roles),
        }


# --- Module Notes -----------------------------------------------------------
# Every model is immutable. A permission set is replaced wholesale on recompute,
# so readers never observe a partially-built value.
