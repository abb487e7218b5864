"""
fleet_trust.authz.catalog

Role → permission catalog.

Responsibilities:
- Load role definitions (hierarchy level, assignable scopes, permissions) from a
  mapping or JSON document, rejecting unknown resources/actions/scopes up front.
- Expose an immutable catalog instance that the resolver consults.
- Ship the platform's default nine-role catalog.

Document schema:
  {
    "roles": {
      "<ROLE>": {
        "level": 2,
        "assignable_scopes": ["TEAM"],
        "permission_scope": "TEAM",
        "permissions": ["DEVICES:MANAGE", "AUTH:READ@USER", ...]
      }
    }
  }

A permission string is `RESOURCE:ACTION`, optionally suffixed with `@SCOPE` to
override the role's `permission_scope`.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from fleet_trust.authz.models import Action, Permission, Resource, ScopeKind
from fleet_trust.errors import CatalogError

# Resources that may only ever be granted at SYSTEM scope.
SYSTEM_ONLY_RESOURCES = frozenset({Resource.system_settings, Resource.role_management})


@dataclass(frozen=True, slots=True)
class RoleDefinition:
    name: str
    level: int
    assignable_scopes: frozenset[ScopeKind]
    permissions: frozenset[Permission]

    def permits_scope(self, scope: ScopeKind) -> bool:
        return scope in self.assignable_scopes


class PermissionCatalog:
    """
    Immutable role table.

    Usage:
      catalog = PermissionCatalog.from_json_file("/etc/fleet/roles.json")
      role = catalog.get("FIELD_SUPERVISOR")
    """

    def __init__(self, roles: Iterable[RoleDefinition]) -> None:
        table: dict[str, RoleDefinition] = {}
        for role in roles:
            if role.name in table:
                raise CatalogError(f"duplicate role {role.name}")
            _validate_role(role)
            table[role.name] = role
        self._roles: Mapping[str, RoleDefinition] = MappingProxyType(table)
        self._revision = _revision_of(table.values())

    @property
    def revision(self) -> str:
        # Content hash; permission caches keyed on it go stale when the catalog changes.
        return self._revision

    def get(self, name: str) -> RoleDefinition | None:
        return self._roles.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._roles

    def __iter__(self) -> Iterator[RoleDefinition]:
        return iter(self._roles.values())

    def __len__(self) -> int:
        return len(self._roles)

    @classmethod
    def from_mapping(cls, doc: Mapping[str, Any]) -> PermissionCatalog:
        roles_doc = doc.get("roles")
        if not isinstance(roles_doc, Mapping):
            raise CatalogError("catalog document missing 'roles' mapping")
        return cls(_parse_role(name, body) for name, body in roles_doc.items())

    @classmethod
    def from_json_file(cls, path: str | Path) -> PermissionCatalog:
        with open(path, encoding="utf-8") as f:
            return cls.from_mapping(json.load(f))


def _parse_role(name: str, body: Any) -> RoleDefinition:
    if not isinstance(body, Mapping):
        raise CatalogError(f"role {name}: definition must be a mapping")
    level = body.get("level")
    if not isinstance(level, int) or isinstance(level, bool) or level < 0:
        raise CatalogError(f"role {name}: 'level' must be a non-negative integer")

    assignable = frozenset(_scope(name, s) for s in body.get("assignable_scopes", []))
    if not assignable:
        raise CatalogError(f"role {name}: at least one assignable scope is required")

    default_scope = _scope(name, body.get("permission_scope", "TEAM"))
    permissions = frozenset(
        _permission(name, entry, default_scope) for entry in body.get("permissions", [])
    )
    return RoleDefinition(
        name=name, level=level, assignable_scopes=assignable, permissions=permissions
    )


def _scope(role: str, raw: Any) -> ScopeKind:
    try:
        return ScopeKind(str(raw).upper())
    except ValueError as e:
        raise CatalogError(f"role {role}: unknown scope {raw!r}") from e


def _permission(role: str, entry: Any, default_scope: ScopeKind) -> Permission:
    if not isinstance(entry, str) or ":" not in entry:
        raise CatalogError(f"role {role}: permission {entry!r} must look like RESOURCE:ACTION")
    pair, _, scope_raw = entry.partition("@")
    resource_raw, _, action_raw = pair.partition(":")
    try:
        resource = Resource(resource_raw.strip().upper())
        action = Action(action_raw.strip().upper())
    except ValueError as e:
        raise CatalogError(f"role {role}: unknown permission {entry!r}") from e
    scope = _scope(role, scope_raw.strip()) if scope_raw else default_scope
    return Permission(resource=resource, action=action, scope=scope)


def _validate_role(role: RoleDefinition) -> None:
    for perm in role.permissions:
        if perm.resource in SYSTEM_ONLY_RESOURCES and perm.scope is not ScopeKind.system:
            raise CatalogError(
                f"role {role.name}: {perm.resource} may only be granted at SYSTEM scope"
            )


def _revision_of(roles: Iterable[RoleDefinition]) -> str:
    canonical = sorted(
        (
            r.name,
            r.level,
            sorted(str(s) for s in r.assignable_scopes),
            sorted(f"{p.resource}:{p.action}@{p.scope}" for p in r.permissions),
        )
        for r in roles
    )
    digest = hashlib.sha256(json.dumps(canonical, separators=(",", ":")).encode("utf-8"))
    return digest.hexdigest()[:16]


_MEMBER = [
    "TEAMS:READ",
    "USERS:READ",
    "DEVICES:READ",
    "DEVICES:CREATE",
    "DEVICES:UPDATE",
    "TELEMETRY:CREATE",
    "TELEMETRY:READ",
    "POLICY:READ",
    "PROJECTS:READ@PROJECT",
    "AUTH:CREATE@USER",
    "AUTH:READ@USER",
    "USERS:UPDATE@USER",
]

_SUPERVISOR = [
    *_MEMBER,
    "TEAMS:MANAGE",
    "USERS:MANAGE",
    "DEVICES:MANAGE",
    "SUPERVISOR_PINS:READ",
    "SUPERVISOR_PINS:MANAGE",
    "SUPERVISOR_PINS:EXECUTE",
    "TELEMETRY:MANAGE",
    "POLICY:MANAGE",
    "AUTH:MANAGE@USER",
]

_READ_ONLY = [
    "TEAMS:READ",
    "USERS:READ",
    "DEVICES:READ",
    "TELEMETRY:READ",
    "POLICY:READ",
    "PROJECTS:READ",
    "SUPPORT_TICKETS:READ",
    "AUDIT_LOGS:READ",
]

DEFAULT_CATALOG_DOCUMENT: dict[str, Any] = {
    "roles": {
        "TEAM_MEMBER": {
            "level": 1,
            "assignable_scopes": ["TEAM"],
            "permission_scope": "TEAM",
            "permissions": _MEMBER,
        },
        "FIELD_SUPERVISOR": {
            "level": 2,
            "assignable_scopes": ["TEAM"],
            "permission_scope": "TEAM",
            "permissions": _SUPERVISOR,
        },
        "REGIONAL_MANAGER": {
            "level": 3,
            "assignable_scopes": ["REGION"],
            "permission_scope": "REGION",
            "permissions": [
                # Supervisor rights, picked up at the role's REGION scope.
                *_SUPERVISOR,
                "TEAMS:CREATE",
                "USERS:CREATE",
                "DEVICES:DELETE",
                "SUPERVISOR_PINS:DELETE",
                "SUPPORT_TICKETS:READ",
                "SUPPORT_TICKETS:CREATE",
                "AUDIT_LOGS:READ",
            ],
        },
        "SUPPORT_AGENT": {
            "level": 4,
            "assignable_scopes": ["REGION", "ORGANIZATION"],
            "permission_scope": "ORGANIZATION",
            "permissions": [*_READ_ONLY, "SUPPORT_TICKETS:MANAGE"],
        },
        "AUDITOR": {
            "level": 5,
            "assignable_scopes": ["ORGANIZATION", "SYSTEM"],
            "permission_scope": "ORGANIZATION",
            "permissions": _READ_ONLY,
        },
        "DEVICE_MANAGER": {
            "level": 6,
            "assignable_scopes": ["TEAM", "REGION"],
            "permission_scope": "REGION",
            "permissions": [
                "DEVICES:MANAGE",
                "TEAMS:READ",
                "USERS:READ",
                "TELEMETRY:READ",
                "TELEMETRY:MANAGE",
                "POLICY:READ",
                "SUPPORT_TICKETS:CREATE",
                "SUPPORT_TICKETS:READ",
            ],
        },
        "POLICY_ADMIN": {
            "level": 7,
            "assignable_scopes": ["TEAM", "REGION", "ORGANIZATION"],
            "permission_scope": "ORGANIZATION",
            "permissions": [
                "POLICY:MANAGE",
                "DEVICES:READ",
                "TEAMS:READ",
                "TELEMETRY:READ",
                "AUDIT_LOGS:READ",
            ],
        },
        "NATIONAL_SUPPORT_ADMIN": {
            "level": 8,
            "assignable_scopes": ["ORGANIZATION"],
            "permission_scope": "ORGANIZATION",
            "permissions": [
                "TEAMS:READ",
                "TEAMS:UPDATE",
                "USERS:MANAGE",
                "DEVICES:MANAGE",
                "SUPERVISOR_PINS:EXECUTE",
                "TELEMETRY:READ",
                "POLICY:READ",
                "PROJECTS:READ",
                "SUPPORT_TICKETS:MANAGE",
                "AUDIT_LOGS:READ",
            ],
        },
        "SYSTEM_ADMIN": {
            "level": 9,
            "assignable_scopes": ["SYSTEM"],
            "permission_scope": "SYSTEM",
            "permissions": [
                "TEAMS:MANAGE",
                "USERS:MANAGE",
                "DEVICES:MANAGE",
                "SUPERVISOR_PINS:MANAGE",
                "TELEMETRY:MANAGE",
                "POLICY:MANAGE",
                "AUTH:MANAGE",
                "PROJECTS:MANAGE",
                "ORGANIZATION:MANAGE",
                "SUPPORT_TICKETS:MANAGE",
                "AUDIT_LOGS:MANAGE",
                "SYSTEM_SETTINGS:MANAGE",
                "ROLE_MANAGEMENT:MANAGE",
            ],
        },
    }
}


def default_catalog() -> PermissionCatalog:
    return PermissionCatalog.from_mapping(DEFAULT_CATALOG_DOCUMENT)


# --- Module Notes -----------------------------------------------------------
# The catalog is constructed once at startup and injected; there is no module-level
# mutable role table. Reloading means building a new instance (new revision).
