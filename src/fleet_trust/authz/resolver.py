"""
fleet_trust.authz.resolver

Effective permission resolution.

Responsibilities:
- Union catalog permissions across a principal's active role assignments.
- Keep the widest scope per (resource, action) while remembering every contributing
  assignment anchor for boundary checks.
- Serve repeated calls from the cache until the assignments version, catalog
  revision or TTL changes.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from fleet_trust.authz.cache import InMemoryPermissionCache, PermissionCache
from fleet_trust.authz.catalog import PermissionCatalog
from fleet_trust.authz.models import (
    Action,
    EffectivePermissionSet,
    Grant,
    Principal,
    Resource,
    ScopeKind,
)
from fleet_trust.clock import ClockSource
from fleet_trust.observability.logging import get_logger

log = get_logger(__name__)

# SYSTEM assignments carry no scope id.
_SYSTEM_ANCHOR = "*"


class PermissionResolver:
    def __init__(
        self,
        *,
        catalog: PermissionCatalog,
        clock: ClockSource,
        cache: PermissionCache | None = None,
        ttl_seconds: float = 300.0,
    ) -> None:
        self._catalog = catalog
        self._clock = clock
        self._cache = cache if cache is not None else InMemoryPermissionCache()
        self._ttl = timedelta(seconds=ttl_seconds)

    @property
    def catalog(self) -> PermissionCatalog:
        return self._catalog

    def resolve(self, principal: Principal) -> EffectivePermissionSet:
        now = self._clock.now()
        cached = self._cache.get(principal.id)
        if cached is not None and cached.is_fresh(
            now=now,
            version=principal.assignments_version,
            catalog_revision=self._catalog.revision,
        ):
            log.debug("permission_cache_hit", principal_id=principal.id, version=cached.version)
            return cached

        computed = self._compute(principal, now)
        self._cache.put(computed)
        log.debug(
            "permissions_resolved",
            principal_id=principal.id,
            version=computed.version,
            roles=list(computed.roles),
            grants=len(computed.grants),
        )
        return computed

    def invalidate(self, principal_id: str | None = None) -> None:
        self._cache.invalidate(principal_id)

    def _compute(self, principal: Principal, now: datetime) -> EffectivePermissionSet:
        grants: dict[tuple[Resource, Action], Grant] = {}
        roles: set[str] = set()
        valid_until = now + self._ttl

        for assignment in principal.assignments:
            # Expired assignments never contribute, even if not yet cleaned up upstream.
            if not assignment.is_active(now):
                continue

            role = self._catalog.get(assignment.role)
            if role is None:
                # Unknown roles grant nothing; one bad record must not fail the principal.
                log.warning(
                    "unknown_role_skipped",
                    principal_id=principal.id,
                    role=assignment.role,
                    scope=str(assignment.scope),
                )
                continue
            if not role.permits_scope(assignment.scope):
                log.warning(
                    "assignment_scope_mismatch_skipped",
                    principal_id=principal.id,
                    role=role.name,
                    scope=str(assignment.scope),
                    allowed=sorted(str(s) for s in role.assignable_scopes),
                )
                continue

            roles.add(role.name)
            if assignment.expires_at is not None:
                # The set must not outlive the first assignment that lapses.
                valid_until = min(valid_until, assignment.expires_at)
            anchor = (assignment.scope, assignment.scope_id or _SYSTEM_ANCHOR)
            for perm in role.permissions:
                # A permission never reaches wider than the assignment it came through.
                scope = perm.scope if assignment.scope.covers(perm.scope) else assignment.scope
                grant = Grant(
                    resource=perm.resource,
                    action=perm.action,
                    scopes=frozenset({scope}),
                    anchors=frozenset(
                        {(ScopeKind.user, principal.id) if scope is ScopeKind.user else anchor}
                    ),
                    roles=frozenset({role.name}),
                )
                existing = grants.get(perm.key)
                grants[perm.key] = grant if existing is None else existing.merged(grant)

        return EffectivePermissionSet(
            principal_id=principal.id,
            version=principal.assignments_version,
            grants=grants,
            roles=tuple(sorted(roles)),
            catalog_revision=self._catalog.revision,
            computed_at=now,
            expires_at=valid_until,
        )


# --- Module Notes -----------------------------------------------------------
# Assignments are fetched by the caller from the external store; this module never
# performs I/O, so resolution is CPU-bound and safe to call from any thread.
