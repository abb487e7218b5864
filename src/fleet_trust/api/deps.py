"""
fleet_trust.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Define the `TrustCore` bundle of wired components kept on `app.state`.
- Encapsulate app.state access for routers.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from fleet_trust.abuse.lockout import LockoutTracker
from fleet_trust.abuse.rate_limit import RateLimiter
from fleet_trust.authz.boundary import BoundaryEvaluator
from fleet_trust.authz.catalog import PermissionCatalog
from fleet_trust.authz.resolver import PermissionResolver
from fleet_trust.clock import ClockSource
from fleet_trust.policy.envelope import PolicyVerifier
from fleet_trust.policy.keyring import KeyRing
from fleet_trust.services.credential_guard import CredentialGuard
from fleet_trust.services.policy_service import PolicyIssuer


@dataclass(frozen=True, slots=True)
class TrustCore:
    clock: ClockSource
    catalog: PermissionCatalog
    resolver: PermissionResolver
    evaluator: BoundaryEvaluator
    keyring: KeyRing
    issuer: PolicyIssuer
    verifier: PolicyVerifier
    limiter: RateLimiter
    lockout: LockoutTracker
    guard: CredentialGuard


def trust_core(request: Request) -> TrustCore:
    # Built once in `fleet_trust.api.app.create_app`.
    return request.app.state.core  # type: ignore[attr-defined]


def client_origin(request: Request) -> str | None:
    # Resolved once by `RequestContextMiddleware`.
    origin = getattr(request.state, "client_origin", None)
    if origin:
        return origin
    return request.client.host if request.client else None


# --- Module Notes -----------------------------------------------------------
# Per-request resources would be added here; the core itself is process-wide.
