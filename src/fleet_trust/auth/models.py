"""
fleet_trust.auth.models

Auth domain models.

Responsibilities:
- Define the roles a calling backend service can hold on the adapter.
- Define the authenticated calling service (`ServicePrincipal`) injected into endpoints.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class ServiceRole(enum.StrEnum):
    # Device/user backends asking for policies, decisions and credential prechecks.
    internal_system = "internal_system"
    # Operators allowed to retire policy signing keys.
    key_operator = "key_operator"
    admin = "admin"


INTERNAL_SYSTEM_ROLE = ServiceRole.internal_system


@dataclass(frozen=True, slots=True)
class ServicePrincipal:
    """
    Authenticated calling service, decoded from its bearer token.

    `token_id` is the token's `jti`; it lands in the request log context so every
    decision made for the call can be traced back to the credential that asked.
    """

    subject: str
    roles: frozenset[str]
    token_id: str | None = None
    expires_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return ServiceRole.admin in self.roles

    def holds(self, required: frozenset[str]) -> bool:
        # admin bypasses role checks (ops/debug).
        return self.is_admin or required <= self.roles

    def missing(self, required: frozenset[str]) -> list[str]:
        return [] if self.is_admin else sorted(required - self.roles)


# --- Module Notes -----------------------------------------------------------
# These identify backend services, not field users; field-user roles live in the
# permission catalog (`fleet_trust.authz.catalog`).
