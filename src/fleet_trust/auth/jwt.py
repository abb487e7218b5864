"""
fleet_trust.auth.jwt

Service token issuing and validation.

Responsibilities:
- Issue short-lived service tokens (dev endpoint, tests) with a unique `jti`.
- Decode tokens with strict registered claims (iss/aud/exp/iat/sub/jti) and a small
  clock leeway for backends whose clocks drift.
- Turn the validated claims into a `ServicePrincipal`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError

from fleet_trust.auth.models import ServicePrincipal


@dataclass(frozen=True, slots=True)
class JwtConfig:
    alg: str
    issuer: str
    audience: str
    secret: str
    leeway_seconds: int = 0


class JwtValidationError(Exception):
    pass


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    roles: list[str],
    ttl: timedelta = timedelta(hours=1),
    now: datetime | None = None,
) -> str:
    issued = now or datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": subject,
        "jti": uuid.uuid4().hex,
        "roles": [str(r) for r in roles],
        "iat": int(issued.timestamp()),
        "exp": int((issued + ttl).timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def decode_service_token(*, cfg: JwtConfig, token: str) -> ServicePrincipal:
    try:
        claims = jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            leeway=cfg.leeway_seconds,
            options={"require": ["exp", "iat", "iss", "aud", "sub", "jti"]},
        )
    except InvalidTokenError as e:
        raise JwtValidationError(str(e)) from e

    subject = claims["sub"]
    roles = claims.get("roles", [])
    if not isinstance(subject, str) or not subject:
        raise JwtValidationError("subject must be a non-empty string")
    if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
        raise JwtValidationError("roles must be a list of strings")

    return ServicePrincipal(
        subject=subject,
        roles=frozenset(roles),
        token_id=str(claims["jti"]),
        expires_at=datetime.fromtimestamp(claims["exp"], tz=UTC),
    )


# --- Module Notes -----------------------------------------------------------
# Policy envelopes use EdDSA via `fleet_trust.policy.envelope`; this module only
# covers the symmetric service tokens guarding the adapter.
