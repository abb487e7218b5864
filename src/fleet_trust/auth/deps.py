"""
fleet_trust.auth.deps

FastAPI dependency functions for service authentication.

Responsibilities:
- Resolve the bearer token into a `ServicePrincipal` and bind the caller into the
  request log context.
- Enforce caller roles via reusable dependency factories.
"""

from __future__ import annotations

import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from fleet_trust.auth.jwt import JwtConfig, JwtValidationError, decode_service_token
from fleet_trust.auth.models import ServicePrincipal
from fleet_trust.observability.logging import get_logger
from fleet_trust.settings import Settings, get_settings

log = get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)


def jwt_config(settings: Settings) -> JwtConfig:
    return JwtConfig(
        alg=settings.jwt_alg,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        secret=settings.jwt_secret,
        leeway_seconds=settings.jwt_leeway_seconds,
    )


async def get_service_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(get_settings),
) -> ServicePrincipal:
    # async so the contextvars bound below stay visible to the endpoint.
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    try:
        principal = decode_service_token(cfg=jwt_config(settings), token=creds.credentials)
    except JwtValidationError as e:
        log.warning("service_token_rejected", reason=str(e))
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}") from e

    structlog.contextvars.bind_contextvars(caller=principal.subject, caller_token=principal.token_id)
    return principal


def require_roles(*required: str):
    required_set = frozenset(required)

    def _dep(principal: ServicePrincipal = Depends(get_service_principal)) -> ServicePrincipal:
        if not principal.holds(required_set):
            log.warning(
                "service_role_denied",
                caller=principal.subject,
                missing=principal.missing(required_set),
            )
            raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient role")
        return principal

    return _dep


# --- Module Notes -----------------------------------------------------------
# `get_settings` is the dependency key; `create_app` overrides it with the app's own
# settings so tests can mint tokens with their secret.
