"""
fleet_trust.api.errors

Transport mapping for core error kinds.

Responsibilities:
- Map each `ErrorKind` to an HTTP status code.
- Build `HTTPException`s carrying a stable error body and `Retry-After` when relevant.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_410_GONE,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from fleet_trust.errors import ErrorKind

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.no_permission: HTTP_403_FORBIDDEN,
    ErrorKind.out_of_scope: HTTP_403_FORBIDDEN,
    ErrorKind.incomplete_input: HTTP_400_BAD_REQUEST,
    ErrorKind.malformed: HTTP_400_BAD_REQUEST,
    ErrorKind.invalid_signature: HTTP_401_UNAUTHORIZED,
    ErrorKind.expired: HTTP_410_GONE,
    ErrorKind.rate_limited: HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.locked_out: HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.store_unavailable: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.no_signing_key: HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(kind: ErrorKind) -> int:
    return STATUS_BY_KIND[kind]


def error_response(
    kind: ErrorKind,
    message: str,
    *,
    retry_after: int | None = None,
    extra: dict[str, Any] | None = None,
) -> HTTPException:
    detail: dict[str, Any] = {"code": str(kind), "message": message}
    if retry_after is not None:
        detail["retry_after"] = retry_after
    if extra:
        detail.update(extra)
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
    return HTTPException(status_code=status_for(kind), detail=detail, headers=headers)


# --- Module Notes -----------------------------------------------------------
# Authorization denials are 403 even for OUT_OF_SCOPE; the body code tells them apart.
