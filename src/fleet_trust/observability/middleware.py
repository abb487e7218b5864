"""
fleet_trust.observability.middleware

HTTP middleware for request-scoped logging context.

Responsibilities:
- Generate/propagate request IDs.
- Resolve the client's network origin once per request (rate limiting keys on it).
- Bind request metadata into structlog contextvars and log one completion line.
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from fleet_trust.observability.logging import get_logger

log = get_logger(__name__)

# Health checks are not worth a log line per hit.
QUIET_PATHS = frozenset({"/healthz", "/readyz"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, trust_forwarded_for: bool = False) -> None:
        super().__init__(app)
        self._trust_forwarded_for = trust_forwarded_for

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        origin = self.client_origin(request)
        request.state.client_origin = origin

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
            origin=origin,
        )
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            if request.url.path not in QUIET_PATHS:
                log.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                )
        finally:
            structlog.contextvars.clear_contextvars()

        response.headers["x-request-id"] = request_id
        return response

    def client_origin(self, request: Request) -> str | None:
        if self._trust_forwarded_for:
            forwarded = request.headers.get("x-forwarded-for", "")
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        return request.client.host if request.client else None


# --- Module Notes -----------------------------------------------------------
# Enable `trust_forwarded_for` only behind a proxy that overwrites X-Forwarded-For;
# otherwise a client could pick its own rate-limit origin.
