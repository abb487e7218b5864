"""
fleet_trust.api.app

FastAPI app factory for the fleet trust service.

Responsibilities:
- Translate `Settings` into constructor arguments and wire the trust core.
- Build the FastAPI application and register routers/middleware.
- Provide the single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from fastapi import FastAPI

from fleet_trust.abuse.lockout import LockoutTracker
from fleet_trust.abuse.rate_limit import Purpose, RateLimiter, RateLimitRule
from fleet_trust.abuse.stores import (
    CounterStore,
    InMemoryCounterStore,
    InMemoryLockoutStore,
    LockoutStore,
)
from fleet_trust.api.deps import TrustCore
from fleet_trust.api.routers.authz import router as authz_router
from fleet_trust.api.routers.credentials import router as credentials_router
from fleet_trust.api.routers.dev_auth import router as dev_auth_router
from fleet_trust.api.routers.health import router as health_router
from fleet_trust.api.routers.policy import router as policy_router
from fleet_trust.authz.boundary import BoundaryEvaluator
from fleet_trust.authz.cache import InMemoryPermissionCache
from fleet_trust.authz.catalog import PermissionCatalog, default_catalog
from fleet_trust.authz.resolver import PermissionResolver
from fleet_trust.clock import ClockSource, SystemClock
from fleet_trust.observability.logging import configure_logging, get_logger
from fleet_trust.observability.middleware import RequestContextMiddleware
from fleet_trust.policy.builder import PolicyBuilder
from fleet_trust.policy.envelope import PolicySigner, PolicyVerifier
from fleet_trust.policy.keyring import KeyRing
from fleet_trust.policy.models import PolicyDefaults
from fleet_trust.services.credential_guard import CredentialGuard
from fleet_trust.services.policy_service import PolicyIssuer
from fleet_trust.settings import Settings, get_settings

log = get_logger(__name__)


def policy_defaults(settings: Settings) -> PolicyDefaults:
    return PolicyDefaults(
        version=settings.policy_version,
        ttl_hours=settings.policy_ttl_hours,
        max_clock_skew_sec=settings.max_clock_skew_sec,
        max_policy_age_sec=settings.max_policy_age_sec,
        grace_minutes=settings.session_grace_minutes,
        supervisor_override_minutes=settings.supervisor_override_minutes,
        pin_mode=settings.pin_mode,
        pin_min_length=settings.pin_min_length,
        pin_retry_limit=settings.pin_retry_limit,
        pin_cooldown_seconds=settings.pin_cooldown_seconds,
        gps_fix_interval_minutes=settings.gps_fix_interval_minutes,
        gps_min_displacement_m=settings.gps_min_displacement_m,
        gps_accuracy_threshold_m=settings.gps_accuracy_threshold_m,
        gps_max_age_minutes=settings.gps_max_age_minutes,
        heartbeat_minutes=settings.heartbeat_minutes,
        telemetry_batch_max=settings.telemetry_batch_max,
        telemetry_retry_attempts=settings.telemetry_retry_attempts,
        telemetry_upload_interval_minutes=settings.telemetry_upload_interval_minutes,
        blocked_message=settings.policy_ui_blocked_message,
    )


def rate_limit_rules(settings: Settings) -> dict[Purpose, RateLimitRule]:
    return {
        Purpose.login: RateLimitRule(settings.login_rate_limit, settings.login_rate_window_seconds),
        Purpose.pin: RateLimitRule(settings.pin_rate_limit, settings.pin_rate_window_seconds),
        Purpose.supervisor_override: RateLimitRule(
            settings.supervisor_override_rate_limit,
            settings.supervisor_override_rate_window_seconds,
        ),
        Purpose.telemetry: RateLimitRule(
            settings.telemetry_rate_limit, settings.telemetry_rate_window_seconds, fail_closed=False
        ),
        Purpose.bulk_ingest: RateLimitRule(
            settings.bulk_ingest_rate_limit,
            settings.bulk_ingest_rate_window_seconds,
            fail_closed=False,
        ),
    }


def build_keyring(settings: Settings, clock: ClockSource) -> KeyRing:
    keyring = KeyRing.from_config(
        clock=clock,
        current_b64=settings.policy_sign_private_b64,
        current_kid=settings.policy_key_id,
        previous_b64=settings.policy_sign_private_b64_old,
        previous_kid=settings.policy_key_id_old,
    )
    if not keyring.has_signing_key() and settings.env in ("dev", "test"):
        # Dev/test convenience only. Prod must configure a key or fail to start.
        keyring.add_signing_key(f"{settings.policy_key_id}-ephemeral", Ed25519PrivateKey.generate())
        log.warning("ephemeral_signing_key_generated", env=settings.env)
    return keyring


def build_core(
    settings: Settings,
    *,
    clock: ClockSource | None = None,
    counter_store: CounterStore | None = None,
    lockout_store: LockoutStore | None = None,
) -> TrustCore:
    """
    Wire every core component from settings.

    Raises NoSigningKey when no signing key is configured outside dev/test.
    """
    clock = clock or SystemClock()
    if settings.permission_catalog_path:
        catalog = PermissionCatalog.from_json_file(settings.permission_catalog_path)
    else:
        catalog = default_catalog()
    resolver = PermissionResolver(
        catalog=catalog,
        clock=clock,
        cache=InMemoryPermissionCache(),
        ttl_seconds=settings.permission_cache_ttl_seconds,
    )

    keyring = build_keyring(settings, clock)
    signer = PolicySigner(keyring=keyring)
    issuer = PolicyIssuer(
        builder=PolicyBuilder(
            defaults=policy_defaults(settings),
            precision_seconds=settings.policy_precision_seconds,
        ),
        signer=signer,
        clock=clock,
    )

    origin_global = None
    if settings.origin_global_limit is not None:
        origin_global = RateLimitRule(
            settings.origin_global_limit, settings.origin_global_window_seconds
        )
    limiter = RateLimiter(
        store=counter_store if counter_store is not None else InMemoryCounterStore(),
        clock=clock,
        rules=rate_limit_rules(settings),
        origin_global=origin_global,
        store_unavailable_retry_after=settings.store_unavailable_retry_after_seconds,
    )
    lockout = LockoutTracker(
        store=lockout_store if lockout_store is not None else InMemoryLockoutStore(),
        clock=clock,
        threshold=settings.lockout_threshold,
        base_seconds=settings.lockout_base_seconds,
        max_seconds=settings.lockout_max_seconds,
        max_stage=settings.lockout_max_stage,
        stage_decay_seconds=settings.lockout_stage_decay_seconds,
        store_unavailable_retry_after=settings.store_unavailable_retry_after_seconds,
    )

    return TrustCore(
        clock=clock,
        catalog=catalog,
        resolver=resolver,
        evaluator=BoundaryEvaluator(resolver=resolver, clock=clock),
        keyring=keyring,
        issuer=issuer,
        verifier=PolicyVerifier(keyring=keyring, clock=clock),
        limiter=limiter,
        lockout=lockout,
        guard=CredentialGuard(limiter=limiter, lockout=lockout),
    )


def create_app(*, settings: Settings, clock: ClockSource | None = None) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(
        service_name=settings.service_name, level=settings.log_level, fmt=settings.log_format
    )
    core = build_core(settings, clock=clock)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        log.info(
            "startup",
            env=settings.env,
            signing_kid=core.keyring.signing_key().kid,
            catalog_revision=core.catalog.revision,
        )
        yield
        log.info("shutdown")

    app = FastAPI(
        title="Fleet Trust Service",
        version="0.1.0",
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.core = core
    app.state.settings = settings
    # Route dependencies read this app's settings rather than the process-wide cache.
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestContextMiddleware, trust_forwarded_for=settings.trust_forwarded_for)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(policy_router)
    app.include_router(authz_router)
    app.include_router(credentials_router)
    return app


# --- Module Notes -----------------------------------------------------------
# Stores default to in-memory; a multi-instance deployment passes shared
# `CounterStore`/`LockoutStore` implementations into `build_core`.
