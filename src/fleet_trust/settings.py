"""
fleet_trust.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for the core and its API adapter.
- Hide secrets from repr/logging (signing keys, service JWT secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Enterprise pattern:
    - Strict env-driven configuration
    - Defaults safe for local dev
    - Components receive plain values from the composition root, never this object
    """

    model_config = SettingsConfigDict(env_prefix="FLEET_TRUST_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "fleet-trust"
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Service-to-service auth for the adapter endpoints
    jwt_alg: str = "HS256"
    jwt_issuer: str = "fleet-trust"
    jwt_audience: str = "fleet-trust-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)
    jwt_leeway_seconds: int = 30
    # Take the client origin from X-Forwarded-For (only behind a trusted proxy).
    trust_forwarded_for: bool = False

    # Permission resolution
    permission_cache_ttl_seconds: float = 300.0
    # JSON role catalog; the built-in platform catalog is used when unset.
    permission_catalog_path: str | None = None

    # Clock + policy document
    max_clock_skew_sec: int = 180
    max_policy_age_sec: int = 86400
    policy_ttl_hours: int = 24
    policy_version: int = 3
    policy_precision_seconds: int = 1

    session_grace_minutes: int = 10
    supervisor_override_minutes: int = 120
    pin_mode: Literal["server_verify", "local_verify"] = "server_verify"
    pin_min_length: int = 6
    pin_retry_limit: int = 5
    pin_cooldown_seconds: int = 300
    gps_fix_interval_minutes: int = 3
    gps_min_displacement_m: int = 50
    gps_accuracy_threshold_m: int = 50
    gps_max_age_minutes: int = 10
    heartbeat_minutes: int = 10
    telemetry_batch_max: int = 50
    telemetry_retry_attempts: int = 5
    telemetry_upload_interval_minutes: int = 15
    policy_ui_blocked_message: str = "Access is outside the allowed working window."

    # Signing keys (base64 Ed25519 seed or seed||public)
    policy_sign_private_b64: str | None = Field(default=None, repr=False)
    policy_key_id: str = "policy-signing-key"
    policy_sign_private_b64_old: str | None = Field(default=None, repr=False)
    policy_key_id_old: str = "policy-signing-key-old"
    key_rotation_grace_seconds: int = 7 * 24 * 3600

    # Rate limits: (max requests, window seconds) per purpose
    login_rate_limit: int = 5
    login_rate_window_seconds: int = 900
    pin_rate_limit: int = 10
    pin_rate_window_seconds: int = 900
    supervisor_override_rate_limit: int = 10
    supervisor_override_rate_window_seconds: int = 900
    telemetry_rate_limit: int = 1000
    telemetry_rate_window_seconds: int = 60
    bulk_ingest_rate_limit: int = 100
    bulk_ingest_rate_window_seconds: int = 60
    # Cross-purpose ceiling per network origin; None disables it.
    origin_global_limit: int | None = None
    origin_global_window_seconds: int = 900
    store_unavailable_retry_after_seconds: int = 30

    # Lockout
    lockout_threshold: int = 5
    lockout_base_seconds: int = 300
    lockout_max_seconds: int = 3600
    lockout_max_stage: int = 4
    lockout_stage_decay_seconds: int = 86400


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# The trust core itself never imports this module; `api.app.create_app` translates
# settings into constructor arguments so the core stays testable without env vars.
