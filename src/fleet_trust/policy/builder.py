"""
fleet_trust.policy.builder

Deterministic policy document assembly.

Responsibilities:
- Validate that every critical input is present (never default device/team/window fields).
- Validate value ranges of the resulting document.
- Produce an order-independent document so regenerated payloads are byte-identical.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from fleet_trust.clock import isoformat_utc, truncate
from fleet_trust.errors import IncompletePolicyInput
from fleet_trust.policy.models import (
    GpsPolicy,
    PinPolicy,
    PolicyDefaults,
    PolicyDocument,
    PolicyInputs,
    PolicyMeta,
    SessionRules,
    SessionWindow,
    TelemetryPolicy,
    TimeAnchor,
    UiPolicy,
)


class PolicyBuilder:
    def __init__(self, *, defaults: PolicyDefaults, precision_seconds: int = 1) -> None:
        self._defaults = defaults
        self._precision = precision_seconds

    def build(self, inputs: PolicyInputs, now: datetime) -> PolicyDocument:
        """
        Build the policy for one device at time `now`.

        Raises:
          IncompletePolicyInput listing every missing or invalid field.
        """
        missing = [
            name
            for name, value in (
                ("device_id", inputs.device_id),
                ("team_id", inputs.team_id),
                ("timezone", inputs.timezone),
                ("allowed_windows", inputs.allowed_windows),
            )
            if not value
        ]
        if missing:
            raise IncompletePolicyInput(missing)

        d = self._defaults
        issued = truncate(now, self._precision)
        expires = issued + timedelta(hours=d.ttl_hours)
        windows = tuple(sorted((w.canonical() for w in inputs.allowed_windows), key=SessionWindow.sort_key))

        doc = PolicyDocument(
            version=d.version,
            device_id=inputs.device_id,
            team_id=inputs.team_id,
            organization_id=inputs.organization_id or None,
            tz=inputs.timezone,
            time_anchor=TimeAnchor(
                server_now_utc=isoformat_utc(issued),
                max_clock_skew_sec=d.max_clock_skew_sec,
                max_policy_age_sec=d.max_policy_age_sec,
            ),
            session=SessionRules(
                allowed_windows=windows,
                grace_minutes=d.grace_minutes,
                supervisor_override_minutes=d.supervisor_override_minutes,
            ),
            pin=PinPolicy(
                mode=d.pin_mode,
                min_length=d.pin_min_length,
                retry_limit=d.pin_retry_limit,
                cooldown_seconds=d.pin_cooldown_seconds,
            ),
            gps=GpsPolicy(
                active_fix_interval_minutes=d.gps_fix_interval_minutes,
                min_displacement_m=d.gps_min_displacement_m,
                accuracy_threshold_m=d.gps_accuracy_threshold_m,
                max_age_minutes=d.gps_max_age_minutes,
            ),
            telemetry=TelemetryPolicy(
                heartbeat_minutes=d.heartbeat_minutes,
                batch_max=d.telemetry_batch_max,
                retry_attempts=d.telemetry_retry_attempts,
                upload_interval_minutes=d.telemetry_upload_interval_minutes,
            ),
            ui=UiPolicy(blocked_message=d.blocked_message),
            meta=PolicyMeta(issued_at=isoformat_utc(issued), expires_at=isoformat_utc(expires)),
        )

        errors = validate_document(doc)
        if errors:
            raise IncompletePolicyInput(errors)
        return doc


def validate_document(doc: PolicyDocument) -> list[str]:
    errors: list[str] = []
    if doc.version < 1:
        errors.append("version")
    if doc.time_anchor.max_clock_skew_sec < 0:
        errors.append("time_anchor.max_clock_skew_sec")
    if doc.time_anchor.max_policy_age_sec < 0:
        errors.append("time_anchor.max_policy_age_sec")
    if doc.session.grace_minutes < 0:
        errors.append("session.grace_minutes")
    if doc.session.supervisor_override_minutes < 0:
        errors.append("session.supervisor_override_minutes")
    if doc.pin.mode not in ("server_verify", "local_verify"):
        errors.append("pin.mode")
    if doc.pin.min_length < 1:
        errors.append("pin.min_length")
    if doc.pin.retry_limit < 1:
        errors.append("pin.retry_limit")
    if doc.pin.cooldown_seconds < 0:
        errors.append("pin.cooldown_seconds")
    if doc.gps.accuracy_threshold_m <= 0:
        errors.append("gps.accuracy_threshold_m")
    if doc.gps.max_age_minutes <= 0:
        errors.append("gps.max_age_minutes")
    if doc.telemetry.retry_attempts < 0:
        errors.append("telemetry.retry_attempts")
    if doc.telemetry.upload_interval_minutes < 0:
        errors.append("telemetry.upload_interval_minutes")
    if not doc.ui.blocked_message.strip():
        errors.append("ui.blocked_message")
    return errors


# --- Module Notes -----------------------------------------------------------
# `now` is passed in rather than read from a clock so the same inputs and instant
# always yield the same bytes.
