"""
fleet_trust.policy.models

Operational policy document models.

Responsibilities:
- Define the inputs supplied by the external policy input provider.
- Define the immutable policy document and its nested sections.
- Provide the canonical JSON serialization that signatures are computed over.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any, Literal, get_args

from fleet_trust.clock import parse_utc

WEEKDAYS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

PinMode = Literal["server_verify", "local_verify"]


def canonical_json(value: Any) -> bytes:
    """Stable bytes for signing: sorted keys, no whitespace, UTF-8."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


@dataclass(frozen=True, slots=True)
class SessionWindow:
    days: tuple[str, ...]
    start: str
    end: str

    def __post_init__(self) -> None:
        unknown = [d for d in self.days if d not in WEEKDAYS]
        if unknown or not self.days:
            raise ValueError(f"invalid session window days: {list(self.days)!r}")
        for value in (self.start, self.end):
            if not _HHMM.match(value):
                raise ValueError(f"invalid session window time {value!r}, expected HH:MM")

    def canonical(self) -> SessionWindow:
        days = tuple(sorted(set(self.days), key=WEEKDAYS.index))
        return SessionWindow(days=days, start=self.start, end=self.end)

    def sort_key(self) -> tuple[int, str, str]:
        return (min(WEEKDAYS.index(d) for d in self.days), self.start, self.end)


@dataclass(frozen=True, slots=True)
class PolicyInputs:
    """Fields the caller fetched for one device; `None` means the provider had no value."""

    device_id: str | None = None
    team_id: str | None = None
    timezone: str | None = None
    allowed_windows: tuple[SessionWindow, ...] | None = None
    organization_id: str | None = None


@dataclass(frozen=True, slots=True)
class PolicyDefaults:
    version: int = 3
    ttl_hours: int = 24
    max_clock_skew_sec: int = 180
    max_policy_age_sec: int = 86400
    grace_minutes: int = 10
    supervisor_override_minutes: int = 120
    pin_mode: PinMode = "server_verify"
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
    blocked_message: str = "Access is outside the allowed working window."


@dataclass(frozen=True, slots=True)
class TimeAnchor:
    server_now_utc: str
    max_clock_skew_sec: int
    max_policy_age_sec: int


@dataclass(frozen=True, slots=True)
class SessionRules:
    allowed_windows: tuple[SessionWindow, ...]
    grace_minutes: int
    supervisor_override_minutes: int


@dataclass(frozen=True, slots=True)
class PinPolicy:
    mode: PinMode
    min_length: int
    retry_limit: int
    cooldown_seconds: int


@dataclass(frozen=True, slots=True)
class GpsPolicy:
    active_fix_interval_minutes: int
    min_displacement_m: int
    accuracy_threshold_m: int
    max_age_minutes: int


@dataclass(frozen=True, slots=True)
class TelemetryPolicy:
    heartbeat_minutes: int
    batch_max: int
    retry_attempts: int
    upload_interval_minutes: int


@dataclass(frozen=True, slots=True)
class UiPolicy:
    blocked_message: str


@dataclass(frozen=True, slots=True)
class PolicyMeta:
    issued_at: str
    expires_at: str


@dataclass(frozen=True, slots=True)
class PolicyDocument:
    version: int
    device_id: str
    team_id: str
    tz: str
    time_anchor: TimeAnchor
    session: SessionRules
    pin: PinPolicy
    gps: GpsPolicy
    telemetry: TelemetryPolicy
    ui: UiPolicy
    meta: PolicyMeta
    organization_id: str | None = None

    @property
    def issued_at(self) -> datetime:
        return parse_utc(self.meta.issued_at)

    @property
    def expires_at(self) -> datetime:
        return parse_utc(self.meta.expires_at)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["organization_id"] is None:
            del data["organization_id"]
        return data

    def canonical_bytes(self) -> bytes:
        return canonical_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyDocument:
        """
        Rebuild a document from its serialized form.

        Raises KeyError/TypeError/ValueError when the shape does not match.
        """
        if not isinstance(data, dict):
            raise TypeError("policy payload must be a JSON object")
        session = _object(data["session"], "session")
        windows = tuple(
            SessionWindow(days=tuple(w["days"]), start=_str(w["start"]), end=_str(w["end"]))
            for w in session["allowed_windows"]
        )
        pin = _section(PinPolicy, data["pin"])
        if pin.mode not in get_args(PinMode):
            raise ValueError(f"unknown pin mode {pin.mode!r}")
        return cls(
            version=_int(data["version"]),
            device_id=_str(data["device_id"]),
            team_id=_str(data["team_id"]),
            tz=_str(data["tz"]),
            time_anchor=_section(TimeAnchor, data["time_anchor"]),
            session=SessionRules(
                allowed_windows=windows,
                grace_minutes=_int(session["grace_minutes"]),
                supervisor_override_minutes=_int(session["supervisor_override_minutes"]),
            ),
            pin=pin,
            gps=_section(GpsPolicy, data["gps"]),
            telemetry=_section(TelemetryPolicy, data["telemetry"]),
            ui=_section(UiPolicy, data["ui"]),
            meta=_section(PolicyMeta, data["meta"]),
            organization_id=_optional_str(data.get("organization_id")),
        )

    @classmethod
    def from_json(cls, raw: bytes | str) -> PolicyDocument:
        return cls.from_dict(json.loads(raw))


def _int(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"expected integer, got {type(value).__name__}")
    return value


def _str(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise TypeError("expected non-empty string")
    return value


def _optional_str(value: Any) -> str | None:
    return None if value is None else _str(value)


def _object(value: Any, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{name} must be a JSON object")
    return value


def _section(section_cls: Any, value: Any) -> Any:
    # Flat sections only hold ints and strings; annotations are strings here.
    raw = _object(value, section_cls.__name__)
    names = [f.name for f in fields(section_cls)]
    unknown = sorted(set(raw) - set(names))
    if unknown:
        raise TypeError(f"unexpected {section_cls.__name__} fields: {unknown}")
    return section_cls(
        **{f.name: _int(raw[f.name]) if f.type == "int" else _str(raw[f.name]) for f in fields(section_cls)}
    )


# --- Module Notes -----------------------------------------------------------
# Field names match the payload already understood by deployed device clients;
# renaming any of them is a wire-format change.
