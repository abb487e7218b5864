"""
fleet_trust.abuse.rate_limit

Fixed-window rate limiting per (purpose, identity).

Responsibilities:
- Keep independent counters per purpose so one flow cannot exhaust another.
- Check both the caller identity and its network origin on each request.
- Fail closed for credential purposes when the counter store is unreachable, with a
  reason distinct from a real rate limit.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Mapping
from dataclasses import dataclass

from fleet_trust.abuse.stores import CounterStore, CounterWindow
from fleet_trust.clock import ClockSource
from fleet_trust.errors import ErrorKind, StoreUnavailable
from fleet_trust.observability.logging import get_logger

log = get_logger(__name__)


class Purpose(enum.StrEnum):
    login = "login"
    pin = "pin"
    supervisor_override = "supervisor_override"
    telemetry = "telemetry"
    bulk_ingest = "bulk_ingest"


class IdentityKind(enum.StrEnum):
    device = "device"
    user = "user"
    origin = "origin"


@dataclass(frozen=True, slots=True)
class Identity:
    kind: IdentityKind
    value: str

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.value}"

    @classmethod
    def device(cls, device_id: str) -> Identity:
        return cls(IdentityKind.device, device_id)

    @classmethod
    def user(cls, user_id: str) -> Identity:
        return cls(IdentityKind.user, user_id)

    @classmethod
    def origin(cls, address: str) -> Identity:
        return cls(IdentityKind.origin, address)


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    limit: int
    window_seconds: int
    # Deny when the store is down (credential flows); otherwise let traffic through.
    fail_closed: bool = True


DEFAULT_RULES: Mapping[Purpose, RateLimitRule] = {
    Purpose.login: RateLimitRule(limit=5, window_seconds=900),
    Purpose.pin: RateLimitRule(limit=10, window_seconds=900),
    Purpose.supervisor_override: RateLimitRule(limit=10, window_seconds=900),
    Purpose.telemetry: RateLimitRule(limit=1000, window_seconds=60, fail_closed=False),
    Purpose.bulk_ingest: RateLimitRule(limit=100, window_seconds=60, fail_closed=False),
}


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    purpose: Purpose
    key: str
    remaining: int
    limit: int
    retry_after: int | None = None
    reset_at: float | None = None
    error_kind: ErrorKind | None = None
    # Allowed only because the store was down and the purpose fails open.
    degraded: bool = False


class RateLimiter:
    def __init__(
        self,
        *,
        store: CounterStore,
        clock: ClockSource,
        rules: Mapping[Purpose, RateLimitRule] | None = None,
        origin_global: RateLimitRule | None = None,
        store_unavailable_retry_after: int = 30,
    ) -> None:
        self._store = store
        self._clock = clock
        self._rules = dict(DEFAULT_RULES)
        if rules:
            self._rules.update(rules)
        self._origin_global = origin_global
        self._store_retry = store_unavailable_retry_after

    def rule(self, purpose: Purpose) -> RateLimitRule:
        return self._rules[purpose]

    def check(self, purpose: Purpose, identity: Identity) -> RateLimitResult:
        """Count one event for `identity` under `purpose` and report whether it may proceed."""
        return self._hit(purpose, self._rules[purpose], _bucket(purpose, identity))

    def check_request(
        self, purpose: Purpose, identity: Identity, origin: str | None = None
    ) -> RateLimitResult:
        """
        Check the identity counter, the origin counter and (if configured) the
        cross-purpose origin ceiling. Every counter is incremented; the most
        restrictive outcome is returned.
        """
        rule = self._rules[purpose]
        results = [self._hit(purpose, rule, _bucket(purpose, identity))]
        if origin and identity.kind is not IdentityKind.origin:
            results.append(self._hit(purpose, rule, _bucket(purpose, Identity.origin(origin))))
        if origin and self._origin_global is not None:
            results.append(
                self._hit(purpose, self._origin_global, f"rl:*:{Identity.origin(origin).key}")
            )
        return _most_restrictive(results)

    def status(self, purpose: Purpose, identity: Identity) -> RateLimitResult:
        """Current window for `identity` without counting an event."""
        rule = self._rules[purpose]
        key = _bucket(purpose, identity)
        now = self._clock.timestamp()
        try:
            window = self._store.peek(key, now=now)
        except StoreUnavailable:
            return self._unavailable(purpose, rule, key)
        if window is None:
            return RateLimitResult(
                allowed=True, purpose=purpose, key=key, remaining=rule.limit, limit=rule.limit
            )
        return self._evaluate(purpose, rule, key, window, now, log_denial=False)

    def reset(self, purpose: Purpose, identity: Identity) -> None:
        key = _bucket(purpose, identity)
        self._store.delete(key)
        log.info("rate_limit_reset", key=key)

    def _hit(self, purpose: Purpose, rule: RateLimitRule, key: str) -> RateLimitResult:
        now = self._clock.timestamp()
        try:
            window = self._store.increment(key, window_seconds=rule.window_seconds, now=now)
        except StoreUnavailable:
            return self._unavailable(purpose, rule, key)
        return self._evaluate(purpose, rule, key, window, now, log_denial=True)

    def _evaluate(
        self,
        purpose: Purpose,
        rule: RateLimitRule,
        key: str,
        window: CounterWindow,
        now: float,
        *,
        log_denial: bool,
    ) -> RateLimitResult:
        if window.count <= rule.limit:
            return RateLimitResult(
                allowed=True,
                purpose=purpose,
                key=key,
                remaining=rule.limit - window.count,
                limit=rule.limit,
                reset_at=window.expires_at,
            )
        retry_after = max(1, math.ceil(window.seconds_left(now)))
        if log_denial:
            log.warning(
                "rate_limited",
                purpose=str(purpose),
                key=key,
                count=window.count,
                limit=rule.limit,
                retry_after=retry_after,
            )
        return RateLimitResult(
            allowed=False,
            purpose=purpose,
            key=key,
            remaining=0,
            limit=rule.limit,
            retry_after=retry_after,
            reset_at=window.expires_at,
            error_kind=ErrorKind.rate_limited,
        )

    def _unavailable(self, purpose: Purpose, rule: RateLimitRule, key: str) -> RateLimitResult:
        log.error("counter_store_unavailable", purpose=str(purpose), key=key, fail_closed=rule.fail_closed)
        if not rule.fail_closed:
            return RateLimitResult(
                allowed=True,
                purpose=purpose,
                key=key,
                remaining=0,
                limit=rule.limit,
                error_kind=ErrorKind.store_unavailable,
                degraded=True,
            )
        return RateLimitResult(
            allowed=False,
            purpose=purpose,
            key=key,
            remaining=0,
            limit=rule.limit,
            retry_after=self._store_retry,
            error_kind=ErrorKind.store_unavailable,
        )


def _bucket(purpose: Purpose, identity: Identity) -> str:
    return f"rl:{purpose}:{identity.key}"


def _most_restrictive(results: list[RateLimitResult]) -> RateLimitResult:
    denied = [r for r in results if not r.allowed]
    if denied:
        # A store outage is reported ahead of a real limit.
        outage = [r for r in denied if r.error_kind is ErrorKind.store_unavailable]
        if outage:
            return outage[0]
        return max(denied, key=lambda r: r.retry_after or 0)
    return min(results, key=lambda r: r.remaining)


# --- Module Notes -----------------------------------------------------------
# Check-and-increment is a single store call. Reading the count first and
# incrementing afterwards would let concurrent requests both slip past the limit.
