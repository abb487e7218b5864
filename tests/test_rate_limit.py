"""
tests.test_rate_limit

Fixed-window rate limiting.

Responsibilities:
- Exact limits per (purpose, identity), retry hints and window reset.
- Independence of purposes and identities; origin counters.
- Store outage behavior (fail closed for credentials, degraded for telemetry).
- Atomicity under concurrent callers.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from fleet_trust.abuse.rate_limit import Identity, Purpose, RateLimiter, RateLimitRule
from fleet_trust.abuse.stores import InMemoryCounterStore
from fleet_trust.clock import ManualClock
from fleet_trust.errors import ErrorKind, StoreUnavailable


@pytest.fixture
def store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def limiter(store: InMemoryCounterStore, clock: ManualClock) -> RateLimiter:
    return RateLimiter(store=store, clock=clock)


def test_login_allows_exactly_five_per_window(limiter: RateLimiter, clock: ManualClock) -> None:
    device = Identity.device("dev-1")
    results = [limiter.check(Purpose.login, device) for _ in range(5)]
    assert all(r.allowed for r in results)
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0]

    clock.advance(100)
    denied = limiter.check(Purpose.login, device)
    assert not denied.allowed
    assert denied.error_kind is ErrorKind.rate_limited
    assert denied.retry_after == 800
    assert denied.remaining == 0

    clock.advance(800)
    fresh = limiter.check(Purpose.login, device)
    assert fresh.allowed
    assert fresh.remaining == 4


def test_retry_after_rounds_up_and_is_at_least_one(limiter: RateLimiter, clock: ManualClock) -> None:
    device = Identity.device("dev-1")
    for _ in range(5):
        limiter.check(Purpose.login, device)
    clock.advance(10.2)
    assert limiter.check(Purpose.login, device).retry_after == 890
    clock.advance(889.4)
    assert limiter.check(Purpose.login, device).retry_after == 1


def test_purposes_and_identities_are_independent(limiter: RateLimiter) -> None:
    device = Identity.device("dev-1")
    for _ in range(5):
        limiter.check(Purpose.login, device)
    assert not limiter.check(Purpose.login, device).allowed

    assert limiter.check(Purpose.pin, device).allowed
    assert limiter.check(Purpose.login, Identity.device("dev-2")).allowed
    # Same value, different identity kind.
    assert limiter.check(Purpose.login, Identity.user("dev-1")).allowed


def test_origin_counter_limits_spread_identities(limiter: RateLimiter) -> None:
    results = [
        limiter.check_request(Purpose.login, Identity.user(f"user-{i}"), origin="203.0.113.7")
        for i in range(6)
    ]
    assert all(r.allowed for r in results[:5])
    blocked = results[5]
    assert not blocked.allowed
    assert blocked.key == "rl:login:origin:203.0.113.7"

    assert limiter.check_request(Purpose.login, Identity.user("user-x"), origin="198.51.100.1").allowed


def test_origin_global_ceiling_spans_purposes(store: InMemoryCounterStore, clock: ManualClock) -> None:
    limiter = RateLimiter(
        store=store, clock=clock, origin_global=RateLimitRule(limit=3, window_seconds=60)
    )
    origin = "203.0.113.9"
    assert limiter.check_request(Purpose.login, Identity.user("a"), origin=origin).allowed
    assert limiter.check_request(Purpose.pin, Identity.device("d"), origin=origin).allowed
    assert limiter.check_request(Purpose.supervisor_override, Identity.user("s"), origin=origin).allowed

    over = limiter.check_request(Purpose.pin, Identity.device("e"), origin=origin)
    assert not over.allowed
    assert over.key == "rl:*:origin:203.0.113.9"
    assert over.limit == 3


def test_most_restrictive_remaining_is_reported(limiter: RateLimiter) -> None:
    origin = "192.0.2.1"
    for i in range(3):
        limiter.check_request(Purpose.login, Identity.user(f"u{i}"), origin=origin)
    result = limiter.check_request(Purpose.login, Identity.user("fresh"), origin=origin)
    assert result.allowed
    assert result.remaining == 1
    assert result.key == "rl:login:origin:192.0.2.1"


def test_credential_purposes_fail_closed_when_store_down(down_counter_store, clock: ManualClock) -> None:
    limiter = RateLimiter(store=down_counter_store, clock=clock, store_unavailable_retry_after=15)
    for purpose in (Purpose.login, Purpose.pin, Purpose.supervisor_override):
        result = limiter.check(purpose, Identity.device("dev-1"))
        assert not result.allowed
        assert result.error_kind is ErrorKind.store_unavailable
        assert result.retry_after == 15
        assert not result.degraded


def test_telemetry_fails_open_but_flags_degraded(down_counter_store, clock: ManualClock) -> None:
    limiter = RateLimiter(store=down_counter_store, clock=clock)
    result = limiter.check(Purpose.telemetry, Identity.device("dev-1"))
    assert result.allowed
    assert result.degraded
    assert result.error_kind is ErrorKind.store_unavailable


class FlakyOrigins(InMemoryCounterStore):
    def increment(self, key, *, window_seconds, now):
        if ":origin:" in key:
            raise StoreUnavailable()
        return super().increment(key, window_seconds=window_seconds, now=now)


def test_store_outage_outranks_real_limit(clock: ManualClock) -> None:
    limiter = RateLimiter(store=FlakyOrigins(), clock=clock)
    device = Identity.device("dev-1")
    for _ in range(5):
        limiter.check(Purpose.login, device)
    result = limiter.check_request(Purpose.login, device, origin="192.0.2.8")
    assert result.error_kind is ErrorKind.store_unavailable


def test_concurrent_checks_never_exceed_limit(limiter: RateLimiter) -> None:
    device = Identity.device("hammered")
    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: limiter.check(Purpose.pin, device), range(200)))
    assert sum(r.allowed for r in results) == 10


def test_status_does_not_count(limiter: RateLimiter) -> None:
    device = Identity.device("dev-1")
    assert limiter.status(Purpose.login, device).remaining == 5
    limiter.check(Purpose.login, device)
    assert limiter.status(Purpose.login, device).remaining == 4
    assert limiter.status(Purpose.login, device).remaining == 4


def test_reset_clears_the_window(limiter: RateLimiter) -> None:
    device = Identity.device("dev-1")
    for _ in range(6):
        limiter.check(Purpose.login, device)
    limiter.reset(Purpose.login, device)
    assert limiter.check(Purpose.login, device).allowed


def test_purge_expired_drops_finished_windows(store: InMemoryCounterStore, clock: ManualClock) -> None:
    limiter = RateLimiter(store=store, clock=clock)
    limiter.check(Purpose.telemetry, Identity.device("a"))
    limiter.check(Purpose.login, Identity.device("a"))
    assert len(store) == 2

    clock.advance(61)
    assert store.purge_expired(now=clock.timestamp()) == 1
    assert len(store) == 1


def test_increments_sweep_finished_windows(clock: ManualClock) -> None:
    store = InMemoryCounterStore(purge_every=4)
    limiter = RateLimiter(store=store, clock=clock)
    for name in ("a", "b", "c"):
        limiter.check(Purpose.telemetry, Identity.device(name))
    assert len(store) == 3

    clock.advance(61)
    limiter.check(Purpose.telemetry, Identity.device("d"))
    assert len(store) == 1


# --- Module Notes -----------------------------------------------------------
# Windows are fixed from the first event; advancing the clock past `reset_at`
# always starts a new window.
