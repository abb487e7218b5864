"""
fleet_trust.abuse.stores

Counter and lockout state stores.

Responsibilities:
- Define the store interfaces injected into `RateLimiter` and `LockoutTracker`.
- Provide thread-safe in-memory implementations for single-process deployments and tests.

Contract:
- `CounterStore.increment` is one atomic step returning the post-increment window.
- `LockoutStore.update` applies a pure function to the current value atomically and
  stores the result until the absolute time `expires_at(value)`.
- Expired entries read as absent.
- Implementations signal an unreachable backend by raising `StoreUnavailable`.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from fleet_trust.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CounterWindow:
    count: int
    window_start: float
    expires_at: float

    def seconds_left(self, now: float) -> float:
        return max(self.expires_at - now, 0.0)


class CounterStore(Protocol):
    def increment(self, key: str, *, window_seconds: float, now: float) -> CounterWindow: ...

    def peek(self, key: str, *, now: float) -> CounterWindow | None: ...

    def delete(self, key: str) -> None: ...

    def purge_expired(self, *, now: float) -> int: ...


class LockoutStore(Protocol):
    def get(self, key: str, *, now: float) -> Any | None: ...

    def update(
        self,
        key: str,
        fn: Callable[[Any | None], Any | None],
        *,
        now: float,
        expires_at: Callable[[Any], float],
    ) -> Any | None: ...

    def delete(self, key: str) -> bool: ...

    def purge_expired(self, *, now: float) -> int: ...


class InMemoryCounterStore:
    """Fixed-window counters; a window starts on the first event after the previous one ends."""

    def __init__(self, *, purge_every: int = 1000) -> None:
        if purge_every < 1:
            raise ValueError("purge_every must be at least 1")
        self._windows: dict[str, CounterWindow] = {}
        self._lock = threading.Lock()
        self._purge_every = purge_every
        self._writes = 0

    def increment(self, key: str, *, window_seconds: float, now: float) -> CounterWindow:
        with self._lock:
            current = self._windows.get(key)
            if current is None or current.expires_at <= now:
                current = CounterWindow(count=1, window_start=now, expires_at=now + window_seconds)
            else:
                current = CounterWindow(
                    count=current.count + 1,
                    window_start=current.window_start,
                    expires_at=current.expires_at,
                )
            self._windows[key] = current
            self._writes += 1
            if self._writes % self._purge_every == 0:
                _sweep(self._windows, now, lambda w: w.expires_at)
            return current

    def peek(self, key: str, *, now: float) -> CounterWindow | None:
        with self._lock:
            current = self._windows.get(key)
        if current is None or current.expires_at <= now:
            return None
        return current

    def delete(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def purge_expired(self, *, now: float) -> int:
        with self._lock:
            purged = _sweep(self._windows, now, lambda w: w.expires_at)
            remaining = len(self._windows)
        if purged:
            log.debug("counter_windows_purged", purged=purged, remaining=remaining)
        return purged

    def __len__(self) -> int:
        return len(self._windows)


class InMemoryLockoutStore:
    """Values carry an absolute expiry; expired entries read as absent and are swept on writes."""

    def __init__(self, *, purge_every: int = 1000) -> None:
        if purge_every < 1:
            raise ValueError("purge_every must be at least 1")
        self._values: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._purge_every = purge_every
        self._writes = 0

    def get(self, key: str, *, now: float) -> Any | None:
        with self._lock:
            entry = self._values.get(key)
        if entry is None or entry[1] <= now:
            return None
        return entry[0]

    def update(
        self,
        key: str,
        fn: Callable[[Any | None], Any | None],
        *,
        now: float,
        expires_at: Callable[[Any], float],
    ) -> Any | None:
        with self._lock:
            entry = self._values.get(key)
            value = fn(entry[0] if entry is not None and entry[1] > now else None)
            if value is None:
                self._values.pop(key, None)
            else:
                self._values[key] = (value, expires_at(value))
            self._writes += 1
            if self._writes % self._purge_every == 0:
                _sweep(self._values, now, lambda e: e[1])
            return value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._values.pop(key, None) is not None

    def purge_expired(self, *, now: float) -> int:
        with self._lock:
            purged = _sweep(self._values, now, lambda e: e[1])
            remaining = len(self._values)
        if purged:
            log.debug("lockout_states_purged", purged=purged, remaining=remaining)
        return purged

    def __len__(self) -> int:
        return len(self._values)


def _sweep(entries: dict[str, Any], now: float, expiry: Callable[[Any], float]) -> int:
    # Caller holds the store lock.
    expired = [k for k, v in entries.items() if expiry(v) <= now]
    for k in expired:
        del entries[k]
    return len(expired)


# --- Module Notes -----------------------------------------------------------
# A shared backend (Redis INCR + EXPIRE, or a compare-and-set row with a TTL)
# implements the same protocols; the limiter and tracker never read-then-write
# on their own. In-memory stores sweep expired entries every `purge_every` writes.
