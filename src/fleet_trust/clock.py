"""
fleet_trust.clock

Time source used by every component for expiry and lockout math.

Responsibilities:
- Provide UTC wall-clock time through an injectable `ClockSource`.
- Offer a manually driven clock for tests and simulations.
- Format/parse the second-precision ISO-8601 timestamps embedded in policies.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol


class ClockSource(Protocol):
    def now(self) -> datetime: ...

    def timestamp(self) -> float: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(tz=UTC)

    def timestamp(self) -> float:
        return self.now().timestamp()


class ManualClock:
    """
    Clock that only moves when told to.

    Safe to advance from one thread while others read it.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, tzinfo=UTC)
        if self._now.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware start time")
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def timestamp(self) -> float:
        return self.now().timestamp()

    def advance(self, delta: timedelta | float) -> datetime:
        step = delta if isinstance(delta, timedelta) else timedelta(seconds=delta)
        with self._lock:
            self._now = self._now + step
            return self._now

    def set(self, when: datetime) -> None:
        with self._lock:
            self._now = when


def truncate(when: datetime, precision_seconds: int = 1) -> datetime:
    """Drop sub-precision detail so independently built payloads agree byte-for-byte."""
    when = when.astimezone(UTC)
    epoch = int(when.timestamp())
    epoch -= epoch % max(precision_seconds, 1)
    return datetime.fromtimestamp(epoch, tz=UTC)


def isoformat_utc(when: datetime) -> str:
    return truncate(when).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_utc(value: str) -> datetime:
    # fromisoformat accepts the trailing "Z" on 3.11+.
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp {value!r} has no timezone")
    return parsed.astimezone(UTC)


def within_skew(reference: datetime, observed: datetime, max_skew_sec: int) -> bool:
    return abs((reference - observed).total_seconds()) <= max_skew_sec


# --- Module Notes -----------------------------------------------------------
# Wall-clock (not monotonic) time is used throughout because lockout deadlines and
# policy expiry are persisted or shared across processes.
