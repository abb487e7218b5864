"""
fleet_trust.abuse.lockout

Consecutive-failure lockout with escalating backoff.

Responsibilities:
- Count failed credential attempts per identity.
- Lock for `base * 2**stage` seconds (capped) once the threshold is reached.
- Escalate the stage when a failure follows an expired lockout (repeat offense).
- Clear everything on success.

`is_locked` never writes, so it can be called speculatively before verification.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace

from fleet_trust.abuse.rate_limit import Identity, Purpose
from fleet_trust.abuse.stores import LockoutStore
from fleet_trust.clock import ClockSource
from fleet_trust.errors import ErrorKind, StoreUnavailable
from fleet_trust.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LockoutState:
    failures: int = 0
    stage: int = 0
    locked_until: float | None = None

    def locked_at(self, now: float) -> bool:
        return self.locked_until is not None and now < self.locked_until


@dataclass(frozen=True, slots=True)
class LockoutStatus:
    locked: bool
    failures: int
    remaining_attempts: int
    stage: int = 0
    retry_after: int | None = None
    error_kind: ErrorKind | None = None


class LockoutTracker:
    def __init__(
        self,
        *,
        store: LockoutStore,
        clock: ClockSource,
        threshold: int = 5,
        base_seconds: int = 300,
        max_seconds: int = 3600,
        max_stage: int = 4,
        stage_decay_seconds: int = 86400,
        store_unavailable_retry_after: int = 30,
    ) -> None:
        if threshold < 1:
            raise ValueError("lockout threshold must be at least 1")
        self._store = store
        self._clock = clock
        self._threshold = threshold
        self._base = base_seconds
        self._max = max_seconds
        self._max_stage = max_stage
        self._decay = stage_decay_seconds
        self._store_retry = store_unavailable_retry_after

    def lock_duration(self, stage: int) -> int:
        return min(self._base * 2 ** min(stage, self._max_stage), self._max)

    def is_locked(self, identity: Identity, *, purpose: Purpose | None = None) -> LockoutStatus:
        now = self._clock.timestamp()
        try:
            state = self._store.get(_key(identity, purpose), now=now)
        except StoreUnavailable:
            return self._unavailable(identity, purpose)
        return self._status(state, now)

    def record_failure(self, identity: Identity, *, purpose: Purpose | None = None) -> LockoutStatus:
        now = self._clock.timestamp()
        locked_now = False

        def apply(state: LockoutState | None) -> LockoutState:
            nonlocal locked_now
            if state is None:
                state = LockoutState()
            if state.locked_at(now):
                # Attempts while locked neither extend nor shorten the lock.
                return state
            locked_now = True
            if state.locked_until is not None:
                if now - state.locked_until < self._decay:
                    stage = min(state.stage + 1, self._max_stage)
                    return LockoutState(
                        failures=self._threshold,
                        stage=stage,
                        locked_until=now + self.lock_duration(stage),
                    )
                state = LockoutState()
            failures = state.failures + 1
            if failures >= self._threshold:
                return replace(
                    state,
                    failures=failures,
                    locked_until=now + self.lock_duration(state.stage),
                )
            locked_now = False
            return replace(state, failures=failures)

        try:
            after = self._store.update(
                _key(identity, purpose), apply, now=now, expires_at=lambda s: self._expires_at(s, now)
            )
        except StoreUnavailable:
            return self._unavailable(identity, purpose)

        status = self._status(after, now)
        if locked_now:
            log.warning(
                "identity_locked_out",
                identity=identity.key,
                purpose=str(purpose) if purpose else None,
                stage=status.stage,
                retry_after=status.retry_after,
            )
        return status

    def record_success(self, identity: Identity, *, purpose: Purpose | None = None) -> LockoutStatus:
        try:
            cleared = self._store.delete(_key(identity, purpose))
        except StoreUnavailable:
            return self._unavailable(identity, purpose)
        if cleared:
            log.info(
                "lockout_cleared",
                identity=identity.key,
                purpose=str(purpose) if purpose else None,
            )
        return LockoutStatus(locked=False, failures=0, remaining_attempts=self._threshold)

    def _expires_at(self, state: LockoutState, now: float) -> float:
        # A served lock matters until its decay window closes; partial failures are
        # forgotten after the same quiet period.
        if state.locked_until is not None:
            return state.locked_until + self._decay
        return now + self._decay

    def _status(self, state: LockoutState | None, now: float) -> LockoutStatus:
        if state is None:
            return LockoutStatus(locked=False, failures=0, remaining_attempts=self._threshold)
        if state.locked_until is not None and now < state.locked_until:
            return LockoutStatus(
                locked=True,
                failures=state.failures,
                remaining_attempts=0,
                stage=state.stage,
                retry_after=max(1, math.ceil(state.locked_until - now)),
                error_kind=ErrorKind.locked_out,
            )
        if state.locked_until is not None:
            # Lock served. Within the decay window the next failure relocks at the next stage.
            if now - state.locked_until < self._decay:
                return LockoutStatus(
                    locked=False, failures=0, remaining_attempts=1, stage=state.stage
                )
            return LockoutStatus(locked=False, failures=0, remaining_attempts=self._threshold)
        return LockoutStatus(
            locked=False,
            failures=state.failures,
            remaining_attempts=max(self._threshold - state.failures, 0),
            stage=state.stage,
        )

    def _unavailable(self, identity: Identity, purpose: Purpose | None) -> LockoutStatus:
        log.error(
            "counter_store_unavailable",
            identity=identity.key,
            purpose=str(purpose) if purpose else None,
            component="lockout",
        )
        return LockoutStatus(
            locked=True,
            failures=0,
            remaining_attempts=0,
            retry_after=self._store_retry,
            error_kind=ErrorKind.store_unavailable,
        )


def _key(identity: Identity, purpose: Purpose | None) -> str:
    return f"lockout:{purpose or '*'}:{identity.key}"


# --- Module Notes -----------------------------------------------------------
# A failure that lands after the stage decay window starts over at stage 0. State
# is stored with a TTL, so an identity that goes quiet leaves nothing behind.
