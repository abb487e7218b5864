"""
fleet_trust.services.credential_guard

Credential attempt guard (lockout + rate limiting for one attempt).

Responsibilities:
- Before verification: refuse locked identities first, then apply identity and
  origin rate limits.
- After verification: feed the outcome into the lockout tracker.

The guard never sees the credential itself; callers verify PINs/passwords elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass

from fleet_trust.abuse.lockout import LockoutStatus, LockoutTracker
from fleet_trust.abuse.rate_limit import Identity, Purpose, RateLimiter, RateLimitResult
from fleet_trust.errors import ErrorKind


@dataclass(frozen=True, slots=True)
class GuardResult:
    allowed: bool
    error_kind: ErrorKind | None = None
    retry_after: int | None = None
    remaining_attempts: int | None = None
    lockout: LockoutStatus | None = None
    rate_limit: RateLimitResult | None = None


class CredentialGuard:
    def __init__(self, *, limiter: RateLimiter, lockout: LockoutTracker) -> None:
        self._limiter = limiter
        self._lockout = lockout

    def precheck(
        self, purpose: Purpose, identity: Identity, origin: str | None = None
    ) -> GuardResult:
        # Lockout first: a locked identity does not consume rate-limit budget.
        status = self._lockout.is_locked(identity, purpose=purpose)
        if status.locked:
            return GuardResult(
                allowed=False,
                error_kind=status.error_kind,
                retry_after=status.retry_after,
                remaining_attempts=0,
                lockout=status,
            )

        limited = self._limiter.check_request(purpose, identity, origin)
        if not limited.allowed:
            return GuardResult(
                allowed=False,
                error_kind=limited.error_kind,
                retry_after=limited.retry_after,
                remaining_attempts=status.remaining_attempts,
                lockout=status,
                rate_limit=limited,
            )

        return GuardResult(
            allowed=True,
            remaining_attempts=status.remaining_attempts,
            lockout=status,
            rate_limit=limited,
        )

    def record_outcome(self, purpose: Purpose, identity: Identity, *, success: bool) -> GuardResult:
        if success:
            status = self._lockout.record_success(identity, purpose=purpose)
        else:
            status = self._lockout.record_failure(identity, purpose=purpose)
        return GuardResult(
            allowed=not status.locked,
            error_kind=status.error_kind,
            retry_after=status.retry_after,
            remaining_attempts=status.remaining_attempts,
            lockout=status,
        )


# --- Module Notes -----------------------------------------------------------
# A successful attempt clears the lockout but leaves rate-limit windows alone.
