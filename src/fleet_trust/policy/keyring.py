"""
fleet_trust.policy.keyring

Ed25519 signing/verification key registry with explicit rotation states.

Responsibilities:
- Hold an append-only, ordered list of `KeyRecord`s (ACTIVE -> ROTATING_OUT -> REVOKED).
- Expose exactly one signing key and the ordered set of verification keys.
- Track verification use so stale ROTATING_OUT keys can be retired after a grace period.
- Export public keys for distribution to device clients.
"""

from __future__ import annotations

import base64
import binascii
import enum
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from fleet_trust.clock import ClockSource, isoformat_utc
from fleet_trust.errors import NoSigningKey
from fleet_trust.observability.logging import get_logger

log = get_logger(__name__)


class KeyStatus(enum.StrEnum):
    active = "ACTIVE"
    rotating_out = "ROTATING_OUT"
    revoked = "REVOKED"


@dataclass(frozen=True, slots=True, eq=False)
class KeyRecord:
    kid: str
    public_key: Ed25519PublicKey
    status: KeyStatus
    added_at: datetime
    status_changed_at: datetime
    private_key: Ed25519PrivateKey | None = None

    @property
    def can_verify(self) -> bool:
        return self.status is not KeyStatus.revoked

    @property
    def public_key_b64(self) -> str:
        raw = self.public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
        return base64.b64encode(raw).decode("ascii")


def load_private_key_b64(value: str) -> Ed25519PrivateKey:
    """
    Decode a base64 Ed25519 private key.

    Accepts the 32-byte seed or the 64-byte seed||public form; only the seed is used.
    """
    try:
        raw = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("signing key is not valid base64") from e
    if len(raw) == 64:
        raw = raw[:32]
    if len(raw) != 32:
        raise ValueError(f"signing key must decode to 32 or 64 bytes, got {len(raw)}")
    return Ed25519PrivateKey.from_private_bytes(raw)


def load_public_key_b64(value: str) -> Ed25519PublicKey:
    raw = base64.b64decode(value.strip(), validate=True)
    return Ed25519PublicKey.from_public_bytes(raw)


class KeyRing:
    def __init__(self, *, clock: ClockSource) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        # Replaced wholesale under the lock; readers take a snapshot without locking.
        self._records: tuple[KeyRecord, ...] = ()
        # kid -> last successful verification. Written on the verify path without the lock.
        self._last_verified: dict[str, datetime] = {}

    @classmethod
    def from_config(
        cls,
        *,
        clock: ClockSource,
        current_b64: str | None,
        current_kid: str,
        previous_b64: str | None = None,
        previous_kid: str | None = None,
    ) -> KeyRing:
        ring = cls(clock=clock)
        if previous_b64:
            ring.add_signing_key(previous_kid or f"{current_kid}-old", load_private_key_b64(previous_b64))
        if current_b64:
            ring.add_signing_key(current_kid, load_private_key_b64(current_b64))
        return ring

    def records(self) -> tuple[KeyRecord, ...]:
        return self._records

    def get(self, kid: str) -> KeyRecord | None:
        for record in self._records:
            if record.kid == kid:
                return record
        return None

    def add_signing_key(self, kid: str, private_key: Ed25519PrivateKey) -> KeyRecord:
        """Add a new ACTIVE key; the previous ACTIVE key moves to ROTATING_OUT."""
        now = self._clock.now()
        record = KeyRecord(
            kid=kid,
            public_key=private_key.public_key(),
            private_key=private_key,
            status=KeyStatus.active,
            added_at=now,
            status_changed_at=now,
        )
        with self._lock:
            self._ensure_unique(kid)
            demoted = []
            updated = []
            for existing in self._records:
                if existing.status is KeyStatus.active:
                    existing = replace(
                        existing, status=KeyStatus.rotating_out, status_changed_at=now
                    )
                    demoted.append(existing.kid)
                updated.append(existing)
            self._records = (*updated, record)
        log.info("key_rotated", kid=kid, rotating_out=demoted)
        return record

    def add_verification_key(self, kid: str, public_key: Ed25519PublicKey) -> KeyRecord:
        """Register a verify-only key (for example a peer's previous key) as ROTATING_OUT."""
        now = self._clock.now()
        record = KeyRecord(
            kid=kid,
            public_key=public_key,
            status=KeyStatus.rotating_out,
            added_at=now,
            status_changed_at=now,
        )
        with self._lock:
            self._ensure_unique(kid)
            self._records = (*self._records, record)
        return record

    def revoke(self, kid: str) -> bool:
        now = self._clock.now()
        with self._lock:
            changed = self._set_status({kid}, KeyStatus.revoked, now)
        if changed:
            log.info("key_revoked", kid=kid)
        return bool(changed)

    def retire_stale(self, grace: timedelta | float) -> list[str]:
        """
        Revoke ROTATING_OUT keys unused for longer than `grace`.

        A key counts as used when it last changed status or last verified a document.
        """
        window = grace if isinstance(grace, timedelta) else timedelta(seconds=grace)
        now = self._clock.now()
        with self._lock:
            stale = {
                r.kid
                for r in self._records
                if r.status is KeyStatus.rotating_out and now - self._last_used(r) >= window
            }
            retired = self._set_status(stale, KeyStatus.revoked, now)
        for kid in retired:
            log.info("key_retired", kid=kid)
        return retired

    def record_verification(self, kid: str) -> None:
        self._last_verified[kid] = self._clock.now()

    def last_verified_at(self, kid: str) -> datetime | None:
        return self._last_verified.get(kid)

    def signing_key(self) -> KeyRecord:
        for record in reversed(self._records):
            if record.status is KeyStatus.active and record.private_key is not None:
                return record
        raise NoSigningKey()

    def has_signing_key(self) -> bool:
        try:
            self.signing_key()
        except NoSigningKey:
            return False
        return True

    def verification_keys(self, preferred_kid: str | None = None) -> list[KeyRecord]:
        """ACTIVE/ROTATING_OUT keys, most recently added first, `preferred_kid` leading."""
        usable = [r for r in reversed(self._records) if r.can_verify]
        if preferred_kid is not None:
            usable.sort(key=lambda r: r.kid != preferred_kid)
        return usable

    def public_keys(self) -> list[dict[str, Any]]:
        return [
            {
                "kid": r.kid,
                "alg": "EdDSA",
                "status": str(r.status),
                "public_key_b64": r.public_key_b64,
                "added_at": isoformat_utc(r.added_at),
            }
            for r in reversed(self._records)
            if r.can_verify
        ]

    def _last_used(self, record: KeyRecord) -> datetime:
        verified = self._last_verified.get(record.kid)
        if verified is None:
            return record.status_changed_at
        return max(record.status_changed_at, verified)

    def _ensure_unique(self, kid: str) -> None:
        if any(r.kid == kid for r in self._records):
            raise ValueError(f"key id {kid!r} already registered")

    def _set_status(self, kids: set[str], status: KeyStatus, now: datetime) -> list[str]:
        changed: list[str] = []
        updated = []
        for r in self._records:
            if r.kid in kids and r.status is not status:
                r = replace(r, status=status, status_changed_at=now)
                changed.append(r.kid)
            updated.append(r)
        self._records = tuple(updated)
        return changed


# --- Module Notes -----------------------------------------------------------
# Revoked records stay in the list so a key id is never reused. Rotation is rare,
# so one mutex around writes is enough; signing and verification only read snapshots.
