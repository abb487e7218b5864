"""
tests.test_keyring

Key ring rotation states and configuration loading.
"""

from __future__ import annotations

import base64
from datetime import timedelta

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

from fleet_trust.clock import ManualClock
from fleet_trust.errors import NoSigningKey
from fleet_trust.policy.keyring import KeyRing, KeyStatus, load_private_key_b64


def _seed_b64(key: Ed25519PrivateKey) -> str:
    raw = key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    return base64.b64encode(raw).decode("ascii")


def test_new_signing_key_demotes_previous(clock: ManualClock) -> None:
    ring = KeyRing(clock=clock)
    ring.add_signing_key("k1", Ed25519PrivateKey.generate())
    clock.advance(60)
    ring.add_signing_key("k2", Ed25519PrivateKey.generate())

    assert ring.signing_key().kid == "k2"
    statuses = {r.kid: r.status for r in ring.records()}
    assert statuses == {"k1": KeyStatus.rotating_out, "k2": KeyStatus.active}
    assert [r.kid for r in ring.verification_keys()] == ["k2", "k1"]
    assert [r.kid for r in ring.verification_keys(preferred_kid="k1")] == ["k1", "k2"]


def test_duplicate_kid_is_rejected(clock: ManualClock) -> None:
    ring = KeyRing(clock=clock)
    ring.add_signing_key("k1", Ed25519PrivateKey.generate())
    with pytest.raises(ValueError):
        ring.add_signing_key("k1", Ed25519PrivateKey.generate())
    ring.revoke("k1")
    with pytest.raises(ValueError):
        ring.add_verification_key("k1", Ed25519PrivateKey.generate().public_key())


def test_revoking_the_active_key_leaves_no_signer(clock: ManualClock) -> None:
    ring = KeyRing(clock=clock)
    ring.add_signing_key("k1", Ed25519PrivateKey.generate())
    assert ring.revoke("k1") is True
    assert ring.revoke("k1") is False
    assert ring.revoke("missing") is False
    assert not ring.has_signing_key()
    with pytest.raises(NoSigningKey):
        ring.signing_key()
    assert ring.verification_keys() == []


def test_retire_stale_respects_recent_verification(clock: ManualClock) -> None:
    ring = KeyRing(clock=clock)
    ring.add_signing_key("k1", Ed25519PrivateKey.generate())
    ring.add_signing_key("k2", Ed25519PrivateKey.generate())
    ring.add_signing_key("k3", Ed25519PrivateKey.generate())

    clock.advance(timedelta(days=6))
    ring.record_verification("k2")
    clock.advance(timedelta(days=2))

    assert ring.retire_stale(timedelta(days=7)) == ["k1"]
    assert ring.get("k1").status is KeyStatus.revoked
    assert ring.get("k2").status is KeyStatus.rotating_out
    assert ring.get("k3").status is KeyStatus.active

    clock.advance(timedelta(days=5))
    assert ring.retire_stale(timedelta(days=7)) == ["k2"]
    # The ACTIVE key is never retired.
    assert ring.signing_key().kid == "k3"


def test_recording_verification_leaves_records_untouched(clock: ManualClock) -> None:
    ring = KeyRing(clock=clock)
    ring.add_signing_key("k1", Ed25519PrivateKey.generate())
    before = ring.records()

    clock.advance(30)
    ring.record_verification("k1")

    assert ring.records() is before
    assert ring.last_verified_at("k1") == clock.now()
    assert ring.last_verified_at("k2") is None


def test_verification_only_key_never_signs(clock: ManualClock) -> None:
    ring = KeyRing(clock=clock)
    ring.add_verification_key("peer", Ed25519PrivateKey.generate().public_key())
    assert not ring.has_signing_key()
    assert [r.kid for r in ring.verification_keys()] == ["peer"]


def test_from_config_orders_previous_before_current(clock: ManualClock) -> None:
    current, previous = Ed25519PrivateKey.generate(), Ed25519PrivateKey.generate()
    ring = KeyRing.from_config(
        clock=clock,
        current_b64=_seed_b64(current),
        current_kid="policy-2026-03",
        previous_b64=_seed_b64(previous),
        previous_kid="policy-2026-01",
    )
    assert ring.signing_key().kid == "policy-2026-03"
    assert ring.get("policy-2026-01").status is KeyStatus.rotating_out


def test_from_config_without_keys_is_empty(clock: ManualClock) -> None:
    ring = KeyRing.from_config(clock=clock, current_b64=None, current_kid="k")
    assert ring.records() == ()


def test_private_key_accepts_seed_or_seed_plus_public() -> None:
    key = Ed25519PrivateKey.generate()
    seed = key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    public = key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    expanded = base64.b64encode(seed + public).decode("ascii")

    loaded = load_private_key_b64(expanded)
    assert loaded.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw) == public


@pytest.mark.parametrize("value", ["not base64!!", base64.b64encode(b"short").decode("ascii")])
def test_private_key_rejects_bad_material(value: str) -> None:
    with pytest.raises(ValueError):
        load_private_key_b64(value)


def test_public_key_export_skips_revoked(clock: ManualClock) -> None:
    ring = KeyRing(clock=clock)
    first = ring.add_signing_key("k1", Ed25519PrivateKey.generate())
    ring.add_signing_key("k2", Ed25519PrivateKey.generate())
    ring.add_signing_key("k3", Ed25519PrivateKey.generate())
    ring.revoke("k2")

    exported = ring.public_keys()
    assert [k["kid"] for k in exported] == ["k3", "k1"]
    assert exported[1] == {
        "kid": "k1",
        "alg": "EdDSA",
        "status": "ROTATING_OUT",
        "public_key_b64": first.public_key_b64,
        "added_at": "2026-03-02T08:00:00Z",
    }
    assert len(base64.b64decode(exported[0]["public_key_b64"])) == 32
