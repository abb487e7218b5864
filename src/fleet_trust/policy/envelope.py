"""
fleet_trust.policy.envelope

Signed policy envelopes (compact JWS, EdDSA over the canonical payload).

Responsibilities:
- Parse and serialize the `header.payload.signature` base64url wire form.
- Sign policy documents with the key ring's ACTIVE key.
- Verify envelopes against every non-revoked key and classify failures.

Wire format (bit-exact contract with device clients):
  header    = {"alg":"EdDSA","kid":<key id>,"typ":"JWT"}
  payload   = canonical JSON of the policy document
  signature = Ed25519 over ASCII(b64url(header) + "." + b64url(payload))
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import jwt
from jwt.exceptions import InvalidSignatureError, InvalidTokenError
from jwt.utils import base64url_decode, base64url_encode

from fleet_trust.clock import ClockSource
from fleet_trust.errors import ErrorKind, NoSigningKey
from fleet_trust.observability.logging import get_logger
from fleet_trust.policy.keyring import KeyRecord, KeyRing
from fleet_trust.policy.models import PolicyDocument

log = get_logger(__name__)

ALGORITHM = "EdDSA"
TOKEN_TYPE = "JWT"


class MalformedEnvelope(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class SignedEnvelope:
    """
    Compact envelope held as its three base64url segments.

    The decoded header, payload and signature are derived from the segments, so the
    bytes a verifier checks are always the bytes the envelope carries.
    """

    header_segment: bytes
    payload_segment: bytes
    signature_segment: bytes

    @property
    def header(self) -> dict[str, Any]:
        return json.loads(base64url_decode(self.header_segment))

    @property
    def payload(self) -> bytes:
        return base64url_decode(self.payload_segment)

    @property
    def signature(self) -> bytes:
        return base64url_decode(self.signature_segment)

    @property
    def signing_input(self) -> bytes:
        return self.header_segment + b"." + self.payload_segment

    @property
    def kid(self) -> str | None:
        kid = self.header.get("kid")
        return kid if isinstance(kid, str) else None

    @property
    def algorithm(self) -> str | None:
        return self.header.get("alg")

    @property
    def token_type(self) -> str | None:
        return self.header.get("typ")

    def compact(self) -> str:
        return b".".join((self.header_segment, self.payload_segment, self.signature_segment)).decode("ascii")

    @classmethod
    def parse(cls, token: str | bytes) -> SignedEnvelope:
        if isinstance(token, str):
            token = token.encode("utf-8")
        if not token.isascii():
            raise MalformedEnvelope("envelope is not ASCII")
        parts = token.strip().split(b".")
        if len(parts) != 3 or not all(parts):
            raise MalformedEnvelope("envelope must have three non-empty segments")
        envelope = cls(header_segment=parts[0], payload_segment=parts[1], signature_segment=parts[2])
        try:
            header, _, _ = envelope.header, envelope.payload, envelope.signature
        except (ValueError, TypeError) as e:
            raise MalformedEnvelope(f"envelope segment not decodable: {e}") from e
        if not isinstance(header, dict):
            raise MalformedEnvelope("envelope header is not a JSON object")
        return envelope

    @classmethod
    def assemble(cls, header: dict[str, Any], payload: bytes, signature: bytes) -> SignedEnvelope:
        """Encode decoded parts; the header is serialized with sorted keys."""
        return cls(
            header_segment=base64url_encode(
                json.dumps(header, sort_keys=True, separators=(",", ":")).encode("utf-8")
            ),
            payload_segment=base64url_encode(payload),
            signature_segment=base64url_encode(signature),
        )


@dataclass(frozen=True, slots=True)
class VerifyResult:
    valid: bool
    payload: PolicyDocument | None = None
    error_kind: ErrorKind | None = None
    kid: str | None = None
    detail: str | None = None


class PolicySigner:
    """Signs with the key ring's ACTIVE key; constructing one without such a key fails."""

    def __init__(self, *, keyring: KeyRing) -> None:
        self._keyring = keyring
        self._jws = jwt.PyJWS()
        keyring.signing_key()

    @property
    def current_kid(self) -> str | None:
        try:
            return self._keyring.signing_key().kid
        except NoSigningKey:
            return None

    def sign(self, document: PolicyDocument) -> SignedEnvelope:
        record = self._keyring.signing_key()
        token = self._jws.encode(
            document.canonical_bytes(),
            key=record.private_key,
            algorithm=ALGORITHM,
            headers={"kid": record.kid, "typ": TOKEN_TYPE},
            sort_headers=True,
        )
        log.info("policy_signed", kid=record.kid, device_id=document.device_id)
        return SignedEnvelope.parse(token)


class PolicyVerifier:
    def __init__(self, *, keyring: KeyRing, clock: ClockSource) -> None:
        self._keyring = keyring
        self._clock = clock
        self._jws = jwt.PyJWS()

    def verify(self, envelope: SignedEnvelope | str) -> VerifyResult:
        try:
            parsed = SignedEnvelope.parse(
                envelope.compact() if isinstance(envelope, SignedEnvelope) else envelope
            )
        except (MalformedEnvelope, UnicodeDecodeError) as e:
            return self._fail(ErrorKind.malformed, None, str(e))
        if parsed.algorithm != ALGORITHM:
            return self._fail(ErrorKind.malformed, parsed.kid, f"unsupported alg {parsed.algorithm!r}")
        if parsed.token_type != TOKEN_TYPE:
            return self._fail(ErrorKind.malformed, parsed.kid, f"unsupported typ {parsed.token_type!r}")

        matched: KeyRecord | None = None
        for record in self._keyring.verification_keys(preferred_kid=parsed.kid):
            try:
                self._jws.decode_complete(parsed.compact(), key=record.public_key, algorithms=[ALGORITHM])
            except InvalidSignatureError:
                continue
            except InvalidTokenError as e:
                return self._fail(ErrorKind.malformed, parsed.kid, str(e))
            matched = record
            break
        if matched is None:
            return self._fail(ErrorKind.invalid_signature, parsed.kid, "no key verified the signature")
        self._keyring.record_verification(matched.kid)

        try:
            document = PolicyDocument.from_json(parsed.payload)
            issued_at = document.issued_at
            expires_at = document.expires_at
            skew = timedelta(seconds=document.time_anchor.max_clock_skew_sec)
            max_age = timedelta(seconds=document.time_anchor.max_policy_age_sec)
            expires_with_skew = expires_at + skew
            max_age_with_skew = max_age + skew
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            return self._fail(ErrorKind.malformed, matched.kid, f"payload shape: {e}")

        now = self._clock.now()
        if issued_at - now > skew:
            return self._fail(ErrorKind.expired, matched.kid, "issued in the future")
        if now > expires_with_skew:
            return self._fail(ErrorKind.expired, matched.kid, "past expires_at")
        if now - issued_at > max_age_with_skew:
            return self._fail(ErrorKind.expired, matched.kid, "older than max_policy_age_sec")

        return VerifyResult(valid=True, payload=document, kid=matched.kid)

    def _fail(self, kind: ErrorKind, kid: str | None, detail: str) -> VerifyResult:
        log.warning("policy_verify_failed", error_kind=str(kind), kid=kid, detail=detail)
        return VerifyResult(valid=False, error_kind=kind, kid=kid, detail=detail)


# --- Module Notes -----------------------------------------------------------
# Signature failures and time failures are reported separately: the first means the
# device needs new keys, the second only a fresh policy fetch.
