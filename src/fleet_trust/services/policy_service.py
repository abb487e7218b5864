"""
fleet_trust.services.policy_service

Policy issuance service.

Responsibilities:
- Build and sign a policy for one device, returning a structured result.
- Reuse a still-fresh signed policy for unchanged inputs.
- Invalidate cached policies per device or wholesale (after key rotation).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import timedelta

from fleet_trust.clock import ClockSource
from fleet_trust.errors import ErrorKind, IncompletePolicyInput, NoSigningKey
from fleet_trust.observability.logging import get_logger
from fleet_trust.policy.builder import PolicyBuilder
from fleet_trust.policy.envelope import PolicySigner, SignedEnvelope
from fleet_trust.policy.models import PolicyDocument, PolicyInputs

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class IssueResult:
    ok: bool
    envelope: SignedEnvelope | None = None
    document: PolicyDocument | None = None
    error_kind: ErrorKind | None = None
    missing: tuple[str, ...] = ()
    cached: bool = False

    @property
    def token(self) -> str | None:
        return self.envelope.compact() if self.envelope is not None else None


@dataclass(frozen=True, slots=True)
class _Issued:
    inputs: PolicyInputs
    envelope: SignedEnvelope
    document: PolicyDocument


class PolicyIssuer:
    def __init__(
        self,
        *,
        builder: PolicyBuilder,
        signer: PolicySigner,
        clock: ClockSource,
        refresh_before: timedelta = timedelta(hours=1),
    ) -> None:
        self._builder = builder
        self._signer = signer
        self._clock = clock
        self._refresh_before = refresh_before
        self._issued: dict[str, _Issued] = {}
        self._lock = threading.Lock()

    def issue(self, inputs: PolicyInputs, *, force: bool = False) -> IssueResult:
        now = self._clock.now()
        if not force and inputs.device_id:
            with self._lock:
                hit = self._issued.get(inputs.device_id)
            if (
                hit is not None
                and hit.inputs == inputs
                and hit.envelope.kid == self._signer.current_kid
                and now + self._refresh_before < hit.document.expires_at
            ):
                return IssueResult(
                    ok=True, envelope=hit.envelope, document=hit.document, cached=True
                )

        try:
            document = self._builder.build(inputs, now)
        except IncompletePolicyInput as e:
            log.warning("policy_input_incomplete", device_id=inputs.device_id, missing=e.missing)
            return IssueResult(ok=False, error_kind=e.kind, missing=tuple(e.missing))

        try:
            envelope = self._signer.sign(document)
        except NoSigningKey as e:
            log.error("policy_signing_unavailable", device_id=document.device_id)
            return IssueResult(ok=False, document=document, error_kind=e.kind)
        with self._lock:
            self._issued[document.device_id] = _Issued(
                inputs=inputs, envelope=envelope, document=document
            )
        return IssueResult(ok=True, envelope=envelope, document=document)

    def invalidate(self, device_id: str | None = None) -> int:
        with self._lock:
            if device_id is None:
                dropped = len(self._issued)
                self._issued.clear()
            else:
                dropped = 1 if self._issued.pop(device_id, None) is not None else 0
        return dropped


# --- Module Notes -----------------------------------------------------------
# A cached envelope is only reused while its key id is still the signing key, so a
# rotation re-signs on the next request even without an explicit invalidate().
