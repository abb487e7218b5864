"""
fleet_trust.errors

Error taxonomy shared by every component of the trust core.

Responsibilities:
- Define the closed set of error kinds returned inside structured results.
- Define the few exceptions raised for configuration/programmer errors.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    # Authorization denials
    no_permission = "NO_PERMISSION"
    out_of_scope = "OUT_OF_SCOPE"
    # Configuration / programmer errors
    incomplete_input = "INCOMPLETE_INPUT"
    no_signing_key = "NO_SIGNING_KEY"
    # Policy verification failures
    invalid_signature = "INVALID_SIGNATURE"
    malformed = "MALFORMED"
    expired = "EXPIRED"
    # Abuse-control denials
    rate_limited = "RATE_LIMITED"
    locked_out = "LOCKED_OUT"
    store_unavailable = "STORE_UNAVAILABLE"


class TrustCoreError(Exception):
    kind: ErrorKind

    def __init__(self, message: str, *, kind: ErrorKind) -> None:
        super().__init__(message)
        self.kind = kind


class IncompletePolicyInput(TrustCoreError):
    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            f"policy input incomplete: {', '.join(missing)}", kind=ErrorKind.incomplete_input
        )
        self.missing = list(missing)


class NoSigningKey(TrustCoreError):
    def __init__(self, message: str = "no ACTIVE signing key configured") -> None:
        super().__init__(message, kind=ErrorKind.no_signing_key)


class StoreUnavailable(TrustCoreError):
    def __init__(self, message: str = "counter store unavailable") -> None:
        super().__init__(message, kind=ErrorKind.store_unavailable)


class CatalogError(ValueError):
    """Raised while loading a permission catalog with unknown or invalid entries."""


# --- Module Notes -----------------------------------------------------------
# Only configuration-time failures raise. Everything a request can trigger is
# returned as a value carrying an `ErrorKind`.
