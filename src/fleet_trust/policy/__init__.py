"""
fleet_trust.policy

Operational policy package.

Responsibilities:
- Deterministic policy document construction.
- Ed25519 signing and verification with rotating keys.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Device clients only ever see the compact envelope produced by `envelope.PolicySigner`.
