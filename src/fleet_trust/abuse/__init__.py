"""
fleet_trust.abuse

Abuse-control package.

Responsibilities:
- Fixed-window rate limiting keyed by purpose and identity.
- Failure counting with escalating lockouts.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Counters are protective controls, never a source of authorization truth.
