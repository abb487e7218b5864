"""
fleet_trust.services

Service-layer package.

Responsibilities:
- Compose core components into request-level flows (credential attempts, policy issuance).
- Convert configuration-time exceptions into structured results at the public boundary.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Services are plain Python and testable with in-memory stores and a manual clock.
