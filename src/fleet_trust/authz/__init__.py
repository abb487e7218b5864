"""
fleet_trust.authz

Authorization package.

Responsibilities:
- Role catalog, effective permission resolution and caching.
- Boundary enforcement producing allow/deny decisions with reasons.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing here touches HTTP or persistence; the API adapter and external stores
# sit on either side of this package.
