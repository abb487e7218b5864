"""
fleet_trust.auth

Service-to-service authentication for the API adapter.

Responsibilities:
- HS256 bearer token issuing and validation.
- FastAPI dependencies resolving a `ServicePrincipal` and enforcing caller roles.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# These tokens identify calling backend services, not field users; field-user
# authorization is `fleet_trust.authz`.
