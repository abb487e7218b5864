"""
fleet_trust.api

Thin HTTP adapter over the trust core.

Responsibilities:
- FastAPI app factory and router modules.
- Mapping structured core results onto status codes.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The API layer stays thin: request validation + auth + delegation to the core.
