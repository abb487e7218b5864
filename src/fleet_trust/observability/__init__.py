"""
fleet_trust.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Request context propagation for the API adapter.
"""

# Package marker.
