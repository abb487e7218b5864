"""
fleet_trust

Trust core for the fleet-management backend: permission resolution, boundary
enforcement, signed device policies and credential abuse control.

Responsibilities:
- Expose package version metadata.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"


# --- Module Notes -----------------------------------------------------------
# Keep this file minimal to avoid import-time side effects across the codebase.
