# backend/autoscuola/routes/v1/__init__.py
"""
API v1 Routes

Versioned autoscuola endpoints, mounted under /api/v1/autoscuola.
"""

from . import appointments, payments

__all__ = ["appointments", "payments"]
