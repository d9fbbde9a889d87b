# backend/autoscuola/tasks/__init__.py
"""
Celery tasks package for the autoscuola engine.

This package contains the periodic sweeps:
- Reposition queue
- Penalty, settlement and retry charges
- Invoice finalization
"""
