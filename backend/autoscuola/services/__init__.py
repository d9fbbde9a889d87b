"""Service layer for the autoscuola engine."""
