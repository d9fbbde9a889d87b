"""Driving-school appointment resourcing and payment settlement engine."""

__version__ = "0.1.0"
