"""Adapters for external payment and invoicing providers."""
