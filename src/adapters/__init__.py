"""Adapters that plug storage and push delivery into the core ports."""
