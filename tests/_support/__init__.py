"""Shared test helpers (fake adapters)."""
