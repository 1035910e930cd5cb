"""Adapters for the fact store ports (storage, concept catalog, export)."""
