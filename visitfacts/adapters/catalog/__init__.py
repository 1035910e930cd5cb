"""Concept catalog adapters."""

from visitfacts.adapters.catalog.memory_catalog import InMemoryConceptCatalog

__all__ = ['InMemoryConceptCatalog']
