"""Storage adapters implementing FactRepositoryPort."""

from visitfacts.adapters.storage.duckdb_adapter import DuckDBFactRepository
from visitfacts.adapters.storage.memory_adapter import InMemoryFactRepository

__all__ = [
    'DuckDBFactRepository',
    'InMemoryFactRepository',
]
