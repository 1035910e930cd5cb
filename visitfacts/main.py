"""Composition root for Visit-Facts.

Builds the configured adapters and opens working sets on them. Nothing here
is cached at module level; callers hold the returned handles.
"""

import logging
from typing import Optional

from visitfacts.adapters.catalog import InMemoryConceptCatalog
from visitfacts.adapters.storage import DuckDBFactRepository, InMemoryFactRepository
from visitfacts.domain.codecs import CodecRegistry, build_default_registry
from visitfacts.domain.ports import ConceptCatalogPort, FactRepositoryPort
from visitfacts.domain.services import (
    ObservationWorkingSet,
    PreviousValueResolver,
    StatisticsAggregator,
)
from visitfacts.infrastructure.audit import ChangeAuditLogger
from visitfacts.infrastructure.config_manager import DatabaseConfig, get_database_config
from visitfacts.infrastructure.settings import Settings

logger = logging.getLogger(__name__)


def create_fact_repository(db_config: Optional[DatabaseConfig] = None) -> FactRepositoryPort:
    """Create the fact repository for the configured database type.

    Raises:
        ValueError: If database type is unsupported
    """
    db_config = db_config or get_database_config()

    if db_config.db_type == "duckdb":
        logger.info(f"Initializing DuckDB fact repository with path: {db_config.db_path or ':memory:'}")
        return DuckDBFactRepository(db_config=db_config)
    elif db_config.db_type == "memory":
        logger.info("Initializing in-memory fact repository")
        return InMemoryFactRepository()
    else:
        raise ValueError(f"Unsupported database type: {db_config.db_type}")


def create_concept_catalog(csv_path: Optional[str] = None) -> ConceptCatalogPort:
    """Create the concept catalog, seeded from CSV when a path is configured."""
    csv_path = csv_path or Settings().catalog_csv_path
    if not csv_path:
        logger.warning("No concept catalog configured; using an empty catalog")
        return InMemoryConceptCatalog()
    return InMemoryConceptCatalog.from_csv(csv_path)


async def open_visit(
    patient_id: str,
    visit_id: str,
    repository: FactRepositoryPort,
    catalog: ConceptCatalogPort,
    registry: Optional[CodecRegistry] = None,
    audit_logger: Optional[ChangeAuditLogger] = None,
    source_system: Optional[str] = None
) -> tuple[ObservationWorkingSet, StatisticsAggregator]:
    """Open a visit with completion statistics attached.

    Returns:
        tuple: (working set, attached statistics aggregator)
    """
    working_set = await ObservationWorkingSet.open(
        patient_id,
        visit_id,
        repository,
        catalog,
        registry=registry or build_default_registry(),
        source_system=source_system or Settings().source_system,
        audit_logger=audit_logger
    )
    aggregator = StatisticsAggregator.from_catalog(catalog).attach(working_set)
    return working_set, aggregator


async def load_history(
    patient_id: str,
    repository: FactRepositoryPort,
    registry: Optional[CodecRegistry] = None
) -> PreviousValueResolver:
    return await PreviousValueResolver.load(repository, patient_id, registry)
