"""Tests for the composition root."""

import os
from datetime import datetime
from unittest.mock import patch

import pytest

from visitfacts.adapters.catalog import InMemoryConceptCatalog
from visitfacts.adapters.storage import DuckDBFactRepository, InMemoryFactRepository
from visitfacts.domain.observation_fact import FactKey, VisitRef
from visitfacts.domain.values import NumericValue
from visitfacts.infrastructure.audit import ChangeAuditLogger
from visitfacts.infrastructure.config_manager import DatabaseConfig
from visitfacts.main import (
    create_concept_catalog,
    create_fact_repository,
    load_history,
    open_visit,
)


class TestFactories:
    """Adapter factories."""

    def test_memory_repository(self):
        assert isinstance(create_fact_repository(DatabaseConfig()), InMemoryFactRepository)

    def test_duckdb_repository(self, tmp_path):
        config = DatabaseConfig(db_type="duckdb", db_path=str(tmp_path / "facts.duckdb"))
        repository = create_fact_repository(config)

        assert isinstance(repository, DuckDBFactRepository)
        assert repository.db_path == str(tmp_path / "facts.duckdb")

    def test_unsupported_type(self):
        with pytest.raises(ValueError):
            create_fact_repository(DatabaseConfig.model_construct(db_type="sqlite", db_path=None))

    def test_repository_from_environment(self, tmp_path):
        env = {"VF_DB_TYPE": "duckdb", "VF_DB_PATH": str(tmp_path / "env.duckdb")}
        with patch.dict(os.environ, env, clear=True):
            repository = create_fact_repository()
        assert isinstance(repository, DuckDBFactRepository)

    def test_empty_catalog_when_unconfigured(self):
        with patch.dict(os.environ, {}, clear=True):
            catalog = create_concept_catalog()
        assert len(catalog) == 0

    def test_catalog_from_csv(self, tmp_path):
        path = tmp_path / "concepts.csv"
        path.write_text("code,name,value_type,category\nWEIGHT,Body weight,N,Vitals\n", encoding="utf-8")

        catalog = create_concept_catalog(str(path))

        assert isinstance(catalog, InMemoryConceptCatalog)
        assert catalog.list_categories() == ["Vitals"]


class TestOpenVisit:
    """Opening a visit with statistics attached."""

    @pytest.mark.asyncio
    async def test_statistics_follow_edits(self, catalog, make_fact, weight):
        repository = InMemoryFactRepository([make_fact("WEIGHT", weight(70))])
        working_set, aggregator = await open_visit("P001", "V1", repository, catalog, source_system="WARD")

        assert working_set.get_value("WEIGHT") == weight(70)
        assert aggregator.category_stats("Vitals").filled == 1

        working_set.set_value("HEIGHT", 180)
        assert aggregator.category_stats("Vitals").filled == 2
        assert aggregator.category_stats("Vitals").percentage == 67

    @pytest.mark.asyncio
    async def test_save_stamps_source_system_and_audits(self, catalog, repository):
        audit = ChangeAuditLogger()
        working_set, _ = await open_visit(
            "P001", "V1", repository, catalog, audit_logger=audit, source_system="WARD"
        )
        working_set.set_value("HEIGHT", 180)

        report = await working_set.save()

        assert report.ok
        assert repository.find(FactKey("P001", "V1", "HEIGHT")).source_system == "WARD"
        assert [entry['change_type'] for entry in audit.get_logs()] == ["INSERT"]


class TestLoadHistory:

    @pytest.mark.asyncio
    async def test_resolves_previous_value(self, make_fact, weight):
        repository = InMemoryFactRepository([
            make_fact("WEIGHT", weight(70), visit_id="V1", recorded_at=datetime(2024, 1, 1, 10, 0)),
            make_fact("WEIGHT", weight(72), visit_id="V2", recorded_at=datetime(2024, 2, 1, 10, 0)),
        ])

        resolver = await load_history("P001", repository)
        value = resolver.resolve_value("P001", "WEIGHT", VisitRef(visit_id="V3", visit_date=datetime(2024, 1, 15)))

        assert value == NumericValue(value=70, unit="kg")
