"""Contract tests shared by the in-memory and DuckDB fact repositories."""

from datetime import datetime

import pytest

from visitfacts.adapters.storage import DuckDBFactRepository, InMemoryFactRepository
from visitfacts.domain.codecs import build_default_registry
from visitfacts.domain.observation_fact import FACT_COLUMNS, FactKey, ValueType
from visitfacts.domain.ports import RepositoryError
from visitfacts.domain.values import FileValue, MedicationValue, NumericValue, TextValue
from visitfacts.infrastructure.config_manager import DatabaseConfig

REGISTRY = build_default_registry()


def fact(concept_code, value, value_type, visit_id="V1", patient_id="P001", day=1, category=None):
    return REGISTRY.encode(
        value,
        value_type,
        key=FactKey(patient_id, visit_id, concept_code),
        recorded_at=datetime(2024, 1, day, 8, 30, 15, 123456),
        category=category,
        source_system="TEST"
    )


@pytest.fixture(params=["memory", "duckdb"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryFactRepository()
    else:
        repository = DuckDBFactRepository(db_path=str(tmp_path / "facts.duckdb"))
        yield repository
        if repository._connection is not None:
            repository._connection.close()


class TestRepositoryContract:
    """Behaviour every FactRepositoryPort adapter must share."""

    @pytest.mark.asyncio
    async def test_upsert_then_get(self, repo):
        row = fact("WEIGHT", NumericValue(value=72.5, unit="kg"), ValueType.NUMERIC, category="Vitals")

        result = await repo.upsert(row)
        assert result.is_success()
        assert result.value == row.key

        loaded = await repo.get("P001", "V1")
        assert loaded.is_success()
        assert loaded.value == [row]

    @pytest.mark.asyncio
    async def test_upsert_replaces_same_key(self, repo):
        await repo.upsert(fact("NOTE", TextValue(value="a"), ValueType.TEXT))
        await repo.upsert(fact("NOTE", TextValue(value="b"), ValueType.TEXT, day=2))

        loaded = (await repo.get("P001", "V1")).value
        assert len(loaded) == 1
        assert loaded[0].text_value == "b"

    @pytest.mark.asyncio
    async def test_delete(self, repo):
        row = fact("NOTE", TextValue(value="a"), ValueType.TEXT)
        await repo.upsert(row)

        result = await repo.delete(row.key)

        assert result.is_success()
        assert (await repo.get("P001", "V1")).value == []

    @pytest.mark.asyncio
    async def test_delete_missing_is_idempotent(self, repo):
        result = await repo.delete(FactKey("P001", "V1", "NOPE"))
        assert result.is_success()

    @pytest.mark.asyncio
    async def test_get_is_scoped_to_visit(self, repo):
        await repo.upsert(fact("NOTE", TextValue(value="a"), ValueType.TEXT, visit_id="V1"))
        await repo.upsert(fact("NOTE", TextValue(value="b"), ValueType.TEXT, visit_id="V2"))
        await repo.upsert(fact("NOTE", TextValue(value="c"), ValueType.TEXT, patient_id="P002"))

        loaded = (await repo.get("P001", "V2")).value
        assert [row.text_value for row in loaded] == ["b"]

    @pytest.mark.asyncio
    async def test_list_for_patient_most_recent_first(self, repo):
        for day, visit_id in [(1, "V1"), (3, "V3"), (2, "V2")]:
            await repo.upsert(fact("WEIGHT", NumericValue(value=70 + day, unit="kg"), ValueType.NUMERIC,
                                   visit_id=visit_id, day=day))
        await repo.upsert(fact("NOTE", TextValue(value="x"), ValueType.TEXT, day=4))
        await repo.upsert(fact("WEIGHT", NumericValue(value=1), ValueType.NUMERIC, patient_id="P002", day=5))

        everything = (await repo.list_for_patient("P001")).value
        weights = (await repo.list_for_patient("P001", "WEIGHT")).value

        assert [row.concept_code for row in everything] == ["NOTE", "WEIGHT", "WEIGHT", "WEIGHT"]
        assert [row.visit_id for row in weights] == ["V3", "V2", "V1"]

    @pytest.mark.asyncio
    async def test_structured_payload_round_trip(self, repo):
        medication = MedicationValue(
            drugName="Amoxicillin", dosage=250, dosageUnit="mg", route=None,
            prescribedDate="2024-01-01", schedule={"morning": 1, "evening": 1}
        )
        attachment = FileValue(filename="scan.png", size=0, labels=["chest", "pa"])
        rows = [
            fact("MED_1", medication, ValueType.MEDICATION),
            fact("SCAN", attachment, ValueType.FILE),
        ]
        for row in rows:
            await repo.upsert(row)

        loaded = {row.concept_code: row for row in (await repo.get("P001", "V1")).value}

        assert list(loaded["MED_1"].structured_payload) == [
            "drugName", "dosage", "dosageUnit", "route", "prescribedDate", "schedule"
        ]
        assert REGISTRY.decode(loaded["MED_1"]) == medication
        assert REGISTRY.decode(loaded["SCAN"]) == attachment


class TestDuckDBFactRepository:
    """DuckDB specifics."""

    def test_default_is_in_memory(self):
        assert DuckDBFactRepository().db_path == ":memory:"

    def test_config_type_must_match(self):
        with pytest.raises(RepositoryError):
            DuckDBFactRepository(db_config=DatabaseConfig(db_type="memory"))

    def test_missing_directory(self, tmp_path):
        with pytest.raises(RepositoryError):
            DuckDBFactRepository(db_path=str(tmp_path / "missing" / "facts.duckdb"))

    def test_initialize_schema(self):
        repository = DuckDBFactRepository()
        result = repository.initialize_schema()

        assert result.is_success()
        tables = repository._get_connection().execute("SHOW TABLES").fetchall()
        assert ("observation_fact",) in tables

    def test_table_columns_follow_fact_columns(self):
        repository = DuckDBFactRepository()
        repository.initialize_schema()

        columns = repository._get_connection().execute("PRAGMA table_info(observation_fact)").fetchall()
        assert [column[1] for column in columns] == FACT_COLUMNS

    @pytest.mark.asyncio
    async def test_rows_survive_reconnect(self, tmp_path):
        path = str(tmp_path / "facts.duckdb")
        first = DuckDBFactRepository(db_config=DatabaseConfig(db_type="duckdb", db_path=path))
        row = fact("WEIGHT", NumericValue(value=70, unit="kg"), ValueType.NUMERIC)
        await first.upsert(row)
        await first.close()

        second = DuckDBFactRepository(db_path=path)
        loaded = (await second.get("P001", "V1")).value
        await second.close()

        assert loaded == [row]

    @pytest.mark.asyncio
    async def test_driver_failure_becomes_result(self):
        repository = DuckDBFactRepository()
        repository.initialize_schema()
        repository._get_connection().execute("DROP TABLE observation_fact")

        result = await repository.upsert(fact("NOTE", TextValue(value="x"), ValueType.TEXT))

        assert result.is_failure()
        assert result.error_type == "RepositoryError"
        assert result.error_details["key"] == "P001/V1/NOTE"
