"""Tests for InMemoryConceptCatalog."""

import pandas as pd
import pytest

from visitfacts.adapters.catalog import InMemoryConceptCatalog
from visitfacts.domain.observation_fact import Concept
from visitfacts.domain.ports import NotFoundError, RepositoryError, ValidationError

SEED_CSV = """code,name,value_type,default_unit,category,coding_reference,pinned
WEIGHT,Body weight,N,kg,Vitals,LOINC:29463-7,
HEIGHT,Body height,N,cm,Vitals,LOINC:8302-2,
PULSE,Pulse,N,/min,Vitals,,true
SMOKING,Smoking status,S,,History,LOINC:72166-2,no
MED_1,Medication,M,,Medications,,
NOTE,Free note,T,,,,
"""


@pytest.fixture
def seed_file(tmp_path):
    path = tmp_path / "concepts.csv"
    path.write_text(SEED_CSV, encoding="utf-8")
    return path


class TestInMemoryConceptCatalog:
    """Lookup and listing order."""

    def test_get_concept(self, catalog):
        concept = catalog.get_concept("WEIGHT")
        assert concept.default_unit == "kg"
        assert concept.value_type == "N"

    def test_unknown_concept(self, catalog):
        with pytest.raises(NotFoundError) as exc_info:
            catalog.get_concept("NOPE")
        assert exc_info.value.code == "NOPE"
        assert not catalog.has_concept("NOPE")
        assert catalog.has_concept("WEIGHT")

    def test_pinned_first_then_definition_order(self, catalog):
        codes = [c.code for c in catalog.list_concepts_by_category("Vitals")]
        assert codes == ["PULSE", "WEIGHT", "HEIGHT"]

    def test_unknown_category_is_empty(self, catalog):
        assert catalog.list_concepts_by_category("Nope") == []

    def test_list_categories_in_definition_order(self, catalog):
        assert catalog.list_categories() == ["Vitals", "Notes", "History", "Medications"]

    def test_duplicate_codes_rejected(self):
        concept = Concept(code="A", name="A", value_type="T")
        with pytest.raises(ValidationError):
            InMemoryConceptCatalog([concept, concept])


class TestCatalogLoading:
    """Seeding from CSV through pandas."""

    def test_from_csv(self, seed_file):
        catalog = InMemoryConceptCatalog.from_csv(str(seed_file))

        assert len(catalog) == 6
        assert catalog.get_concept("WEIGHT").coding_reference == "LOINC:29463-7"
        assert catalog.get_concept("PULSE").pinned
        assert not catalog.get_concept("SMOKING").pinned
        assert catalog.get_concept("NOTE").category is None
        assert catalog.get_concept("SMOKING").default_unit is None
        assert [c.code for c in catalog.list_concepts_by_category("Vitals")] == ["PULSE", "WEIGHT", "HEIGHT"]

    def test_minimal_columns(self, tmp_path):
        path = tmp_path / "min.csv"
        path.write_text("code,name,value_type\nA,Alpha,T\n", encoding="utf-8")

        concept = InMemoryConceptCatalog.from_csv(str(path)).get_concept("A")
        assert concept.category is None
        assert not concept.pinned

    def test_missing_required_column(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("code,name\nA,Alpha\n", encoding="utf-8")

        with pytest.raises(ValidationError) as exc_info:
            InMemoryConceptCatalog.from_csv(str(path))
        assert exc_info.value.details["missing_columns"] == ["value_type"]

    def test_blank_required_value(self):
        df = pd.DataFrame([{"code": "A", "name": "", "value_type": "T"}])
        with pytest.raises(ValidationError) as exc_info:
            InMemoryConceptCatalog.from_dataframe(df)
        assert exc_info.value.details["row"] == 1

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValidationError):
            InMemoryConceptCatalog.from_csv(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(RepositoryError):
            InMemoryConceptCatalog.from_csv(str(tmp_path / "nope.csv"))
