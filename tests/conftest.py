"""Shared fixtures for the Visit-Facts test suite."""

from datetime import datetime, timedelta

import pytest

from visitfacts.adapters.catalog import InMemoryConceptCatalog
from visitfacts.adapters.storage import InMemoryFactRepository
from visitfacts.domain.codecs import build_default_registry
from visitfacts.domain.observation_fact import Concept, FactKey, ValueType
from visitfacts.domain.values import NumericValue, TextValue


class StepClock:
    """Deterministic clock: every call advances by one minute."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(minutes=1)
        return self.now


@pytest.fixture
def concepts():
    return [
        Concept(code="WEIGHT", name="Body weight", value_type=ValueType.NUMERIC,
                default_unit="kg", category="Vitals"),
        Concept(code="HEIGHT", name="Body height", value_type=ValueType.NUMERIC,
                default_unit="cm", category="Vitals"),
        Concept(code="PULSE", name="Pulse", value_type=ValueType.NUMERIC,
                default_unit="/min", category="Vitals", pinned=True),
        Concept(code="NOTE", name="Clinical note", value_type=ValueType.TEXT,
                category="Notes"),
        Concept(code="SMOKING", name="Smoking status", value_type=ValueType.CODED,
                category="History", coding_reference="SCTID: 72166-2"),
        Concept(code="ONSET", name="Symptom onset", value_type=ValueType.DATE,
                category="History"),
        Concept(code="MED_1", name="Medication", value_type=ValueType.MEDICATION,
                category="Medications"),
        Concept(code="SCAN", name="Scan attachment", value_type=ValueType.FILE),
    ]


@pytest.fixture
def catalog(concepts):
    return InMemoryConceptCatalog(concepts)


@pytest.fixture
def repository():
    return InMemoryFactRepository()


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def make_fact(registry):
    """Build a persisted-looking fact for a value."""
    def _make(concept_code, value, value_type=ValueType.NUMERIC, patient_id="P001",
              visit_id="V1", recorded_at=datetime(2024, 1, 1, 10, 0), category=None):
        return registry.encode(
            value,
            value_type,
            key=FactKey(patient_id, visit_id, concept_code),
            recorded_at=recorded_at,
            category=category,
            source_system="SEED"
        )
    return _make


@pytest.fixture
def weight():
    return lambda kg: NumericValue(value=kg, unit="kg")


@pytest.fixture
def note():
    return lambda text: TextValue(value=text)
