"""Domain layer for Visit-Facts.

This module contains the core business logic: the fact row schema, typed
values and their codecs. All domain models are pure Python with no external
dependencies beyond Pydantic.
"""

from .observation_fact import (
    FACT_COLUMNS,
    Concept,
    FactKey,
    ObservationFact,
    ValueType,
    VisitRef,
)
from .values import (
    CodedValue,
    DateValue,
    FileValue,
    MedicationValue,
    NumericValue,
    TextValue,
)
from .codecs import CodecRegistry, ValueCodec, build_default_registry

__all__ = [
    "FACT_COLUMNS",
    "Concept",
    "FactKey",
    "ObservationFact",
    "ValueType",
    "VisitRef",
    "CodedValue",
    "DateValue",
    "FileValue",
    "MedicationValue",
    "NumericValue",
    "TextValue",
    "CodecRegistry",
    "ValueCodec",
    "build_default_registry",
]
