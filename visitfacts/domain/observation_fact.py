"""Observation Fact Schema Definitions.

This module defines the canonical row shape shared by every observation,
whatever its value type: one entity-attribute-value fact per
(patient, visit, concept). It also defines the read-only Concept model
owned by the concept catalog and the VisitRef used for cross-visit lookups.

Security Impact:
    - Fact rows carry PHI (observation values); they must never be logged verbatim
    - Row/type consistency is checked by the value codecs, not here, so that
      foreign or corrupted rows can still be loaded and reported

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Models are validated by Pydantic V2 before use
    - Follows Hexagonal Architecture: Domain Core is isolated from Adapters
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ValueType(str, Enum):
    """Built-in value type codes.

    The value type set is open: fact rows store the plain code string, and a
    codec may be registered for any code not listed here.
    """
    NUMERIC = "N"
    TEXT = "T"
    CODED = "S"
    DATE = "D"
    MEDICATION = "M"
    FILE = "R"


def value_type_code(value_type: Any) -> str:
    """Normalize a ValueType member or plain string to its code."""
    if isinstance(value_type, Enum):
        return str(value_type.value)
    return str(value_type)


@dataclass(frozen=True)
class FactKey:
    """Identity of a fact row."""

    patient_id: str
    visit_id: str
    concept_code: str

    def __str__(self) -> str:
        return f"{self.patient_id}/{self.visit_id}/{self.concept_code}"


@dataclass(frozen=True)
class VisitRef:
    """A visit reference with the date used for previous-value lookups."""

    visit_id: str
    visit_date: datetime


class ObservationFact(BaseModel):
    """One recorded observation entry for a patient/visit/concept.

    Exactly one of numeric_value, text_value and structured_payload is
    authoritative for a given value_type; unit_code only applies to numeric
    rows. Those rules are enforced by the value codecs.

    Parameters:
        patient_id: Patient identifier
        visit_id: Visit (encounter) identifier
        concept_code: Code of the observed concept
        value_type: Value type code (see ValueType; other codes allowed)
        numeric_value: Numeric column (NVAL)
        text_value: Text column (TVAL)
        unit_code: Unit of a numeric value
        structured_payload: Ordered key/value payload of structured variants
        recorded_at: When the observation was recorded
        category: Category the concept belongs to
        source_system: System that produced the row
    """

    patient_id: str = Field(..., min_length=1, description="Patient identifier")
    visit_id: str = Field(..., min_length=1, description="Visit identifier")
    concept_code: str = Field(..., min_length=1, description="Observed concept code")
    value_type: str = Field(..., min_length=1, description="Value type code")
    numeric_value: Optional[float] = Field(None, description="Numeric value")
    text_value: Optional[str] = Field(None, description="Text value")
    unit_code: Optional[str] = Field(None, description="Unit of the numeric value")
    structured_payload: Optional[dict[str, Any]] = Field(
        None, description="Structured payload (ordered, may carry extension keys)"
    )
    recorded_at: datetime = Field(..., description="Recording timestamp")
    category: Optional[str] = Field(None, description="Concept category")
    source_system: str = Field("UNKNOWN", description="Source system identifier")

    model_config = ConfigDict(frozen=True)

    @field_validator("value_type", mode="before")
    @classmethod
    def normalize_value_type(cls, v: Any) -> Any:
        """Accept ValueType members as well as plain codes."""
        if isinstance(v, Enum):
            return value_type_code(v)
        return v

    @property
    def key(self) -> FactKey:
        return FactKey(self.patient_id, self.visit_id, self.concept_code)


# Persisted row columns, in schema order
FACT_COLUMNS = list(ObservationFact.model_fields)


class Concept(BaseModel):
    """A coded definition of what is being observed.

    Immutable from the core's perspective; owned by the concept catalog.

    Parameters:
        code: Concept code (e.g. "LOINC:29463-7")
        name: Display name
        value_type: Value type code of its observations
        default_unit: Unit used when a numeric value is entered without one
        category: Category (field set) the concept belongs to
        coding_reference: External coding-standard reference (opaque)
        pinned: Pinned concepts are listed first in their category
    """

    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    value_type: str = Field(..., min_length=1)
    default_unit: Optional[str] = None
    category: Optional[str] = None
    coding_reference: Optional[str] = None
    pinned: bool = False

    model_config = ConfigDict(frozen=True)

    @field_validator("value_type", mode="before")
    @classmethod
    def normalize_value_type(cls, v: Any) -> Any:
        if isinstance(v, Enum):
            return value_type_code(v)
        return v

