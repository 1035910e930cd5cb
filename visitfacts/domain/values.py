"""Typed observation values.

One immutable Pydantic model per built-in value type. Structured variants
(medication, file) accept extra keys and keep them verbatim so that payloads
written by newer clients survive a decode/encode cycle in this one.
"""

import math
from datetime import date
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator


class NumericValue(BaseModel):
    """A finite numeric measurement with an optional unit."""

    value: float = Field(..., allow_inf_nan=False)
    unit: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("value", mode="before")
    @classmethod
    def reject_booleans(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("Boolean is not a numeric observation value")
        return v


class TextValue(BaseModel):
    """Free text."""

    value: str

    model_config = ConfigDict(frozen=True)


class CodedValue(BaseModel):
    """A selection answer referencing another concept code (e.g. "SCTID: 373066001")."""

    code: str

    model_config = ConfigDict(frozen=True)


class DateValue(BaseModel):
    """A calendar date."""

    value: date

    model_config = ConfigDict(frozen=True)


class StructuredValue(BaseModel):
    """Base for payload-backed values.

    Declared fields bind only through their camelCase aliases; every other
    payload key (including a snake_case spelling of a declared field) is kept
    as a Pydantic extra and written back as-is. The key order of the input
    mapping is remembered so the payload is written back in that order; it
    does not take part in equality.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    _key_order: Tuple[str, ...] = PrivateAttr(default=())

    @model_validator(mode="wrap")
    @classmethod
    def remember_key_order(cls, data: Any, handler: Any) -> Any:
        value = handler(data)
        if isinstance(data, dict) and value is not data:
            value._key_order = tuple(key for key in data if isinstance(key, str))
        return value

    def __eq__(self, other: Any) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return self.__dict__ == other.__dict__ and self.model_extra == other.model_extra

    @property
    def key_order(self) -> Tuple[str, ...]:
        return self._key_order

    @property
    def extensions(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class MedicationValue(StructuredValue):
    """A structured medication plan entry."""

    drug_name: str = Field(..., alias="drugName")
    dosage: Optional[float] = Field(None, allow_inf_nan=False)
    dosage_unit: Optional[str] = Field(None, alias="dosageUnit")
    route: Optional[str] = None
    frequency: Optional[str] = None
    instructions: Optional[str] = None

    @field_validator("drug_name")
    @classmethod
    def require_drug_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("drugName must be a non-empty string")
        return v

    @field_validator("dosage", mode="before")
    @classmethod
    def reject_boolean_dosage(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("Boolean is not a dosage")
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("dosage must be a finite number")
        return v

    def summary(self) -> str:
        """One-line human readable form, e.g. "Metformin 500 mg oral BID"."""
        parts = [self.drug_name]
        if self.dosage is not None:
            dosage = int(self.dosage) if float(self.dosage).is_integer() else self.dosage
            parts.append(f"{dosage} {self.dosage_unit}" if self.dosage_unit else str(dosage))
        if self.route:
            parts.append(self.route)
        if self.frequency:
            parts.append(self.frequency)
        return " ".join(parts)


class FileValue(StructuredValue):
    """A reference to an attached file (raw data observation)."""

    filename: str
    content_type: Optional[str] = Field(None, alias="contentType")
    size: Optional[int] = Field(None, ge=0)
    checksum: Optional[str] = None

    @field_validator("filename")
    @classmethod
    def require_filename(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("filename must be a non-empty string")
        return v
