"""Value Codecs - Typed Value <-> Fact Row Translation.

Every value type owns one codec that knows which fact column is authoritative
for it, how to validate a typed value, and how to turn a row back into that
value. Codecs are collected in a CodecRegistry; the Working Set and the
Statistics Aggregator only ever talk to the registry, so adding a value type
means registering a codec and nothing else.

Security Impact:
    - Values are validated before they can be encoded into a row
    - Inconsistent rows raise EncodingError instead of being silently coerced
    - Error messages carry value type codes and field names, never values

Architecture:
    - Pure domain services with no infrastructure dependencies
    - Pydantic validation errors are translated to domain ValidationError here
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError as PydanticValidationError

from visitfacts.domain.observation_fact import (
    FactKey,
    ObservationFact,
    ValueType,
    value_type_code,
)
from visitfacts.domain.ports import EncodingError, ValidationError
from visitfacts.domain.values import (
    CodedValue,
    DateValue,
    FileValue,
    MedicationValue,
    NumericValue,
    StructuredValue,
    TextValue,
)

logger = logging.getLogger(__name__)

# Columns that carry an observation value, in row order
VALUE_COLUMNS = ("numeric_value", "text_value", "structured_payload")


def _describe_pydantic_error(error: PydanticValidationError) -> str:
    """Summarize a Pydantic error by location and message (no input values)."""
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item.get("loc", ())) or "value"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


class ValueCodec(ABC):
    """Codec for one value type variant.

    Subclasses declare the value type code, the typed value class and the
    single authoritative row column, and implement the column mapping.
    """

    value_type: str
    value_class: Type[BaseModel]
    authoritative_column: str
    allows_unit: bool = False

    def validate(self, value: Any) -> BaseModel:
        """Check that value is a valid instance of this variant.

        Raises:
            ValidationError: If value has the wrong class or violates the schema
        """
        if not isinstance(value, self.value_class):
            raise ValidationError(
                f"Value type '{self.value_type}' expects {self.value_class.__name__}, "
                f"got {type(value).__name__}",
                value_type=self.value_type
            )
        # Re-run validators (model_construct() and model_copy() bypass them) but
        # hand back the original instance so its set fields stay intact
        try:
            self.value_class.model_validate(value.model_dump(by_alias=True))
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid {self.value_class.__name__}: {_describe_pydantic_error(e)}",
                value_type=self.value_type
            ) from e
        return value

    def coerce(self, raw: Any, default_unit: Optional[str] = None) -> BaseModel:
        """Build a typed value from raw input (already-typed values pass through).

        Raises:
            ValidationError: If raw cannot be turned into a valid value
        """
        if isinstance(raw, self.value_class):
            return self.validate(raw)
        try:
            return self._coerce_raw(raw, default_unit)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Cannot build {self.value_class.__name__}: {_describe_pydantic_error(e)}",
                value_type=self.value_type
            ) from e
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Cannot build {self.value_class.__name__} from {type(raw).__name__}",
                value_type=self.value_type
            ) from e

    def is_empty(self, value: BaseModel) -> bool:
        """Whether a value counts as "no observation" (stored as no row)."""
        return False

    def encode_columns(self, value: BaseModel) -> Dict[str, Any]:
        """Map a validated value to row columns (all value columns present)."""
        columns = {column: None for column in VALUE_COLUMNS}
        columns["unit_code"] = None
        columns.update(self._to_columns(value))
        return columns

    def decode(self, fact: ObservationFact) -> BaseModel:
        """Decode a row, checking it against this variant's column rules.

        Raises:
            EncodingError: If the row's columns contradict its value type
        """
        self._check_columns(fact)
        try:
            return self._from_columns(fact)
        except PydanticValidationError as e:
            raise EncodingError(
                f"Row payload does not satisfy value type '{self.value_type}': "
                f"{_describe_pydantic_error(e)}",
                value_type=self.value_type,
                key=fact.key
            ) from e
        except (TypeError, ValueError) as e:
            raise EncodingError(
                f"Row value cannot be read as value type '{self.value_type}'",
                value_type=self.value_type,
                key=fact.key
            ) from e

    def _check_columns(self, fact: ObservationFact) -> None:
        if getattr(fact, self.authoritative_column) is None:
            raise EncodingError(
                f"Row of value type '{self.value_type}' has no {self.authoritative_column}",
                value_type=self.value_type,
                key=fact.key
            )
        for column in VALUE_COLUMNS:
            if column != self.authoritative_column and getattr(fact, column) is not None:
                raise EncodingError(
                    f"Row of value type '{self.value_type}' must not set {column}",
                    value_type=self.value_type,
                    key=fact.key
                )
        if fact.unit_code is not None and not self.allows_unit:
            raise EncodingError(
                f"unit_code is only valid on numeric rows, not '{self.value_type}'",
                value_type=self.value_type,
                key=fact.key
            )

    @abstractmethod
    def _to_columns(self, value: BaseModel) -> Dict[str, Any]:
        pass

    @abstractmethod
    def _from_columns(self, fact: ObservationFact) -> BaseModel:
        pass

    @abstractmethod
    def _coerce_raw(self, raw: Any, default_unit: Optional[str]) -> BaseModel:
        pass


class NumericCodec(ValueCodec):
    value_type = ValueType.NUMERIC.value
    value_class = NumericValue
    authoritative_column = "numeric_value"
    allows_unit = True

    def _to_columns(self, value: NumericValue) -> Dict[str, Any]:
        return {"numeric_value": value.value, "unit_code": value.unit}

    def _from_columns(self, fact: ObservationFact) -> NumericValue:
        return NumericValue(value=fact.numeric_value, unit=fact.unit_code)

    def _coerce_raw(self, raw: Any, default_unit: Optional[str]) -> NumericValue:
        if isinstance(raw, str):
            raw = float(raw.strip())
        return NumericValue(value=raw, unit=default_unit)


class TextCodec(ValueCodec):
    value_type = ValueType.TEXT.value
    value_class = TextValue
    authoritative_column = "text_value"

    def is_empty(self, value: TextValue) -> bool:
        return not value.value.strip()

    def _to_columns(self, value: TextValue) -> Dict[str, Any]:
        return {"text_value": value.value}

    def _from_columns(self, fact: ObservationFact) -> TextValue:
        return TextValue(value=fact.text_value)

    def _coerce_raw(self, raw: Any, default_unit: Optional[str]) -> TextValue:
        if not isinstance(raw, str):
            raise TypeError("Text observations require a string")
        return TextValue(value=raw)


class CodedCodec(ValueCodec):
    value_type = ValueType.CODED.value
    value_class = CodedValue
    authoritative_column = "text_value"

    def is_empty(self, value: CodedValue) -> bool:
        return not value.code.strip()

    def _to_columns(self, value: CodedValue) -> Dict[str, Any]:
        return {"text_value": value.code}

    def _from_columns(self, fact: ObservationFact) -> CodedValue:
        return CodedValue(code=fact.text_value)

    def _coerce_raw(self, raw: Any, default_unit: Optional[str]) -> CodedValue:
        if not isinstance(raw, str):
            raise TypeError("Coded observations require a code string")
        return CodedValue(code=raw)


class DateCodec(ValueCodec):
    value_type = ValueType.DATE.value
    value_class = DateValue
    authoritative_column = "text_value"

    def _to_columns(self, value: DateValue) -> Dict[str, Any]:
        return {"text_value": value.value.isoformat()}

    def _from_columns(self, fact: ObservationFact) -> DateValue:
        return DateValue(value=date.fromisoformat(fact.text_value))

    def _coerce_raw(self, raw: Any, default_unit: Optional[str]) -> DateValue:
        if isinstance(raw, datetime):
            raw = raw.date()
        elif isinstance(raw, str):
            raw = date.fromisoformat(raw.strip())
        return DateValue(value=raw)


class StructuredCodec(ValueCodec):
    """Codec for payload-backed values.

    Only keys that were present on the way in are written on the way out, so
    an explicit null survives and an absent key stays absent. Keys are written
    in the order the value was built from; keys without a remembered position
    (values built by keyword) follow in declaration order, extensions last.
    Values are deep-copied.
    """

    authoritative_column = "structured_payload"

    def _to_columns(self, value: StructuredValue) -> Dict[str, Any]:
        present: Dict[str, Any] = {}
        fields_set = value.model_fields_set
        for name, field in type(value).model_fields.items():
            if name in fields_set:
                present[field.alias or name] = getattr(value, name)
        for key, extra in (value.model_extra or {}).items():
            present[key] = extra

        ordered = [key for key in value.key_order if key in present]
        ordered += [key for key in present if key not in ordered]
        payload = {key: copy.deepcopy(present[key]) for key in ordered}
        return {"structured_payload": payload}

    def _from_columns(self, fact: ObservationFact) -> StructuredValue:
        return self.value_class.model_validate(copy.deepcopy(fact.structured_payload))

    def _coerce_raw(self, raw: Any, default_unit: Optional[str]) -> StructuredValue:
        if not isinstance(raw, dict):
            raise TypeError("Structured observations require a mapping")
        return self.value_class.model_validate(copy.deepcopy(raw))


class MedicationCodec(StructuredCodec):
    value_type = ValueType.MEDICATION.value
    value_class = MedicationValue


class FileCodec(StructuredCodec):
    value_type = ValueType.FILE.value
    value_class = FileValue


class CodecRegistry:
    """Registry of value codecs keyed by value type code.

    Example Usage:
        ```python
        registry = build_default_registry()
        fact = registry.encode(
            NumericValue(value=72.5, unit="kg"), ValueType.NUMERIC,
            key=FactKey("P001", "V1", "WEIGHT"), recorded_at=datetime.now(),
        )
        assert registry.decode(fact) == NumericValue(value=72.5, unit="kg")
        ```
    """

    def __init__(self, codecs: Optional[List[ValueCodec]] = None):
        self._codecs: Dict[str, ValueCodec] = {}
        for codec in codecs or []:
            self.register(codec)

    def register(self, codec: ValueCodec, replace: bool = False) -> None:
        """Register a codec for its value type.

        Raises:
            ValueError: If the value type already has a codec and replace is False
        """
        code = value_type_code(codec.value_type)
        if code in self._codecs and not replace:
            raise ValueError(f"A codec for value type '{code}' is already registered")
        self._codecs[code] = codec
        logger.debug(f"Registered codec {type(codec).__name__} for value type '{code}'")

    def get(self, value_type: Any) -> ValueCodec:
        """Return the codec for value_type.

        Raises:
            EncodingError: If no codec handles the value type
        """
        code = value_type_code(value_type)
        codec = self._codecs.get(code)
        if codec is None:
            raise EncodingError(f"No codec registered for value type '{code}'", value_type=code)
        return codec

    def supports(self, value_type: Any) -> bool:
        return value_type_code(value_type) in self._codecs

    @property
    def value_types(self) -> List[str]:
        return list(self._codecs)

    def codec_for_value(self, value: Any) -> ValueCodec:
        """Find the codec whose value class matches value exactly."""
        for codec in self._codecs.values():
            if type(value) is codec.value_class:
                return codec
        raise ValidationError(f"No codec handles values of type {type(value).__name__}")

    def validate(self, value: Any, value_type: Any) -> BaseModel:
        return self.get(value_type).validate(value)

    def coerce(self, raw: Any, value_type: Any, default_unit: Optional[str] = None) -> BaseModel:
        return self.get(value_type).coerce(raw, default_unit)

    def is_empty(self, value: Any) -> bool:
        if value is None:
            return True
        return self.codec_for_value(value).is_empty(value)

    @staticmethod
    def values_equal(old: Any, new: Any) -> bool:
        """Deep equality of decoded values, extension keys included."""
        if old is None or new is None:
            return old is None and new is None
        return type(old) is type(new) and old == new

    def encode(
        self,
        value: Any,
        value_type: Any,
        *,
        key: FactKey,
        recorded_at: datetime,
        category: Optional[str] = None,
        source_system: str = "UNKNOWN"
    ) -> ObservationFact:
        """Encode a typed value into a fact row.

        Raises:
            ValidationError: If value violates the variant's schema
            EncodingError: If value_type has no codec
        """
        codec = self.get(value_type)
        validated = codec.validate(value)
        columns = codec.encode_columns(validated)
        return ObservationFact(
            patient_id=key.patient_id,
            visit_id=key.visit_id,
            concept_code=key.concept_code,
            value_type=codec.value_type,
            recorded_at=recorded_at,
            category=category,
            source_system=source_system,
            **columns
        )

    def decode(self, fact: ObservationFact) -> BaseModel:
        """Decode a fact row into its typed value.

        Raises:
            EncodingError: If the row is inconsistent with its value type
        """
        try:
            codec = self.get(fact.value_type)
        except EncodingError as e:
            raise EncodingError(str(e), value_type=fact.value_type, key=fact.key) from e
        return codec.decode(fact)


def build_default_registry() -> CodecRegistry:
    """Create a fresh registry with all built-in value type codecs."""
    return CodecRegistry([
        NumericCodec(),
        TextCodec(),
        CodedCodec(),
        DateCodec(),
        MedicationCodec(),
        FileCodec(),
    ])
