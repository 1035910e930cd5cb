"""In-Memory Concept Catalog.

Implements ConceptCatalogPort over a list of Concept definitions, optionally
seeded from a CSV file with the columns:

    code,name,value_type,default_unit,category,coding_reference,pinned

Only `code`, `name` and `value_type` are required. Definition order (file
order) is preserved and drives category listings after pinned concepts.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from visitfacts.domain.observation_fact import Concept
from visitfacts.domain.ports import (
    ConceptCatalogPort,
    NotFoundError,
    RepositoryError,
    ValidationError,
)

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["code", "name", "value_type"]
OPTIONAL_COLUMNS = ["default_unit", "category", "coding_reference", "pinned"]
TRUE_STRINGS = {"1", "true", "yes", "y", "x"}


class InMemoryConceptCatalog(ConceptCatalogPort):
    """Concept catalog held in memory.

    Parameters:
        concepts: Concept definitions in definition order

    Raises:
        ValidationError: If two concepts share a code
    """

    def __init__(self, concepts: Iterable[Concept] = ()):
        self._concepts: Dict[str, Concept] = {}
        for concept in concepts:
            if concept.code in self._concepts:
                raise ValidationError(
                    f"Duplicate concept code in catalog: {concept.code}",
                    details={"code": concept.code}
                )
            self._concepts[concept.code] = concept

    def __len__(self) -> int:
        return len(self._concepts)

    def get_concept(self, code: str) -> Concept:
        try:
            return self._concepts[code]
        except KeyError:
            raise NotFoundError(f"Unknown concept: {code}", code=code)

    def list_concepts_by_category(self, category: str) -> List[Concept]:
        in_category = [c for c in self._concepts.values() if c.category == category]
        # sorted() is stable, so definition order holds within each group
        return sorted(in_category, key=lambda c: not c.pinned)

    def list_categories(self) -> List[str]:
        categories: List[str] = []
        for concept in self._concepts.values():
            if concept.category and concept.category not in categories:
                categories.append(concept.category)
        return categories

    def concepts(self) -> List[Concept]:
        return list(self._concepts.values())

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> 'InMemoryConceptCatalog':
        """Build a catalog from a DataFrame of concept rows.

        Raises:
            ValidationError: If required columns are missing or a row is invalid
        """
        missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
        if missing:
            raise ValidationError(
                f"Concept catalog is missing required columns: {missing}",
                details={"missing_columns": missing}
            )

        concepts = []
        for row_number, row in enumerate(df.to_dict(orient="records"), start=1):
            data = {
                column: _clean(row.get(column))
                for column in REQUIRED_COLUMNS + OPTIONAL_COLUMNS
                if column in row
            }
            data["pinned"] = str(data.get("pinned") or "").strip().lower() in TRUE_STRINGS
            try:
                concepts.append(Concept(**data))
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid concept at row {row_number}: {e.error_count()} error(s)",
                    details={"row": row_number, "code": data.get("code")}
                )
        return cls(concepts)

    @classmethod
    def from_csv(cls, path: str) -> 'InMemoryConceptCatalog':
        """Load the catalog from a seed CSV file.

        Raises:
            RepositoryError: If the file cannot be read
            ValidationError: If its content is not a valid concept list
        """
        source_path = Path(path)
        if not source_path.exists():
            raise RepositoryError(
                f"Concept catalog file not found: {path}",
                operation="load_catalog",
                details={"path": path}
            )

        try:
            df = pd.read_csv(
                source_path,
                dtype=str,
                keep_default_na=False,
                encoding='utf-8'
            )
        except pd.errors.EmptyDataError:
            raise ValidationError(f"Concept catalog file {path} is empty", details={"path": path})
        except pd.errors.ParserError as e:
            raise ValidationError(
                f"Invalid CSV format in {path}: {str(e)}",
                details={"path": path}
            )

        catalog = cls.from_dataframe(df)
        logger.info(
            f"Loaded concept catalog from {path}: {len(catalog)} concepts, "
            f"{len(catalog.list_categories())} categories"
        )
        return catalog


def _clean(value):
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if pd.isna(value):
        return None
    return value
