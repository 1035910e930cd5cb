"""Completion Statistics Aggregator.

Computes how many of a category's concepts are filled in a visit. Counters
are updated incrementally from Working Set change notifications, so an edit
costs O(number of categories containing the concept) and never rescans the
visit. A full count only happens on reset (after load).

Architecture:
    - Pure domain service, no I/O
    - Subscribes to the Working Set as a WorkingSetListener
"""

import logging
from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from visitfacts.domain.ports import ConceptCatalogPort, NotFoundError
from visitfacts.domain.services.working_set import ObservationWorkingSet, WorkingSetListener

logger = logging.getLogger(__name__)


def completion_percentage(filled: int, total: int) -> int:
    """round(filled / total * 100) with halves rounded up; 0 when total is 0."""
    if total <= 0:
        return 0
    ratio = Decimal(filled * 100) / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CompletionStats(BaseModel):
    """Completion of one category (or ad-hoc concept list)."""

    total: int
    filled: int
    percentage: int

    model_config = {'frozen': True}

    @classmethod
    def of(cls, filled: int, total: int) -> 'CompletionStats':
        return cls(total=total, filled=filled, percentage=completion_percentage(filled, total))

    @property
    def is_empty(self) -> bool:
        return self.filled == 0

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.filled >= self.total


class CategoryStats(CompletionStats):
    category: str


class OverallStats(CompletionStats):
    """Completion across all active categories.

    Parameters:
        categories: Per-category details in definition order
        uncategorized: Filled concepts that belong to no active category;
            reported separately and never part of total/percentage
    """

    categories: List[CategoryStats] = Field(default_factory=list)
    uncategorized: int = 0

    @property
    def active_categories(self) -> int:
        return len(self.categories) + (1 if self.uncategorized else 0)


class StatisticsAggregator(WorkingSetListener):
    """Incremental completion counters for a working set.

    Parameters:
        categories: Ordered mapping of active category -> concept codes

    Example Usage:
        ```python
        aggregator = StatisticsAggregator.from_catalog(catalog, ["Vitals", "Labs"])
        aggregator.attach(working_set)
        working_set.set_value("WEIGHT", 72)
        aggregator.category_stats("Vitals").percentage
        ```
    """

    def __init__(self, categories: Mapping[str, Sequence[str]]):
        self._categories: Dict[str, List[str]] = {
            name: list(dict.fromkeys(codes)) for name, codes in categories.items()
        }
        self._memberships: Dict[str, List[str]] = {}
        for name, codes in self._categories.items():
            for code in codes:
                self._memberships.setdefault(code, []).append(name)

        self._filled: Counter = Counter()
        self._uncategorized = 0
        self._working_set: Optional[ObservationWorkingSet] = None

    @classmethod
    def from_catalog(
        cls,
        catalog: ConceptCatalogPort,
        categories: Optional[Iterable[str]] = None
    ) -> 'StatisticsAggregator':
        """Build the category map from the catalog (all categories by default)."""
        names = list(categories) if categories is not None else catalog.list_categories()
        return cls({
            name: [concept.code for concept in catalog.list_concepts_by_category(name)]
            for name in names
        })

    @property
    def categories(self) -> List[str]:
        return list(self._categories)

    def concepts_of(self, category: str) -> List[str]:
        try:
            return list(self._categories[category])
        except KeyError:
            raise NotFoundError(f"Category not active: {category}", code=category)

    def attach(self, working_set: ObservationWorkingSet) -> 'StatisticsAggregator':
        """Subscribe to a working set (recounts immediately if it is loaded)."""
        if self._working_set is not None:
            self._working_set.remove_listener(self)
        self._working_set = working_set
        self._filled.clear()
        self._uncategorized = 0
        working_set.add_listener(self)
        return self

    # WorkingSetListener

    def on_reset(self, working_set: ObservationWorkingSet) -> None:
        self._filled.clear()
        self._uncategorized = 0
        for code in working_set.filled_concepts():
            self._apply(code, 1)
        logger.debug(
            f"Recounted statistics for visit {working_set.visit_id}: "
            f"{sum(self._filled.values())} filled in categories, {self._uncategorized} uncategorized"
        )

    def on_value_changed(self, concept_code: str, was_filled: bool, is_filled: bool) -> None:
        if was_filled == is_filled:
            return
        self._apply(concept_code, 1 if is_filled else -1)

    def _apply(self, concept_code: str, delta: int) -> None:
        memberships = self._memberships.get(concept_code)
        if not memberships:
            self._uncategorized += delta
            return
        for category in memberships:
            self._filled[category] += delta

    # Queries

    def category_stats(self, category: str) -> CategoryStats:
        """Completion of one active category.

        Raises:
            NotFoundError: If the category is not active
        """
        total = len(self.concepts_of(category))
        filled = self._filled[category]
        return CategoryStats(
            category=category,
            total=total,
            filled=filled,
            percentage=completion_percentage(filled, total)
        )

    def overall_stats(self) -> OverallStats:
        details = [self.category_stats(name) for name in self._categories]
        total = sum(item.total for item in details)
        filled = sum(item.filled for item in details)
        return OverallStats(
            total=total,
            filled=filled,
            percentage=completion_percentage(filled, total),
            categories=details,
            uncategorized=self._uncategorized
        )

    def uncategorized_count(self) -> int:
        return self._uncategorized

    def stats_for(self, concept_codes: Iterable[str]) -> CompletionStats:
        """Ad-hoc completion of an arbitrary concept list (full scan)."""
        if self._working_set is None:
            raise RuntimeError("StatisticsAggregator is not attached to a working set")
        codes = list(dict.fromkeys(concept_codes))
        filled = sum(1 for code in codes if self._working_set.is_filled(code))
        return CompletionStats.of(filled, len(codes))
