"""Domain Services.

This package contains domain services that implement the fact store's
business logic without infrastructure dependencies.
"""

from visitfacts.domain.services.working_set import ObservationWorkingSet, WorkingSetListener
from visitfacts.domain.services.previous_value_resolver import PreviousValueResolver
from visitfacts.domain.services.statistics_aggregator import (
    CategoryStats,
    CompletionStats,
    OverallStats,
    StatisticsAggregator,
    completion_percentage,
)

__all__ = [
    'ObservationWorkingSet',
    'WorkingSetListener',
    'PreviousValueResolver',
    'StatisticsAggregator',
    'CompletionStats',
    'CategoryStats',
    'OverallStats',
    'completion_percentage',
]
