"""In-Memory Storage Adapter.

Dictionary-backed implementation of FactRepositoryPort for tests, demos and
the `memory` database type. Rows are stored as immutable ObservationFact
instances keyed by FactKey.
"""

import logging
from typing import Dict, Iterable, List, Optional

from visitfacts.domain.observation_fact import FactKey, ObservationFact
from visitfacts.domain.ports import FactRepositoryPort, Result

logger = logging.getLogger(__name__)


class InMemoryFactRepository(FactRepositoryPort):
    """In-memory implementation of FactRepositoryPort.

    Parameters:
        facts: Optional initial rows

    Attributes:
        upserts: Number of upserts served (useful to assert write counts)
        deletes: Number of deletes served
    """

    def __init__(self, facts: Optional[Iterable[ObservationFact]] = None):
        self._rows: Dict[FactKey, ObservationFact] = {}
        self.upserts = 0
        self.deletes = 0
        for fact in facts or []:
            self._rows[fact.key] = fact

    @property
    def writes(self) -> int:
        return self.upserts + self.deletes

    def rows(self) -> List[ObservationFact]:
        return list(self._rows.values())

    def find(self, key: FactKey) -> Optional[ObservationFact]:
        return self._rows.get(key)

    async def get(self, patient_id: str, visit_id: str) -> Result[List[ObservationFact]]:
        facts = [
            fact for fact in self._rows.values()
            if fact.patient_id == patient_id and fact.visit_id == visit_id
        ]
        return Result.success_result(facts)

    async def upsert(self, fact: ObservationFact) -> Result[FactKey]:
        self._rows[fact.key] = fact
        self.upserts += 1
        logger.debug(f"Upserted fact {fact.key}")
        return Result.success_result(fact.key)

    async def delete(self, key: FactKey) -> Result[FactKey]:
        self._rows.pop(key, None)
        self.deletes += 1
        logger.debug(f"Deleted fact {key}")
        return Result.success_result(key)

    async def list_for_patient(
        self,
        patient_id: str,
        concept_code: Optional[str] = None
    ) -> Result[List[ObservationFact]]:
        facts = [
            fact for fact in self._rows.values()
            if fact.patient_id == patient_id
            and (concept_code is None or fact.concept_code == concept_code)
        ]
        facts.sort(key=lambda fact: fact.recorded_at, reverse=True)
        return Result.success_result(facts)
