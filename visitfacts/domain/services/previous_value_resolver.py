"""Previous-Value Resolver.

Finds the most recent fact recorded for a concept before a given visit, so
that a clinician can clone last visit's value into the current one. History
is read from the repository once per patient; lookups are then synchronous
and read-only.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from visitfacts.domain.codecs import CodecRegistry, build_default_registry
from visitfacts.domain.observation_fact import ObservationFact, VisitRef
from visitfacts.domain.ports import EncodingError, FactRepositoryPort, RepositoryError
from visitfacts.domain.services.working_set import ObservationWorkingSet

logger = logging.getLogger(__name__)


class PreviousValueResolver:
    """Resolve and clone prior observation values for one patient.

    Parameters:
        patient_id: Patient whose history is loaded
        facts: The patient's facts across visits (any order)
        registry: Codec registry used to decode resolved facts
    """

    def __init__(
        self,
        patient_id: str,
        facts: Iterable[ObservationFact] = (),
        registry: Optional[CodecRegistry] = None
    ):
        self.patient_id = patient_id
        self._registry = registry or build_default_registry()
        self._by_concept: Dict[str, List[ObservationFact]] = {}
        self.refresh(facts)

    @classmethod
    async def load(
        cls,
        repository: FactRepositoryPort,
        patient_id: str,
        registry: Optional[CodecRegistry] = None
    ) -> 'PreviousValueResolver':
        """Read the patient's history from the repository.

        Raises:
            RepositoryError: If the history cannot be read
        """
        result = await repository.list_for_patient(patient_id)
        if result.is_failure():
            raise RepositoryError(
                f"Failed to load history of patient {patient_id}: {result.error}",
                operation="list_for_patient",
                details=result.error_details
            )
        resolver = cls(patient_id, result.value or [], registry)
        logger.info(f"Loaded history of patient {patient_id}: {len(result.value or [])} facts")
        return resolver

    def refresh(self, facts: Iterable[ObservationFact]) -> None:
        """Replace the loaded history (e.g. after saving a visit)."""
        by_concept: Dict[str, List[ObservationFact]] = {}
        for fact in facts:
            if fact.patient_id != self.patient_id:
                continue
            by_concept.setdefault(fact.concept_code, []).append(fact)
        for history in by_concept.values():
            history.sort(key=lambda fact: fact.recorded_at, reverse=True)
        self._by_concept = by_concept

    def history(self, concept_code: str) -> List[ObservationFact]:
        """A concept's facts, most recent first."""
        return list(self._by_concept.get(concept_code, []))

    def resolve(
        self,
        patient_id: str,
        concept_code: str,
        before_visit: VisitRef
    ) -> Optional[ObservationFact]:
        """Most recent fact for concept_code recorded strictly before before_visit.

        Facts that cannot be decoded are skipped. A miss returns None.
        """
        found = self.resolve_with_value(patient_id, concept_code, before_visit)
        return found[0] if found else None

    def resolve_value(
        self,
        patient_id: str,
        concept_code: str,
        before_visit: VisitRef
    ) -> Optional[BaseModel]:
        found = self.resolve_with_value(patient_id, concept_code, before_visit)
        return found[1] if found else None

    def resolve_with_value(
        self,
        patient_id: str,
        concept_code: str,
        before_visit: VisitRef
    ) -> Optional[Tuple[ObservationFact, BaseModel]]:
        """Resolve the previous fact and its decoded value in one pass."""
        if patient_id != self.patient_id:
            logger.debug(f"History of patient {self.patient_id} has no facts for {patient_id}")
            return None

        for fact in self._by_concept.get(concept_code, []):
            if fact.recorded_at >= before_visit.visit_date:
                continue
            try:
                return fact, self._registry.decode(fact)
            except EncodingError as e:
                logger.warning(f"Skipping undecodable history fact {fact.key}: {e}")
        return None

    def clone_into(
        self,
        working_set: ObservationWorkingSet,
        concept_code: str,
        before_visit: VisitRef
    ) -> Optional[BaseModel]:
        """Copy the previous value of a concept into the working set's edits.

        The historical fact is never modified; the clone is an ordinary edit
        that marks the concept dirty until saved.

        Returns:
            The cloned value, or None if there is no previous value
        """
        value = self.resolve_value(working_set.patient_id, concept_code, before_visit)
        if value is None:
            return None
        working_set.set_value(concept_code, value)
        logger.debug(f"Cloned previous value of {concept_code} into visit {working_set.visit_id}")
        return value

    def clone_all(
        self,
        working_set: ObservationWorkingSet,
        concept_codes: Iterable[str],
        before_visit: VisitRef
    ) -> Dict[str, BaseModel]:
        """Clone every concept that has a previous value; returns what was cloned."""
        cloned: Dict[str, BaseModel] = {}
        for concept_code in concept_codes:
            value = self.clone_into(working_set, concept_code, before_visit)
            if value is not None:
                cloned[concept_code] = value
        logger.info(f"Cloned {len(cloned)} previous values into visit {working_set.visit_id}")
        return cloned
