"""Observation Working Set Service.

The Working Set is the per-visit editable view of observations: a baseline
decoded from the repository, an overlay of local edits, dirty tracking and
save orchestration.

Security Impact:
    - Only codec-validated values ever reach the repository
    - Observation values (PHI) are never logged, only concept codes and counts

Architecture:
    - Pure domain service; talks to storage and concepts only through ports
    - Holds no process-wide state: one instance per open visit, passed
      explicitly to its consumers
    - Not thread-safe: mutate from a single task. save() may suspend on I/O
      while set_value() keeps applying edits to the overlay
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from visitfacts.domain.cdc_models import (
    ChangeEvent,
    ChangeType,
    SaveOutcome,
    SaveReport,
    SaveStatus,
)
from visitfacts.domain.codecs import CodecRegistry, build_default_registry
from visitfacts.domain.observation_fact import FactKey, ObservationFact
from visitfacts.domain.ports import (
    ConceptCatalogPort,
    ConflictSkip,
    EncodingError,
    FactRepositoryPort,
    FactStoreError,
    NotFoundError,
    RepositoryError,
)

logger = logging.getLogger(__name__)


class WorkingSetListener(ABC):
    """Observer of effective-value changes (e.g. the statistics aggregator)."""

    @abstractmethod
    def on_reset(self, working_set: 'ObservationWorkingSet') -> None:
        """Called after load(); recompute state from scratch."""
        pass

    @abstractmethod
    def on_value_changed(self, concept_code: str, was_filled: bool, is_filled: bool) -> None:
        """Called when a concept's effective value changes filled state."""
        pass


class ObservationWorkingSet:
    """Editable view of one visit's observations.

    The baseline holds the last known-persisted fact and its decoded value per
    concept. Edits go to an overlay; a concept is dirty when its overlay value
    differs from the baseline value. Empty values are stored as None and are
    persisted as deletions.

    Parameters:
        patient_id: Patient identifier
        visit_id: Visit identifier
        repository: Fact repository port
        catalog: Concept catalog port (value types, units, categories)
        registry: Codec registry (defaults to the built-in codecs)
        source_system: Source system written on saved facts
        clock: Callable returning the recorded_at timestamp for saved facts
        audit_logger: Optional sink with a log_change_event(ChangeEvent) method

    Example Usage:
        ```python
        working_set = await ObservationWorkingSet.open("P001", "V2", repository, catalog)
        working_set.set_value("WEIGHT", 72.5)
        report = await working_set.save()
        assert not working_set.is_dirty("WEIGHT")
        ```
    """

    def __init__(
        self,
        patient_id: str,
        visit_id: str,
        repository: FactRepositoryPort,
        catalog: ConceptCatalogPort,
        registry: Optional[CodecRegistry] = None,
        *,
        source_system: str = "VISIT_EDITOR",
        clock: Optional[Callable[[], datetime]] = None,
        audit_logger: Optional[Any] = None
    ):
        self.patient_id = patient_id
        self.visit_id = visit_id
        self._repository = repository
        self._catalog = catalog
        self._registry = registry or build_default_registry()
        self._source_system = source_system
        self._clock = clock or datetime.now
        self._audit_logger = audit_logger

        self._baseline_facts: Dict[str, ObservationFact] = {}
        self._baseline: Dict[str, BaseModel] = {}
        self._edited: Dict[str, Optional[BaseModel]] = {}
        self._dirty: set = set()
        self._listeners: List[WorkingSetListener] = []
        self._save_sequence = 0
        self._applied_sequence: Dict[str, int] = {}
        self.load_errors: Dict[str, str] = {}
        self.loaded = False

    @classmethod
    async def open(
        cls,
        patient_id: str,
        visit_id: str,
        repository: FactRepositoryPort,
        catalog: ConceptCatalogPort,
        **kwargs
    ) -> 'ObservationWorkingSet':
        """Create a working set and load it from the repository."""
        working_set = cls(patient_id, visit_id, repository, catalog, **kwargs)
        await working_set.load()
        return working_set

    @property
    def registry(self) -> CodecRegistry:
        return self._registry

    @property
    def catalog(self) -> ConceptCatalogPort:
        return self._catalog

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> 'ObservationWorkingSet':
        """Fetch the visit's rows and decode them into the baseline.

        Rows that fail to decode are kept out of the baseline and reported in
        load_errors; they never abort the load. Local edits are discarded.

        Raises:
            RepositoryError: If the repository cannot be read
        """
        result = await self._repository.get(self.patient_id, self.visit_id)
        if result.is_failure():
            raise RepositoryError(
                f"Failed to load visit {self.visit_id}: {result.error}",
                operation="get",
                details=result.error_details
            )

        self._baseline_facts.clear()
        self._baseline.clear()
        self._edited.clear()
        self._dirty.clear()
        self.load_errors = {}

        for fact in result.value or []:
            try:
                value = self._registry.decode(fact)
            except EncodingError as e:
                self.load_errors[fact.concept_code] = str(e)
                logger.warning(f"Skipping undecodable fact {fact.key}: {e}")
                continue
            self._baseline_facts[fact.concept_code] = fact
            self._baseline[fact.concept_code] = value

        self.loaded = True
        logger.info(
            f"Loaded visit {self.visit_id}: {len(self._baseline)} observations, "
            f"{len(self.load_errors)} undecodable"
        )
        for listener in self._listeners:
            listener.on_reset(self)
        return self

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: WorkingSetListener) -> None:
        self._listeners.append(listener)
        if self.loaded:
            listener.on_reset(self)

    def remove_listener(self, listener: WorkingSetListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, concept_code: str, was_filled: bool) -> None:
        is_filled = self.is_filled(concept_code)
        if was_filled == is_filled:
            return
        for listener in self._listeners:
            listener.on_value_changed(concept_code, was_filled, is_filled)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_value(self, concept_code: str) -> Optional[BaseModel]:
        """Effective value: the edited value if present, else the baseline."""
        if concept_code in self._edited:
            return self._edited[concept_code]
        return self._baseline.get(concept_code)

    def get_baseline(self, concept_code: str) -> Optional[BaseModel]:
        return self._baseline.get(concept_code)

    def get_fact(self, concept_code: str) -> Optional[ObservationFact]:
        """Last known-persisted fact row of a concept."""
        return self._baseline_facts.get(concept_code)

    def is_filled(self, concept_code: str) -> bool:
        return self.get_value(concept_code) is not None

    def is_dirty(self, concept_code: str) -> bool:
        return concept_code in self._dirty

    def unsaved_count(self) -> int:
        return len(self._dirty)

    def dirty_concepts(self) -> List[str]:
        """Dirty concept codes in edit order."""
        return [code for code in self._edited if code in self._dirty]

    def concept_codes(self) -> List[str]:
        """Every concept with a baseline or an edit."""
        return list(dict.fromkeys([*self._baseline, *self._edited]))

    def filled_concepts(self) -> List[str]:
        return [code for code in self.concept_codes() if self.is_filled(code)]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _describe(self, concept_code: str) -> Tuple[str, Optional[str], Optional[str]]:
        """Return (value_type, default_unit, category) for a concept.

        Raises:
            NotFoundError: If neither the catalog nor the baseline knows it
        """
        try:
            concept = self._catalog.get_concept(concept_code)
        except NotFoundError:
            fact = self._baseline_facts.get(concept_code)
            if fact is None:
                raise
            return fact.value_type, None, fact.category
        return concept.value_type, concept.default_unit, concept.category

    def _refresh_dirty(self, concept_code: str) -> None:
        if concept_code in self._edited and not self._registry.values_equal(
            self._edited[concept_code], self._baseline.get(concept_code)
        ):
            self._dirty.add(concept_code)
        else:
            self._dirty.discard(concept_code)

    def set_value(self, concept_code: str, value: Any) -> Optional[BaseModel]:
        """Record an edit for a concept.

        Raw input (numbers, strings, dates, dicts) is coerced through the
        concept's codec; None or an empty value clears the concept.

        Returns:
            The normalized typed value (None when cleared)

        Raises:
            NotFoundError: If the concept is unknown
            ValidationError: If the value violates the concept's value type
        """
        value_type, default_unit, _ = self._describe(concept_code)
        typed = None
        if value is not None:
            typed = self._registry.coerce(value, value_type, default_unit)
            if self._registry.is_empty(typed):
                typed = None

        was_filled = self.is_filled(concept_code)
        self._edited[concept_code] = typed
        self._refresh_dirty(concept_code)
        logger.debug(f"Edited {concept_code} (dirty={concept_code in self._dirty})")
        self._notify(concept_code, was_filled)
        return typed

    def clear_value(self, concept_code: str) -> None:
        self.set_value(concept_code, None)

    def discard(self, concept_code: str) -> None:
        """Revert a concept's edit to the baseline."""
        if concept_code not in self._edited:
            return
        was_filled = self.is_filled(concept_code)
        del self._edited[concept_code]
        self._dirty.discard(concept_code)
        self._notify(concept_code, was_filled)

    def discard_all(self) -> None:
        for concept_code in list(self._edited):
            self.discard(concept_code)

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    async def save(self, concept_codes: Optional[Iterable[str]] = None) -> SaveReport:
        """Persist dirty concepts.

        The dirty set (or its intersection with concept_codes) is snapshotted
        before the first write; edits made while writes are in flight are not
        part of this save. Each concept is written independently, so one
        failure never blocks the others.

        On a successful write the baseline becomes the persisted row. The edit
        is cleared only if the edited value still equals the snapshot;
        otherwise the concept stays dirty with its newer value and the outcome
        is CONFLICT_SKIP. On failure the concept stays dirty.

        Returns:
            SaveReport with one outcome per snapshotted concept
        """
        if concept_codes is None:
            targets = self.dirty_concepts()
        else:
            targets = [code for code in dict.fromkeys(concept_codes) if code in self._dirty]

        self._save_sequence += 1
        sequence = self._save_sequence
        snapshot = [(code, self._edited[code]) for code in targets]

        if not snapshot:
            logger.debug(f"Nothing to save for visit {self.visit_id}")
            return SaveReport(patient_id=self.patient_id, visit_id=self.visit_id)

        logger.info(f"Saving {len(snapshot)} concepts for visit {self.visit_id}")
        results = await asyncio.gather(
            *(self._save_concept(code, value, sequence) for code, value in snapshot)
        )

        outcomes = [outcome for outcome, _ in results]
        writes = sum(wrote for _, wrote in results)
        report = SaveReport(
            patient_id=self.patient_id,
            visit_id=self.visit_id,
            outcomes=outcomes,
            writes=writes
        )
        if report.failed:
            logger.warning(
                f"Save of visit {self.visit_id} finished with {len(report.failed)} failures "
                f"({len(report.saved)} saved, {len(report.conflicts)} conflicts)"
            )
        else:
            logger.info(
                f"Saved visit {self.visit_id}: {len(report.saved)} saved, "
                f"{len(report.conflicts)} conflicts"
            )
        return report

    async def _save_concept(
        self,
        concept_code: str,
        value: Optional[BaseModel],
        sequence: int
    ) -> Tuple[SaveOutcome, int]:
        key = FactKey(self.patient_id, self.visit_id, concept_code)
        previous_fact = self._baseline_facts.get(concept_code)
        new_fact: Optional[ObservationFact] = None
        wrote = 0

        try:
            if value is None:
                if previous_fact is not None:
                    result = await self._repository.delete(key)
                    wrote = 1
                    if result.is_failure():
                        return self._failed(concept_code, result), wrote
                status = SaveStatus.DELETED
            else:
                value_type, _, category = self._describe(concept_code)
                new_fact = self._registry.encode(
                    value,
                    value_type,
                    key=key,
                    recorded_at=self._clock(),
                    category=category,
                    source_system=self._source_system
                )
                result = await self._repository.upsert(new_fact)
                wrote = 1
                if result.is_failure():
                    return self._failed(concept_code, result), wrote
                status = SaveStatus.SAVED
        except FactStoreError as e:
            logger.warning(f"Could not save {concept_code}: {type(e).__name__}: {e}")
            return SaveOutcome(
                concept_code=concept_code,
                status=SaveStatus.FAILED,
                error=str(e),
                error_type=type(e).__name__,
                error_details=e.details
            ), wrote
        except Exception as e:
            logger.error(f"Unexpected error saving {concept_code}: {e}", exc_info=True)
            return SaveOutcome(
                concept_code=concept_code,
                status=SaveStatus.FAILED,
                error=str(e),
                error_type=type(e).__name__
            ), wrote

        if wrote:
            self._record_change(previous_fact, new_fact, key)

        if not self._rebase(concept_code, new_fact, value, sequence):
            conflict = ConflictSkip(concept_code)
            logger.info(str(conflict))
            return SaveOutcome(
                concept_code=concept_code,
                status=SaveStatus.CONFLICT_SKIP,
                error=str(conflict),
                error_type=type(conflict).__name__,
                error_details=conflict.details
            ), wrote
        return SaveOutcome(concept_code=concept_code, status=status), wrote

    def _failed(self, concept_code: str, result) -> SaveOutcome:
        logger.warning(f"Repository rejected {concept_code}: {result.error_type}: {result.error}")
        return SaveOutcome(
            concept_code=concept_code,
            status=SaveStatus.FAILED,
            error=result.error,
            error_type=result.error_type or RepositoryError.__name__,
            error_details=result.error_details or {}
        )

    def _rebase(
        self,
        concept_code: str,
        fact: Optional[ObservationFact],
        saved_value: Optional[BaseModel],
        sequence: int
    ) -> bool:
        """Move the baseline to a persisted value.

        Returns:
            True if the edit was cleared, False if the concept changed since
            the snapshot (or a newer save already rebased it)
        """
        was_filled = self.is_filled(concept_code)

        if sequence < self._applied_sequence.get(concept_code, 0):
            # An older write landed after a newer one: the repository now holds
            # the older row, so the newer value goes back into the overlay.
            current = self._baseline.get(concept_code)
            if not self._registry.values_equal(saved_value, current):
                self._edited.setdefault(concept_code, current)
                self._set_baseline(concept_code, fact, saved_value)
                self._refresh_dirty(concept_code)
                self._notify(concept_code, was_filled)
            return False
        self._applied_sequence[concept_code] = sequence

        self._set_baseline(concept_code, fact, saved_value)

        unchanged = concept_code in self._edited and self._registry.values_equal(
            self._edited[concept_code], saved_value
        )
        if unchanged:
            del self._edited[concept_code]
        self._refresh_dirty(concept_code)
        self._notify(concept_code, was_filled)
        return unchanged

    def _set_baseline(
        self,
        concept_code: str,
        fact: Optional[ObservationFact],
        value: Optional[BaseModel]
    ) -> None:
        if fact is None:
            self._baseline_facts.pop(concept_code, None)
            self._baseline.pop(concept_code, None)
        else:
            self._baseline_facts[concept_code] = fact
            self._baseline[concept_code] = value

    def _record_change(
        self,
        previous_fact: Optional[ObservationFact],
        new_fact: Optional[ObservationFact],
        key: FactKey
    ) -> None:
        if self._audit_logger is None:
            return
        if new_fact is None:
            change_type = ChangeType.DELETE
        elif previous_fact is None:
            change_type = ChangeType.INSERT
        else:
            change_type = ChangeType.UPDATE
        reference = new_fact or previous_fact
        self._audit_logger.log_change_event(ChangeEvent(
            patient_id=key.patient_id,
            visit_id=key.visit_id,
            concept_code=key.concept_code,
            value_type=reference.value_type if reference else None,
            old_value=_value_columns(previous_fact),
            new_value=_value_columns(new_fact),
            change_type=change_type,
            source_system=self._source_system
        ))


def _value_columns(fact: Optional[ObservationFact]) -> Optional[dict]:
    if fact is None:
        return None
    return fact.model_dump(
        include={"numeric_value", "text_value", "unit_code", "structured_payload"},
        exclude_none=True
    )
