"""Domain Ports - Abstract Contracts for Fact Storage and Concept Lookup.

This module defines the Port interfaces (abstract contracts) that Adapters must implement.
Following Hexagonal Architecture, the Domain Core defines what it needs, not how it's provided.

Security Impact:
    - Ports only accept and return ObservationFact rows, never raw driver objects
    - Storage failures are reported as Result objects so a failed write for one
      concept never aborts a whole visit save
    - Observation values (PHI) never appear in error messages, only keys

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Adapters (in-memory, DuckDB, ...) implement these ports
    - Domain Core is isolated from persistence engine specifics
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, List, Optional, TypeVar, Union

from visitfacts.domain.observation_fact import Concept, FactKey, ObservationFact

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Storage adapters return Result objects so that the Working Set can record
    a per-concept outcome for every write of a batch save.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (RepositoryError, EncodingError, etc.)
        error_details: Additional error context (operation, key, etc.)

    Example:
        ```python
        result = await repository.upsert(fact)
        if result.is_failure():
            log_error(result.error, result.error_details)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "RepositoryError")
            error_details: Additional context (operation, key, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        if error_details is None and isinstance(error, FactStoreError):
            error_details = error.details

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class FactStoreError(Exception):
    """Base exception for all fact store errors.

    Attributes:
        details: Additional error context (never contains observation values)
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(FactStoreError):
    """Raised when a typed value violates its variant's schema.

    Examples: a Medication without drugName, a Numeric value that is NaN or
    Infinity, a value of the wrong class for the concept's value type.

    Attributes:
        value_type: Value type code whose schema was violated
    """

    def __init__(self, message: str, value_type: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details)
        self.value_type = value_type


class EncodingError(FactStoreError):
    """Raised when a fact row is inconsistent with its declared value type.

    This indicates a corrupted or foreign row (e.g. a Numeric row that only
    carries a structured payload), not a user input problem.

    Attributes:
        value_type: Declared value type code of the row
        key: Identity of the offending row (if known)
    """

    def __init__(
        self,
        message: str,
        value_type: Optional[str] = None,
        key: Optional[FactKey] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.value_type = value_type
        self.key = key


class NotFoundError(FactStoreError):
    """Raised when a concept or fact cannot be found.

    Attributes:
        code: The concept code (or other identifier) that was not found
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message, {"code": code} if code else None)
        self.code = code


class RepositoryError(FactStoreError):
    """Raised (or reported via Result) when persistence I/O fails.

    Repository errors are retryable by the caller; the core performs no
    internal retry.

    Attributes:
        operation: Repository operation that failed (get, upsert, delete, ...)
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details)
        self.operation = operation


class ConflictSkip(FactStoreError):
    """Non-fatal: a baseline rebase was skipped because the value changed mid-save.

    The write itself succeeded; the concept stays dirty with its newer value
    and will be written again by the next save.
    """

    def __init__(self, concept_code: str):
        super().__init__(
            f"Rebase skipped for concept '{concept_code}': value changed during save",
            {"concept_code": concept_code}
        )
        self.concept_code = concept_code


# ============================================================================
# Storage Port
# ============================================================================

class FactRepositoryPort(ABC):
    """Abstract contract for fact persistence adapters.

    This port defines how the Domain Core wants to persist observation facts,
    regardless of whether they live in DuckDB, SQLite or a remote service.
    Rows are keyed by (patient_id, visit_id, concept_code).

    Key Principles:
        - Async: operations may suspend on I/O without blocking edits
        - Result-based: failures are returned, not raised, so a batch save can
          report per-concept outcomes
        - Idempotent: upsert and delete may be retried safely

    Example Usage:
        ```python
        repository = InMemoryFactRepository()
        result = await repository.get("P001", "V1")
        if result.is_success():
            for fact in result.value:
                ...
        ```
    """

    @abstractmethod
    async def get(self, patient_id: str, visit_id: str) -> Result[List[ObservationFact]]:
        """Fetch every fact recorded for one visit.

        Parameters:
            patient_id: Patient identifier
            visit_id: Visit (encounter) identifier

        Returns:
            Result[List[ObservationFact]]: Facts of the visit (any order)
        """
        pass

    @abstractmethod
    async def upsert(self, fact: ObservationFact) -> Result[FactKey]:
        """Insert or replace the fact stored under fact.key.

        Parameters:
            fact: Fully encoded fact row

        Returns:
            Result[FactKey]: Key of the written row
        """
        pass

    @abstractmethod
    async def delete(self, key: FactKey) -> Result[FactKey]:
        """Delete the fact stored under key (no-op if absent).

        Parameters:
            key: Identity of the row to delete

        Returns:
            Result[FactKey]: Key of the deleted row
        """
        pass

    @abstractmethod
    async def list_for_patient(
        self,
        patient_id: str,
        concept_code: Optional[str] = None
    ) -> Result[List[ObservationFact]]:
        """Fetch a patient's facts across all visits.

        Parameters:
            patient_id: Patient identifier
            concept_code: Optional filter on a single concept

        Returns:
            Result[List[ObservationFact]]: Facts ordered by recorded_at descending
        """
        pass

    async def close(self) -> None:
        """Release adapter resources (optional)."""
        return None


# ============================================================================
# Concept Catalog Port
# ============================================================================

class ConceptCatalogPort(ABC):
    """Abstract contract for read-only concept lookup.

    The catalog owns concept definitions (code, value type, unit, category).
    The core never mutates concepts.
    """

    @abstractmethod
    def get_concept(self, code: str) -> Concept:
        """Look up a concept by code.

        Raises:
            NotFoundError: If the concept is unknown
        """
        pass

    @abstractmethod
    def list_concepts_by_category(self, category: str) -> List[Concept]:
        """List the concepts of a category, pinned concepts first.

        Unknown categories yield an empty list.
        """
        pass

    @abstractmethod
    def list_categories(self) -> List[str]:
        """List category names in definition order."""
        pass

    def has_concept(self, code: str) -> bool:
        try:
            self.get_concept(code)
        except NotFoundError:
            return False
        return True
