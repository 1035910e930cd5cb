"""Change Data Capture (CDC) Models.

This module defines models for tracking concept-level changes of a visit and
for reporting the outcome of a Working Set save.

Security Impact:
    - Change events may contain PHI (old/new values); they are kept in the
      audit trail only and never written to application logs
    - Change logs are immutable (append-only) for compliance

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Follows Hexagonal Architecture: Domain Core is isolated from Adapters
"""

import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """Represents a single persisted change of one concept in one visit.

    Parameters:
        patient_id: Patient identifier
        visit_id: Visit identifier
        concept_code: Concept whose value changed
        value_type: Value type code of the fact
        old_value: Persisted payload columns before the change
        new_value: Persisted payload columns after the change
        change_type: Type of change ('INSERT', 'UPDATE', 'DELETE')
        changed_at: Timestamp when change was persisted
        source_system: Source system that wrote the fact
        changed_by: System/user identifier (optional)
    """

    patient_id: str = Field(..., description="Patient identifier")
    visit_id: str = Field(..., description="Visit identifier")
    concept_code: str = Field(..., description="Concept code")
    value_type: Optional[str] = Field(None, description="Value type code")
    old_value: Optional[Any] = Field(None, description="Value columns before change")
    new_value: Optional[Any] = Field(None, description="Value columns after change")
    change_type: ChangeType = Field(..., description="Type of change: INSERT, UPDATE, or DELETE")
    changed_at: datetime = Field(default_factory=datetime.now, description="Timestamp when change occurred")
    source_system: Optional[str] = Field(None, description="Source system identifier")
    changed_by: Optional[str] = Field(None, description="System/user identifier")

    def to_audit_dict(self) -> dict:
        """Convert to dictionary for audit log insertion.

        Returns:
            Dictionary with serialized values suitable for database insertion
        """
        return {
            'change_id': str(uuid.uuid4()),
            'patient_id': self.patient_id,
            'visit_id': self.visit_id,
            'concept_code': self.concept_code,
            'value_type': self.value_type,
            'old_value': self._serialize_value(self.old_value),
            'new_value': self._serialize_value(self.new_value),
            'change_type': self.change_type.value,
            'changed_at': self.changed_at,
            'source_system': self.source_system,
            'changed_by': self.changed_by
        }

    def _serialize_value(self, value: Any) -> Optional[str]:
        """Serialize value columns to a JSON string for storage.

        Parameters:
            value: Value to serialize (None, scalar, dict, list)

        Returns:
            Serialized string representation or None
        """
        if value is None:
            return None

        if isinstance(value, (list, dict)):
            try:
                return json.dumps(value, default=str)
            except (TypeError, ValueError):
                return str(value)

        return str(value)

    model_config = {
        'frozen': False,
        'validate_assignment': True,
    }


class SaveStatus(str, Enum):
    SAVED = "SAVED"
    DELETED = "DELETED"
    CONFLICT_SKIP = "CONFLICT_SKIP"
    FAILED = "FAILED"


class SaveOutcome(BaseModel):
    """Outcome of saving one concept.

    Parameters:
        concept_code: Concept that was saved
        status: What happened (see SaveStatus)
        error: Error message for FAILED / CONFLICT_SKIP outcomes
        error_type: Error class name (ValidationError, RepositoryError, ConflictSkip, ...)
        error_details: Additional context
    """

    concept_code: str
    status: SaveStatus
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Dict[str, Any] = Field(default_factory=dict)

    model_config = {
        'frozen': True,
    }

    @property
    def persisted(self) -> bool:
        """Whether the repository now holds the snapshotted value."""
        return self.status in (SaveStatus.SAVED, SaveStatus.DELETED, SaveStatus.CONFLICT_SKIP)


class SaveReport(BaseModel):
    """Result of a Working Set save with per-concept outcomes.

    Parameters:
        patient_id: Patient identifier
        visit_id: Visit identifier
        outcomes: Outcome per snapshotted concept, in snapshot order
        writes: Number of repository writes (upserts + deletes) issued
    """

    patient_id: str
    visit_id: str
    outcomes: List[SaveOutcome] = Field(default_factory=list)
    writes: int = 0

    model_config = {
        'frozen': True,
    }

    def _with_status(self, *statuses: SaveStatus) -> List[SaveOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status in statuses]

    @property
    def saved(self) -> List[SaveOutcome]:
        return self._with_status(SaveStatus.SAVED, SaveStatus.DELETED)

    @property
    def failed(self) -> List[SaveOutcome]:
        return self._with_status(SaveStatus.FAILED)

    @property
    def conflicts(self) -> List[SaveOutcome]:
        return self._with_status(SaveStatus.CONFLICT_SKIP)

    @property
    def ok(self) -> bool:
        """True when no concept failed (conflicts are not failures)."""
        return not self.failed

    def outcome_for(self, concept_code: str) -> Optional[SaveOutcome]:
        for outcome in self.outcomes:
            if outcome.concept_code == concept_code:
                return outcome
        return None
