"""Change Audit Logger.

Collects concept-level change events produced by Working Set saves so they
can be flushed to an audit store in batches.

Security Impact:
    - Audit entries carry old/new values (PHI); they stay in this buffer and
      are never written to application logs
    - Change logs are append-only for compliance

Architecture:
    - Infrastructure layer component
    - Called from the Working Set after each persisted concept
"""

import logging
from typing import List, Optional

from visitfacts.domain.cdc_models import ChangeEvent

logger = logging.getLogger(__name__)


class ChangeAuditLogger:
    """In-memory buffer of change events.

    Example Usage:
        ```python
        audit = ChangeAuditLogger()
        audit.set_session_context(session_id="edit_42", changed_by="dr.smith")
        working_set = await ObservationWorkingSet.open(
            "P1", "V1", repository, catalog, audit_logger=audit
        )
        ...
        await working_set.save()
        entries = audit.get_logs()
        ```
    """

    def __init__(self):
        self._logs: List[dict] = []
        self._session_id: Optional[str] = None
        self._changed_by: Optional[str] = None

    def set_session_context(
        self,
        session_id: Optional[str] = None,
        changed_by: Optional[str] = None
    ) -> None:
        """Set context applied to every subsequent entry.

        Parameters:
            session_id: Identifier of the editing session
            changed_by: User identifier recorded on entries without one
        """
        self._session_id = session_id
        self._changed_by = changed_by

    def log_change_event(self, change_event: ChangeEvent) -> None:
        """Append a ChangeEvent to the audit buffer."""
        audit_dict = change_event.to_audit_dict()
        audit_dict['session_id'] = self._session_id
        if not audit_dict.get('changed_by'):
            audit_dict['changed_by'] = self._changed_by or "system"

        self._logs.append(audit_dict)
        logger.debug(
            f"Logged change event: {change_event.patient_id}/{change_event.visit_id}/"
            f"{change_event.concept_code} ({change_event.change_type.value})"
        )

    def log_changes_batch(self, change_events: List[ChangeEvent]) -> None:
        for event in change_events:
            self.log_change_event(event)

    def get_logs(self) -> List[dict]:
        """Get all logged change events (a copy, ready for insertion)."""
        return self._logs.copy()

    def logs_for(self, concept_code: str) -> List[dict]:
        return [entry for entry in self._logs if entry['concept_code'] == concept_code]

    def clear_logs(self) -> None:
        """Clear all logged events (after flushing to storage)."""
        self._logs.clear()
        logger.debug("Cleared change audit logs")

    def get_log_count(self) -> int:
        return len(self._logs)

    def has_logs(self) -> bool:
        return len(self._logs) > 0
