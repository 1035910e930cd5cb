"""Unit tests for ChangeAuditLogger."""

from datetime import datetime

from visitfacts.domain.cdc_models import ChangeEvent, ChangeType
from visitfacts.infrastructure.audit import ChangeAuditLogger


def event(concept_code="WEIGHT", change_type=ChangeType.UPDATE, **kwargs):
    return ChangeEvent(
        patient_id="P001",
        visit_id="V1",
        concept_code=concept_code,
        value_type="N",
        old_value={"numeric_value": 70.0, "unit_code": "kg"},
        new_value={"numeric_value": 71.0, "unit_code": "kg"},
        change_type=change_type,
        changed_at=datetime(2024, 1, 1, 12, 0),
        source_system="VISIT_EDITOR",
        **kwargs
    )


class TestChangeAuditLogger:
    """Test suite for ChangeAuditLogger."""

    def test_init(self):
        """Test ChangeAuditLogger initialization."""
        audit = ChangeAuditLogger()
        assert audit.get_log_count() == 0
        assert not audit.has_logs()

    def test_log_change_event(self):
        """Test logging a single change event."""
        audit = ChangeAuditLogger()
        audit.log_change_event(event())

        logs = audit.get_logs()
        assert len(logs) == 1
        entry = logs[0]
        assert entry['concept_code'] == "WEIGHT"
        assert entry['change_type'] == "UPDATE"
        assert entry['old_value'] == '{"numeric_value": 70.0, "unit_code": "kg"}'
        assert entry['changed_by'] == "system"
        assert entry['session_id'] is None
        assert entry['changed_at'] == datetime(2024, 1, 1, 12, 0)
        assert 'change_id' in entry

    def test_session_context(self):
        """Test session context applies to later entries."""
        audit = ChangeAuditLogger()
        audit.set_session_context(session_id="edit-42", changed_by="dr.smith")
        audit.log_change_event(event())
        audit.log_change_event(event(changed_by="nurse.jones"))

        logs = audit.get_logs()
        assert [entry['session_id'] for entry in logs] == ["edit-42", "edit-42"]
        assert [entry['changed_by'] for entry in logs] == ["dr.smith", "nurse.jones"]

    def test_batch_and_filter(self):
        """Test batch logging and per-concept filtering."""
        audit = ChangeAuditLogger()
        audit.log_changes_batch([
            event("WEIGHT", ChangeType.INSERT),
            event("NOTE", ChangeType.INSERT),
            event("WEIGHT", ChangeType.DELETE),
        ])

        assert audit.get_log_count() == 3
        assert [entry['change_type'] for entry in audit.logs_for("WEIGHT")] == ["INSERT", "DELETE"]

    def test_unique_change_ids(self):
        audit = ChangeAuditLogger()
        audit.log_changes_batch([event(), event()])
        ids = [entry['change_id'] for entry in audit.get_logs()]
        assert len(set(ids)) == 2

    def test_get_logs_returns_copy_and_clear(self):
        """Test that get_logs returns a copy and clear_logs empties the buffer."""
        audit = ChangeAuditLogger()
        audit.log_change_event(event())

        audit.get_logs().clear()
        assert audit.get_log_count() == 1

        audit.clear_logs()
        assert not audit.has_logs()

    def test_null_values(self):
        audit = ChangeAuditLogger()
        audit.log_change_event(ChangeEvent(
            patient_id="P001", visit_id="V1", concept_code="NOTE",
            change_type=ChangeType.INSERT, new_value={"text_value": "x"}
        ))
        entry = audit.get_logs()[0]
        assert entry['old_value'] is None
        assert entry['new_value'] == '{"text_value": "x"}'
