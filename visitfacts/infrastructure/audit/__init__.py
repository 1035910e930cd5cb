"""Audit logging for persisted observation changes."""

from visitfacts.infrastructure.audit.change_audit_logger import ChangeAuditLogger

__all__ = ['ChangeAuditLogger']
