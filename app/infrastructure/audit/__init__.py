"""
Audit trail for collaboration lifecycle and payment events.
"""

from app.infrastructure.audit.audit_logger import AUDIT_COLLECTION, AuditLogger

__all__ = ["AUDIT_COLLECTION", "AuditLogger"]
