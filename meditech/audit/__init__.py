"""
MediTech - Audit Trail

Append-only record of every state-changing or PHI-reading request.
Writes are best effort: failures are logged operationally and never
reach the operation being audited.
"""

from meditech.audit.models import AuditAction, AuditEntry, AuditLog
from meditech.audit.service import AuditService

__all__ = ["AuditAction", "AuditEntry", "AuditLog", "AuditService"]
