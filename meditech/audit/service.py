"""
MediTech - Audit Service

Writes and queries the audit trail.

Writes:
- record(): persist one AuditEntry in its own session. Never raises;
  a failed write is logged and dropped so the audited operation is
  unaffected.
- log_login / log_logout: explicit authentication events
- log_data_access / creation / update / deletion: handler-level detail.
  Inside an intercepted request these enrich the request's pending
  entry so each request still produces exactly one row.

Reads (compliance):
- get_patient_audit_logs: PHI entries for a patient, newest first
- get_user_audit_logs: entries by actor, newest first
- get_phi_access_logs: PHI entries inside a time window

Retention:
- purge_expired: delete entries older than the retention window
  (default 2555 days, seven years)
"""

import json
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional
from uuid import UUID

from sqlalchemy import delete
from sqlmodel import Session as DBSession, select
from starlette.requests import Request

from meditech.audit.context import get_pending_audit
from meditech.audit.models import AuditAction, AuditEntry, AuditLog
from meditech.database import utcnow
from meditech.log import get_logger


logger = get_logger(__name__)

DEFAULT_RETENTION_DAYS = 2555


def _to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str, sort_keys=True)


class AuditService:
    """Audit trail writer and reader over a session factory."""
    
    def __init__(self, session_factory: Callable[[], DBSession]):
        self._session_factory = session_factory
    
    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    
    def record(self, entry: AuditEntry) -> None:
        """
        Persist one audit entry.
        
        Errors are caught and logged, never raised: auditing must not
        change the outcome of the operation being audited.
        """
        row = AuditLog(
            user_id=entry.user_id,
            action=entry.action,
            resource=entry.resource,
            resource_id=entry.resource_id,
            phi_accessed=entry.phi_accessed,
            patient_id=entry.patient_id,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            endpoint=entry.endpoint,
            method=entry.method,
            old_values=_to_json(entry.old_values),
            new_values=_to_json(entry.new_values),
            success=entry.success,
            error_message=entry.error_message,
        )
        
        try:
            db = self._session_factory()
            try:
                db.add(row)
                db.commit()
            finally:
                db.close()
        except Exception as e:
            logger.error(
                "audit_write_failed",
                action=entry.action.value,
                resource=entry.resource,
                error=str(e),
            )
            return
        
        if entry.phi_accessed:
            logger.warning(
                "phi_accessed",
                user_id=str(entry.user_id) if entry.user_id else None,
                resource=entry.resource,
                patient_id=entry.patient_id,
                action=entry.action.value,
            )
    
    def log_login(
        self,
        user_id: Optional[UUID],
        ip_address: str,
        success: bool,
        user_agent: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Record a login attempt. user_id is None when the email is unknown."""
        self.record(AuditEntry(
            user_id=user_id,
            action=AuditAction.LOGIN,
            resource="auth",
            ip_address=ip_address,
            user_agent=user_agent,
            endpoint="/auth/login",
            method="POST",
            success=success,
            error_message=error_message,
        ))
    
    def log_logout(
        self,
        user_id: UUID,
        ip_address: str,
        user_agent: Optional[str] = None,
    ) -> None:
        self.record(AuditEntry(
            user_id=user_id,
            action=AuditAction.LOGOUT,
            resource="auth",
            ip_address=ip_address,
            user_agent=user_agent,
            endpoint="/auth/logout",
            method="POST",
        ))
    
    def log_data_access(
        self,
        user_id: Optional[UUID],
        resource: str,
        resource_id: str,
        ip_address: str,
        phi_accessed: bool = False,
        patient_id: Optional[str] = None,
        request: Optional[Request] = None,
    ) -> None:
        self._submit(
            AuditEntry(
                user_id=user_id,
                action=AuditAction.READ,
                resource=resource,
                resource_id=resource_id,
                phi_accessed=phi_accessed,
                patient_id=patient_id,
                ip_address=ip_address,
                method="GET",
            ),
            request,
        )
    
    def log_data_creation(
        self,
        user_id: Optional[UUID],
        resource: str,
        resource_id: str,
        new_values: Any,
        ip_address: str,
        phi_accessed: bool = False,
        patient_id: Optional[str] = None,
        request: Optional[Request] = None,
    ) -> None:
        self._submit(
            AuditEntry(
                user_id=user_id,
                action=AuditAction.CREATE,
                resource=resource,
                resource_id=resource_id,
                phi_accessed=phi_accessed,
                patient_id=patient_id,
                ip_address=ip_address,
                method="POST",
                new_values=new_values,
            ),
            request,
        )
    
    def log_data_update(
        self,
        user_id: Optional[UUID],
        resource: str,
        resource_id: str,
        old_values: Any,
        new_values: Any,
        ip_address: str,
        phi_accessed: bool = False,
        patient_id: Optional[str] = None,
        request: Optional[Request] = None,
    ) -> None:
        self._submit(
            AuditEntry(
                user_id=user_id,
                action=AuditAction.UPDATE,
                resource=resource,
                resource_id=resource_id,
                phi_accessed=phi_accessed,
                patient_id=patient_id,
                ip_address=ip_address,
                method="PUT",
                old_values=old_values,
                new_values=new_values,
            ),
            request,
        )
    
    def log_data_deletion(
        self,
        user_id: Optional[UUID],
        resource: str,
        resource_id: str,
        old_values: Any,
        ip_address: str,
        phi_accessed: bool = False,
        patient_id: Optional[str] = None,
        request: Optional[Request] = None,
    ) -> None:
        self._submit(
            AuditEntry(
                user_id=user_id,
                action=AuditAction.DELETE,
                resource=resource,
                resource_id=resource_id,
                phi_accessed=phi_accessed,
                patient_id=patient_id,
                ip_address=ip_address,
                method="DELETE",
                old_values=old_values,
            ),
            request,
        )
    
    def _submit(self, entry: AuditEntry, request: Optional[Request]) -> None:
        """Merge into the request's pending entry, or write standalone."""
        pending = get_pending_audit(request)
        if pending is not None:
            pending.annotate(
                resource_id=entry.resource_id,
                patient_id=entry.patient_id,
                old_values=entry.old_values,
                new_values=entry.new_values,
                phi_accessed=entry.phi_accessed,
            )
            return
        self.record(entry)
    
    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    
    def get_patient_audit_logs(self, patient_id: str, limit: int = 100) -> List[AuditLog]:
        """PHI entries for a patient, newest first."""
        db = self._session_factory()
        try:
            return list(db.exec(
                select(AuditLog)
                .where(AuditLog.patient_id == patient_id, AuditLog.phi_accessed == True)  # noqa: E712
                .order_by(AuditLog.timestamp.desc())
                .limit(limit)
            ).all())
        finally:
            db.close()
    
    def get_user_audit_logs(self, user_id: UUID, limit: int = 100) -> List[AuditLog]:
        """Entries by actor, newest first."""
        db = self._session_factory()
        try:
            return list(db.exec(
                select(AuditLog)
                .where(AuditLog.user_id == user_id)
                .order_by(AuditLog.timestamp.desc())
                .limit(limit)
            ).all())
        finally:
            db.close()
    
    def get_phi_access_logs(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[AuditLog]:
        """PHI entries with start <= timestamp <= end, newest first."""
        query = select(AuditLog).where(AuditLog.phi_accessed == True)  # noqa: E712
        if start is not None:
            query = query.where(AuditLog.timestamp >= start)
        if end is not None:
            query = query.where(AuditLog.timestamp <= end)
        
        db = self._session_factory()
        try:
            return list(db.exec(
                query.order_by(AuditLog.timestamp.desc()).limit(limit)
            ).all())
        finally:
            db.close()
    
    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------
    
    def purge_expired(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """
        Delete entries older than the retention window.
        
        Returns:
            Number of entries removed
        """
        cutoff = utcnow() - timedelta(days=retention_days)
        
        db = self._session_factory()
        try:
            result = db.exec(
                delete(AuditLog)
                .where(AuditLog.timestamp < cutoff)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()
        
        removed = result.rowcount or 0
        logger.info("audit_logs_purged", removed=removed, retention_days=retention_days)
        return removed
