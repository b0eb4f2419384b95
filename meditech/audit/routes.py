"""
MediTech - Audit Compliance Routes

Read-only access to the audit trail. Requires read:audit.

- GET /audit/patients/{patient_id} - PHI entries for a patient
- GET /audit/users/{user_id}       - Entries by actor
- GET /audit/phi                   - PHI entries inside a time window
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from meditech.audit.models import AuditLogRead, AuditLogResponse
from meditech.auth.dependencies import AuthenticatedUser
from meditech.gateway.rbac import Permission, require_permission


router = APIRouter(prefix="/audit", tags=["audit"])

read_audit = require_permission(Permission.READ_AUDIT)


def _response(rows) -> AuditLogResponse:
    logs = [AuditLogRead.model_validate(row) for row in rows]
    return AuditLogResponse(logs=logs, total=len(logs))


@router.get("/patients/{patient_id}", response_model=AuditLogResponse)
async def patient_audit_logs(
    request: Request,
    patient_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    user: AuthenticatedUser = Depends(read_audit),
):
    rows = request.app.state.audit.get_patient_audit_logs(patient_id, limit=limit)
    return _response(rows)


@router.get("/users/{user_id}", response_model=AuditLogResponse)
async def user_audit_logs(
    request: Request,
    user_id: UUID,
    limit: int = Query(default=100, ge=1, le=1000),
    user: AuthenticatedUser = Depends(read_audit),
):
    rows = request.app.state.audit.get_user_audit_logs(user_id, limit=limit)
    return _response(rows)


@router.get("/phi", response_model=AuditLogResponse)
async def phi_access_logs(
    request: Request,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(default=1000, ge=1, le=10000),
    user: AuthenticatedUser = Depends(read_audit),
):
    """Timestamps are naive UTC; timezone-aware bounds are converted."""
    rows = request.app.state.audit.get_phi_access_logs(
        start=_naive_utc(start), end=_naive_utc(end), limit=limit
    )
    return _response(rows)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
