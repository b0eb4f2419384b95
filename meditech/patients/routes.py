"""
MediTech - Patient Record Routes

- GET /patients/{patient_id} - Read a patient record
- PUT /patients/{patient_id} - Update its PHI fields

PHI fields are encrypted with the EncryptionCodec before they are
stored and decrypted on read. Every request here is a PHI access and
is audited by the security middleware; the handlers attach the patient
id and masked before/after values to that entry.

Access: roles holding read:patient_records / write:patient_records,
or read:own_record / write:own_record for the patient's own record.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from meditech.audit.context import get_client_ip
from meditech.auth.dependencies import AuthenticatedUser, get_current_user, get_db
from meditech.auth.models import PatientProfile
from meditech.crypto import EncryptionCodec
from meditech.database import utcnow
from meditech.gateway.rbac import Permission, RBACPolicy


router = APIRouter(prefix="/patients", tags=["patients"])

PHI_FIELDS = ("blood_type", "emergency_contact_name", "emergency_contact_phone")


class PatientRecordResponse(BaseModel):
    id: UUID
    user_id: UUID
    blood_type: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    updated_at: datetime


class PatientUpdateRequest(BaseModel):
    blood_type: Optional[str] = Field(default=None, max_length=10)
    emergency_contact_name: Optional[str] = Field(default=None, max_length=200)
    emergency_contact_phone: Optional[str] = Field(default=None, max_length=20)


def get_codec(request: Request) -> EncryptionCodec:
    return request.app.state.codec


def _authorize(
    user: AuthenticatedUser,
    patient_id: UUID,
    permission: Permission,
    own_permission: Permission,
) -> None:
    if user.patient_id == patient_id:
        permission = own_permission
    if not RBACPolicy().has_permission(user.role.value, permission):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission denied: {permission.value}",
        )


def _phi_values(profile: PatientProfile) -> dict:
    return {field: getattr(profile, field) for field in PHI_FIELDS}


def _masked(values: dict) -> dict:
    return {k: EncryptionCodec.mask(v) if v else v for k, v in values.items()}


def _to_response(profile: PatientProfile, plain: dict) -> PatientRecordResponse:
    return PatientRecordResponse(
        id=profile.id,
        user_id=profile.user_id,
        updated_at=profile.updated_at,
        **plain,
    )


@router.get("/{patient_id}", response_model=PatientRecordResponse)
async def get_patient(
    request: Request,
    patient_id: UUID,
    user: AuthenticatedUser = Depends(get_current_user),
):
    _authorize(user, patient_id, Permission.READ_PATIENT_RECORDS, Permission.READ_OWN_RECORD)
    
    request.app.state.audit.log_data_access(
        user.user_id,
        "patients",
        str(patient_id),
        get_client_ip(request),
        phi_accessed=True,
        patient_id=str(patient_id),
        request=request,
    )
    
    db = get_db(request)
    try:
        profile = db.get(PatientProfile, patient_id)
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
        
        plain = get_codec(request).decrypt_fields(_phi_values(profile), PHI_FIELDS)
        return _to_response(profile, plain)
    finally:
        db.close()


@router.put("/{patient_id}", response_model=PatientRecordResponse)
async def update_patient(
    request: Request,
    patient_id: UUID,
    body: PatientUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    _authorize(user, patient_id, Permission.WRITE_PATIENT_RECORDS, Permission.WRITE_OWN_RECORD)
    codec = get_codec(request)
    
    db = get_db(request)
    try:
        profile = db.get(PatientProfile, patient_id)
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
        
        before = codec.decrypt_fields(_phi_values(profile), PHI_FIELDS)
        changes = body.model_dump(exclude_unset=True)
        
        for field, value in codec.encrypt_fields(changes, PHI_FIELDS).items():
            setattr(profile, field, value)
        profile.updated_at = utcnow()
        db.add(profile)
        db.commit()
        db.refresh(profile)
        
        after = {**before, **changes}
        request.app.state.audit.log_data_update(
            user.user_id,
            "patients",
            str(patient_id),
            old_values=_masked(before),
            new_values=_masked(after),
            ip_address=get_client_ip(request),
            phi_accessed=True,
            patient_id=str(patient_id),
            request=request,
        )
        return _to_response(profile, after)
    finally:
        db.close()
