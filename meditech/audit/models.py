"""
MediTech - Audit Models

The audit_logs table and the pydantic models used to write and read it.
Rows are inserted once and never updated; only the retention sweep
deletes them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, String, Text
from sqlmodel import Field, SQLModel

from meditech.database import utcnow


class AuditAction(str, Enum):
    """Kinds of audited actions."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    EXPORT = "EXPORT"
    PRINT = "PRINT"


class AuditLog(SQLModel, table=True):
    """
    Single audit trail row.
    
    Attributes:
        user_id: Acting identity, NULL for unauthenticated requests
        resource: Resource type (first path segment after the API prefix)
        phi_accessed: True when the resource is patient-scoped
        patient_id: Subject patient, when known
        old_values / new_values: JSON snapshots, NULL when not applicable
        success: False when the operation failed
        error_message: Failure text, NULL on success
    """
    __tablename__ = "audit_logs"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[UUID] = Field(default=None, index=True)
    action: AuditAction = Field(sa_column=Column(SQLEnum(AuditAction), nullable=False))
    resource: str = Field(sa_column=Column(String(100), nullable=False))
    resource_id: Optional[str] = Field(default=None, sa_column=Column(String(255)))
    phi_accessed: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    patient_id: Optional[str] = Field(
        default=None, sa_column=Column(String(255), index=True)
    )
    ip_address: str = Field(sa_column=Column(String(45), nullable=False))
    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(512)))
    endpoint: str = Field(sa_column=Column(String(512), nullable=False))
    method: str = Field(sa_column=Column(String(10), nullable=False))
    old_values: Optional[str] = Field(default=None, sa_column=Column(Text))
    new_values: Optional[str] = Field(default=None, sa_column=Column(Text))
    success: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    timestamp: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, index=True),
    )


class AuditEntry(BaseModel):
    """
    Data for one audit write.
    
    old_values/new_values take any JSON-serializable value and are
    stored as JSON text.
    """
    user_id: Optional[UUID] = None
    action: AuditAction
    resource: str
    resource_id: Optional[str] = None
    phi_accessed: bool = False
    patient_id: Optional[str] = None
    ip_address: str = "unknown"
    user_agent: Optional[str] = None
    endpoint: str = ""
    method: str = ""
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    success: bool = True
    error_message: Optional[str] = None


class AuditLogRead(BaseModel):
    """Audit row as returned by the compliance endpoints."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    user_id: Optional[UUID]
    action: AuditAction
    resource: str
    resource_id: Optional[str]
    phi_accessed: bool
    patient_id: Optional[str]
    ip_address: str
    endpoint: str
    method: str
    old_values: Optional[str]
    new_values: Optional[str]
    success: bool
    error_message: Optional[str]
    timestamp: datetime


class AuditLogResponse(BaseModel):
    logs: List[AuditLogRead]
    total: int = PydanticField(..., description="Number of entries returned")
