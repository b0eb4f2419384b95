"""
MediTech - Credential Database Models

SQLModel-based models for credentials, role profiles and refresh tokens.
Uses PostgreSQL for production, SQLite for local development.

Security:
- Passwords stored as bcrypt hashes only
- Credential records are never deleted; they are retired via status
- Refresh tokens are persisted so they can be revoked server-side
- All timestamps in UTC
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Float, Integer, String
from sqlmodel import Field, SQLModel

from meditech.database import utcnow


class Role(str, Enum):
    """
    User roles for RBAC.
    
    Only PATIENT and DOCTOR provision a linked profile row.
    """
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    NURSE = "NURSE"
    RECEPTIONIST = "RECEPTIONIST"
    PHARMACIST = "PHARMACIST"
    LAB_TECHNICIAN = "LAB_TECHNICIAN"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class UserStatus(str, Enum):
    """Account lifecycle states."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


class User(SQLModel, table=True):
    """
    Credential record.
    
    Attributes:
        id: Unique identifier (UUIDv4)
        email: Login identifier (unique, indexed)
        password_hash: bcrypt hash (never store plaintext)
        role: RBAC role
        status: Account status; SUSPENDED/INACTIVE cannot log in
        failed_login_attempts: Consecutive wrong passwords since last success
        account_locked_until: Lockout expiry, NULL when not locked
        last_login: Last successful authentication
    """
    __tablename__ = "users"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
        description="User email address (login identifier)"
    )
    password_hash: str = Field(
        sa_column=Column(String(255), nullable=False),
        description="bcrypt password hash"
    )
    role: Role = Field(
        sa_column=Column(SQLEnum(Role), nullable=False, index=True),
    )
    status: UserStatus = Field(
        sa_column=Column(
            SQLEnum(UserStatus),
            nullable=False,
            default=UserStatus.PENDING_VERIFICATION,
        ),
    )
    first_name: str = Field(sa_column=Column(String(100), nullable=False))
    last_name: str = Field(sa_column=Column(String(100), nullable=False))
    phone_number: Optional[str] = Field(
        default=None, sa_column=Column(String(32), nullable=True)
    )
    failed_login_attempts: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, default=0),
    )
    account_locked_until: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    last_login: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    )


class PatientProfile(SQLModel, table=True):
    """
    Patient profile linked 1:1 to a PATIENT credential.
    
    blood_type and the emergency contact fields are PHI and hold
    codec tokens ("<ivHex>:<cipherHex>"), never plaintext.
    """
    __tablename__ = "patients"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", unique=True, index=True)
    blood_type: Optional[str] = Field(default=None, sa_column=Column(String(512)))
    emergency_contact_name: Optional[str] = Field(
        default=None, sa_column=Column(String(1024))
    )
    emergency_contact_phone: Optional[str] = Field(
        default=None, sa_column=Column(String(512))
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    )


class DoctorProfile(SQLModel, table=True):
    """
    Practitioner profile linked 1:1 to a DOCTOR credential.
    
    Created as a stub on registration; license and specialization
    are completed later.
    """
    __tablename__ = "doctors"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", unique=True, index=True)
    license_number: str = Field(
        sa_column=Column(String(100), unique=True, nullable=False)
    )
    specialization: str = Field(
        default="General", sa_column=Column(String(100), nullable=False)
    )
    experience: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    consultation_fee: float = Field(
        default=0.0, sa_column=Column(Float, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    )


class RefreshToken(SQLModel, table=True):
    """
    Persisted refresh token.
    
    Usable at most once: rotation sets revoked_at and points
    replaced_by at the successor, forming a singly-linked chain.
    Never mutated after revocation.
    
    Attributes:
        token: The signed refresh JWT itself (unique)
        user_id: Owning identity
        issued_at: Creation timestamp
        expires_at: Server-side expiry (7 days by default)
        revoked_at: Set on rotation or logout
        replaced_by: Successor token value after rotation
    """
    __tablename__ = "refresh_tokens"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    token: str = Field(
        sa_column=Column(String(1024), unique=True, index=True, nullable=False)
    )
    user_id: UUID = Field(foreign_key="users.id", index=True)
    issued_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False))
    revoked_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    replaced_by: Optional[str] = Field(
        default=None, sa_column=Column(String(1024), nullable=True)
    )
