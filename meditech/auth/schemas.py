"""
MediTech - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Separates API contracts from database models.
"""

import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from meditech.auth.models import Role, UserStatus
from meditech.auth.password import meets_policy


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")

PASSWORD_POLICY_MESSAGE = (
    "Password must be at least 8 characters and contain an uppercase letter, "
    "a lowercase letter, a number and a special character (@$!%*?&)"
)

SELF_SERVICE_ROLES = (
    Role.PATIENT,
    Role.DOCTOR,
    Role.NURSE,
    Role.RECEPTIONIST,
    Role.PHARMACIST,
    Role.LAB_TECHNICIAN,
)


def _normalize_email(v: str) -> str:
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email format")
    return v.lower()


def _strong_password(v: str) -> str:
    if not meets_policy(v):
        raise ValueError(PASSWORD_POLICY_MESSAGE)
    return v


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""
    email: str = Field(..., description="User email address")
    password: str = Field(..., description="Password meeting the complexity policy")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=20)
    role: Role = Field(default=Role.PATIENT)
    
    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        return _normalize_email(v)
    
    @field_validator("password")
    @classmethod
    def password_complexity(cls, v: str) -> str:
        return _strong_password(v)
    
    @field_validator("role")
    @classmethod
    def self_service_role(cls, v: Role) -> Role:
        """Administrative roles are never self-assigned."""
        if v not in SELF_SERVICE_ROLES:
            raise ValueError("Role cannot be self-assigned")
        return v


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: str = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")
    
    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        return _normalize_email(v)


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""
    refresh_token: str = Field(..., min_length=1, description="Refresh token")


class LogoutRequest(BaseModel):
    """Request body for POST /auth/logout (optional)."""
    refresh_token: Optional[str] = Field(default=None, description="Refresh token being discarded")


class LogoutResponse(BaseModel):
    message: str = Field(default="Logged out successfully")
    tokens_revoked: int = Field(default=0)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/change-password."""
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(...)
    
    @field_validator("new_password")
    @classmethod
    def password_complexity(cls, v: str) -> str:
        return _strong_password(v)


class ChangePasswordResponse(BaseModel):
    message: str = Field(default="Password changed successfully")
    tokens_revoked: int = Field(default=0)


class AssignRoleRequest(BaseModel):
    """Request body for POST /auth/assign-role."""
    user_id: UUID
    role: Role


class CreateUserRequest(BaseModel):
    """Request body for POST /auth/users (admin only)."""
    email: str
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=20)
    role: Role = Field(default=Role.PATIENT)
    
    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        return _normalize_email(v)


class UserResponse(BaseModel):
    """Response body for GET /auth/me and user management endpoints."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: Role
    status: UserStatus
    patient_id: Optional[UUID] = None
    doctor_id: Optional[UUID] = None


class AuthResponse(BaseModel):
    """Response body for successful login."""
    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds until the access token expires")


class CreateUserResponse(BaseModel):
    """
    Response body for admin user creation.
    
    temporary_password is shown once; it is not retrievable later.
    """
    user: UserResponse
    temporary_password: str
    created_at: datetime


class ErrorResponse(BaseModel):
    """Standard error response body."""
    detail: str
    error_code: Optional[str] = None
