"""
MediTech - Authentication Package

- bcrypt password hashing with lockout after repeated failures
- Access/refresh JWT pairs with single-use refresh rotation
- Logout revocation backed by a shared denylist cache
- RBAC with deny-by-default
"""

from meditech.auth.authenticator import Authenticator, AuthResult, NewUser, Principal
from meditech.auth.models import DoctorProfile, PatientProfile, RefreshToken, Role, User, UserStatus
from meditech.auth.tokens import TokenIssuer, TokenPair, TokenPayload

__all__ = [
    "Authenticator",
    "AuthResult",
    "NewUser",
    "Principal",
    "User",
    "UserStatus",
    "Role",
    "PatientProfile",
    "DoctorProfile",
    "RefreshToken",
    "TokenIssuer",
    "TokenPair",
    "TokenPayload",
]
