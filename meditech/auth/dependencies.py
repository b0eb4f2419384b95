"""
MediTech - Security Dependencies

FastAPI dependencies for request authentication.

Usage:
    @router.get("/protected")
    async def protected_route(user: AuthenticatedUser = Depends(get_current_user)):
        ...

Every protected request:
1. Extracts the bearer token from the Authorization header
2. Verifies signature, expiry and token type with the access secret
3. Rejects tokens issued at or before the identity's logout marker
4. Confirms the identity still exists and is not suspended or inactive

The authenticated identity is also placed on request.state.user so the
audit middleware can attribute the request.
"""

from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session as DBSession

from meditech.auth.authenticator import load_principal
from meditech.auth.models import Role, User, UserStatus
from meditech.auth.tokens import InvalidTokenError, TokenIssuer


# HTTP Bearer scheme for JWT extraction
security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """
    Represents a validated, authenticated user.
    
    Available in route handlers via Depends(get_current_user).
    """
    model_config = ConfigDict(from_attributes=True)
    
    user_id: UUID
    email: str
    role: Role
    token_id: str  # jti for audit correlation
    patient_id: Optional[UUID] = None
    doctor_id: Optional[UUID] = None


def get_db(request: Request) -> DBSession:
    """Get database session from app state."""
    return request.app.state.db_session_factory()


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """
    Validate request authentication and return current user.
    
    Raises:
        HTTPException 401: Missing, invalid, expired or revoked token,
            or the identity no longer exists or may not sign in
    """
    if not credentials:
        raise _unauthorized("Missing authentication token")
    
    issuer = get_token_issuer(request)
    
    try:
        payload = issuer.verify_access_token(credentials.credentials)
        user_id = UUID(payload.sub)
    except (InvalidTokenError, ValueError):
        raise _unauthorized("Invalid or expired token")
    
    if await issuer.is_denylisted(payload):
        raise _unauthorized("Token has been revoked")
    
    db = get_db(request)
    try:
        user = db.get(User, user_id)
        if user is None:
            raise _unauthorized("User not found")
        if user.status in (UserStatus.SUSPENDED, UserStatus.INACTIVE):
            raise _unauthorized("User account is inactive")
        
        principal = load_principal(db, user)
        current = AuthenticatedUser(
            user_id=principal.id,
            email=principal.email,
            role=principal.role,
            token_id=payload.jti,
            patient_id=principal.patient_id,
            doctor_id=principal.doctor_id,
        )
    finally:
        db.close()
    
    request.state.user = current
    return current
