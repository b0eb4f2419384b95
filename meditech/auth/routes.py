"""
MediTech - Authentication Routes

API endpoints for authentication:
- POST /auth/register        - Self-registration
- POST /auth/login           - Authenticate and issue a token pair
- POST /auth/refresh         - Rotate a refresh token
- POST /auth/logout          - Revoke refresh tokens, denylist access tokens
- GET  /auth/me              - Current user info
- POST /auth/change-password - Replace password, revoke refresh tokens
- POST /auth/assign-role     - Change a user's role (admin)
- POST /auth/users           - Admin-created user with one-time password

Login and logout write explicit LOGIN/LOGOUT audit entries; the other
endpoints are recorded by the security middleware.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from meditech.audit.context import get_client_ip
from meditech.audit.service import AuditService
from meditech.auth.authenticator import Authenticator, NewUser, Principal, load_principal
from meditech.auth.dependencies import AuthenticatedUser, get_current_user, get_db, get_token_issuer
from meditech.auth.errors import (
    AccountLockedError,
    AuthenticationError,
    EmailAlreadyRegisteredError,
    InvalidOrExpiredTokenError,
    PermissionDeniedError,
    TokenPersistenceError,
    UserNotFoundError,
)
from meditech.auth.models import User
from meditech.auth.schemas import (
    AssignRoleRequest,
    AuthResponse,
    ChangePasswordRequest,
    ChangePasswordResponse,
    CreateUserRequest,
    CreateUserResponse,
    ErrorResponse,
    LoginRequest,
    LogoutRequest,
    LogoutResponse,
    RefreshRequest,
    RegisterRequest,
    UserResponse,
)
from meditech.auth.tokens import TokenPair
from meditech.gateway.rbac import Permission, require_permission


router = APIRouter(prefix="/auth", tags=["authentication"])


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


def get_audit(request: Request) -> AuditService:
    return request.app.state.audit


def get_user_agent(request: Request) -> str:
    """Extract user agent from request."""
    return request.headers.get("User-Agent", "unknown")[:512]


def _user_response(principal: Principal) -> UserResponse:
    return UserResponse(**principal.model_dump())


PERSISTENCE_FAILURE_DETAIL = "Could not issue tokens, please retry"


def _persistence_failure() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=PERSISTENCE_FAILURE_DETAIL,
    )


def _rejected_login(
    audit: AuditService,
    user_id,
    ip_address: str,
    user_agent: str,
    status_code: int,
    detail: str,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """
    Error response for a failed login carrying its LOGIN audit write.
    
    Returned rather than raised: background tasks only run on
    responses the handler returns.
    """
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail},
        headers=headers,
        background=BackgroundTask(
            audit.log_login,
            user_id,
            ip_address,
            success=False,
            user_agent=user_agent,
            error_message=detail,
        ),
    )


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
    summary="Register a new user",
)
async def register(request: Request, body: RegisterRequest):
    """
    Create a PENDING_VERIFICATION account and its role profile.
    
    Raises:
        409: Email already registered
    """
    db = get_db(request)
    try:
        user = get_authenticator(request).register(db, NewUser(**body.model_dump()))
        return _user_response(load_principal(db, user))
    except EmailAlreadyRegisteredError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    finally:
        db.close()


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Authenticate user and issue tokens",
)
async def login(request: Request, credentials: LoginRequest, background_tasks: BackgroundTasks):
    """
    Authenticate with email and password.
    
    Wrong password and unknown email share one message. Suspended,
    inactive and locked accounts get specific messages. The LOGIN
    audit entry is written after the response is sent.
    
    Raises:
        401: Rejected credentials or account state
        503: Token pair could not be persisted
    """
    audit = get_audit(request)
    ip_address = get_client_ip(request)
    user_agent = get_user_agent(request)
    
    db = get_db(request)
    try:
        result = get_authenticator(request).authenticate(
            db, credentials.email, credentials.password
        )
    except AuthenticationError as e:
        headers = None
        if isinstance(e, AccountLockedError):
            headers = {"Retry-After": str(e.remaining_minutes * 60)}
        return _rejected_login(
            audit, e.user_id, ip_address, user_agent,
            status.HTTP_401_UNAUTHORIZED, str(e), headers,
        )
    except TokenPersistenceError as e:
        return _rejected_login(
            audit, e.user_id, ip_address, user_agent,
            status.HTTP_503_SERVICE_UNAVAILABLE, PERSISTENCE_FAILURE_DETAIL,
        )
    finally:
        db.close()
    
    background_tasks.add_task(
        audit.log_login, result.principal.id, ip_address, success=True, user_agent=user_agent
    )
    
    return AuthResponse(
        user=_user_response(result.principal),
        **result.tokens.model_dump(),
    )


@router.post(
    "/refresh",
    response_model=TokenPair,
    responses={401: {"model": ErrorResponse}},
    summary="Rotate refresh token",
)
async def refresh(request: Request, body: RefreshRequest):
    """
    Redeem a refresh token for a new pair. The presented token is
    revoked; presenting it again fails.
    """
    db = get_db(request)
    try:
        return get_token_issuer(request).rotate(db, body.refresh_token)
    except InvalidOrExpiredTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    except TokenPersistenceError:
        raise _persistence_failure()
    finally:
        db.close()


@router.post(
    "/logout",
    response_model=LogoutResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Revoke tokens",
)
async def logout(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[LogoutRequest] = None,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Revoke every refresh token of the caller and denylist access tokens
    issued up to now.
    """
    db = get_db(request)
    try:
        count = await get_token_issuer(request).revoke(
            db,
            user.user_id,
            presented=body.refresh_token if body else None,
        )
    finally:
        db.close()
    
    background_tasks.add_task(
        get_audit(request).log_logout,
        user.user_id,
        get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return LogoutResponse(tokens_revoked=count)


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get current user information",
)
async def get_me(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    db = get_db(request)
    try:
        record = db.get(User, user.user_id)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return _user_response(load_principal(db, record))
    finally:
        db.close()


@router.post(
    "/change-password",
    response_model=ChangePasswordResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Change own password",
)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Verify the current password, store the new hash, revoke all refresh tokens."""
    db = get_db(request)
    try:
        revoked = get_authenticator(request).change_password(
            db, user.user_id, body.current_password, body.new_password
        )
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    finally:
        db.close()
    
    return ChangePasswordResponse(tokens_revoked=revoked)


@router.post(
    "/assign-role",
    response_model=UserResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Assign a role to a user (admin only)",
)
async def assign_role(
    request: Request,
    body: AssignRoleRequest,
    user: AuthenticatedUser = Depends(require_permission(Permission.ASSIGN_ROLES)),
):
    """Only SUPER_ADMIN may grant SUPER_ADMIN."""
    db = get_db(request)
    try:
        target = get_authenticator(request).assign_role(db, user.user_id, body.user_id, body.role)
        return _user_response(load_principal(db, target))
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    finally:
        db.close()


@router.post(
    "/users",
    response_model=CreateUserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Create new user (admin only)",
)
async def create_user(
    request: Request,
    body: CreateUserRequest,
    user: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_USERS)),
):
    """
    Create an ACTIVE account with a random one-time password.
    
    Only SUPER_ADMIN may create ADMIN or SUPER_ADMIN accounts.
    """
    db = get_db(request)
    try:
        new_user = NewUser(**body.model_dump(), password="")
        created, temporary_password = get_authenticator(request).create_user_by_admin(
            db, user.user_id, new_user
        )
        return CreateUserResponse(
            user=_user_response(load_principal(db, created)),
            temporary_password=temporary_password,
            created_at=created.created_at,
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except EmailAlreadyRegisteredError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    finally:
        db.close()
