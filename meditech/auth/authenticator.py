"""
MediTech - Credential Authenticator

Verifies identities and owns every write to the lockout state of a
credential record.

Lockout:
- Each wrong password increments failed_login_attempts in a single
  UPDATE (counter = counter + 1), so concurrent failures never lose
  an increment
- The same statement sets account_locked_until = now + 30 minutes
  once the counter reaches 5
- Any correct password resets both

Registration creates the credential and its role profile in one
transaction; neither is visible without the other.
"""

import secrets
from datetime import timedelta
from typing import Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session as DBSession, select

from meditech.auth.errors import (
    AccountInactiveError,
    AccountLockedError,
    AccountSuspendedError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    PermissionDeniedError,
    UserNotFoundError,
)
from meditech.auth.models import DoctorProfile, PatientProfile, Role, User, UserStatus
from meditech.auth.password import hash_password, needs_rehash, verify_password
from meditech.auth.tokens import TokenIssuer, TokenPair
from meditech.database import utcnow
from meditech.log import get_logger


logger = get_logger(__name__)

ADMIN_ROLES = (Role.ADMIN, Role.SUPER_ADMIN)


class Principal(BaseModel):
    """The authenticated identity returned by login and /auth/me."""
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: Role
    status: UserStatus
    patient_id: Optional[UUID] = None
    doctor_id: Optional[UUID] = None


class AuthResult(BaseModel):
    principal: Principal
    tokens: TokenPair


class NewUser(BaseModel):
    """Fields needed to create a credential record."""
    email: str
    password: str
    role: Role
    first_name: str
    last_name: str
    phone_number: Optional[str] = None


def load_principal(db: DBSession, user: User) -> Principal:
    """Build a Principal with the linked profile IDs."""
    patient_id = db.exec(
        select(PatientProfile.id).where(PatientProfile.user_id == user.id)
    ).first()
    doctor_id = db.exec(
        select(DoctorProfile.id).where(DoctorProfile.user_id == user.id)
    ).first()
    
    return Principal(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        status=user.status,
        patient_id=patient_id,
        doctor_id=doctor_id,
    )


class Authenticator:
    """
    Credential checks, lockout and account provisioning.
    
    Usage:
        authenticator = Authenticator(token_issuer, bcrypt_rounds=12)
        result = authenticator.authenticate(db, "doc@example.com", "Secure1!@")
    """
    
    def __init__(
        self,
        token_issuer: TokenIssuer,
        bcrypt_rounds: int = 12,
        max_failed_attempts: int = 5,
        lockout: timedelta = timedelta(minutes=30),
    ):
        self._tokens = token_issuer
        self._rounds = bcrypt_rounds
        self.max_failed_attempts = max_failed_attempts
        self.lockout = lockout
    
    @classmethod
    def from_settings(cls, settings, token_issuer: TokenIssuer) -> "Authenticator":
        return cls(
            token_issuer,
            bcrypt_rounds=settings.BCRYPT_ROUNDS,
            max_failed_attempts=settings.MAX_FAILED_LOGIN_ATTEMPTS,
            lockout=timedelta(minutes=settings.LOCKOUT_MINUTES),
        )
    
    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------
    
    def authenticate(self, db: DBSession, email: str, password: str) -> AuthResult:
        """
        Verify credentials and mint a token pair.
        
        Check order: existence, status, lockout, password. The caller
        records the LOGIN audit entry.
        
        Raises:
            UserNotFoundError: No such identity (generic message)
            AccountSuspendedError / AccountInactiveError: Status forbids login
            AccountLockedError: Lockout window still open
            InvalidCredentialsError: Wrong password
        """
        user = db.exec(select(User).where(User.email == email.lower())).first()
        
        if user is None:
            raise UserNotFoundError()
        
        if user.status == UserStatus.SUSPENDED:
            raise AccountSuspendedError(user_id=user.id)
        if user.status == UserStatus.INACTIVE:
            raise AccountInactiveError(user_id=user.id)
        
        now = utcnow()
        if user.account_locked_until is not None and user.account_locked_until > now:
            raise AccountLockedError(user.account_locked_until, now, user_id=user.id)
        
        if not verify_password(password, user.password_hash):
            self._record_failure(db, user)
            raise InvalidCredentialsError(user_id=user.id)
        
        user.failed_login_attempts = 0
        user.account_locked_until = None
        user.last_login = now
        if needs_rehash(user.password_hash, self._rounds):
            user.password_hash = hash_password(password, self._rounds)
        db.add(user)
        
        # Commits the reset together with the refresh token row
        tokens = self._tokens.issue(db, user)
        db.refresh(user)
        
        logger.info("user_logged_in", user_id=str(user.id))
        return AuthResult(principal=load_principal(db, user), tokens=tokens)
    
    def _record_failure(self, db: DBSession, user: User) -> int:
        """Atomically bump the failure counter, locking at the threshold."""
        lock_until = utcnow() + self.lockout
        
        db.exec(
            update(User)
            .where(User.id == user.id)
            .values(
                failed_login_attempts=User.failed_login_attempts + 1,
                account_locked_until=case(
                    (User.failed_login_attempts + 1 >= self.max_failed_attempts, lock_until),
                    else_=User.account_locked_until,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        attempts, locked_until = db.exec(
            select(User.failed_login_attempts, User.account_locked_until)
            .where(User.id == user.id)
        ).one()
        db.commit()
        
        if attempts >= self.max_failed_attempts:
            logger.warning(
                "account_locked",
                user_id=str(user.id),
                failed_attempts=attempts,
                locked_until=locked_until.isoformat() if locked_until else None,
            )
        return attempts
    
    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------
    
    def register(self, db: DBSession, new_user: NewUser) -> User:
        """
        Self-registration: PENDING_VERIFICATION credential plus role profile.
        
        Raises:
            EmailAlreadyRegisteredError: Email already in use
        """
        user = self._create_user(db, new_user, UserStatus.PENDING_VERIFICATION)
        logger.info("user_registered", user_id=str(user.id), role=user.role.value)
        return user
    
    def create_user_by_admin(
        self,
        db: DBSession,
        admin_id: UUID,
        new_user: NewUser,
    ) -> tuple[User, str]:
        """
        Admin-created account with a random one-time password.
        
        new_user.password is ignored; the generated password is returned
        once and never stored in plaintext.
        
        Raises:
            PermissionDeniedError: Non-super-admin creating an admin
            EmailAlreadyRegisteredError: Email already in use
        """
        admin = db.get(User, admin_id)
        if admin is None:
            raise PermissionDeniedError("Admin user not found")
        
        if new_user.role in ADMIN_ROLES and admin.role != Role.SUPER_ADMIN:
            raise PermissionDeniedError(
                "Only Super Admin can create Admin or Super Admin users"
            )
        
        temporary_password = secrets.token_urlsafe(12)
        user = self._create_user(
            db,
            new_user.model_copy(update={"password": temporary_password}),
            UserStatus.ACTIVE,
        )
        
        logger.info(
            "user_created_by_admin",
            user_id=str(user.id),
            role=user.role.value,
            admin_id=str(admin_id),
        )
        return user, temporary_password
    
    def _create_user(self, db: DBSession, new_user: NewUser, status: UserStatus) -> User:
        email = new_user.email.lower()
        
        existing = db.exec(select(User.id).where(User.email == email)).first()
        if existing is not None:
            raise EmailAlreadyRegisteredError()
        
        user = User(
            email=email,
            password_hash=hash_password(new_user.password, self._rounds),
            role=new_user.role,
            status=status,
            first_name=new_user.first_name,
            last_name=new_user.last_name,
            phone_number=new_user.phone_number,
        )
        db.add(user)
        
        if user.role == Role.PATIENT:
            db.add(PatientProfile(user_id=user.id))
        elif user.role == Role.DOCTOR:
            db.add(DoctorProfile(
                user_id=user.id,
                license_number=f"TEMP-{user.id}",
                specialization="General",
            ))
        
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email
            db.rollback()
            raise EmailAlreadyRegisteredError()
        
        db.refresh(user)
        return user
    
    # ------------------------------------------------------------------
    # Account maintenance
    # ------------------------------------------------------------------
    
    def change_password(
        self,
        db: DBSession,
        user_id: UUID,
        current_password: str,
        new_password: str,
    ) -> int:
        """
        Replace the password hash and revoke all refresh tokens.
        
        Returns:
            Number of refresh tokens revoked
            
        Raises:
            UserNotFoundError / InvalidCredentialsError
        """
        user = db.get(User, user_id)
        if user is None:
            raise UserNotFoundError()
        
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect", user_id=user.id)
        
        user.password_hash = hash_password(new_password, self._rounds)
        db.add(user)
        db.commit()
        
        revoked = self._tokens.revoke_all(db, user.id)
        logger.info("password_changed", user_id=str(user.id), tokens_revoked=revoked)
        return revoked
    
    def assign_role(self, db: DBSession, admin_id: UUID, user_id: UUID, role: Role) -> User:
        """
        Change a user's role.
        
        Raises:
            PermissionDeniedError: Non-super-admin granting SUPER_ADMIN
            UserNotFoundError: Target does not exist
        """
        admin = db.get(User, admin_id)
        if admin is None:
            raise PermissionDeniedError("Admin user not found")
        
        if role == Role.SUPER_ADMIN and admin.role != Role.SUPER_ADMIN:
            raise PermissionDeniedError("Only Super Admin can assign Super Admin role")
        
        target = db.get(User, user_id)
        if target is None:
            raise UserNotFoundError("Target user not found")
        
        previous = target.role
        target.role = role
        db.add(target)
        db.commit()
        db.refresh(target)
        
        logger.info(
            "role_assigned",
            user_id=str(user_id),
            previous_role=previous.value,
            role=role.value,
            admin_id=str(admin_id),
        )
        return target
