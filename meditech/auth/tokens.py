"""
MediTech - Token Issuer

Mints, rotates and revokes access/refresh token pairs.

- Access token: HS256 JWT signed with JWT_SECRET, 15 minutes
- Refresh token: HS256 JWT signed with JWT_REFRESH_SECRET, 7 days,
  also persisted as a RefreshToken row (its value is the lookup key)

Security:
- Refresh tokens are single use; redeeming one revokes it and links
  its successor in one conditional UPDATE (first writer wins)
- No pair is returned unless its refresh token row is committed
- Logout revokes the identity's refresh tokens and sets a one-hour
  denylist marker consulted for still-valid access tokens
- jti makes every minted token unique, even within the same second
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt
from pydantic import BaseModel, Field
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session as DBSession, select

from meditech.auth.errors import (
    InvalidOrExpiredTokenError,
    TokenError,
    TokenPersistenceError,
)
from meditech.auth.models import RefreshToken, User, UserStatus
from meditech.cache import CacheError, RevocationCache
from meditech.database import utcnow
from meditech.log import get_logger


logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

DENYLIST_PREFIX = "blacklist:"


class InvalidTokenError(TokenError):
    """Raised when an access token fails signature, expiry or type checks."""


class TokenPayload(BaseModel):
    """
    JWT claims carried by both token kinds.
    
    Attributes:
        sub: Identity ID
        email: Identity email
        role: RBAC role
        type: "access" or "refresh"
        jti: Unique token ID
        iat: Issued-at, UNIX seconds with sub-second precision
        exp: Expiration, UNIX seconds
    """
    sub: str
    email: str
    role: str
    type: str
    jti: str
    iat: float
    exp: int


class TokenPair(BaseModel):
    """Response model for login and refresh."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds until the access token expires")


def denylist_key(user_id) -> str:
    return f"{DENYLIST_PREFIX}{user_id}"


class TokenIssuer:
    """
    Issues and rotates token pairs for credential records.
    
    Secrets and lifetimes are injected so tests can use deterministic
    keys and short windows.
    """
    
    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        cache: RevocationCache,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        denylist_ttl: int = 3600,
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("Both signing secrets are required")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh signing secrets must differ")
        
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._cache = cache
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.denylist_ttl = denylist_ttl
    
    @classmethod
    def from_settings(cls, settings, cache: RevocationCache) -> "TokenIssuer":
        return cls(
            access_secret=settings.JWT_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            cache=cache,
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            denylist_ttl=settings.DENYLIST_TTL_SECONDS,
        )
    
    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------
    
    def _sign(self, user: User, token_type: str, issued: datetime) -> str:
        if token_type == ACCESS:
            secret, ttl = self._access_secret, self.access_ttl
        else:
            secret, ttl = self._refresh_secret, self.refresh_ttl
        
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "type": token_type,
            "jti": secrets.token_hex(16),
            "iat": issued.timestamp(),
            "exp": issued + ttl,
        }
        return jwt.encode(payload, secret, algorithm=self._algorithm)
    
    def _mint(self, user: User) -> tuple[str, str]:
        issued = datetime.now(timezone.utc)
        return self._sign(user, ACCESS, issued), self._sign(user, REFRESH, issued)
    
    def _pair(self, access_token: str, refresh_token: str) -> TokenPair:
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
        )
    
    def _decode(self, token: str, secret: str, expected_type: str) -> TokenPayload:
        try:
            claims = jwt.decode(token, secret, algorithms=[self._algorithm])
            payload = TokenPayload(**claims)
        except (JWTError, ValueError) as e:
            raise InvalidTokenError(f"Token validation failed: {e}")
        
        if payload.type != expected_type:
            raise InvalidTokenError("Wrong token type")
        return payload
    
    def verify_access_token(self, token: str) -> TokenPayload:
        """
        Verify signature (secret A), expiry and type of an access token.
        
        Raises:
            InvalidTokenError: If any check fails
        """
        return self._decode(token, self._access_secret, ACCESS)
    
    def verify_refresh_token(self, token: str) -> TokenPayload:
        """Verify signature (secret B), expiry and type of a refresh token."""
        return self._decode(token, self._refresh_secret, REFRESH)
    
    # ------------------------------------------------------------------
    # Issuance and rotation
    # ------------------------------------------------------------------
    
    def issue(self, db: DBSession, user: User) -> TokenPair:
        """
        Mint a pair and persist the refresh token.
        
        Commits the caller's pending changes together with the new
        refresh token row.
        
        Raises:
            TokenPersistenceError: If the row could not be committed
        """
        access_token, refresh_token = self._mint(user)
        now = utcnow()
        
        try:
            db.add(RefreshToken(
                token=refresh_token,
                user_id=user.id,
                issued_at=now,
                expires_at=now + self.refresh_ttl,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("refresh_token_persist_failed", user_id=str(user.id), error=str(e))
            raise TokenPersistenceError(user_id=user.id) from e
        
        return self._pair(access_token, refresh_token)
    
    def rotate(self, db: DBSession, presented: str) -> TokenPair:
        """
        Redeem a refresh token for a new pair.
        
        Revoked and expired tokens are rejected identically. Two
        concurrent redemptions of the same token yield exactly one
        success: the revoke-and-link UPDATE only matches while
        revoked_at is still NULL and the token has not expired.
        
        Raises:
            InvalidOrExpiredTokenError: Unknown, revoked, expired, or lost the race
            TokenPersistenceError: The successor could not be committed
        """
        now = utcnow()
        record = db.exec(
            select(RefreshToken).where(RefreshToken.token == presented)
        ).first()
        
        if record is None or record.revoked_at is not None or record.expires_at <= now:
            raise InvalidOrExpiredTokenError()
        
        try:
            self.verify_refresh_token(presented)
        except InvalidTokenError:
            raise InvalidOrExpiredTokenError()
        
        user = db.get(User, record.user_id)
        if user is None or user.status in (UserStatus.SUSPENDED, UserStatus.INACTIVE):
            raise InvalidOrExpiredTokenError()
        
        access_token, refresh_token = self._mint(user)
        
        try:
            claimed = db.exec(
                update(RefreshToken)
                .where(
                    RefreshToken.id == record.id,
                    RefreshToken.revoked_at.is_(None),
                    RefreshToken.expires_at > now,
                )
                .values(revoked_at=now, replaced_by=refresh_token)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.rollback()
                raise InvalidOrExpiredTokenError()
            
            db.add(RefreshToken(
                token=refresh_token,
                user_id=user.id,
                issued_at=now,
                expires_at=now + self.refresh_ttl,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("refresh_token_rotate_failed", user_id=str(user.id), error=str(e))
            raise TokenPersistenceError(user_id=user.id) from e
        
        logger.info("refresh_token_rotated", user_id=str(user.id))
        return self._pair(access_token, refresh_token)
    
    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------
    
    def revoke_all(self, db: DBSession, user_id: UUID) -> int:
        """
        Revoke every live refresh token of an identity.
        
        Returns:
            Number of tokens revoked
        """
        result = db.exec(
            update(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount
    
    async def revoke(
        self,
        db: DBSession,
        user_id: UUID,
        presented: Optional[str] = None,
    ) -> int:
        """
        Logout: revoke the identity's refresh tokens and denylist its
        outstanding access tokens for denylist_ttl seconds.
        
        The denylist is best effort. Access tokens are not persisted,
        so a cache outage only leaves them valid until they expire.
        
        Args:
            presented: Refresh token sent with the logout, if any
            
        Returns:
            Number of refresh tokens revoked
        """
        if presented is not None:
            record = db.exec(
                select(RefreshToken).where(RefreshToken.token == presented)
            ).first()
            if record is not None and record.user_id != user_id:
                logger.warning("logout_foreign_refresh_token", user_id=str(user_id))
        
        count = self.revoke_all(db, user_id)
        
        marker = datetime.now(timezone.utc).timestamp()
        try:
            await self._cache.set(denylist_key(user_id), marker, ttl=self.denylist_ttl)
        except CacheError as e:
            logger.warning("denylist_write_failed", user_id=str(user_id), error=str(e))
        
        logger.info("user_logged_out", user_id=str(user_id), tokens_revoked=count)
        return count
    
    async def is_denylisted(self, payload: TokenPayload) -> bool:
        """
        True if the identity logged out after this token was issued.
        
        A cache read failure is logged and treated as not denylisted.
        """
        try:
            marker = await self._cache.get(denylist_key(payload.sub))
        except CacheError as e:
            logger.warning("denylist_read_failed", user_id=payload.sub, error=str(e))
            return False
        
        if marker is None:
            return False
        return payload.iat <= float(marker)
