"""
MediTech - Authentication Errors

Domain exceptions raised by the authenticator and token issuer.
Routes translate them to HTTP responses; messages are safe to show.

Not-found and wrong-password share one generic message so login
responses cannot be used to enumerate accounts.
"""

import math
from datetime import datetime
from typing import Optional

from meditech.database import utcnow


GENERIC_INVALID_CREDENTIALS = "Invalid credentials"


class AuthenticationError(Exception):
    """Base class for rejected authentication attempts."""
    
    message = GENERIC_INVALID_CREDENTIALS
    
    def __init__(self, message: Optional[str] = None, user_id=None):
        self.user_id = user_id
        super().__init__(message or self.message)


class InvalidCredentialsError(AuthenticationError):
    """Wrong password."""


class UserNotFoundError(InvalidCredentialsError):
    """No credential record for the identity; reported generically."""


class AccountSuspendedError(AuthenticationError):
    message = "Account has been suspended"


class AccountInactiveError(AuthenticationError):
    message = "Account is inactive"


class AccountLockedError(AuthenticationError):
    """
    Raised while the lockout window is open.
    
    Attributes:
        remaining_minutes: Minutes until unlock, rounded up
    """
    
    def __init__(self, locked_until: datetime, now: Optional[datetime] = None, user_id=None):
        now = now or utcnow()
        self.locked_until = locked_until
        self.remaining_minutes = remaining_lockout_minutes(locked_until, now)
        super().__init__(
            f"Account is locked. Try again in {self.remaining_minutes} minutes.",
            user_id=user_id,
        )


class RegistrationError(Exception):
    """Base class for failed registrations."""


class EmailAlreadyRegisteredError(RegistrationError):
    def __init__(self):
        super().__init__("User with this email already exists")


class PermissionDeniedError(Exception):
    """Raised when an admin operation exceeds the caller's role."""


class TokenError(Exception):
    """Base class for token failures; never treated as anonymous."""


class InvalidOrExpiredTokenError(TokenError):
    def __init__(self, message: str = "Invalid or expired refresh token"):
        super().__init__(message)


class TokenPersistenceError(TokenError):
    """The refresh token record could not be written; no pair is issued."""
    
    def __init__(self, message: str = "Could not persist refresh token", user_id=None):
        self.user_id = user_id
        super().__init__(message)


def remaining_lockout_minutes(locked_until: datetime, now: datetime) -> int:
    """ceil((locked_until - now) / 60s), never below 1 while locked."""
    seconds = (locked_until - now).total_seconds()
    return max(1, math.ceil(seconds / 60))
