"""
MediTech - Password Hashing

bcrypt hashing with a configurable cost factor. The default of 12
costs tens of milliseconds per check, which is what makes online
guessing slow; tests lower it through BCRYPT_ROUNDS.

Security:
- Never log or expose plaintext passwords
- bcrypt includes salt automatically
- Hashes below the configured cost are upgraded on next login
"""

import re

import bcrypt


BCRYPT_WORK_FACTOR = 12

# bcrypt only looks at the first 72 bytes
_MAX_PASSWORD_BYTES = 72

PASSWORD_POLICY = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&]).{8,}$")


def hash_password(password: str, rounds: int = BCRYPT_WORK_FACTOR) -> str:
    """
    Hash a password using bcrypt.
    
    Args:
        password: Plaintext password
        rounds: bcrypt cost (log2 iterations)
        
    Returns:
        bcrypt hash string (includes salt)
    """
    password_bytes = password.encode("utf-8")[:_MAX_PASSWORD_BYTES]
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash in constant time.
    
    Returns:
        True if password matches, False otherwise (including malformed hashes)
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8")[:_MAX_PASSWORD_BYTES],
            hashed_password.encode("utf-8"),
        )
    except (ValueError, TypeError):
        return False


def needs_rehash(hashed_password: str, target_work_factor: int = BCRYPT_WORK_FACTOR) -> bool:
    """
    Check if a stored hash was made with a lower cost than configured.
    
    bcrypt hash format: $2b$XX$..., XX is the cost in decimal.
    """
    try:
        _, cost, _ = hashed_password.split("$")[1:4]
        return int(cost) < target_work_factor
    except (ValueError, IndexError):
        return True


def meets_policy(password: str) -> bool:
    """At least 8 chars with lower, upper, digit and one of @$!%*?&."""
    return bool(PASSWORD_POLICY.match(password))
