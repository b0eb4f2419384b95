"""
MediTech - Clinical Records Backend

Security core: credential authentication with lockout, rotating
access/refresh tokens with logout revocation, an append-only audit
trail, and authenticated encryption of PHI fields at rest.
"""

__version__ = "0.1.0"
