"""
MediTech - PHI Field Encryption

AES-256-GCM codec for protected health information at rest.
"""

from meditech.crypto.codec import (
    EncryptionCodec,
    EncryptionError,
    EncryptionKeyError,
    MalformedCiphertextError,
    DecryptionFailedError,
)

__all__ = [
    "EncryptionCodec",
    "EncryptionError",
    "EncryptionKeyError",
    "MalformedCiphertextError",
    "DecryptionFailedError",
]
