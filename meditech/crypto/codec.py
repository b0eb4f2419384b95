"""
MediTech - Encryption Codec

Symmetric encryption for PHI fields using AES-256-GCM.

Wire format:
    <ivHex>:<cipherHex>
    
    ivHex is a fresh 12-byte nonce per call; cipherHex carries the
    ciphertext followed by the 16-byte GCM authentication tag.

Security Properties:
    - Confidentiality: Only holder of key can decrypt
    - Integrity: Tampering or a wrong key is detected via the GCM tag
    - Uniqueness: Random IV per encryption, equal plaintexts never
      produce equal tokens
"""

import hashlib
import json
import os
import secrets
from typing import Any, Iterable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from meditech.log import get_logger


logger = get_logger(__name__)


class EncryptionError(Exception):
    """Base class for codec failures."""


class EncryptionKeyError(EncryptionError):
    """Raised at construction when the key is missing or not 32 bytes."""


class MalformedCiphertextError(EncryptionError):
    """Raised when a token is not two colon-separated hex segments."""


class DecryptionFailedError(EncryptionError):
    """Raised when authentication fails (wrong key, corrupted bytes)."""


class EncryptionCodec:
    """
    AES-256-GCM codec for scalar PHI values.
    
    Holds no state beyond the key; safe to share across requests
    and threads.
    
    Usage:
        codec = EncryptionCodec(settings.ENCRYPTION_KEY)
        token = codec.encrypt("O+")
        codec.decrypt(token)  # "O+"
    """
    
    KEY_SIZE = 32
    IV_SIZE = 12  # 96 bits, NIST recommended for GCM
    TAG_SIZE = 16
    
    def __init__(self, key):
        """
        Args:
            key: 32-byte key as bytes or a 32-character string
            
        Raises:
            EncryptionKeyError: If the key is missing or the wrong size
        """
        if isinstance(key, str):
            key = key.encode("utf-8")
        
        if not key or len(key) != self.KEY_SIZE:
            raise EncryptionKeyError(
                f"ENCRYPTION_KEY must be exactly {self.KEY_SIZE} bytes, "
                f"got {len(key) if key else 0}"
            )
        
        self._aesgcm = AESGCM(key)
    
    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.
        
        Empty values pass through unchanged so optional columns
        stay empty.
        
        Returns:
            Token in "<ivHex>:<cipherHex>" form
        """
        if not plaintext:
            return plaintext
        
        iv = os.urandom(self.IV_SIZE)
        ciphertext = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        return f"{iv.hex()}:{ciphertext.hex()}"
    
    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by encrypt().
        
        Raises:
            MalformedCiphertextError: Token does not split into two hex segments
            DecryptionFailedError: Authentication tag did not verify
        """
        if not token:
            return token
        
        parts = token.split(":")
        if len(parts) != 2:
            raise MalformedCiphertextError("Invalid encrypted data format")
        
        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError:
            raise MalformedCiphertextError("Encrypted data is not hex encoded")
        
        if len(iv) != self.IV_SIZE or len(ciphertext) < self.TAG_SIZE:
            raise MalformedCiphertextError("Encrypted data has invalid length")
        
        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext, None)
        except InvalidTag:
            raise DecryptionFailedError("Data decryption failed")
        
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionFailedError("Decrypted data is not valid UTF-8")
    
    @staticmethod
    def hash(value: str) -> str:
        """
        One-way SHA-256 digest (hex) for equality lookups.
        
        Never use where the original value must be recovered.
        """
        return hashlib.sha256(value.encode("utf-8")).hexdigest()
    
    @staticmethod
    def mask(value: str, visible_chars: int = 2) -> str:
        """
        Mask a value for display or logs.
        
        Keeps visible_chars at each end and stars out the interior.
        Values too short to hide anything collapse to "***".
        
        Example:
            >>> EncryptionCodec.mask("1234567890123", 2)
            '12*********23'
        """
        if not value or len(value) <= visible_chars * 2:
            return "***"
        
        start = value[:visible_chars] if visible_chars else ""
        end = value[-visible_chars:] if visible_chars else ""
        return start + "*" * (len(value) - visible_chars * 2) + end
    
    def encrypt_fields(self, data: dict, fields: Iterable[str]) -> dict:
        """
        Return a copy of data with the named string fields encrypted.
        
        Missing, empty and non-string fields are left as they are.
        """
        encrypted = dict(data)
        for field in fields:
            value = encrypted.get(field)
            if value and isinstance(value, str):
                encrypted[field] = self.encrypt(value)
        return encrypted
    
    def decrypt_fields(self, data: dict, fields: Iterable[str]) -> dict:
        """
        Return a copy of data with the named string fields decrypted.
        
        A field that fails to decrypt keeps its stored value and a
        warning is logged; the rest of the record still loads.
        """
        decrypted = dict(data)
        for field in fields:
            value = decrypted.get(field)
            if value and isinstance(value, str):
                try:
                    decrypted[field] = self.decrypt(value)
                except EncryptionError as e:
                    logger.warning(
                        "field_decryption_failed",
                        field=field,
                        error_type=type(e).__name__,
                    )
        return decrypted
    
    def encrypt_json(self, data: Any) -> str:
        """Serialize to JSON and encrypt."""
        return self.encrypt(json.dumps(data, separators=(",", ":")))
    
    def decrypt_json(self, token: str) -> Any:
        """Decrypt and parse a token produced by encrypt_json()."""
        return json.loads(self.decrypt(token))
    
    @staticmethod
    def generate_token(length: int = 32) -> str:
        """Random hex token of `length` bytes."""
        return secrets.token_hex(length)
