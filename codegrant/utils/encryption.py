"""Encryption utilities for credential cookies and tokens at rest.

Provides symmetric authenticated encryption for:
- Credential cookies issued at the end of the OAuth2 callback
- Provider refresh tokens stored with local session records

Uses Fernet (symmetric encryption) from the cryptography library:
- AES 128-bit encryption in CBC mode
- HMAC for authentication
- URL-safe base64 encoding (cookie-safe without further quoting)
- Embedded issue timestamp, used to enforce short cookie lifetimes
"""

import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_ENV = "CODEGRANT_COOKIE_KEY"


class EncryptionService:
    """Service for encrypting and decrypting sensitive data.

    Uses Fernet symmetric encryption with a key from environment variable.
    The encryption key must be generated once and stored securely; rotating
    it invalidates every outstanding credential cookie.

    Key Generation:
        python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    Environment Variable:
        CODEGRANT_COOKIE_KEY: Base64-encoded Fernet key (44 characters)

    Example:
        >>> service = EncryptionService()
        >>> encrypted = service.encrypt('{"access_token": "..."}')
        >>> service.decrypt(encrypted, ttl=600)
        '{"access_token": "..."}'
    """

    def __init__(self, encryption_key: Optional[str] = None):
        """Initialize encryption service.

        Args:
            encryption_key: Base64-encoded Fernet key (default: from env var)

        Raises:
            ValueError: If encryption key is not configured or invalid
        """
        key_str = encryption_key or os.getenv(ENCRYPTION_KEY_ENV)

        if not key_str:
            raise ValueError(
                f"Encryption key not configured. Set {ENCRYPTION_KEY_ENV} environment variable. "
                "Generate a key with: python -c \"from cryptography.fernet import Fernet; "
                "print(Fernet.generate_key().decode())\""
            )

        try:
            self.cipher = Fernet(key_str.encode('utf-8'))
            logger.debug("Encryption service initialized successfully")
        except (ValueError, TypeError) as e:
            raise ValueError(
                f"Invalid encryption key format: {e}. "
                "Key must be a valid base64-encoded Fernet key (44 characters). "
                "Generate with: python -c \"from cryptography.fernet import Fernet; "
                "print(Fernet.generate_key().decode())\""
            ) from e

    def encrypt(self, plaintext: str, current_time: Optional[int] = None) -> str:
        """Encrypt a plaintext string.

        Args:
            plaintext: String to encrypt
            current_time: Issue timestamp to embed (default: now)

        Returns:
            Base64-encoded encrypted string

        Raises:
            ValueError: If plaintext is None
        """
        if plaintext is None:
            raise ValueError("Cannot encrypt None value")

        data = plaintext.encode('utf-8')
        if current_time is None:
            encrypted_bytes = self.cipher.encrypt(data)
        else:
            encrypted_bytes = self.cipher.encrypt_at_time(data, current_time)
        return encrypted_bytes.decode('utf-8')

    def decrypt(
        self,
        ciphertext: str,
        ttl: Optional[int] = None,
        current_time: Optional[int] = None,
    ) -> str:
        """Decrypt an encrypted string.

        Args:
            ciphertext: Base64-encoded encrypted string
            ttl: Maximum age in seconds; older tokens are rejected
            current_time: Reference time for the ttl check (default: now)

        Returns:
            Decrypted plaintext string

        Raises:
            ValueError: If ciphertext is None, tampered, expired or from another key
        """
        if ciphertext is None:
            raise ValueError("Cannot decrypt None value")

        try:
            data = ciphertext.encode('utf-8')
            if current_time is None:
                decrypted_bytes = self.cipher.decrypt(data, ttl=ttl)
            elif ttl is None:
                raise ValueError("current_time requires a ttl")
            else:
                decrypted_bytes = self.cipher.decrypt_at_time(data, ttl, current_time)
            return decrypted_bytes.decode('utf-8')
        except InvalidToken as e:
            logger.debug("Decryption failed: invalid, expired or foreign token")
            raise ValueError(
                "Failed to decrypt data: token is invalid, expired or was "
                "encrypted with a different key"
            ) from e


# Global encryption service instance (lazy initialization)
_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """Get or create the global encryption service instance.

    Raises:
        ValueError: If encryption key is not configured
    """
    global _encryption_service

    if _encryption_service is None:
        _encryption_service = EncryptionService()

    return _encryption_service

