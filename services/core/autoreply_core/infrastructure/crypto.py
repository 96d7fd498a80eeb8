"""Encryption of stored platform access tokens.

Page and WhatsApp access tokens are kept as Fernet ciphertext in
``integration_tokens.access_token_encrypted`` and decrypted only for the
duration of an outbound API call.

Usage:
    key = CryptoService.generate_key()  # ENCRYPTION_KEY in env
    crypto = CryptoService(key)

    stored = crypto.encrypt("EAAB...")
    token = crypto.decrypt(stored)
"""

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken


class InvalidKeyError(Exception):
    """Raised when an invalid encryption key is provided."""

    pass


class DecryptionError(Exception):
    """Raised when a stored token cannot be decrypted."""

    pass


class CryptoService:
    """Fernet wrapper used for access tokens at rest."""

    def __init__(self, key: str):
        """Initialize with a Fernet key.

        Args:
            key: A valid Fernet key (base64-encoded 32-byte key).

        Raises:
            InvalidKeyError: If the key is empty or malformed.
        """
        if not key:
            raise InvalidKeyError("Encryption key cannot be empty")

        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise InvalidKeyError(f"Invalid encryption key: {e}")

    @classmethod
    def from_settings(cls, settings) -> "CryptoService":
        """Build the service from ``Settings.encryption_key``."""
        return cls(settings.encryption_key)

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key."""
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token for storage."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: Optional[str]) -> str:
        """Decrypt a stored token.

        Raises:
            DecryptionError: If the ciphertext is empty, tampered with, or
                was produced under a different key.
        """
        if not ciphertext:
            raise DecryptionError("No ciphertext stored")
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as e:
            raise DecryptionError(f"Failed to decrypt: {e!r}")
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError(f"Decrypted token is not text: {e}")


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Mask a secret for log output, keeping a short suffix for correlation."""
    if not value:
        return "***"
    if len(value) <= visible * 2:
        return "***"
    return f"***{value[-visible:]}"
