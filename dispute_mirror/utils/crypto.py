"""
Credential encryption for stored PayPal API keys.

Client ids and secrets are encrypted at the application layer with Fernet
before they are written to the database. The Fernet key is derived from the
ENCRYPTION_KEY setting, which is read once per process.
"""

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from ..config.loader import env

logger = logging.getLogger(__name__)

MIN_KEY_LENGTH = 32


class ConfigurationError(Exception):
    """Missing or invalid encryption configuration."""

    pass


class CryptoError(Exception):
    """A value could not be encrypted or decrypted."""

    pass


class CredentialVault:
    """Symmetric encrypt/decrypt of API credentials with a single key."""

    def __init__(self, key: str | None):
        if not key:
            raise ConfigurationError(
                "ENCRYPTION_KEY is not set. Add it to your environment or .env file."
            )
        key_bytes = key.encode("utf-8")
        if len(key_bytes) < MIN_KEY_LENGTH:
            raise ConfigurationError(
                f"ENCRYPTION_KEY must be at least {MIN_KEY_LENGTH} bytes long"
            )

        derived = base64.urlsafe_b64encode(hashlib.sha256(key_bytes).digest())
        self._fernet = Fernet(derived)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential and return the token as text."""
        if not plaintext or not isinstance(plaintext, str):
            raise CryptoError("Value to encrypt must be a non-empty string")
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored credential.

        Raises:
            CryptoError: wrong key, corrupted value, or a plaintext value
                passed where ciphertext was expected
        """
        if not ciphertext or not isinstance(ciphertext, str):
            raise CryptoError("Encrypted value must be a non-empty string")

        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError, ValueError) as e:
            raise CryptoError(
                "Decryption failed: invalid encrypted value or wrong encryption key"
            ) from e

        return plaintext.decode("utf-8")


_vault: CredentialVault | None = None


def get_vault() -> CredentialVault:
    """Return the process-wide vault, built from ENCRYPTION_KEY on first use."""
    global _vault

    if _vault is None:
        _vault = CredentialVault(env("ENCRYPTION_KEY"))
        logger.debug("Credential vault initialised")
    return _vault


def reset_vault() -> None:
    """Drop the cached vault (used after key rotation and in tests)."""
    global _vault
    _vault = None
