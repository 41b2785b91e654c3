"""Credential vault - AES-256-GCM encryption for provider access tokens.

Access tokens are long-lived bearer credentials for a user's bank data, so
they are only ever persisted as vault ciphertext.

Token format (urlsafe base64 text, suitable for a TEXT column)::

    nonce (12 bytes) || ciphertext || auth tag (16 bytes)
"""

import base64
import binascii
import logging
import os
import secrets
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config import settings
from services.exceptions import CredentialDecryptionError, CredentialKeyError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12  # 96 bits, NIST recommended for GCM
TAG_SIZE = 16
KEY_SIZE = 32


def generate_key() -> str:
    """Return a new random 256-bit key as 64 lowercase hex characters."""
    return secrets.token_hex(KEY_SIZE)


class CredentialVault:
    """Encrypts and decrypts provider credentials with a process-wide key.

    The AESGCM instance is safe to share across threads.
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise CredentialKeyError(
                f"Encryption key must be exactly {KEY_SIZE} bytes, got {len(key)}"
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: str | None) -> "CredentialVault":
        """Build a vault from a 64-char hex key.

        Raises:
            CredentialKeyError: The key is absent or not valid hex of the
                right length. There is no plaintext fallback.
        """
        if not hex_key:
            raise CredentialKeyError(
                "CREDENTIAL_ENCRYPTION_KEY is not configured. Generate one with "
                "'python -m scripts.setup_plaid --generate-key'."
            )
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as e:
            raise CredentialKeyError("CREDENTIAL_ENCRYPTION_KEY is not valid hex") from e
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential with a fresh random nonce."""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.urlsafe_b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a credential produced by :meth:`encrypt`.

        Raises:
            CredentialDecryptionError: The token is malformed, was tampered
                with, or was encrypted under a different key.
        """
        try:
            raw = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError) as e:
            raise CredentialDecryptionError("Credential ciphertext is not valid base64") from e

        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise CredentialDecryptionError("Credential ciphertext is truncated")

        nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            logger.error("Credential authentication tag mismatch (tampering or key rotation)")
            raise CredentialDecryptionError(
                "Credential failed authentication; it was tampered with or "
                "encrypted under a different key"
            ) from e
        return plaintext.decode("utf-8")


@lru_cache
def get_credential_vault() -> CredentialVault:
    """Return the process-wide vault built from settings (cached).

    Called from the application lifespan so a missing or malformed key stops
    the process at startup.
    """
    vault = CredentialVault.from_hex(settings.CREDENTIAL_ENCRYPTION_KEY)
    logger.info("Credential vault initialized")
    return vault
