"""Keyring-backed storage for service secrets.

Plaid API keys, the webhook signing secret and the credential-encryption
key can live in the OS keychain instead of ``.env``. ``config.Settings``
reads them through :class:`config.KeychainSettingsSource`; the setup script
writes them. ``keyring`` is imported lazily so a host without a keychain
backend still starts and falls back to environment variables.
"""

import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "ledgerlink"

CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "PLAID_CLIENT_ID",
        "PLAID_SECRET",
        "PLAID_WEBHOOK_SECRET",
        "CREDENTIAL_ENCRYPTION_KEY",
    }
)


def _keyring():
    try:
        import keyring
    except ImportError:
        return None
    return keyring


def get_credential(key: str) -> str | None:
    """Look up one secret; None when absent or the keychain is unavailable."""
    keyring = _keyring()
    if keyring is None:
        return None
    try:
        return keyring.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("keyring lookup failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store a secret. Only names in :data:`CREDENTIAL_KEYS` are accepted.

    Returns:
        ``True`` if stored, ``False`` for an unknown key, an empty value or a
        keychain failure.
    """
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to store unknown secret name: %s", key)
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store empty value for %s", key)
        return False

    keyring = _keyring()
    if keyring is None:
        logger.warning("keyring is not installed, cannot store %s", key)
        return False
    try:
        keyring.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Failed to store %s in keychain", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def delete_credential(key: str) -> bool:
    """Remove a secret; ``False`` if unknown, absent or the keychain failed."""
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to delete unknown secret name: %s", key)
        return False

    keyring = _keyring()
    if keyring is None:
        return False
    try:
        keyring.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Failed to delete %s from keychain", key, exc_info=True)
        return False
    logger.info("Deleted %s from keychain", key)
    return True
