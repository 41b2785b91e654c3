"""Application configuration using pydantic-settings."""

import re
from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the OS keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./ledgerlink.db"

    # Plaid API credentials
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENVIRONMENT: str = "sandbox"
    PLAID_WEBHOOK_URL: str = ""
    # Shared secret for webhook HMAC verification. Empty = warn-only mode.
    PLAID_WEBHOOK_SECRET: str = ""
    PLAID_TIMEOUT_SECONDS: float = 30.0
    PLAID_MAX_RETRIES: int = 3

    # 64 hex chars (256-bit AES-GCM key) used to encrypt access tokens at rest
    CREDENTIAL_ENCRYPTION_KEY: str = ""

    # Connection lifecycle
    DELETION_RATE_LIMIT_DAYS: int = 30
    WEBHOOK_MAX_RETRIES: int = 5

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator("PLAID_ENVIRONMENT", mode="before")
    @classmethod
    def validate_plaid_environment(cls, v: str) -> str:
        """Plaid's Development environment is gone; only sandbox and production remain."""
        valid = {"sandbox", "production"}
        if v.lower() not in valid:
            raise ValueError(f"PLAID_ENVIRONMENT must be one of {valid}, got {v!r}")
        return v.lower()

    @field_validator("CREDENTIAL_ENCRYPTION_KEY", mode="before")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        """Reject keys that are set but not 64 hex characters.

        An empty key passes validation here; the credential vault refuses to
        start without one, so the failure surfaces at application startup
        rather than at import time.
        """
        if v and not _HEX_KEY_RE.match(v):
            raise ValueError(
                "CREDENTIAL_ENCRYPTION_KEY must be 64 hex characters (256-bit key)"
            )
        return v.lower()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
