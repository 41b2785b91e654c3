"""Tests for KeychainSettingsSource integration in config.py."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from config import KeychainSettingsSource, Settings
from services.credential_manager import CREDENTIAL_KEYS

# Variables the Settings class reads; cleared so the runner's shell cannot
# leak into the defaults under test.
_ENV_VARS_TO_CLEAR = {
    "DATABASE_URL",
    "ENVIRONMENT",
    "DEBUG",
    "LOG_LEVEL",
    "PLAID_ENVIRONMENT",
    *CREDENTIAL_KEYS,
}

VALID_KEY = "ab" * 32


def _clean_env():
    return {k: v for k, v in os.environ.items() if k not in _ENV_VARS_TO_CLEAR}


class TestKeychainSettingsSource:
    def test_keychain_value_overrides_default(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: "kc-secret" if key == "PLAID_SECRET" else None
            s = Settings(_env_file=None)
            assert s.PLAID_SECRET == "kc-secret"

    def test_init_value_overrides_keychain(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: "kc-client" if key == "PLAID_CLIENT_ID" else None
            s = Settings(_env_file=None, PLAID_CLIENT_ID="init-client")
            assert s.PLAID_CLIENT_ID == "init-client"

    def test_non_credential_fields_skip_keychain(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None) as mock_get,
        ):
            s = Settings(_env_file=None)
            assert s.DATABASE_URL == "sqlite:///./ledgerlink.db"
            called_keys = {call.args[0] for call in mock_get.call_args_list}
            assert called_keys <= CREDENTIAL_KEYS
            assert "DATABASE_URL" not in called_keys
            assert "PLAID_ENVIRONMENT" not in called_keys

    def test_env_fallback_when_keychain_empty(self):
        env = _clean_env()
        env["PLAID_CLIENT_ID"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None)
            assert s.PLAID_CLIENT_ID == "from-env"
            assert s.PLAID_WEBHOOK_SECRET == ""

    def test_keychain_overrides_env_var(self):
        env = _clean_env()
        env["PLAID_SECRET"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: "from-keychain" if key == "PLAID_SECRET" else None
            s = Settings(_env_file=None)
            assert s.PLAID_SECRET == "from-keychain"

    def test_encryption_key_from_keychain_is_validated(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: (
                VALID_KEY.upper() if key == "CREDENTIAL_ENCRYPTION_KEY" else None
            )
            s = Settings(_env_file=None)
            assert s.CREDENTIAL_ENCRYPTION_KEY == VALID_KEY

    def test_source_is_in_priority_chain(self):
        sources = Settings.settings_customise_sources(
            Settings,
            init_settings=object(),
            env_settings=object(),
            dotenv_settings=object(),
            file_secret_settings=object(),
        )
        source_types = [type(s) for s in sources]
        assert source_types.index(KeychainSettingsSource) == 1


class TestSettingsValidation:
    def test_malformed_encryption_key_rejected(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            with pytest.raises(ValidationError, match="CREDENTIAL_ENCRYPTION_KEY"):
                Settings(_env_file=None, CREDENTIAL_ENCRYPTION_KEY="not-hex")

    def test_empty_encryption_key_allowed(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            assert Settings(_env_file=None).CREDENTIAL_ENCRYPTION_KEY == ""

    def test_plaid_environment_normalized(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None, PLAID_ENVIRONMENT="Production")
            assert s.PLAID_ENVIRONMENT == "production"

    def test_development_environment_rejected(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            with pytest.raises(ValidationError, match="PLAID_ENVIRONMENT"):
                Settings(_env_file=None, PLAID_ENVIRONMENT="development")

    def test_lifecycle_defaults(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None)
            assert s.DELETION_RATE_LIMIT_DAYS == 30
            assert s.WEBHOOK_MAX_RETRIES == 5
