"""Unit tests for the provider and service exception hierarchies."""

import pytest

from integrations.exceptions import (
    AuthRevokedError,
    ProductNotSupportedError,
    ProviderError,
    TransientProviderError,
    UnknownProviderError,
)
from services.exceptions import (
    ConnectionAlreadyDeletedError,
    ConnectionLimitError,
    ConnectionNotFoundError,
    CredentialDecryptionError,
    CredentialError,
    CredentialKeyError,
    DeletionRateLimitedError,
    LedgerlinkError,
    RateLimitedError,
    ValidationError,
)


class TestProviderExceptionHierarchy:
    """All provider exceptions are caught by except ProviderError."""

    def test_catch_all_provider_errors(self):
        exceptions = [
            ProductNotSupportedError("no product", provider_name="Plaid"),
            TransientProviderError("timeout", provider_name="Plaid", status_code=503),
            AuthRevokedError("login", provider_name="Plaid", error_code="ITEM_LOGIN_REQUIRED"),
            UnknownProviderError("odd", provider_name="Plaid", status_code=400),
        ]
        for exc in exceptions:
            with pytest.raises(ProviderError):
                raise exc

    def test_only_transient_errors_are_retriable(self):
        assert TransientProviderError("x").retriable is True
        assert AuthRevokedError("x").retriable is False
        assert ProductNotSupportedError("x").retriable is False
        assert UnknownProviderError("x").retriable is False

    def test_attributes_preserved(self):
        exc = TransientProviderError(
            "down", provider_name="Plaid", error_code="INSTITUTION_DOWN", status_code=400,
        )
        assert exc.provider_name == "Plaid"
        assert exc.error_code == "INSTITUTION_DOWN"
        assert exc.status_code == 400
        assert str(exc) == "down"

    def test_provider_errors_are_not_service_errors(self):
        assert not isinstance(AuthRevokedError("x"), LedgerlinkError)


class TestServiceExceptionHierarchy:
    def test_credential_errors(self):
        assert issubclass(CredentialKeyError, CredentialError)
        assert issubclass(CredentialDecryptionError, CredentialError)
        assert issubclass(CredentialError, LedgerlinkError)

    def test_validation_errors(self):
        assert isinstance(ConnectionNotFoundError("c1"), ValidationError)
        assert isinstance(ConnectionAlreadyDeletedError("c1"), ValidationError)
        assert isinstance(ConnectionLimitError("basic", 3), ValidationError)

    def test_connection_limit_message(self):
        assert "basic plan allows at most 3" in str(ConnectionLimitError("basic", 3))
        assert "active plan is required" in str(ConnectionLimitError(None, None))

    def test_deletion_rate_limit_carries_days(self):
        exc = DeletionRateLimitedError(20)
        assert isinstance(exc, RateLimitedError)
        assert exc.days_until_next == 20
        assert "20 days" in str(exc)
