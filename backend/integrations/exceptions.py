"""Typed exception hierarchy for provider errors.

Every provider call maps the SDK's error into one of a few categories so
callers can decide between degrading, retrying and asking the user to
re-link, without knowing provider error codes.
"""


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name and the provider's own error code (if any)
    so callers can record them against the connection.
    """

    retriable = False

    def __init__(self, message: str, provider_name: str = "", error_code: str | None = None):
        self.provider_name = provider_name
        self.error_code = error_code
        super().__init__(message)


class ProductNotSupportedError(ProviderError):
    """The institution lacks the requested capability (e.g. investments).

    Callers degrade to "no data for this section" instead of failing.
    """

    pass


class TransientProviderError(ProviderError):
    """Timeouts, network failures, rate limits and provider 5xx responses.

    Retriable; surfaced to callers as "try again later".
    """

    retriable = True

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        error_code: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name, error_code)


class AuthRevokedError(ProviderError):
    """The connection's credential no longer works; the user must re-link."""

    pass


class UnknownProviderError(ProviderError):
    """Any provider failure that fits none of the other categories."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        error_code: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name, error_code)
