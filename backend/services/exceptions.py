"""Service-level error taxonomy.

Provider failures live in ``integrations.exceptions``; everything the core
services raise on their own is defined here so the routers can translate
each kind to a distinct HTTP response.
"""


class LedgerlinkError(Exception):
    """Base class for errors raised by the core services."""

    pass


class CredentialError(LedgerlinkError):
    """A stored provider credential cannot be used; the user must re-link."""

    pass


class CredentialKeyError(CredentialError):
    """The encryption key is missing or malformed. Fatal at startup."""

    pass


class CredentialDecryptionError(CredentialError):
    """Authentication tag verification failed.

    Means the ciphertext was tampered with or was written under a different
    key. Never swallowed.
    """

    pass


class ValidationError(LedgerlinkError):
    """Bad input from the caller (4xx)."""

    pass


class ConnectionNotFoundError(ValidationError):
    """No such connection, or it belongs to another user."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Connection not found: {reference}")


class ConnectionAlreadyDeletedError(ValidationError):
    """The connection is already soft-deleted."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Connection is already deleted: {reference}")


class ConnectionLimitError(ValidationError):
    """Linking another institution would exceed the user's plan."""

    def __init__(self, plan: str | None, max_connections: int | None):
        self.plan = plan
        self.max_connections = max_connections
        if plan is None:
            message = "An active plan is required to link an institution"
        else:
            message = f"The {plan} plan allows at most {max_connections} linked institutions"
        super().__init__(message)


class RateLimitedError(LedgerlinkError):
    """A user-facing rate limit was hit."""

    pass


class DeletionRateLimitedError(RateLimitedError):
    """Only one connection deletion is allowed per rolling window."""

    def __init__(self, days_until_next: int):
        self.days_until_next = days_until_next
        super().__init__(
            "Deletion rate limit exceeded. You can delete another institution "
            f"in {days_until_next} days."
        )


class SyncInProgressError(LedgerlinkError):
    """A sync for this connection is already running."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Sync already in progress for {item_id}")


class DeletionInProgressError(LedgerlinkError):
    """Another deletion for the same user is still running."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"A deletion is already in progress for user {user_id}")


class WebhookSignatureError(LedgerlinkError):
    """A webhook payload failed signature verification."""

    pass


class InternalError(LedgerlinkError):
    """Unexpected failure; logged in full, reported generically."""

    pass
