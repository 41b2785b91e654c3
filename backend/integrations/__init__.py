"""External API integrations.

This package contains:
- Provider protocol: normalized data shapes and the interface the services use
- Provider exceptions: the error taxonomy every provider call maps into
- Plaid client: the production implementation on top of plaid-python
"""

from integrations.exceptions import (
    AuthRevokedError,
    ProductNotSupportedError,
    ProviderError,
    TransientProviderError,
    UnknownProviderError,
)
from integrations.provider_protocol import (
    PROVIDER_MAX_PAGE_SIZE,
    FinancialDataProvider,
    ProviderAccount,
    ProviderTransaction,
    TransactionDelta,
)

__all__ = [
    "AuthRevokedError",
    "FinancialDataProvider",
    "PROVIDER_MAX_PAGE_SIZE",
    "ProductNotSupportedError",
    "ProviderAccount",
    "ProviderError",
    "ProviderTransaction",
    "TransactionDelta",
    "TransientProviderError",
    "UnknownProviderError",
]
