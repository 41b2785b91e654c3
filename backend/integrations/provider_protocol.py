"""Provider protocol definitions.

Normalized data shapes returned by the financial-data provider adapter and
the interface the sync, webhook and lifecycle services depend on. Keeping
the services on this protocol (rather than on the Plaid SDK) lets tests
inject a hand-written fake.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol

# Maximum page size accepted by /transactions/sync.
PROVIDER_MAX_PAGE_SIZE = 500


@dataclass
class ProviderAccount:
    """Normalized account with its latest balances."""

    account_id: str
    name: str
    official_name: str | None = None
    mask: str | None = None
    type: str | None = None
    subtype: str | None = None
    current_balance: Decimal | None = None
    available_balance: Decimal | None = None
    credit_limit: Decimal | None = None
    iso_currency_code: str | None = None


@dataclass
class ProviderTransaction:
    """Normalized transaction from the delta stream.

    Amount keeps the provider sign convention: positive = outflow.
    """

    transaction_id: str
    account_id: str
    amount: Decimal
    date: date
    iso_currency_code: str | None = None
    authorized_date: date | None = None
    name: str | None = None
    merchant_name: str | None = None
    category_primary: str | None = None
    category_detailed: str | None = None
    payment_channel: str | None = None
    pending: bool = False
    pending_transaction_id: str | None = None
    raw_data: dict | None = None


@dataclass
class TransactionDelta:
    """One page of the cursor-based transaction delta stream."""

    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # transaction ids
    next_cursor: str | None = None
    has_more: bool = False


@dataclass
class AccountHealthSignal:
    """Balance-derived warnings for one account."""

    account_id: str
    account_name: str
    account_type: str | None
    balance: Decimal
    available: Decimal
    warnings: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "healthy" if not self.warnings else "attention_needed"


@dataclass
class InvestmentHolding:
    """A position in an investment account."""

    account_id: str
    security_id: str
    quantity: Decimal
    ticker: str | None = None
    name: str | None = None
    institution_price: Decimal | None = None
    institution_value: Decimal | None = None
    cost_basis: Decimal | None = None
    iso_currency_code: str | None = None


@dataclass
class InvestmentHoldings:
    """Investment section for one connection."""

    holdings: list[InvestmentHolding] = field(default_factory=list)
    supported: bool = True


@dataclass
class Liability:
    """A credit card, student loan or mortgage liability."""

    account_id: str
    kind: str  # credit | student | mortgage
    last_statement_balance: Decimal | None = None
    minimum_payment_amount: Decimal | None = None
    next_payment_due_date: date | None = None
    interest_rate_percentage: Decimal | None = None
    is_overdue: bool | None = None
    raw_data: dict | None = None


@dataclass
class Liabilities:
    """Liabilities section for one connection."""

    liabilities: list[Liability] = field(default_factory=list)
    supported: bool = True


@dataclass
class ItemInfo:
    """Item metadata reported by the provider."""

    item_id: str
    institution_id: str | None = None
    consent_expiration_time: datetime | None = None
    error_code: str | None = None


class FinancialDataProvider(Protocol):
    """Interface the core services require from the provider adapter."""

    @property
    def provider_name(self) -> str:
        ...

    def is_configured(self) -> bool:
        ...

    def create_link_token(self, user_id: str, redirect_uri: str | None = None) -> str:
        ...

    def exchange_public_token(self, public_token: str) -> dict:
        """Return ``{"access_token": ..., "item_id": ...}``."""
        ...

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        ...

    def get_account_health_signals(self, access_token: str) -> list[AccountHealthSignal]:
        ...

    def get_transaction_delta(
        self,
        access_token: str,
        cursor: str | None,
        count: int = PROVIDER_MAX_PAGE_SIZE,
    ) -> TransactionDelta:
        ...

    def get_investments(self, access_token: str) -> InvestmentHoldings:
        ...

    def get_liabilities(self, access_token: str) -> Liabilities:
        ...

    def get_item(self, access_token: str) -> ItemInfo:
        ...

    def remove_item(self, access_token: str) -> None:
        ...
