"""Plaid API client.

Implements the FinancialDataProvider protocol on top of the plaid-python
SDK: link/exchange, accounts and balances, the /transactions/sync delta
stream, investments, liabilities and item removal.

Every SDK call goes through ``_call()``, which applies a bounded request
timeout, retries transient failures with exponential backoff and maps
Plaid errors into the small taxonomy in ``integrations.exceptions``.
Access tokens are passed in per call; this client never touches the
database or the credential vault.
"""

import json
import logging
import time
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

import urllib3
from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.investments_holdings_get_request import InvestmentsHoldingsGetRequest
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.liabilities_get_request import LiabilitiesGetRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_sync_request import TransactionsSyncRequest

from config import settings
from integrations.exceptions import (
    AuthRevokedError,
    ProductNotSupportedError,
    ProviderError,
    TransientProviderError,
    UnknownProviderError,
)
from integrations.provider_protocol import (
    PROVIDER_MAX_PAGE_SIZE,
    AccountHealthSignal,
    InvestmentHolding,
    InvestmentHoldings,
    ItemInfo,
    Liabilities,
    Liability,
    ProviderAccount,
    ProviderTransaction,
    TransactionDelta,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

_PRODUCT_NOT_SUPPORTED_CODES = frozenset({
    "PRODUCTS_NOT_SUPPORTED",
    "NO_INVESTMENT_ACCOUNTS",
    "NO_LIABILITY_ACCOUNTS",
})

_AUTH_REVOKED_CODES = frozenset({
    "ITEM_LOGIN_REQUIRED",
    "INVALID_ACCESS_TOKEN",
    "ACCESS_NOT_GRANTED",
    "USER_PERMISSION_REVOKED",
    "ITEM_NOT_FOUND",
})

_TRANSIENT_CODES = frozenset({
    "RATE_LIMIT_EXCEEDED",
    "INTERNAL_SERVER_ERROR",
    "PLANNED_MAINTENANCE",
    "INSTITUTION_DOWN",
    "INSTITUTION_NOT_RESPONDING",
    "PRODUCT_NOT_READY",
})

# Balance thresholds for account health signals
_LOW_BALANCE_THRESHOLD = Decimal("100")
_HIGH_UTILIZATION_PERCENT = Decimal("90")
_MODERATE_UTILIZATION_PERCENT = Decimal("70")


class PlaidClient:
    """Wrapper around the Plaid API.

    Constructed explicitly and injected into the services that need it;
    the underlying PlaidApi is created lazily on first use.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        retry_base_delay: float = 1.0,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT
        self._timeout = timeout_seconds or settings.PLAID_TIMEOUT_SECONDS
        self._max_retries = max(1, max_retries or settings.PLAID_MAX_RETRIES)
        self._retry_base_delay = retry_base_delay

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return PROVIDER_NAME

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # Call wrapper: timeout, retry, error mapping
    # ------------------------------------------------------------------

    def _call(self, operation: str, fn: Callable[..., Any], request: Any) -> dict:
        """Invoke one SDK endpoint and return its response as a dict.

        Transient failures are retried with exponential backoff; the last
        one is raised as ``TransientProviderError``. All other failures are
        mapped immediately.
        """
        for attempt in range(self._max_retries):
            try:
                response = fn(request, _request_timeout=self._timeout)
                return _as_dict(response)
            except ApiException as exc:
                error = self._map_plaid_error(exc, operation)
            except urllib3.exceptions.HTTPError as exc:
                # Timeouts, refused connections and DNS failures
                error = TransientProviderError(
                    f"Plaid {operation} network error: {exc}",
                    provider_name=PROVIDER_NAME,
                )

            if not error.retriable or attempt == self._max_retries - 1:
                raise error
            delay = self._retry_base_delay * (2 ** attempt)
            logger.warning(
                "Plaid %s failed (attempt %d/%d), retrying in %.1fs: %s",
                operation, attempt + 1, self._max_retries, delay, error,
            )
            time.sleep(delay)

        raise UnknownProviderError(f"Plaid {operation} failed", provider_name=PROVIDER_NAME)

    @staticmethod
    def _map_plaid_error(exc: ApiException, operation: str = "request") -> ProviderError:
        """Map a Plaid ApiException to the provider error taxonomy."""
        status = exc.status or 0
        message = f"Plaid {operation} failed: {exc.reason or status}"

        error_code = ""
        try:
            body = json.loads(exc.body) if exc.body else {}
            error_code = body.get("error_code", "") or ""
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"
        except (ValueError, TypeError, AttributeError):
            pass

        if error_code in _PRODUCT_NOT_SUPPORTED_CODES:
            return ProductNotSupportedError(message, PROVIDER_NAME, error_code)
        if error_code in _AUTH_REVOKED_CODES or status in (401, 403):
            return AuthRevokedError(message, PROVIDER_NAME, error_code or None)
        if error_code in _TRANSIENT_CODES or status == 429 or status >= 500:
            return TransientProviderError(
                message, PROVIDER_NAME, error_code or None, status_code=status,
            )
        return UnknownProviderError(
            message, PROVIDER_NAME, error_code or None, status_code=status or None,
        )

    # ------------------------------------------------------------------
    # Link token & token exchange
    # ------------------------------------------------------------------

    def create_link_token(self, user_id: str, redirect_uri: str | None = None) -> str:
        """Create a Plaid Link token for the browser-based auth flow.

        Args:
            user_id: Our user id, sent as Plaid's client_user_id.
            redirect_uri: Optional OAuth redirect URI.

        Returns:
            The link_token string to be passed to Plaid Link.
        """
        api = self._get_api()
        kwargs: dict[str, Any] = {
            "user": LinkTokenCreateRequestUser(client_user_id=user_id),
            "client_name": "Ledgerlink",
            "products": [Products("transactions")],
            "optional_products": [Products("investments"), Products("liabilities")],
            "country_codes": [CountryCode("US")],
            "language": "en",
        }
        if settings.PLAID_WEBHOOK_URL:
            kwargs["webhook"] = settings.PLAID_WEBHOOK_URL
        if redirect_uri:
            kwargs["redirect_uri"] = redirect_uri
        response = self._call("link_token_create", api.link_token_create, LinkTokenCreateRequest(**kwargs))
        return response["link_token"]

    def exchange_public_token(self, public_token: str) -> dict:
        """Exchange a Plaid Link public_token for a permanent access_token.

        Returns:
            Dict with ``access_token`` and ``item_id``.
        """
        api = self._get_api()
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = self._call("item_public_token_exchange", api.item_public_token_exchange, request)
        return {
            "access_token": response["access_token"],
            "item_id": response["item_id"],
        }

    def remove_item(self, access_token: str) -> None:
        """Revoke an access token by calling Plaid's /item/remove endpoint."""
        api = self._get_api()
        self._call("item_remove", api.item_remove, ItemRemoveRequest(access_token=access_token))

    def get_item(self, access_token: str) -> ItemInfo:
        """Fetch item metadata (institution, consent expiry, current error)."""
        api = self._get_api()
        response = self._call("item_get", api.item_get, ItemGetRequest(access_token=access_token))
        item = response.get("item") or {}
        error = item.get("error") or {}
        return ItemInfo(
            item_id=item.get("item_id", ""),
            institution_id=item.get("institution_id"),
            consent_expiration_time=_to_datetime(item.get("consent_expiration_time")),
            error_code=error.get("error_code"),
        )

    # ------------------------------------------------------------------
    # Accounts & balances
    # ------------------------------------------------------------------

    def _fetch_raw_accounts(self, access_token: str) -> list[dict]:
        api = self._get_api()
        response = self._call("accounts_get", api.accounts_get, AccountsGetRequest(access_token=access_token))
        return response.get("accounts") or []

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch accounts with their latest balances."""
        return [self._map_account(acct) for acct in self._fetch_raw_accounts(access_token)]

    def get_account_health_signals(self, access_token: str) -> list[AccountHealthSignal]:
        """Derive balance warnings (low, negative, credit utilization) per account."""
        signals = []
        for acct in self.get_accounts(access_token):
            balance = acct.current_balance or Decimal("0")
            available = acct.available_balance or Decimal("0")
            warnings: list[str] = []

            if balance < _LOW_BALANCE_THRESHOLD and acct.type == "depository":
                warnings.append("Low balance warning")
            if balance < 0:
                warnings.append("Negative balance")
            if acct.type == "credit" and acct.credit_limit:
                utilization = abs(balance) / acct.credit_limit * 100
                if utilization > _HIGH_UTILIZATION_PERCENT:
                    warnings.append("High credit utilization (>90%)")
                elif utilization > _MODERATE_UTILIZATION_PERCENT:
                    warnings.append("Moderate credit utilization (>70%)")

            signals.append(AccountHealthSignal(
                account_id=acct.account_id,
                account_name=acct.name,
                account_type=acct.type,
                balance=balance,
                available=available,
                warnings=warnings,
            ))
        return signals

    @classmethod
    def _map_account(cls, acct: dict) -> ProviderAccount:
        balances = acct.get("balances") or {}
        return ProviderAccount(
            account_id=acct.get("account_id", ""),
            name=acct.get("name") or acct.get("official_name") or "Plaid Account",
            official_name=acct.get("official_name"),
            mask=acct.get("mask"),
            type=_enum_str(acct.get("type")),
            subtype=_enum_str(acct.get("subtype")),
            current_balance=cls._to_decimal(balances.get("current")),
            available_balance=cls._to_decimal(balances.get("available")),
            credit_limit=cls._to_decimal(balances.get("limit")),
            iso_currency_code=balances.get("iso_currency_code"),
        )

    # ------------------------------------------------------------------
    # Transactions delta stream
    # ------------------------------------------------------------------

    def get_transaction_delta(
        self,
        access_token: str,
        cursor: str | None,
        count: int = PROVIDER_MAX_PAGE_SIZE,
    ) -> TransactionDelta:
        """Fetch one page of /transactions/sync starting at ``cursor``.

        Args:
            access_token: The Item's access token.
            cursor: Cursor from the previous page, or None for the first sync.
            count: Page size, capped at the provider maximum.

        Returns:
            TransactionDelta with added/modified/removed and the next cursor.
        """
        api = self._get_api()
        kwargs: dict[str, Any] = {
            "access_token": access_token,
            "count": min(count, PROVIDER_MAX_PAGE_SIZE),
        }
        if cursor:
            kwargs["cursor"] = cursor
        response = self._call("transactions_sync", api.transactions_sync, TransactionsSyncRequest(**kwargs))

        return TransactionDelta(
            added=[self._map_transaction(t) for t in response.get("added") or []],
            modified=[self._map_transaction(t) for t in response.get("modified") or []],
            removed=[
                r["transaction_id"] for r in response.get("removed") or []
                if r.get("transaction_id")
            ],
            next_cursor=response.get("next_cursor"),
            has_more=bool(response.get("has_more")),
        )

    @classmethod
    def _map_transaction(cls, txn: dict) -> ProviderTransaction:
        category = txn.get("personal_finance_category") or {}
        return ProviderTransaction(
            transaction_id=txn["transaction_id"],
            account_id=txn["account_id"],
            amount=cls._to_decimal(txn.get("amount")) or Decimal("0"),
            date=_to_date(txn.get("date")),
            iso_currency_code=txn.get("iso_currency_code") or txn.get("unofficial_currency_code"),
            authorized_date=_to_date(txn.get("authorized_date")),
            name=txn.get("name"),
            merchant_name=txn.get("merchant_name"),
            category_primary=category.get("primary"),
            category_detailed=category.get("detailed"),
            payment_channel=_enum_str(txn.get("payment_channel")),
            pending=bool(txn.get("pending")),
            pending_transaction_id=txn.get("pending_transaction_id"),
            raw_data=_jsonable(txn),
        )

    # ------------------------------------------------------------------
    # Optional products
    # ------------------------------------------------------------------

    def get_investments(self, access_token: str) -> InvestmentHoldings:
        """Fetch investment holdings.

        Raises:
            ProductNotSupportedError: The institution has no investments product.
        """
        api = self._get_api()
        request = InvestmentsHoldingsGetRequest(access_token=access_token)
        response = self._call("investments_holdings_get", api.investments_holdings_get, request)

        securities = {
            sec["security_id"]: sec
            for sec in response.get("securities") or []
            if sec.get("security_id")
        }
        holdings = []
        for h in response.get("holdings") or []:
            security = securities.get(h.get("security_id"), {})
            holdings.append(InvestmentHolding(
                account_id=h.get("account_id", ""),
                security_id=h.get("security_id", ""),
                quantity=self._to_decimal(h.get("quantity")) or Decimal("0"),
                ticker=security.get("ticker_symbol"),
                name=security.get("name"),
                institution_price=self._to_decimal(h.get("institution_price")),
                institution_value=self._to_decimal(h.get("institution_value")),
                cost_basis=self._to_decimal(h.get("cost_basis")),
                iso_currency_code=h.get("iso_currency_code") or security.get("iso_currency_code"),
            ))
        return InvestmentHoldings(holdings=holdings)

    def get_liabilities(self, access_token: str) -> Liabilities:
        """Fetch credit, student loan and mortgage liabilities.

        Raises:
            ProductNotSupportedError: The institution has no liabilities product.
        """
        api = self._get_api()
        request = LiabilitiesGetRequest(access_token=access_token)
        response = self._call("liabilities_get", api.liabilities_get, request)
        sections = response.get("liabilities") or {}

        liabilities: list[Liability] = []
        for credit in sections.get("credit") or []:
            aprs = credit.get("aprs") or []
            purchase_apr = next(
                (a for a in aprs if a.get("apr_type") == "purchase_apr"),
                aprs[0] if aprs else {},
            )
            liabilities.append(Liability(
                account_id=credit.get("account_id", ""),
                kind="credit",
                last_statement_balance=self._to_decimal(credit.get("last_statement_balance")),
                minimum_payment_amount=self._to_decimal(credit.get("minimum_payment_amount")),
                next_payment_due_date=_to_date(credit.get("next_payment_due_date")),
                interest_rate_percentage=self._to_decimal(purchase_apr.get("apr_percentage")),
                is_overdue=credit.get("is_overdue"),
                raw_data=_jsonable(credit),
            ))
        for student in sections.get("student") or []:
            liabilities.append(Liability(
                account_id=student.get("account_id", ""),
                kind="student",
                last_statement_balance=self._to_decimal(student.get("last_statement_balance")),
                minimum_payment_amount=self._to_decimal(student.get("minimum_payment_amount")),
                next_payment_due_date=_to_date(student.get("next_payment_due_date")),
                interest_rate_percentage=self._to_decimal(student.get("interest_rate_percentage")),
                is_overdue=student.get("is_overdue"),
                raw_data=_jsonable(student),
            ))
        for mortgage in sections.get("mortgage") or []:
            rate = mortgage.get("interest_rate") or {}
            liabilities.append(Liability(
                account_id=mortgage.get("account_id", ""),
                kind="mortgage",
                last_statement_balance=self._to_decimal(mortgage.get("last_payment_amount")),
                minimum_payment_amount=self._to_decimal(mortgage.get("next_monthly_payment")),
                next_payment_due_date=_to_date(mortgage.get("next_payment_due_date")),
                interest_rate_percentage=self._to_decimal(rate.get("percentage")),
                is_overdue=mortgage.get("past_due_amount") not in (None, 0),
                raw_data=_jsonable(mortgage),
            ))
        return Liabilities(liabilities=liabilities)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_decimal(value) -> Decimal | None:
        """Convert a value to Decimal, returning None on failure."""
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None


def _as_dict(response: Any) -> dict:
    """SDK models expose ``to_dict()``; test doubles may return plain dicts."""
    if hasattr(response, "to_dict"):
        return response.to_dict()
    return response


def _enum_str(value: Any) -> str | None:
    """SDK enum wrappers (e.g. AccountType) carry the raw string in ``.value``."""
    if value is None:
        return None
    return str(getattr(value, "value", value))


def _to_date(value: Any) -> date | None:
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _jsonable(payload: dict) -> dict:
    """Round-trip through JSON so dates and enums fit a JSON column."""
    return json.loads(json.dumps(payload, default=str))
