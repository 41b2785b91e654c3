"""Pydantic schemas for the data-serving endpoints."""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.connection import AccountResponse


class BalancesResponse(BaseModel):
    accounts: list[AccountResponse]
    total_assets: Decimal
    total_liabilities: Decimal
    net_worth: Decimal


class TransactionResponse(BaseModel):
    """A mirrored transaction. Positive amount = money out."""

    transaction_id: str
    account_id: str
    amount: Decimal
    iso_currency_code: Optional[str] = None
    date: date
    authorized_date: Optional[date] = None
    name: Optional[str] = None
    merchant_name: Optional[str] = None
    category_primary: Optional[str] = None
    category_detailed: Optional[str] = None
    payment_channel: Optional[str] = None
    pending: bool = False

    model_config = ConfigDict(from_attributes=True)


class TransactionsResponse(BaseModel):
    start_date: date
    end_date: date
    total_matching: int
    transactions: list[TransactionResponse]


class CategorySpendingResponse(BaseModel):
    category: str
    amount: Decimal
    count: int
    percentage: float

    model_config = ConfigDict(from_attributes=True)


class SpendingInsightsResponse(BaseModel):
    start_date: date
    end_date: date
    total_spending: Decimal
    categories: list[CategorySpendingResponse]

    model_config = ConfigDict(from_attributes=True)


class AccountHealthResponse(BaseModel):
    account_id: str
    account_name: str
    account_type: Optional[str] = None
    balance: Decimal
    available: Decimal
    status: str
    warnings: list[str] = []

    model_config = ConfigDict(from_attributes=True)


class AccountHealthSummaryResponse(BaseModel):
    overall_status: str
    accounts_with_warnings: int
    accounts: list[AccountHealthResponse]


class InvestmentHoldingResponse(BaseModel):
    account_id: str
    security_id: str
    quantity: Decimal
    ticker: Optional[str] = None
    name: Optional[str] = None
    institution_price: Optional[Decimal] = None
    institution_value: Optional[Decimal] = None
    cost_basis: Optional[Decimal] = None
    iso_currency_code: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class InvestmentsResponse(BaseModel):
    holdings: list[InvestmentHoldingResponse]
    unsupported_institutions: list[str] = []


class LiabilityResponse(BaseModel):
    account_id: str
    kind: str
    last_statement_balance: Optional[Decimal] = None
    minimum_payment_amount: Optional[Decimal] = None
    next_payment_due_date: Optional[date] = None
    interest_rate_percentage: Optional[Decimal] = None
    is_overdue: Optional[bool] = None

    model_config = ConfigDict(from_attributes=True)


class LiabilitiesResponse(BaseModel):
    liabilities: list[LiabilityResponse]
    unsupported_institutions: list[str] = []
