"""Pydantic schemas for API request/response validation."""

from .connection import (
    AccountResponse,
    ConnectionResponse,
    DeleteConnectionResponse,
    DeletionInfoResponse,
    SyncResultResponse,
)
from .financial_data import (
    AccountHealthResponse,
    AccountHealthSummaryResponse,
    BalancesResponse,
    CategorySpendingResponse,
    InvestmentHoldingResponse,
    InvestmentsResponse,
    LiabilitiesResponse,
    LiabilityResponse,
    SpendingInsightsResponse,
    TransactionResponse,
    TransactionsResponse,
)
from .webhook import WebhookAckResponse, WebhookRetryResponse

__all__ = [
    "AccountHealthResponse",
    "AccountHealthSummaryResponse",
    "AccountResponse",
    "BalancesResponse",
    "CategorySpendingResponse",
    "ConnectionResponse",
    "DeleteConnectionResponse",
    "DeletionInfoResponse",
    "InvestmentHoldingResponse",
    "InvestmentsResponse",
    "LiabilitiesResponse",
    "LiabilityResponse",
    "SpendingInsightsResponse",
    "SyncResultResponse",
    "TransactionResponse",
    "TransactionsResponse",
    "WebhookAckResponse",
    "WebhookRetryResponse",
]
