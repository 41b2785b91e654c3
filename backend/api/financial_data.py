"""Financial data endpoints served to the conversational agent.

Every route runs the full authorization gate (identity, entitlement,
active connection) before reading data.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import credential_http_error, get_sync_service, provider_http_error, require_feature
from database import get_db
from integrations.exceptions import ProviderError
from schemas import (
    AccountHealthResponse,
    AccountHealthSummaryResponse,
    BalancesResponse,
    InvestmentsResponse,
    LiabilitiesResponse,
    SpendingInsightsResponse,
    TransactionsResponse,
)
from services.authorization_service import Identity
from services.exceptions import CredentialError
from services.financial_data_service import (
    DEFAULT_TRANSACTION_LIMIT,
    MAX_TRANSACTION_LIMIT,
    FinancialDataService,
)
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/data", tags=["financial-data"])


def get_financial_data_service(
    sync_service: SyncService = Depends(get_sync_service),
) -> FinancialDataService:
    return FinancialDataService(sync_service)


def _check_range(start_date: date | None, end_date: date | None) -> None:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=422, detail="start_date must not be after end_date")


@router.get("/balances", response_model=BalancesResponse)
def get_balances(
    identity: Identity = Depends(require_feature("account balances")),
    db: Session = Depends(get_db),
    service: FinancialDataService = Depends(get_financial_data_service),
):
    """Latest synced balances for all active connections."""
    summary = service.get_balances(db, identity.user_id)
    return BalancesResponse(
        accounts=summary.accounts,
        total_assets=summary.total_assets,
        total_liabilities=summary.total_liabilities,
        net_worth=summary.net_worth,
    )


@router.get("/transactions", response_model=TransactionsResponse)
def get_transactions(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    account_id: Optional[str] = None,
    category: Optional[str] = None,
    payment_channel: Optional[str] = None,
    include_pending: bool = True,
    limit: int = Query(DEFAULT_TRANSACTION_LIMIT, ge=1, le=MAX_TRANSACTION_LIMIT),
    identity: Identity = Depends(require_feature("transactions")),
    db: Session = Depends(get_db),
    service: FinancialDataService = Depends(get_financial_data_service),
):
    """Transactions in a date range (default: the last 30 days), newest first."""
    _check_range(start_date, end_date)
    result = service.get_transactions(
        db,
        identity.user_id,
        start_date=start_date,
        end_date=end_date,
        account_id=account_id,
        category=category,
        payment_channel=payment_channel,
        include_pending=include_pending,
        limit=limit,
    )
    return TransactionsResponse(
        start_date=result.start_date,
        end_date=result.end_date,
        total_matching=result.total_matching,
        transactions=result.transactions,
    )


@router.get("/spending-insights", response_model=SpendingInsightsResponse)
def get_spending_insights(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    identity: Identity = Depends(require_feature("spending insights")),
    db: Session = Depends(get_db),
    service: FinancialDataService = Depends(get_financial_data_service),
):
    """Spending by category with each category's share of the total."""
    _check_range(start_date, end_date)
    return service.get_spending_insights(db, identity.user_id, start_date, end_date)


@router.get("/account-health", response_model=AccountHealthSummaryResponse)
def get_account_health(
    identity: Identity = Depends(require_feature("account health check")),
    db: Session = Depends(get_db),
    service: FinancialDataService = Depends(get_financial_data_service),
):
    """Live balance warnings for every account."""
    try:
        signals = service.get_account_health(db, identity.user_id)
    except CredentialError as e:
        raise credential_http_error(e)
    except ProviderError as e:
        raise provider_http_error(e)

    accounts = [
        AccountHealthResponse(
            account_id=s.account_id,
            account_name=s.account_name,
            account_type=s.account_type,
            balance=s.balance,
            available=s.available,
            status=s.status,
            warnings=s.warnings,
        )
        for s in signals
    ]
    with_warnings = sum(1 for s in signals if s.warnings)
    return AccountHealthSummaryResponse(
        overall_status="attention_needed" if with_warnings else "healthy",
        accounts_with_warnings=with_warnings,
        accounts=accounts,
    )


@router.get("/investments", response_model=InvestmentsResponse)
def get_investments(
    identity: Identity = Depends(require_feature("investment holdings")),
    db: Session = Depends(get_db),
    service: FinancialDataService = Depends(get_financial_data_service),
):
    """Investment holdings; institutions without the product are listed, not failed."""
    try:
        holdings, unsupported = service.get_investments(db, identity.user_id)
    except CredentialError as e:
        raise credential_http_error(e)
    except ProviderError as e:
        raise provider_http_error(e)
    return InvestmentsResponse(holdings=holdings, unsupported_institutions=unsupported)


@router.get("/liabilities", response_model=LiabilitiesResponse)
def get_liabilities(
    identity: Identity = Depends(require_feature("liabilities")),
    db: Session = Depends(get_db),
    service: FinancialDataService = Depends(get_financial_data_service),
):
    """Credit card, student loan and mortgage liabilities."""
    try:
        liabilities, unsupported = service.get_liabilities(db, identity.user_id)
    except CredentialError as e:
        raise credential_http_error(e)
    except ProviderError as e:
        raise provider_http_error(e)
    return LiabilitiesResponse(liabilities=liabilities, unsupported_institutions=unsupported)
