"""Financial data service - read models served to authorized users.

Balances, transactions and spending insights come from the local mirror
maintained by the sync engine. Account health, investments and liabilities
are fetched live from the provider. Only ``active`` connections contribute.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from integrations.provider_protocol import AccountHealthSignal, InvestmentHolding, Liability
from models import Account, Connection, ConnectionStatus, Transaction
from services.connection_service import ConnectionService
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30
DEFAULT_TRANSACTION_LIMIT = 100
MAX_TRANSACTION_LIMIT = 500
UNCATEGORIZED = "UNCATEGORIZED"

_LIABILITY_ACCOUNT_TYPES = {"credit", "loan"}


@dataclass
class BalanceSummary:
    accounts: list[Account] = field(default_factory=list)
    total_assets: Decimal = Decimal("0")
    total_liabilities: Decimal = Decimal("0")

    @property
    def net_worth(self) -> Decimal:
        return self.total_assets - self.total_liabilities


@dataclass
class CategorySpending:
    category: str
    amount: Decimal
    count: int
    percentage: float


@dataclass
class SpendingInsights:
    start_date: date
    end_date: date
    categories: list[CategorySpending] = field(default_factory=list)
    total_spending: Decimal = Decimal("0")


@dataclass
class TransactionQuery:
    start_date: date
    end_date: date
    transactions: list[Transaction] = field(default_factory=list)
    total_matching: int = 0


def default_date_range(
    start_date: date | None, end_date: date | None
) -> tuple[date, date]:
    """Fill in the default window: the last 30 days ending today."""
    end = end_date or date.today()
    start = start_date or end - timedelta(days=DEFAULT_LOOKBACK_DAYS)
    return start, end


class FinancialDataService:
    """Per-user queries behind the authorization gate."""

    def __init__(self, sync_service: SyncService):
        self._sync_service = sync_service

    @staticmethod
    def _active_account_ids(user_id: str):
        return (
            select(Account.account_id)
            .join(Connection, Account.connection_id == Connection.id)
            .where(
                Account.user_id == user_id,
                Connection.status == ConnectionStatus.ACTIVE,
            )
        )

    @staticmethod
    def _active_accounts_query(db: Session, user_id: str):
        return (
            db.query(Account)
            .join(Connection, Account.connection_id == Connection.id)
            .filter(
                Account.user_id == user_id,
                Connection.status == ConnectionStatus.ACTIVE,
            )
        )

    def get_balances(self, db: Session, user_id: str) -> BalanceSummary:
        accounts = self._active_accounts_query(db, user_id).order_by(Account.name).all()
        summary = BalanceSummary(accounts=accounts)
        for account in accounts:
            balance = account.current_balance or Decimal("0")
            if account.type in _LIABILITY_ACCOUNT_TYPES:
                summary.total_liabilities += abs(balance)
            else:
                summary.total_assets += balance
        return summary

    def get_transactions(
        self,
        db: Session,
        user_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        account_id: str | None = None,
        category: str | None = None,
        payment_channel: str | None = None,
        include_pending: bool = True,
        limit: int = DEFAULT_TRANSACTION_LIMIT,
    ) -> TransactionQuery:
        """Transactions in a date range (inclusive), newest first."""
        start, end = default_date_range(start_date, end_date)
        limit = max(1, min(limit, MAX_TRANSACTION_LIMIT))

        query = db.query(Transaction).filter(
            Transaction.user_id == user_id,
            Transaction.account_id.in_(self._active_account_ids(user_id)),
            Transaction.date >= start,
            Transaction.date <= end,
        )
        if account_id:
            query = query.filter(Transaction.account_id == account_id)
        if category:
            query = query.filter(Transaction.category_primary == category)
        if payment_channel:
            query = query.filter(Transaction.payment_channel == payment_channel)
        if not include_pending:
            query = query.filter(Transaction.pending.is_(False))

        total = query.count()
        rows = (
            query.order_by(
                func.coalesce(Transaction.authorized_date, Transaction.date).desc(),
                Transaction.transaction_id,
            )
            .limit(limit)
            .all()
        )
        return TransactionQuery(start_date=start, end_date=end, transactions=rows, total_matching=total)

    def get_spending_insights(
        self,
        db: Session,
        user_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> SpendingInsights:
        """Spending (positive, posted amounts) by primary category."""
        start, end = default_date_range(start_date, end_date)
        rows = (
            db.query(Transaction.category_primary, Transaction.amount)
            .filter(
                Transaction.user_id == user_id,
                Transaction.account_id.in_(self._active_account_ids(user_id)),
                Transaction.date >= start,
                Transaction.date <= end,
                Transaction.pending.is_(False),
                Transaction.amount > 0,
            )
            .all()
        )

        totals: dict[str, Decimal] = defaultdict(Decimal)
        counts: dict[str, int] = defaultdict(int)
        for category, amount in rows:
            key = category or UNCATEGORIZED
            totals[key] += Decimal(amount)
            counts[key] += 1

        total_spending = sum(totals.values(), Decimal("0"))
        categories = [
            CategorySpending(
                category=name,
                amount=amount,
                count=counts[name],
                percentage=float(amount / total_spending * 100) if total_spending else 0.0,
            )
            for name, amount in totals.items()
        ]
        categories.sort(key=lambda c: c.amount, reverse=True)
        return SpendingInsights(
            start_date=start,
            end_date=end,
            categories=categories,
            total_spending=total_spending,
        )

    def get_account_health(self, db: Session, user_id: str) -> list[AccountHealthSignal]:
        signals = []
        for connection in ConnectionService.list_active_for_user(db, user_id):
            signals.extend(self._sync_service.get_account_health(db, connection))
        return signals

    def get_investments(self, db: Session, user_id: str) -> tuple[list[InvestmentHolding], list[str]]:
        """Holdings across active connections plus the institutions that lack the product."""
        holdings: list[InvestmentHolding] = []
        unsupported: list[str] = []
        for connection in ConnectionService.list_active_for_user(db, user_id):
            section = self._sync_service.get_investments(db, connection)
            if not section.supported:
                unsupported.append(connection.display_name)
            holdings.extend(section.holdings)
        return holdings, unsupported

    def get_liabilities(self, db: Session, user_id: str) -> tuple[list[Liability], list[str]]:
        """Liabilities across active connections plus the institutions that lack the product."""
        liabilities: list[Liability] = []
        unsupported: list[str] = []
        for connection in ConnectionService.list_active_for_user(db, user_id):
            section = self._sync_service.get_liabilities(db, connection)
            if not section.supported:
                unsupported.append(connection.display_name)
            liabilities.extend(section.liabilities)
        return liabilities, unsupported
