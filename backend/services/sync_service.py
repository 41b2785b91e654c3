"""Sync service - cursor-based transaction delta sync per connection."""

import logging
import threading
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from integrations.exceptions import ProductNotSupportedError, ProviderError, UnknownProviderError
from integrations.provider_protocol import (
    PROVIDER_MAX_PAGE_SIZE,
    AccountHealthSignal,
    FinancialDataProvider,
    InvestmentHoldings,
    Liabilities,
    ProviderAccount,
    ProviderTransaction,
)
from models import Account, Connection, Transaction
from services.connection_service import ConnectionService
from services.credential_vault import CredentialVault
from services.exceptions import (
    ConnectionNotFoundError,
    CredentialDecryptionError,
    InternalError,
    LedgerlinkError,
)

logger = logging.getLogger(__name__)

_MUTATION_DURING_PAGINATION = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"

# SQLite caps bound parameters per statement; chunk IN (...) lookups.
_IN_CLAUSE_CHUNK = 500

# Mutable columns overwritten when a transaction id is delivered again.
_TRANSACTION_FIELDS = (
    "account_id",
    "amount",
    "iso_currency_code",
    "date",
    "authorized_date",
    "name",
    "merchant_name",
    "category_primary",
    "category_detailed",
    "payment_channel",
    "pending",
    "pending_transaction_id",
    "raw_data",
)


@dataclass
class SyncResult:
    """Outcome of syncing one connection."""

    item_id: str
    added: int = 0
    modified: int = 0
    removed: int = 0
    accounts: int = 0
    passes: int = 0
    skipped: bool = False  # deleted/revoked connection, nothing pulled
    coalesced: bool = False  # folded into a sync that was already running
    error: str | None = None

    def combine(self, other: "SyncResult") -> "SyncResult":
        """Fold a follow-up pass into this result."""
        self.added += other.added
        self.modified += other.modified
        self.removed += other.removed
        self.accounts = other.accounts or self.accounts
        self.passes += other.passes
        self.skipped = other.skipped
        return self


@dataclass
class _FoldedDelta:
    """Net effect of every page of one delta-sync pass."""

    upserts: dict[str, ProviderTransaction] = field(default_factory=dict)
    removed_ids: set[str] = field(default_factory=set)
    added: int = 0
    modified: int = 0
    removed: int = 0
    next_cursor: str | None = None


class ConnectionLockRegistry:
    """Keyed, non-global locks: at most one sync per connection.

    A request for a key that is already held records a rerun instead of
    waiting; the holder performs one more pass before releasing, so updates
    announced while it ran are still pulled.

    Process-local. Multiple worker processes need a database advisory lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._rerun_requested: set[str] = set()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def try_acquire(self, key: str) -> bool:
        """Acquire without blocking; on contention, request a rerun."""
        lock = self._lock_for(key)
        with self._guard:
            if lock.acquire(blocking=False):
                self._rerun_requested.discard(key)
                return True
            self._rerun_requested.add(key)
            return False

    def acquire(self, key: str, timeout: float) -> bool:
        """Block until the key is free (used by deletion)."""
        return self._lock_for(key).acquire(timeout=timeout)

    def release_or_continue(self, key: str, allow_continue: bool = True) -> bool:
        """Release the key, unless a rerun was requested meanwhile.

        Returns True when the caller still holds the key and must run again.
        Checking the flag and releasing happen under one guard so a request
        arriving in between cannot be lost.
        """
        with self._guard:
            if allow_continue and key in self._rerun_requested:
                self._rerun_requested.discard(key)
                return True
            self._rerun_requested.discard(key)
            self._locks[key].release()
            return False

    def release(self, key: str) -> None:
        with self._guard:
            self._rerun_requested.discard(key)
            self._locks[key].release()

    def is_locked(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()


class SyncService:
    """Maintains the local mirror of each connection's accounts and transactions."""

    # Class-level registry shared across instances: every request builds its
    # own SyncService, but all of them must see the same per-connection locks.
    _locks = ConnectionLockRegistry()

    MAX_FOLLOW_UP_PASSES = 3

    def __init__(
        self,
        provider: FinancialDataProvider,
        vault: CredentialVault,
        page_size: int = PROVIDER_MAX_PAGE_SIZE,
    ):
        """Initialize with an explicitly constructed provider client and vault.

        Args:
            provider: Provider adapter (PlaidClient in production).
            vault: Credential vault used to decrypt access tokens.
            page_size: Delta page size, capped at the provider maximum.
        """
        self._provider = provider
        self._vault = vault
        self._page_size = min(page_size, PROVIDER_MAX_PAGE_SIZE)

    @property
    def provider(self) -> FinancialDataProvider:
        return self._provider

    @property
    def vault(self) -> CredentialVault:
        return self._vault

    @classmethod
    def lock_registry(cls) -> ConnectionLockRegistry:
        return cls._locks

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def sync_connection(self, db: Session, item_id: str) -> SyncResult:
        """Bring the local mirror of one connection up to date.

        Concurrent requests for the same connection never run in parallel:
        a request that finds a sync running returns ``coalesced=True`` and the
        running sync performs a follow-up pass.

        Raises:
            ConnectionNotFoundError: Unknown item id.
            CredentialError: The stored credential cannot be decrypted.
            ProviderError: Any provider failure other than an unsupported
                product. The stored cursor is left unchanged.
            InternalError: Anything else; the cause is logged in full.
        """
        if not self._locks.try_acquire(item_id):
            logger.info("Sync for %s already running; coalesced into it", item_id)
            return SyncResult(item_id=item_id, coalesced=True)

        try:
            result = self._run_pass(db, item_id)
            while self._locks.release_or_continue(
                item_id, allow_continue=result.passes <= self.MAX_FOLLOW_UP_PASSES
            ):
                logger.info("Running follow-up sync pass for %s", item_id)
                result.combine(self._run_pass(db, item_id))
            return result
        except (ProviderError, LedgerlinkError):
            self._locks.release(item_id)
            raise
        except Exception as e:
            db.rollback()
            self._locks.release(item_id)
            logger.error("Unexpected error syncing %s", item_id, exc_info=True)
            raise InternalError(f"Unexpected error syncing {item_id}") from e
        except BaseException:
            self._locks.release(item_id)
            raise

    def sync_user_connections(self, db: Session, user_id: str) -> list[SyncResult]:
        """Sync every active or errored connection of a user.

        One connection failing does not stop the others; its result carries
        the error message instead.
        """
        connections = [
            c for c in ConnectionService.list_for_user(db, user_id)
            if c.status.is_syncable
        ]
        results = []
        for connection in connections:
            try:
                results.append(self.sync_connection(db, connection.item_id))
            except (ProviderError, LedgerlinkError) as e:
                logger.warning(
                    "Sync failed for %s (%s): %s",
                    connection.display_name, connection.item_id, e,
                )
                results.append(SyncResult(item_id=connection.item_id, error=str(e)))
        return results

    def get_account_health(self, db: Session, connection: Connection) -> list[AccountHealthSignal]:
        """Live balance warnings for a connection's accounts."""
        access_token = self._decrypt_credential(db, connection)
        return self._provider.get_account_health_signals(access_token)

    def get_investments(self, db: Session, connection: Connection) -> InvestmentHoldings:
        """Investment holdings for a connection; unsupported -> empty section."""
        access_token = self._decrypt_credential(db, connection)
        try:
            return self._provider.get_investments(access_token)
        except ProductNotSupportedError:
            logger.info("%s does not support investments, skipping", connection.display_name)
            return InvestmentHoldings(supported=False)

    def get_liabilities(self, db: Session, connection: Connection) -> Liabilities:
        """Liabilities for a connection; unsupported -> empty section."""
        access_token = self._decrypt_credential(db, connection)
        try:
            return self._provider.get_liabilities(access_token)
        except ProductNotSupportedError:
            logger.info("%s does not support liabilities, skipping", connection.display_name)
            return Liabilities(supported=False)

    # ------------------------------------------------------------------
    # One sync pass
    # ------------------------------------------------------------------

    def _run_pass(self, db: Session, item_id: str) -> SyncResult:
        connection = ConnectionService.get_by_item_id(db, item_id)
        if connection is None:
            raise ConnectionNotFoundError(item_id)
        if not connection.status.is_syncable:
            logger.info("Skipping sync for %s connection %s", connection.status.value, item_id)
            return SyncResult(item_id=item_id, skipped=True, passes=1)

        access_token = self._decrypt_credential(db, connection)

        # Accounts first: transactions reference them. A failure here aborts
        # the sync with status and cursor untouched.
        remote_accounts = self._provider.get_accounts(access_token)
        self._upsert_accounts(db, connection, remote_accounts)
        db.commit()

        prior_cursor = connection.transactions_cursor
        try:
            delta = self._fetch_delta(access_token, prior_cursor)
            self._apply_delta(db, connection, delta)
            db.commit()
        except BaseException:
            db.rollback()
            logger.warning(
                "Sync of %s failed; cursor left at its previous value", item_id,
            )
            raise

        # The cursor only moves once the batch it covers is durable.
        ConnectionService.advance_cursor(db, connection, delta.next_cursor)
        ConnectionService.mark_active(db, connection)
        db.commit()

        logger.info(
            "Synced %s (%s): %d accounts, %d added, %d modified, %d removed",
            connection.display_name, item_id, len(remote_accounts),
            delta.added, delta.modified, delta.removed,
        )
        return SyncResult(
            item_id=item_id,
            added=delta.added,
            modified=delta.modified,
            removed=delta.removed,
            accounts=len(remote_accounts),
            passes=1,
        )

    def _decrypt_credential(self, db: Session, connection: Connection) -> str:
        try:
            return self._vault.decrypt(connection.access_token_encrypted)
        except CredentialDecryptionError as e:
            ConnectionService.mark_error(
                db, connection, "CREDENTIAL_DECRYPTION_FAILED", str(e),
            )
            db.commit()
            raise

    def _fetch_delta(self, access_token: str, cursor: str | None) -> _FoldedDelta:
        """Page through the delta stream until ``has_more`` is false."""
        restarted = False
        while True:
            try:
                return self._fetch_all_pages(access_token, cursor)
            except UnknownProviderError as e:
                if e.error_code != _MUTATION_DURING_PAGINATION or restarted:
                    raise
                logger.info("Transactions changed during pagination; restarting from stored cursor")
                restarted = True

    def _fetch_all_pages(self, access_token: str, cursor: str | None) -> _FoldedDelta:
        folded = _FoldedDelta(next_cursor=cursor)
        page_cursor = cursor
        pages = 0
        while True:
            page = self._provider.get_transaction_delta(access_token, page_cursor, self._page_size)
            pages += 1

            for txn in page.added:
                folded.upserts[txn.transaction_id] = txn
                folded.removed_ids.discard(txn.transaction_id)
            for txn in page.modified:
                folded.upserts[txn.transaction_id] = txn
                folded.removed_ids.discard(txn.transaction_id)
            for transaction_id in page.removed:
                folded.upserts.pop(transaction_id, None)
                folded.removed_ids.add(transaction_id)

            folded.added += len(page.added)
            folded.modified += len(page.modified)
            folded.removed += len(page.removed)
            page_cursor = page.next_cursor

            if not page.has_more:
                break

        folded.next_cursor = page_cursor
        logger.debug("Fetched %d delta page(s)", pages)
        return folded

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _upsert_accounts(
        self,
        db: Session,
        connection: Connection,
        remote_accounts: list[ProviderAccount],
    ) -> list[Account]:
        """Upsert accounts keyed by provider account id; balances last-write-wins."""
        existing = {
            a.account_id: a
            for a in db.query(Account).filter(
                Account.account_id.in_([r.account_id for r in remote_accounts])
            )
        } if remote_accounts else {}

        upserted = []
        new_count = 0
        for remote in remote_accounts:
            account = existing.get(remote.account_id)
            if account is None:
                account = Account(
                    account_id=remote.account_id,
                    connection_id=connection.id,
                    user_id=connection.user_id,
                )
                db.add(account)
                new_count += 1
            account.name = remote.name
            account.official_name = remote.official_name
            account.mask = remote.mask
            account.type = remote.type
            account.subtype = remote.subtype
            account.current_balance = remote.current_balance
            account.available_balance = remote.available_balance
            account.credit_limit = remote.credit_limit
            account.iso_currency_code = remote.iso_currency_code
            upserted.append(account)

        db.flush()
        logger.info(
            "%s: accounts upserted (%d new, %d existing)",
            connection.display_name, new_count, len(upserted) - new_count,
        )
        return upserted

    def _apply_delta(self, db: Session, connection: Connection, delta: _FoldedDelta) -> None:
        """Apply removals, then upsert added+modified keyed by transaction id."""
        removed_ids = list(delta.removed_ids)
        for start in range(0, len(removed_ids), _IN_CLAUSE_CHUNK):
            chunk = removed_ids[start:start + _IN_CLAUSE_CHUNK]
            db.query(Transaction).filter(
                Transaction.transaction_id.in_(chunk)
            ).delete(synchronize_session=False)

        upsert_ids = list(delta.upserts)
        existing: dict[str, Transaction] = {}
        for start in range(0, len(upsert_ids), _IN_CLAUSE_CHUNK):
            chunk = upsert_ids[start:start + _IN_CLAUSE_CHUNK]
            for row in db.query(Transaction).filter(Transaction.transaction_id.in_(chunk)):
                existing[row.transaction_id] = row

        known_accounts = {a.account_id for a in ConnectionService.list_accounts(db, connection)}
        for transaction_id, remote in delta.upserts.items():
            if remote.account_id not in known_accounts:
                logger.warning(
                    "Skipping transaction %s for unknown account %s on %s",
                    transaction_id, remote.account_id, connection.item_id,
                )
                continue
            row = existing.get(transaction_id)
            if row is None:
                row = Transaction(transaction_id=transaction_id, user_id=connection.user_id)
                db.add(row)
            for column in _TRANSACTION_FIELDS:
                setattr(row, column, getattr(remote, column))

        db.flush()
