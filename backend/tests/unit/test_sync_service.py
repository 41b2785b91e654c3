"""Unit tests for SyncService."""

from decimal import Decimal

import pytest

from integrations.exceptions import AuthRevokedError, TransientProviderError, UnknownProviderError
from integrations.provider_protocol import TransactionDelta
from models import Account, Connection, ConnectionStatus, Transaction
from services.credential_vault import CredentialVault
from services.exceptions import ConnectionNotFoundError, CredentialDecryptionError, InternalError
from services.sync_service import ConnectionLockRegistry, SyncService
from tests.fixtures import USER_ID, create_connection
from tests.fixtures.mocks import (
    NO_INVESTMENTS,
    PROVIDER_DOWN,
    SAMPLE_HOLDINGS,
    MockPlaidClient,
    make_txn,
)


def _transaction_ids(db):
    return sorted(t.transaction_id for t in db.query(Transaction).all())


def _refetch(db, item_id="item-1"):
    db.expire_all()
    return db.query(Connection).filter_by(item_id=item_id).one()


def test_first_sync_mirrors_accounts_and_transactions(db, vault, connection):
    """A first sync (no cursor) pulls accounts and the initial history."""
    provider = MockPlaidClient(pages={
        None: TransactionDelta(
            added=[make_txn("T1"), make_txn("T2", amount="25.00")],
            next_cursor="cursor-1",
        ),
    })

    result = SyncService(provider, vault).sync_connection(db, "item-1")

    assert result.added == 2
    assert result.accounts == 2
    assert result.passes == 1
    assert not result.coalesced
    assert _transaction_ids(db) == ["T1", "T2"]
    assert {a.account_id for a in db.query(Account).all()} == {"acc_checking", "acc_credit"}
    assert _refetch(db).transactions_cursor == "cursor-1"
    assert _refetch(db).last_synced_at is not None


def test_sync_passes_decrypted_token_and_stored_cursor(db, vault):
    create_connection(db, vault, access_token="access-sandbox-secret", cursor="cursor-9")
    provider = MockPlaidClient()

    SyncService(provider, vault).sync_connection(db, "item-1")

    assert provider.delta_calls == [("access-sandbox-secret", "cursor-9", 500)]


def test_page_size_capped_at_provider_maximum(db, vault, connection):
    provider = MockPlaidClient()

    SyncService(provider, vault, page_size=5000).sync_connection(db, "item-1")

    assert provider.delta_calls[0][2] == 500


def test_removal_on_later_page_wins_over_earlier_add(db, vault, connection):
    """Added T1, T2 on page 1 then removed T2 on page 2 leaves {T1, T3}."""
    provider = MockPlaidClient(pages={
        None: TransactionDelta(
            added=[make_txn("T1"), make_txn("T2")],
            next_cursor="c1",
            has_more=True,
        ),
        "c1": TransactionDelta(
            added=[make_txn("T3")],
            removed=["T2"],
            next_cursor="c2",
        ),
    })

    result = SyncService(provider, vault).sync_connection(db, "item-1")

    assert _transaction_ids(db) == ["T1", "T3"]
    assert _refetch(db).transactions_cursor == "c2"
    assert result.added == 3
    assert result.removed == 1


def test_readd_after_removal_keeps_transaction(db, vault, connection):
    provider = MockPlaidClient(pages={
        None: TransactionDelta(removed=["T1"], next_cursor="c1", has_more=True),
        "c1": TransactionDelta(added=[make_txn("T1")], next_cursor="c2"),
    })

    SyncService(provider, vault).sync_connection(db, "item-1")

    assert _transaction_ids(db) == ["T1"]


def test_duplicate_delivery_updates_in_place(db, vault, connection):
    """Redelivering a transaction id overwrites it instead of duplicating it."""
    provider = MockPlaidClient(pages={
        None: TransactionDelta(added=[make_txn("T1", amount="10.00")], next_cursor="c1"),
        "c1": TransactionDelta(
            modified=[make_txn("T1", amount="12.50", pending=True)],
            next_cursor="c2",
        ),
    })
    service = SyncService(provider, vault)

    service.sync_connection(db, "item-1")
    result = service.sync_connection(db, "item-1")

    rows = db.query(Transaction).all()
    assert len(rows) == 1
    assert rows[0].amount == Decimal("12.50")
    assert rows[0].pending is True
    assert result.modified == 1
    assert result.added == 0


def test_same_id_on_two_pages_stored_once(db, vault, connection):
    provider = MockPlaidClient(pages={
        None: TransactionDelta(added=[make_txn("T1")], next_cursor="c1", has_more=True),
        "c1": TransactionDelta(added=[make_txn("T1", amount="11.00")], next_cursor="c2"),
    })

    SyncService(provider, vault).sync_connection(db, "item-1")

    rows = db.query(Transaction).all()
    assert len(rows) == 1
    assert rows[0].amount == Decimal("11.00")


def test_removing_unknown_transaction_is_noop(db, vault, connection):
    provider = MockPlaidClient(pages={
        None: TransactionDelta(removed=["never-seen"], next_cursor="c1"),
    })

    SyncService(provider, vault).sync_connection(db, "item-1")

    assert _transaction_ids(db) == []
    assert _refetch(db).transactions_cursor == "c1"


def test_failure_on_last_page_keeps_cursor_and_data(db, vault):
    """Page 3 of 3 failing leaves the old cursor and no partial batch."""
    create_connection(db, vault, cursor="c0")
    provider = MockPlaidClient(pages={
        "c0": TransactionDelta(added=[make_txn("T1")], next_cursor="c1", has_more=True),
        "c1": TransactionDelta(added=[make_txn("T2")], next_cursor="c2", has_more=True),
    })
    provider.fail_on_cursor["c2"] = PROVIDER_DOWN

    with pytest.raises(TransientProviderError):
        SyncService(provider, vault).sync_connection(db, "item-1")

    connection = _refetch(db)
    assert connection.transactions_cursor == "c0"
    assert connection.status == ConnectionStatus.ACTIVE
    assert _transaction_ids(db) == []
    assert not SyncService.lock_registry().is_locked("item-1")


def test_retry_after_failure_resumes_from_stored_cursor(db, vault):
    create_connection(db, vault, cursor="c0")
    provider = MockPlaidClient(pages={
        "c0": TransactionDelta(added=[make_txn("T1")], next_cursor="c1", has_more=True),
        "c1": TransactionDelta(added=[make_txn("T2")], next_cursor="c2"),
    })
    provider.fail_on_cursor["c1"] = PROVIDER_DOWN
    service = SyncService(provider, vault)

    with pytest.raises(TransientProviderError):
        service.sync_connection(db, "item-1")
    provider.fail_on_cursor.clear()
    service.sync_connection(db, "item-1")

    assert _transaction_ids(db) == ["T1", "T2"]
    assert _refetch(db).transactions_cursor == "c2"


def test_auth_revoked_propagates_without_status_change(db, vault, connection):
    provider = MockPlaidClient()
    provider.accounts_error = AuthRevokedError(
        "Plaid error (ITEM_LOGIN_REQUIRED): login required",
        provider_name="Plaid",
        error_code="ITEM_LOGIN_REQUIRED",
    )

    with pytest.raises(AuthRevokedError):
        SyncService(provider, vault).sync_connection(db, "item-1")

    assert _refetch(db).status == ConnectionStatus.ACTIVE
    assert provider.delta_calls == []


def test_mutation_during_pagination_restarts_from_stored_cursor(db, vault):
    create_connection(db, vault, cursor="c0")

    class MutatingClient(MockPlaidClient):
        mutated = False

        def get_transaction_delta(self, access_token, cursor, count=500):
            if cursor == "c1" and not self.mutated:
                self.mutated = True
                self.delta_calls.append((access_token, cursor, count))
                raise UnknownProviderError(
                    "Plaid error (TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION)",
                    provider_name="Plaid",
                    error_code="TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION",
                )
            return super().get_transaction_delta(access_token, cursor, count)

    provider = MutatingClient(pages={
        "c0": TransactionDelta(added=[make_txn("T1")], next_cursor="c1", has_more=True),
        "c1": TransactionDelta(added=[make_txn("T2")], next_cursor="c2"),
    })

    result = SyncService(provider, vault).sync_connection(db, "item-1")

    cursors = [call[1] for call in provider.delta_calls]
    assert cursors == ["c0", "c1", "c0", "c1"]
    assert _transaction_ids(db) == ["T1", "T2"]
    assert result.added == 2


def test_mutation_during_pagination_twice_raises(db, vault, connection):
    provider = MockPlaidClient()
    provider.fail_on_cursor[None] = UnknownProviderError(
        "mutation", provider_name="Plaid",
        error_code="TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION",
    )

    with pytest.raises(UnknownProviderError):
        SyncService(provider, vault).sync_connection(db, "item-1")

    assert len(provider.delta_calls) == 2


def test_deleted_connection_is_skipped(db, vault):
    create_connection(db, vault, status=ConnectionStatus.DELETED)
    provider = MockPlaidClient()

    result = SyncService(provider, vault).sync_connection(db, "item-1")

    assert result.skipped
    assert provider.delta_calls == []
    assert provider.access_tokens_seen == []
    assert db.query(Account).count() == 0


def test_revoked_connection_is_skipped(db, vault):
    create_connection(db, vault, status=ConnectionStatus.REVOKED)
    provider = MockPlaidClient()

    result = SyncService(provider, vault).sync_connection(db, "item-1")

    assert result.skipped
    assert provider.delta_calls == []


def test_unknown_item_raises(db, vault):
    with pytest.raises(ConnectionNotFoundError):
        SyncService(MockPlaidClient(), vault).sync_connection(db, "item-missing")
    assert not SyncService.lock_registry().is_locked("item-missing")


def test_successful_sync_clears_error_state(db, vault):
    connection = create_connection(db, vault, status=ConnectionStatus.ERROR)
    connection.last_error_code = "INSTITUTION_DOWN"
    db.commit()

    SyncService(MockPlaidClient(), vault).sync_connection(db, "item-1")

    connection = _refetch(db)
    assert connection.status == ConnectionStatus.ACTIVE
    assert connection.last_error_code is None


def test_decrypt_failure_marks_connection_error(db, vault):
    other_vault = CredentialVault.from_hex("ff" * 32)
    connection = create_connection(db, other_vault)
    provider = MockPlaidClient()

    with pytest.raises(CredentialDecryptionError):
        SyncService(provider, vault).sync_connection(db, connection.item_id)

    connection = _refetch(db)
    assert connection.status == ConnectionStatus.ERROR
    assert connection.last_error_code == "CREDENTIAL_DECRYPTION_FAILED"
    assert provider.access_tokens_seen == []


def test_concurrent_request_coalesces_into_follow_up_pass(db, vault, connection):
    """A request arriving mid-sync returns coalesced and triggers one more pass."""
    nested_results = []

    class ReentrantClient(MockPlaidClient):
        def get_transaction_delta(self, access_token, cursor, count=500):
            if not nested_results:
                nested_results.append(service.sync_connection(db, "item-1"))
            return super().get_transaction_delta(access_token, cursor, count)

    provider = ReentrantClient(pages={
        None: TransactionDelta(added=[make_txn("T1")], next_cursor="c1"),
        "c1": TransactionDelta(added=[make_txn("T2")], next_cursor="c2"),
    })
    service = SyncService(provider, vault)

    result = service.sync_connection(db, "item-1")

    assert nested_results[0].coalesced
    assert result.passes == 2
    assert result.added == 2
    assert _transaction_ids(db) == ["T1", "T2"]
    assert _refetch(db).transactions_cursor == "c2"
    assert not SyncService.lock_registry().is_locked("item-1")


def test_follow_up_passes_are_bounded(db, vault, connection):
    class AlwaysContendedClient(MockPlaidClient):
        def get_transaction_delta(self, access_token, cursor, count=500):
            service.sync_connection(db, "item-1")
            return super().get_transaction_delta(access_token, cursor, count)

    provider = AlwaysContendedClient()
    service = SyncService(provider, vault)

    result = service.sync_connection(db, "item-1")

    assert result.passes == SyncService.MAX_FOLLOW_UP_PASSES + 1
    assert not SyncService.lock_registry().is_locked("item-1")


def test_sync_user_connections_isolates_failures(db, vault):
    create_connection(db, vault, item_id="item-1")
    create_connection(db, CredentialVault.from_hex("ff" * 32), item_id="item-2")
    create_connection(db, vault, item_id="item-3", status=ConnectionStatus.DELETED)
    create_connection(db, vault, item_id="item-4", user_id="someone-else")

    results = SyncService(MockPlaidClient(), vault).sync_user_connections(db, USER_ID)

    by_item = {r.item_id: r for r in results}
    assert set(by_item) == {"item-1", "item-2"}
    assert by_item["item-1"].error is None
    assert by_item["item-2"].error is not None


def test_transaction_for_unknown_account_is_skipped(db, vault, connection):
    """Rows whose account the provider did not list are dropped, the rest land."""
    provider = MockPlaidClient(pages={
        None: TransactionDelta(
            added=[make_txn("T1"), make_txn("T2", account_id="acc_closed")],
            next_cursor="c1",
        ),
    })

    SyncService(provider, vault).sync_connection(db, "item-1")

    assert _transaction_ids(db) == ["T1"]
    assert _refetch(db).transactions_cursor == "c1"


def test_unexpected_error_becomes_internal_error(db, vault, connection):
    provider = MockPlaidClient()
    provider.accounts_error = RuntimeError("boom")

    with pytest.raises(InternalError) as exc_info:
        SyncService(provider, vault).sync_connection(db, "item-1")

    assert "boom" not in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert not SyncService.lock_registry().is_locked("item-1")
    assert _refetch(db).transactions_cursor is None


def test_sync_user_connections_reports_unexpected_errors(db, vault):
    create_connection(db, vault, item_id="item-1")
    provider = MockPlaidClient()
    provider.accounts_error = KeyError("balances")

    results = SyncService(provider, vault).sync_user_connections(db, USER_ID)

    assert len(results) == 1
    assert results[0].error == "Unexpected error syncing item-1"


def test_get_investments_degrades_when_unsupported(db, vault, connection):
    provider = MockPlaidClient()
    provider.investments = NO_INVESTMENTS

    holdings = SyncService(provider, vault).get_investments(db, connection)

    assert holdings.supported is False
    assert holdings.holdings == []


def test_get_investments_returns_holdings(db, vault, connection):
    provider = MockPlaidClient()
    provider.investments = SAMPLE_HOLDINGS

    holdings = SyncService(provider, vault).get_investments(db, connection)

    assert holdings.supported is True
    assert holdings.holdings[0].ticker == "AAPL"


def test_get_liabilities_propagates_transient_errors(db, vault, connection):
    provider = MockPlaidClient()
    provider.liabilities = PROVIDER_DOWN

    with pytest.raises(TransientProviderError):
        SyncService(provider, vault).get_liabilities(db, connection)


class TestConnectionLockRegistry:
    def test_second_acquire_requests_rerun(self):
        registry = ConnectionLockRegistry()
        assert registry.try_acquire("item-1") is True
        assert registry.try_acquire("item-1") is False
        assert registry.release_or_continue("item-1") is True
        assert registry.release_or_continue("item-1") is False
        assert not registry.is_locked("item-1")

    def test_keys_are_independent(self):
        registry = ConnectionLockRegistry()
        assert registry.try_acquire("item-1")
        assert registry.try_acquire("item-2")
        assert registry.is_locked("item-1")
        registry.release("item-1")
        assert not registry.is_locked("item-1")
        assert registry.is_locked("item-2")

    def test_release_ignores_rerun_when_not_allowed(self):
        registry = ConnectionLockRegistry()
        registry.try_acquire("item-1")
        registry.try_acquire("item-1")
        assert registry.release_or_continue("item-1", allow_continue=False) is False
        assert not registry.is_locked("item-1")

    def test_blocking_acquire_times_out(self):
        registry = ConnectionLockRegistry()
        registry.try_acquire("item-1")
        assert registry.acquire("item-1", timeout=0.01) is False
