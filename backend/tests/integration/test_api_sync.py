"""Integration tests for the sync endpoints."""

from integrations.exceptions import AuthRevokedError
from integrations.provider_protocol import TransactionDelta
from models import ConnectionStatus, Transaction
from services.credential_vault import CredentialVault
from tests.fixtures import OTHER_USER_ID, create_connection
from tests.fixtures.mocks import PROVIDER_DOWN, make_txn


class TestSyncItem:
    def test_sync_item(self, client, auth_headers, db, connection, mock_provider):
        mock_provider.pages = {
            None: TransactionDelta(added=[make_txn("T1"), make_txn("T2")], next_cursor="c1"),
        }

        response = client.post("/api/plaid/items/item-1/sync", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["item_id"] == "item-1"
        assert data["added"] == 2
        assert data["accounts"] == 2
        assert data["coalesced"] is False
        assert db.query(Transaction).count() == 2

    def test_requires_identity(self, client, connection):
        assert client.post("/api/plaid/items/item-1/sync").status_code == 401

    def test_unknown_item(self, client, auth_headers):
        response = client.post("/api/plaid/items/item-missing/sync", headers=auth_headers)

        assert response.status_code == 404

    def test_other_users_item(self, client, auth_headers, db, vault):
        create_connection(db, vault, user_id=OTHER_USER_ID)

        response = client.post("/api/plaid/items/item-1/sync", headers=auth_headers)

        assert response.status_code == 404

    def test_deleted_item(self, client, auth_headers, db, vault):
        create_connection(db, vault, status=ConnectionStatus.DELETED)

        response = client.post("/api/plaid/items/item-1/sync", headers=auth_headers)

        assert response.status_code == 404

    def test_transient_provider_error(self, client, auth_headers, db, connection, mock_provider):
        mock_provider.fail_on_cursor[None] = PROVIDER_DOWN

        response = client.post("/api/plaid/items/item-1/sync", headers=auth_headers)

        assert response.status_code == 503
        db.refresh(connection)
        assert connection.transactions_cursor is None

    def test_auth_revoked(self, client, auth_headers, connection, mock_provider):
        mock_provider.accounts_error = AuthRevokedError(
            "login required", provider_name="Plaid", error_code="ITEM_LOGIN_REQUIRED",
        )

        response = client.post("/api/plaid/items/item-1/sync", headers=auth_headers)

        assert response.status_code == 502
        assert "reconnect" in response.json()["detail"]

    def test_undecryptable_credential(self, client, auth_headers, db):
        create_connection(db, CredentialVault.from_hex("ff" * 32))

        response = client.post("/api/plaid/items/item-1/sync", headers=auth_headers)

        assert response.status_code == 409


class TestSyncAll:
    def test_sync_all_reports_per_connection(self, client, auth_headers, db, vault):
        create_connection(db, vault, item_id="item-1")
        create_connection(db, CredentialVault.from_hex("ff" * 32), item_id="item-2")

        response = client.post("/api/sync", headers=auth_headers)

        assert response.status_code == 200
        results = {r["item_id"]: r for r in response.json()}
        assert results["item-1"]["error"] is None
        assert results["item-2"]["error"] is not None

    def test_sync_all_no_connections(self, client, auth_headers):
        response = client.post("/api/sync", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == []
