"""Test fixtures and sample data."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from models import Connection, ConnectionStatus, DeletionRecord, Entitlement
from services.credential_vault import CredentialVault

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def create_connection(
    db: Session,
    vault: CredentialVault,
    item_id: str = "item-1",
    user_id: str = USER_ID,
    status: ConnectionStatus = ConnectionStatus.ACTIVE,
    access_token: str | None = None,
    institution_name: str | None = "First Platypus Bank",
    cursor: str | None = None,
) -> Connection:
    """Create and commit a connection with a vault-encrypted access token."""
    connection = Connection(
        item_id=item_id,
        user_id=user_id,
        access_token_encrypted=vault.encrypt(access_token or f"access-sandbox-{item_id}"),
        institution_id="ins_109508",
        institution_name=institution_name,
        status=status,
        transactions_cursor=cursor,
    )
    if status == ConnectionStatus.DELETED:
        connection.deleted_at = datetime.now(timezone.utc)
    db.add(connection)
    db.commit()
    return connection


def create_entitlement(
    db: Session,
    user_id: str = USER_ID,
    plan: str = "pro",
    status: str = "active",
    period_end: datetime | None = None,
) -> Entitlement:
    entitlement = Entitlement(user_id=user_id, plan=plan, status=status, period_end=period_end)
    db.add(entitlement)
    db.commit()
    return entitlement


def create_deletion_record(db: Session, days_ago: float, user_id: str = USER_ID) -> DeletionRecord:
    """Record a past deletion ``days_ago`` days before now."""
    record = DeletionRecord(
        user_id=user_id,
        connection_id="conn-old",
        item_id="item-old",
        institution_name="Old Bank",
        deleted_at=datetime.now(timezone.utc) - timedelta(days=days_ago),
    )
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def vault():
    """Credential vault with a fixed test key."""
    return CredentialVault.from_hex(TEST_ENCRYPTION_KEY)


@pytest.fixture
def connection(db, vault):
    """An active connection for USER_ID."""
    return create_connection(db, vault)


@pytest.fixture
def entitlement(db):
    """An active pro-plan entitlement for USER_ID."""
    return create_entitlement(db)
