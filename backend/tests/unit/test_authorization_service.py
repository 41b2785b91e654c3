"""Unit tests for the authorization gate."""

from datetime import datetime, timedelta, timezone

import pytest

from models import ConnectionStatus
from services.authorization_service import (
    AuthorizationGate,
    AuthorizationOutcome,
    HeaderIdentityProvider,
    Identity,
    LocalEntitlementProvider,
)
from services.exceptions import ConnectionLimitError
from tests.fixtures import USER_ID, create_connection, create_entitlement

FEATURE = "spending insights"


@pytest.fixture
def gate():
    return AuthorizationGate(LocalEntitlementProvider())


@pytest.fixture
def identity():
    return Identity(user_id=USER_ID)


class TestGateOrdering:
    def test_no_identity_requires_login(self, db, gate):
        result = gate.check(db, None, FEATURE)

        assert result.outcome is AuthorizationOutcome.LOGIN_REQUIRED
        assert result.remediation == "login"
        assert not result.allowed

    def test_expired_identity_requires_login(self, db, gate, entitlement, connection):
        expired = Identity(
            user_id=USER_ID,
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )

        assert gate.check(db, expired, FEATURE).outcome is AuthorizationOutcome.LOGIN_REQUIRED

    def test_entitlement_checked_before_connection(self, db, gate, identity):
        result = gate.check(db, identity, FEATURE)

        assert result.outcome is AuthorizationOutcome.ENTITLEMENT_REQUIRED
        assert result.remediation == "subscribe"
        assert FEATURE in result.message

    def test_connection_required(self, db, gate, identity, entitlement):
        result = gate.check(db, identity, FEATURE)

        assert result.outcome is AuthorizationOutcome.CONNECTION_REQUIRED
        assert result.remediation == "connect_bank"

    def test_allowed(self, db, gate, identity, entitlement, connection):
        result = gate.check(db, identity, FEATURE)

        assert result.allowed
        assert result.user_id == USER_ID

    @pytest.mark.parametrize(
        "status",
        [ConnectionStatus.DELETED, ConnectionStatus.REVOKED, ConnectionStatus.ERROR],
    )
    def test_inactive_connection_does_not_count(self, db, vault, gate, identity, entitlement, status):
        create_connection(db, vault, status=status)

        assert gate.check(db, identity, FEATURE).outcome is AuthorizationOutcome.CONNECTION_REQUIRED

    def test_checks_can_be_relaxed(self, db, gate, identity):
        result = gate.check(
            db, identity, "linking", require_entitlement=False, require_connection=False,
        )
        assert result.allowed


class TestEntitlements:
    def test_trialing_counts(self, db, gate, identity, connection):
        create_entitlement(db, status="trialing")
        assert gate.check(db, identity, FEATURE).allowed

    def test_canceled_does_not_count(self, db, gate, identity, connection):
        create_entitlement(db, status="canceled")
        assert gate.check(db, identity, FEATURE).outcome is AuthorizationOutcome.ENTITLEMENT_REQUIRED

    def test_lapsed_period_does_not_count(self, db, gate, identity, connection):
        create_entitlement(db, period_end=datetime.now(timezone.utc) - timedelta(days=1))
        assert gate.check(db, identity, FEATURE).outcome is AuthorizationOutcome.ENTITLEMENT_REQUIRED

    def test_future_period_counts(self, db, gate, identity, connection):
        create_entitlement(db, period_end=datetime.now(timezone.utc) + timedelta(days=10))
        assert gate.check(db, identity, FEATURE).allowed


class TestConnectionLimit:
    def test_no_plan(self, db, gate):
        with pytest.raises(ConnectionLimitError, match="active plan"):
            gate.check_connection_limit(db, USER_ID)

    def test_basic_plan_full(self, db, vault, gate):
        create_entitlement(db, plan="basic")
        for i in range(3):
            create_connection(db, vault, item_id=f"item-{i}")

        with pytest.raises(ConnectionLimitError) as exc_info:
            gate.check_connection_limit(db, USER_ID)
        assert exc_info.value.max_connections == 3

    def test_deleted_connections_free_a_slot(self, db, vault, gate):
        create_entitlement(db, plan="basic")
        for i in range(2):
            create_connection(db, vault, item_id=f"item-{i}")
        create_connection(db, vault, item_id="item-gone", status=ConnectionStatus.DELETED)

        gate.check_connection_limit(db, USER_ID)

    def test_enterprise_unlimited(self, db, vault, gate):
        create_entitlement(db, plan="enterprise")
        for i in range(12):
            create_connection(db, vault, item_id=f"item-{i}")

        gate.check_connection_limit(db, USER_ID)


class TestHeaderIdentityProvider:
    def test_reads_user_and_scopes(self):
        identity = HeaderIdentityProvider().get_identity(
            {"X-User-Id": " user-1 ", "X-User-Scopes": "read, admin,"},
        )
        assert identity.user_id == "user-1"
        assert identity.scopes == frozenset({"read", "admin"})
        assert identity.expires_at is None

    def test_missing_user(self):
        assert HeaderIdentityProvider().get_identity({}) is None

    def test_expiry_parsed(self):
        identity = HeaderIdentityProvider().get_identity(
            {"X-User-Id": "user-1", "X-Session-Expires": "2030-01-01T00:00:00Z"},
        )
        assert identity.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert not identity.is_expired

    def test_malformed_expiry_rejected(self):
        identity = HeaderIdentityProvider().get_identity(
            {"X-User-Id": "user-1", "X-Session-Expires": "tomorrow"},
        )
        assert identity is None
