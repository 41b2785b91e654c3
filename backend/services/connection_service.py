"""Connection store - durable records of linked institutions.

All status transitions for a Connection go through this service so the
"deleted is terminal" rule lives in one place.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from models import Account, AuditEventType, Connection, ConnectionStatus, LinkSession
from models.utils import utc_now
from services.audit_service import AuditService
from services.credential_vault import CredentialVault
from services.exceptions import ConnectionNotFoundError

logger = logging.getLogger(__name__)


class ConnectionService:
    """Queries and state transitions for Connection rows."""

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def save_exchanged_item(
        db: Session,
        vault: CredentialVault,
        user_id: str,
        item_id: str,
        access_token: str,
        institution_id: str | None = None,
        institution_name: str | None = None,
    ) -> Connection:
        """Create or refresh a connection after a successful token exchange.

        Re-linking an existing item (update mode) replaces the credential and
        brings the connection back to ``active``; the sync cursor is kept so
        the next sync continues the same delta stream. A previously deleted
        item is never resurrected, Plaid issues a new item id on re-link.

        Raises:
            ConnectionNotFoundError: The item belongs to another user or was
                deleted.
        """
        encrypted = vault.encrypt(access_token)
        existing = db.query(Connection).filter(Connection.item_id == item_id).first()

        if existing:
            if existing.user_id != user_id or existing.is_deleted:
                raise ConnectionNotFoundError(item_id)
            existing.access_token_encrypted = encrypted
            existing.status = ConnectionStatus.ACTIVE
            existing.last_error_code = None
            existing.last_error_message = None
            if institution_id:
                existing.institution_id = institution_id
            if institution_name:
                existing.institution_name = institution_name
            db.flush()
            logger.info("Updated connection for item %s", item_id)
            return existing

        connection = Connection(
            item_id=item_id,
            user_id=user_id,
            access_token_encrypted=encrypted,
            institution_id=institution_id,
            institution_name=institution_name,
            status=ConnectionStatus.ACTIVE,
        )
        db.add(connection)
        db.flush()
        AuditService.record(
            db,
            AuditEventType.ITEM_LINKED,
            user_id,
            {"item_id": item_id, "institution_name": institution_name},
        )
        logger.info("Created connection for item %s (%s)", item_id, institution_name)
        return connection

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def get_by_item_id(db: Session, item_id: str) -> Connection | None:
        """Return the connection for a provider item id, deleted or not."""
        return db.query(Connection).filter(Connection.item_id == item_id).first()

    @staticmethod
    def get_for_user(db: Session, user_id: str, connection_id: str) -> Connection:
        """Return a user's connection by primary key.

        Raises:
            ConnectionNotFoundError: Missing or owned by someone else.
        """
        connection = (
            db.query(Connection)
            .filter(Connection.id == connection_id, Connection.user_id == user_id)
            .first()
        )
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return connection

    @staticmethod
    def find_user_by_item_id(db: Session, item_id: str | None) -> str | None:
        """Resolve the owning user of an item (None when unknown)."""
        if not item_id:
            return None
        row = db.query(Connection.user_id).filter(Connection.item_id == item_id).first()
        return row[0] if row else None

    @staticmethod
    def list_for_user(db: Session, user_id: str, include_deleted: bool = False) -> list[Connection]:
        """List a user's connections, newest first."""
        query = db.query(Connection).filter(Connection.user_id == user_id)
        if not include_deleted:
            query = query.filter(Connection.status != ConnectionStatus.DELETED)
        return query.order_by(Connection.created_at.desc()).all()

    @staticmethod
    def list_active_for_user(db: Session, user_id: str) -> list[Connection]:
        """Connections whose data may be served: status ``active`` only."""
        return (
            db.query(Connection)
            .filter(
                Connection.user_id == user_id,
                Connection.status == ConnectionStatus.ACTIVE,
            )
            .order_by(Connection.created_at)
            .all()
        )

    @staticmethod
    def has_active_connection(db: Session, user_id: str) -> bool:
        return (
            db.query(Connection.id)
            .filter(
                Connection.user_id == user_id,
                Connection.status == ConnectionStatus.ACTIVE,
            )
            .first()
            is not None
        )

    @staticmethod
    def count_linked(db: Session, user_id: str) -> int:
        """Number of non-deleted connections (counts toward plan limits)."""
        return (
            db.query(Connection)
            .filter(
                Connection.user_id == user_id,
                Connection.status != ConnectionStatus.DELETED,
            )
            .count()
        )

    @staticmethod
    def list_accounts(db: Session, connection: Connection) -> list[Account]:
        return (
            db.query(Account)
            .filter(Account.connection_id == connection.id)
            .order_by(Account.name)
            .all()
        )

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    @staticmethod
    def mark_error(
        db: Session,
        connection: Connection,
        error_code: str | None,
        error_message: str | None = None,
    ) -> bool:
        """Flag a connection as needing attention.

        Returns False (and changes nothing) for deleted connections and for
        a connection already in ``error`` with the same code.
        """
        if connection.is_deleted:
            logger.info("Ignoring error for deleted connection %s", connection.item_id)
            return False
        if connection.status == ConnectionStatus.ERROR and connection.last_error_code == error_code:
            return False
        connection.status = ConnectionStatus.ERROR
        connection.last_error_code = error_code
        connection.last_error_message = error_message
        db.flush()
        return True

    @staticmethod
    def mark_revoked(db: Session, connection: Connection) -> bool:
        """The user withdrew consent at the institution."""
        if connection.is_deleted:
            logger.info("Ignoring revocation for deleted connection %s", connection.item_id)
            return False
        if connection.status == ConnectionStatus.REVOKED:
            return False
        connection.status = ConnectionStatus.REVOKED
        db.flush()
        return True

    @staticmethod
    def mark_active(db: Session, connection: Connection) -> bool:
        """Clear an error state (login repaired or a sync succeeded)."""
        if connection.status not in (ConnectionStatus.PENDING, ConnectionStatus.ERROR):
            return False
        connection.status = ConnectionStatus.ACTIVE
        connection.last_error_code = None
        connection.last_error_message = None
        db.flush()
        return True

    @staticmethod
    def set_consent_expiry(db: Session, connection: Connection, expires_at: datetime | None) -> None:
        if connection.is_deleted or expires_at is None:
            return
        connection.consent_expires_at = expires_at
        db.flush()

    @staticmethod
    def advance_cursor(db: Session, connection: Connection, cursor: str | None) -> None:
        """Store the delta-stream cursor after the batch it covers committed."""
        if connection.is_deleted:
            # Cursor of a deleted connection is frozen
            return
        connection.transactions_cursor = cursor
        connection.last_synced_at = utc_now()
        db.flush()

    @staticmethod
    def soft_delete(db: Session, connection: Connection) -> None:
        connection.status = ConnectionStatus.DELETED
        connection.deleted_at = utc_now()
        db.flush()

    # ------------------------------------------------------------------
    # Link sessions
    # ------------------------------------------------------------------

    @staticmethod
    def record_link_session(db: Session, user_id: str, link_token: str) -> LinkSession:
        """Remember who requested a link token so LINK webhooks can find them."""
        session = db.query(LinkSession).filter(LinkSession.link_token == link_token).first()
        if session is None:
            session = LinkSession(user_id=user_id, link_token=link_token)
            db.add(session)
            db.flush()
        return session

    @staticmethod
    def get_link_session(db: Session, link_token: str | None) -> LinkSession | None:
        if not link_token:
            return None
        return db.query(LinkSession).filter(LinkSession.link_token == link_token).first()
