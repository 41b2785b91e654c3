"""Connection lifecycle - rate-limited deletion and bulk teardown."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from config import settings
from integrations.provider_protocol import FinancialDataProvider
from models import AuditEventType, Connection, DeletionRecord
from models.utils import as_utc, utc_now
from services.audit_service import AuditService
from services.connection_service import ConnectionService
from services.credential_vault import CredentialVault
from services.exceptions import (
    ConnectionAlreadyDeletedError,
    DeletionInProgressError,
    DeletionRateLimitedError,
    LedgerlinkError,
    SyncInProgressError,
)
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

# How long a deletion waits for an in-flight sync of the same connection.
DELETION_LOCK_TIMEOUT_SECONDS = 30.0


@dataclass
class DeletionInfo:
    can_delete: bool
    last_deletion_at: datetime | None = None
    days_until_next: int = 0


@dataclass
class BulkDeletionResult:
    processed: int = 0
    failures: list[str] = field(default_factory=list)


class ConnectionLifecycleService:
    """Deletes connections: provider-side removal, soft delete, deletion record.

    User-initiated deletions are limited to one per rolling
    ``DELETION_RATE_LIMIT_DAYS`` window. Bulk deletion (account closure) is
    not rate limited.
    """

    def __init__(
        self,
        provider: FinancialDataProvider,
        vault: CredentialVault,
        rate_limit_days: int | None = None,
    ):
        self._provider = provider
        self._vault = vault
        self._rate_limit_days = (
            settings.DELETION_RATE_LIMIT_DAYS if rate_limit_days is None else rate_limit_days
        )

    # ------------------------------------------------------------------
    # Rate limit
    # ------------------------------------------------------------------

    def _latest_deletion(self, db: Session, user_id: str) -> DeletionRecord | None:
        return (
            db.query(DeletionRecord)
            .filter(DeletionRecord.user_id == user_id)
            .order_by(DeletionRecord.deleted_at.desc())
            .first()
        )

    def get_deletion_info(self, db: Session, user_id: str) -> DeletionInfo:
        """Whether the user may delete now, and if not, for how many more days."""
        latest = self._latest_deletion(db, user_id)
        if latest is None:
            return DeletionInfo(can_delete=True)

        last_deletion_at = as_utc(latest.deleted_at)
        next_allowed = last_deletion_at + timedelta(days=self._rate_limit_days)
        remaining = next_allowed - utc_now()
        if remaining <= timedelta(0):
            return DeletionInfo(can_delete=True, last_deletion_at=last_deletion_at)

        days = math.ceil(remaining.total_seconds() / 86400)
        return DeletionInfo(
            can_delete=False,
            last_deletion_at=last_deletion_at,
            days_until_next=days,
        )

    def can_delete(self, db: Session, user_id: str) -> bool:
        return self.get_deletion_info(db, user_id).can_delete

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_connection(self, db: Session, user_id: str, connection_id: str) -> Connection:
        """Delete one of the user's connections.

        Raises:
            DeletionRateLimitedError: A deletion happened within the window.
            ConnectionNotFoundError: Unknown id or owned by another user.
            ConnectionAlreadyDeletedError: Already deleted.
            SyncInProgressError: A sync of this connection did not finish in
                time.
            DeletionInProgressError: Another deletion by the same user did
                not finish in time.
        """
        # Rate limit check and DeletionRecord insert must not interleave
        # across two deletions by the same user.
        locks = SyncService.lock_registry()
        user_key = f"user:{user_id}"
        if not locks.acquire(user_key, timeout=DELETION_LOCK_TIMEOUT_SECONDS):
            raise DeletionInProgressError(user_id)
        try:
            info = self.get_deletion_info(db, user_id)
            if not info.can_delete:
                raise DeletionRateLimitedError(info.days_until_next)

            connection = ConnectionService.get_for_user(db, user_id, connection_id)
            if connection.is_deleted:
                raise ConnectionAlreadyDeletedError(connection_id)

            self._delete_locked(db, connection, reason="user_initiated")
            db.commit()
        finally:
            locks.release(user_key)
        logger.info(
            "User %s deleted connection %s (%s)",
            user_id, connection.item_id, connection.display_name,
        )
        return connection

    def delete_all_connections(
        self, db: Session, user_id: str, reason: str = "account_closure"
    ) -> BulkDeletionResult:
        """Delete every non-deleted connection of a user, ignoring the rate limit.

        Failures never stop the teardown: provider-side errors (connection
        still deleted locally) and connections that could not be deleted at
        all, e.g. a sync holding the lock too long, are collected as
        ``"<institution>: <message>"`` strings.
        """
        result = BulkDeletionResult()
        for connection in ConnectionService.list_for_user(db, user_id):
            name = connection.display_name
            try:
                failure = self._delete_locked(db, connection, reason=reason)
                db.commit()
            except LedgerlinkError as e:
                db.rollback()
                logger.warning("Bulk deletion skipped %s: %s", connection.item_id, e)
                failure = str(e)
            result.processed += 1
            if failure:
                result.failures.append(f"{name}: {failure}")

        logger.info(
            "Bulk deletion for user %s: %d processed, %d failures",
            user_id, result.processed, len(result.failures),
        )
        return result

    def _delete_locked(self, db: Session, connection: Connection, reason: str) -> str | None:
        """Delete under the connection's sync lock; return the provider failure, if any."""
        locks = SyncService.lock_registry()
        if not locks.acquire(connection.item_id, timeout=DELETION_LOCK_TIMEOUT_SECONDS):
            raise SyncInProgressError(connection.item_id)
        try:
            db.refresh(connection)
            if connection.is_deleted:
                return None
            failure = self._remove_at_provider(connection)
            ConnectionService.soft_delete(db, connection)
            db.add(DeletionRecord(
                user_id=connection.user_id,
                connection_id=connection.id,
                item_id=connection.item_id,
                institution_id=connection.institution_id,
                institution_name=connection.institution_name,
                reason=reason,
            ))
            AuditService.record(
                db,
                AuditEventType.ITEM_DELETED,
                connection.user_id,
                {
                    "item_id": connection.item_id,
                    "institution_name": connection.institution_name,
                    "reason": reason,
                    "provider_removed": failure is None,
                },
            )
            db.flush()
            return failure
        finally:
            locks.release(connection.item_id)

    def _remove_at_provider(self, connection: Connection) -> str | None:
        """Best-effort provider-side removal. Local deletion proceeds regardless."""
        try:
            access_token = self._vault.decrypt(connection.access_token_encrypted)
            self._provider.remove_item(access_token)
        except Exception as e:
            logger.warning(
                "Provider removal failed for %s, deleting locally anyway: %s",
                connection.item_id, e,
            )
            return str(e) or e.__class__.__name__
        return None

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @staticmethod
    def list_deletions(db: Session, user_id: str) -> list[DeletionRecord]:
        return (
            db.query(DeletionRecord)
            .filter(DeletionRecord.user_id == user_id)
            .order_by(DeletionRecord.deleted_at.desc())
            .all()
        )

    @staticmethod
    def deletion_count(db: Session, user_id: str, days: int = 30) -> int:
        """Number of deletions in the last ``days`` days."""
        since = utc_now() - timedelta(days=days)
        return (
            db.query(DeletionRecord)
            .filter(DeletionRecord.user_id == user_id, DeletionRecord.deleted_at >= since)
            .count()
        )
