"""Webhook processor - verifies, logs and dispatches provider webhooks."""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ProviderError
from models import AuditEventType, Connection, LinkSession, LinkSessionStatus, WebhookEvent
from models.utils import utc_now
from services.audit_service import AuditService
from services.connection_service import ConnectionService
from services.exceptions import LedgerlinkError, WebhookSignatureError
from services.sync_service import SyncService

logger = logging.getLogger(__name__)


class WebhookKind(str, Enum):
    """Known ``(webhook_type, webhook_code)`` pairs."""

    ITEM_ERROR = "ITEM/ERROR"
    ITEM_PENDING_EXPIRATION = "ITEM/PENDING_EXPIRATION"
    ITEM_USER_PERMISSION_REVOKED = "ITEM/USER_PERMISSION_REVOKED"
    ITEM_LOGIN_REPAIRED = "ITEM/LOGIN_REPAIRED"
    ITEM_WEBHOOK_UPDATE_ACKNOWLEDGED = "ITEM/WEBHOOK_UPDATE_ACKNOWLEDGED"
    TRANSACTIONS_SYNC_UPDATES_AVAILABLE = "TRANSACTIONS/SYNC_UPDATES_AVAILABLE"
    TRANSACTIONS_INITIAL_UPDATE = "TRANSACTIONS/INITIAL_UPDATE"
    TRANSACTIONS_HISTORICAL_UPDATE = "TRANSACTIONS/HISTORICAL_UPDATE"
    TRANSACTIONS_DEFAULT_UPDATE = "TRANSACTIONS/DEFAULT_UPDATE"
    TRANSACTIONS_REMOVED = "TRANSACTIONS/TRANSACTIONS_REMOVED"
    AUTH_DEFAULT_UPDATE = "AUTH/DEFAULT_UPDATE"
    LIABILITIES_DEFAULT_UPDATE = "LIABILITIES/DEFAULT_UPDATE"
    HOLDINGS_DEFAULT_UPDATE = "HOLDINGS/DEFAULT_UPDATE"
    LINK_ITEM_ADD_RESULT = "LINK/ITEM_ADD_RESULT"
    LINK_SESSION_FINISHED = "LINK/SESSION_FINISHED"
    LINK_HANDOFF = "LINK/HANDOFF"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def from_pair(cls, webhook_type: str | None, webhook_code: str | None) -> "WebhookKind":
        try:
            return cls(f"{webhook_type}/{webhook_code}")
        except ValueError:
            return cls.UNRECOGNIZED


_INFORMATIONAL_KINDS = frozenset({
    WebhookKind.ITEM_WEBHOOK_UPDATE_ACKNOWLEDGED,
    WebhookKind.TRANSACTIONS_INITIAL_UPDATE,
    WebhookKind.TRANSACTIONS_HISTORICAL_UPDATE,
    WebhookKind.TRANSACTIONS_DEFAULT_UPDATE,
    WebhookKind.TRANSACTIONS_REMOVED,
    WebhookKind.AUTH_DEFAULT_UPDATE,
    WebhookKind.LIABILITIES_DEFAULT_UPDATE,
    WebhookKind.HOLDINGS_DEFAULT_UPDATE,
})

# Keyed by link token rather than item id
_LINK_KINDS = frozenset({
    WebhookKind.LINK_ITEM_ADD_RESULT,
    WebhookKind.LINK_SESSION_FINISHED,
    WebhookKind.LINK_HANDOFF,
})


@dataclass
class RetrySummary:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a raw webhook body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable consent expiration time: %r", value)
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class WebhookService:
    """Processes Plaid webhooks with at-least-once delivery semantics.

    Every payload is written to ``webhook_events`` before dispatch. A
    dispatch failure is recorded on the event (``processing_error``,
    ``retry_count``) and never propagates to the HTTP layer, so the provider
    always gets an acknowledgement and the event stays available for
    :meth:`retry_unprocessed`.
    """

    def __init__(self, sync_service: SyncService, webhook_secret: str | None = None):
        self._sync_service = sync_service
        self._secret = settings.PLAID_WEBHOOK_SECRET if webhook_secret is None else webhook_secret

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        """Check the body's HMAC signature.

        Without a configured secret every payload is accepted (local
        development) and a warning is logged.

        Raises:
            WebhookSignatureError: Secret configured and the signature is
                missing or does not match.
        """
        if not self._secret:
            logger.warning("PLAID_WEBHOOK_SECRET not set; accepting webhook without verification")
            return True
        if not signature:
            raise WebhookSignatureError("Missing webhook signature")
        expected = compute_signature(body, self._secret).encode("ascii")
        # compare_digest rejects non-ASCII str, so compare bytes
        received = signature.strip().lower().encode("utf-8", "replace")
        if not hmac.compare_digest(expected, received):
            raise WebhookSignatureError("Invalid webhook signature")
        return True

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process(self, db: Session, payload: dict) -> WebhookEvent:
        """Persist a webhook and dispatch it.

        Returns the stored event; ``event.processed`` tells whether dispatch
        succeeded.
        """
        webhook_type = payload.get("webhook_type") or "UNKNOWN"
        webhook_code = payload.get("webhook_code") or "UNKNOWN"
        item_id = payload.get("item_id")
        error = payload.get("error") or {}

        event = WebhookEvent(
            webhook_type=webhook_type,
            webhook_code=webhook_code,
            item_id=item_id,
            user_id=ConnectionService.find_user_by_item_id(db, item_id),
            error_code=error.get("error_code") if isinstance(error, dict) else None,
            payload=payload,
        )
        db.add(event)
        db.commit()
        logger.info("Received webhook %s/%s for item %s", webhook_type, webhook_code, item_id)

        self._handle(db, event)
        return event

    def _handle(self, db: Session, event: WebhookEvent) -> bool:
        try:
            self._dispatch(db, event)
        except Exception as e:
            db.rollback()
            event.processing_error = str(e) or e.__class__.__name__
            event.retry_count = (event.retry_count or 0) + 1
            db.commit()
            logger.error(
                "Failed to process webhook %s/%s for item %s (attempt %d): %s",
                event.webhook_type, event.webhook_code, event.item_id,
                event.retry_count, e,
            )
            return False

        event.processed = True
        event.processed_at = utc_now()
        event.processing_error = None
        db.commit()
        return True

    def _dispatch(self, db: Session, event: WebhookEvent) -> None:
        kind = WebhookKind.from_pair(event.webhook_type, event.webhook_code)
        payload = event.payload or {}

        if kind in _INFORMATIONAL_KINDS:
            logger.info("Informational webhook %s for item %s", kind.value, event.item_id)
            return
        if kind is WebhookKind.UNRECOGNIZED:
            logger.warning(
                "Unhandled webhook %s/%s for item %s",
                event.webhook_type, event.webhook_code, event.item_id,
            )
            return
        if kind in _LINK_KINDS:
            self._handle_link(db, event, kind, payload)
            return

        connection = ConnectionService.get_by_item_id(db, event.item_id) if event.item_id else None
        if connection is None:
            logger.warning("Webhook %s for unknown item %s", kind.value, event.item_id)
            return
        if connection.is_deleted:
            logger.info("Ignoring webhook %s for deleted item %s", kind.value, event.item_id)
            return

        match kind:
            case WebhookKind.ITEM_ERROR:
                self._handle_item_error(db, connection, payload)
            case WebhookKind.ITEM_PENDING_EXPIRATION:
                expires_at = _parse_timestamp(payload.get("consent_expiration_time"))
                ConnectionService.set_consent_expiry(db, connection, expires_at)
                logger.info(
                    "Consent for %s expires at %s; user should re-authenticate",
                    connection.display_name, expires_at,
                )
            case WebhookKind.ITEM_USER_PERMISSION_REVOKED:
                if not ConnectionService.mark_revoked(db, connection):
                    logger.info("Access to %s already revoked", connection.display_name)
                    return
                AuditService.record(
                    db,
                    AuditEventType.ITEM_DISCONNECTED,
                    connection.user_id,
                    {"item_id": connection.item_id, "source": "webhook"},
                )
                logger.info("User revoked access to %s", connection.display_name)
            case WebhookKind.ITEM_LOGIN_REPAIRED:
                if ConnectionService.mark_active(db, connection):
                    logger.info("Login repaired for %s", connection.display_name)
            case WebhookKind.TRANSACTIONS_SYNC_UPDATES_AVAILABLE:
                result = self._sync_service.sync_connection(db, connection.item_id)
                if result.coalesced:
                    logger.info("Update for %s folded into a running sync", connection.item_id)
            case _:
                logger.warning("No handler for webhook %s", kind.value)

    def _handle_item_error(self, db: Session, connection: Connection, payload: dict) -> None:
        error = payload.get("error") or {}
        error_code = error.get("error_code")
        error_message = error.get("error_message") or error.get("display_message")
        if not ConnectionService.mark_error(db, connection, error_code, error_message):
            logger.info("Item %s already in error %s", connection.item_id, error_code)
            return
        AuditService.record(
            db,
            AuditEventType.ITEM_ERROR,
            connection.user_id,
            {"item_id": connection.item_id, "error_code": error_code},
            success=False,
            error_message=error_message,
        )
        logger.warning(
            "Item error for %s: %s (%s)", connection.display_name, error_code, error_message,
        )

    def _handle_link(self, db: Session, event: WebhookEvent, kind: WebhookKind, payload: dict) -> None:
        """Link flow events: items added through Link without the frontend exchanging them."""
        session = ConnectionService.get_link_session(db, payload.get("link_token"))
        if session is None:
            logger.warning("Webhook %s for unknown link token", kind.value)
            return
        event.user_id = session.user_id
        if payload.get("link_session_id"):
            session.link_session_id = payload["link_session_id"]

        match kind:
            case WebhookKind.LINK_ITEM_ADD_RESULT:
                public_token = payload.get("public_token")
                if not public_token:
                    logger.warning("ITEM_ADD_RESULT without public token for session %s", session.id)
                    return
                institution = payload.get("institution") or {}
                connection = self._exchange_and_save(
                    db, session, public_token,
                    institution_id=institution.get("institution_id"),
                    institution_name=institution.get("name"),
                )
                event.item_id = connection.item_id
                session.status = LinkSessionStatus.ACTIVE
            case WebhookKind.LINK_SESSION_FINISHED:
                succeeded = payload.get("status") == "SUCCESS"
                if succeeded:
                    for public_token in payload.get("public_tokens") or []:
                        try:
                            self._exchange_and_save(db, session, public_token, only_new=True)
                        except (ProviderError, LedgerlinkError) as e:
                            logger.error("Failed to save item from link session %s: %s", session.id, e)
                session.status = LinkSessionStatus.COMPLETED if succeeded else LinkSessionStatus.FAILED
                session.completed_at = utc_now()
                logger.info(
                    "Link session %s finished with status %s (%d items)",
                    session.id, payload.get("status"), session.items_added,
                )
            case WebhookKind.LINK_HANDOFF:
                session.status = LinkSessionStatus.ACTIVE
        db.flush()

    def _exchange_and_save(
        self,
        db: Session,
        session: LinkSession,
        public_token: str,
        institution_id: str | None = None,
        institution_name: str | None = None,
        only_new: bool = False,
    ) -> Connection:
        result = self._sync_service.provider.exchange_public_token(public_token)
        existing = ConnectionService.get_by_item_id(db, result["item_id"])
        if only_new and existing is not None:
            return existing
        connection = ConnectionService.save_exchanged_item(
            db,
            self._sync_service.vault,
            user_id=session.user_id,
            item_id=result["item_id"],
            access_token=result["access_token"],
            institution_id=institution_id,
            institution_name=institution_name,
        )
        if existing is None:
            session.items_added += 1
        logger.info("Link session %s added item %s", session.id, connection.item_id)
        return connection
    # ------------------------------------------------------------------
    # Replay and history
    # ------------------------------------------------------------------

    def retry_unprocessed(self, db: Session, limit: int = 50) -> RetrySummary:
        """Reprocess failed events, oldest first, within the retry budget."""
        events = (
            db.query(WebhookEvent)
            .filter(
                WebhookEvent.processed.is_(False),
                WebhookEvent.retry_count < settings.WEBHOOK_MAX_RETRIES,
            )
            .order_by(WebhookEvent.received_at)
            .limit(limit)
            .all()
        )
        summary = RetrySummary()
        for event in events:
            summary.attempted += 1
            if self._handle(db, event):
                summary.succeeded += 1
            else:
                summary.failed += 1
        if summary.attempted:
            logger.info(
                "Webhook retry: %d attempted, %d succeeded, %d failed",
                summary.attempted, summary.succeeded, summary.failed,
            )
        return summary

    @staticmethod
    def get_unprocessed(db: Session, limit: int = 100) -> list[WebhookEvent]:
        return (
            db.query(WebhookEvent)
            .filter(WebhookEvent.processed.is_(False))
            .order_by(WebhookEvent.received_at)
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_item_history(db: Session, item_id: str, limit: int = 50) -> list[WebhookEvent]:
        """Most recent webhooks for one item."""
        return (
            db.query(WebhookEvent)
            .filter(WebhookEvent.item_id == item_id)
            .order_by(WebhookEvent.received_at.desc())
            .limit(limit)
            .all()
        )
