"""Audit trail for security-relevant connection events."""

import logging

from sqlalchemy.orm import Session

from models.audit_log import AuditEventType, AuditLogEntry

logger = logging.getLogger(__name__)


class AuditService:
    """Append-only writer/reader for ``audit_log``."""

    @staticmethod
    def record(
        db: Session,
        event_type: AuditEventType,
        user_id: str | None,
        event_data: dict | None = None,
        success: bool = True,
        error_message: str | None = None,
    ) -> AuditLogEntry:
        """Add an audit entry to the session (flushed, not committed)."""
        entry = AuditLogEntry(
            user_id=user_id,
            event_type=event_type.value,
            event_data=event_data,
            success=success,
            error_message=error_message,
        )
        db.add(entry)
        db.flush()
        logger.info(
            "Audit: %s user=%s success=%s", event_type.value, user_id, success,
        )
        return entry

    @staticmethod
    def list_for_user(db: Session, user_id: str, limit: int = 100) -> list[AuditLogEntry]:
        """Most recent audit entries for a user."""
        return (
            db.query(AuditLogEntry)
            .filter(AuditLogEntry.user_id == user_id)
            .order_by(AuditLogEntry.created_at.desc())
            .limit(limit)
            .all()
        )
