"""Tests for AuditService."""

from datetime import datetime, timedelta

from models import AuditEventType, AuditLogEntry
from services.audit_service import AuditService
from tests.fixtures import OTHER_USER_ID, USER_ID


def test_record_flushes_entry(db):
    entry = AuditService.record(
        db,
        AuditEventType.ITEM_ERROR,
        USER_ID,
        event_data={"item_id": "item-1", "error_code": "ITEM_LOGIN_REQUIRED"},
        success=False,
        error_message="login required",
    )

    stored = db.query(AuditLogEntry).filter_by(id=entry.id).one()
    assert stored.event_type == "item_error"
    assert stored.success is False
    assert stored.event_data["error_code"] == "ITEM_LOGIN_REQUIRED"
    assert stored.error_message == "login required"


def test_list_for_user_newest_first_and_scoped(db):
    base = datetime(2026, 1, 1, 12, 0, 0)
    for offset, event in enumerate(
        [AuditEventType.ITEM_LINKED, AuditEventType.ITEM_ERROR, AuditEventType.ITEM_DELETED]
    ):
        entry = AuditService.record(db, event, USER_ID)
        entry.created_at = base + timedelta(minutes=offset)
    AuditService.record(db, AuditEventType.ITEM_LINKED, OTHER_USER_ID)
    db.commit()

    entries = AuditService.list_for_user(db, USER_ID)

    assert [e.event_type for e in entries] == ["item_deleted", "item_error", "item_linked"]
    assert AuditService.list_for_user(db, USER_ID, limit=1)[0].event_type == "item_deleted"
