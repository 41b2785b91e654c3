"""AuditLogEntry model - security-relevant connection events."""

from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text

from database import Base
from models.utils import generate_uuid, utc_now


class AuditEventType(str, Enum):
    """Kinds of audited connection events."""

    ITEM_LINKED = "item_linked"
    ITEM_ERROR = "item_error"
    ITEM_DISCONNECTED = "item_disconnected"
    ITEM_DELETED = "item_deleted"


class AuditLogEntry(Base):
    """An append-only audit record."""

    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=True)
    event_type = Column(String, index=True, nullable=False)
    event_data = Column(JSON, nullable=True)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, index=True)
