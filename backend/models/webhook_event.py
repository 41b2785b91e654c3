"""WebhookEvent model - append-only log of provider webhooks."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from database import Base
from models.utils import generate_uuid, utc_now


class WebhookEvent(Base):
    """A webhook as received from the provider.

    Written once on receipt (before dispatch) and afterwards only the
    processing bookkeeping columns change. Rows are never deleted; the
    table doubles as the audit and replay log.
    """

    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    webhook_type = Column(String, nullable=False)
    webhook_code = Column(String, nullable=False)
    item_id = Column(String, index=True, nullable=True)
    user_id = Column(String, index=True, nullable=True)
    error_code = Column(String, nullable=True)
    payload = Column(JSON, nullable=False)
    received_at = Column(DateTime, default=utc_now, index=True, nullable=False)
    processed = Column(Boolean, default=False, index=True, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    processing_error = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
