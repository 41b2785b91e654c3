"""DeletionRecord model - audit trail of disconnected institutions."""

from sqlalchemy import Column, DateTime, String

from database import Base
from models.utils import generate_uuid, utc_now


class DeletionRecord(Base):
    """One row per connection deletion; drives the deletion rate limit."""

    __tablename__ = "deletion_records"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    connection_id = Column(String(36), nullable=False)
    item_id = Column(String, nullable=False)
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)
    deleted_at = Column(DateTime, default=utc_now, index=True, nullable=False)
    reason = Column(String, nullable=False, default="user_initiated")
