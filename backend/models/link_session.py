"""LinkSession model - one Plaid Link flow started by a user."""

from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy import Enum as SAEnum

from database import Base
from models.utils import generate_uuid, utc_now


class LinkSessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class LinkSession(Base):
    """Ties a link token to the user who requested it.

    LINK webhooks carry only the link token, so this row is how a public
    token delivered by webhook finds its owner.
    """

    __tablename__ = "link_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    link_token = Column(String, unique=True, index=True, nullable=False)
    link_session_id = Column(String, nullable=True)
    status = Column(
        SAEnum(
            LinkSessionStatus,
            name="link_session_status",
            native_enum=False,
            values_callable=lambda enum: [member.value for member in enum],
            validate_strings=True,
        ),
        nullable=False,
        default=LinkSessionStatus.PENDING,
    )
    items_added = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utc_now)
    completed_at = Column(DateTime, nullable=True)
