"""Connection model - one linked institution (a Plaid Item) per row."""

from enum import Enum

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class ConnectionStatus(str, Enum):
    """Lifecycle state of a linked connection.

    ``deleted`` is terminal: the row stays for audit but is invisible to
    sync and to every data-serving query.
    """

    PENDING = "pending"
    ACTIVE = "active"
    ERROR = "error"
    REVOKED = "revoked"
    DELETED = "deleted"

    @property
    def is_syncable(self) -> bool:
        """Whether the Sync Engine may pull data for a connection in this state."""
        match self:
            case ConnectionStatus.PENDING | ConnectionStatus.ACTIVE | ConnectionStatus.ERROR:
                return True
            case ConnectionStatus.REVOKED | ConnectionStatus.DELETED:
                return False


class Connection(Base):
    """A financial institution linked through Plaid Link.

    The provider access token is only ever stored as credential-vault
    ciphertext. Rows are soft-deleted (``status=deleted``, ``deleted_at``)
    and never physically removed.
    """

    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    item_id = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    access_token_encrypted = Column(Text, nullable=False)
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)
    status = Column(
        SAEnum(
            ConnectionStatus,
            name="connection_status",
            native_enum=False,
            values_callable=lambda enum: [member.value for member in enum],
            validate_strings=True,
        ),
        nullable=False,
        default=ConnectionStatus.PENDING,
    )
    transactions_cursor = Column(Text, nullable=True)
    consent_expires_at = Column(DateTime, nullable=True)
    last_error_code = Column(String, nullable=True)
    last_error_message = Column(Text, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    accounts = relationship("Account", back_populates="connection")

    @property
    def is_deleted(self) -> bool:
        return self.status == ConnectionStatus.DELETED

    @property
    def display_name(self) -> str:
        """Institution name for messages, falling back to the item id."""
        return self.institution_name or self.item_id
