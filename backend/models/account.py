"""Account model - represents a bank, credit, loan or investment account."""

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class Account(Base):
    """An account belonging to a linked Connection.

    ``account_id`` is the provider's identifier and the upsert key. Balance
    fields are overwritten on every sync (last sync wins).
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String, unique=True, index=True, nullable=False)
    connection_id = Column(
        String(36), ForeignKey("connections.id"), index=True, nullable=False
    )
    user_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    official_name = Column(String, nullable=True)
    mask = Column(String, nullable=True)  # Last 2-4 digits of the account number
    type = Column(String, nullable=True)  # depository | credit | loan | investment | other
    subtype = Column(String, nullable=True)
    current_balance = Column(Numeric(18, 4), nullable=True)
    available_balance = Column(Numeric(18, 4), nullable=True)
    credit_limit = Column(Numeric(18, 4), nullable=True)
    iso_currency_code = Column(String(3), nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    connection = relationship("Connection", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")
