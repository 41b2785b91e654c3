"""Transaction model - mirrored bank/credit transactions."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class Transaction(Base):
    """A transaction from the provider's delta-sync stream.

    ``transaction_id`` is the idempotency key: redelivery of the same id
    overwrites the mutable fields instead of inserting a second row.
    Plaid sign convention is kept as-is: positive amount = money out.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    transaction_id = Column(String, unique=True, index=True, nullable=False)
    account_id = Column(
        String, ForeignKey("accounts.account_id"), index=True, nullable=False
    )
    user_id = Column(String, nullable=False)
    amount = Column(Numeric(18, 4), nullable=False)
    iso_currency_code = Column(String(3), nullable=True)
    date = Column(Date, nullable=False)
    authorized_date = Column(Date, nullable=True)
    name = Column(String, nullable=True)
    merchant_name = Column(String, nullable=True)
    category_primary = Column(String, nullable=True)  # e.g. "FOOD_AND_DRINK"
    category_detailed = Column(String, nullable=True)
    payment_channel = Column(String, nullable=True)  # online | in store | other
    pending = Column(Boolean, default=False, nullable=False)
    pending_transaction_id = Column(String, nullable=True)
    raw_data = Column(JSON, nullable=True)  # Provider payload passthrough
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    account = relationship("Account", back_populates="transactions")
