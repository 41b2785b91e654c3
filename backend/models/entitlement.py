"""Entitlement model - local mirror of the billing service's subscriptions."""

from sqlalchemy import Column, DateTime, String

from database import Base
from models.utils import generate_uuid, utc_now

ACTIVE_ENTITLEMENT_STATUSES = frozenset({"active", "trialing"})


class Entitlement(Base):
    """A user's plan as last reported by billing. Read-only for this service."""

    __tablename__ = "entitlements"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    plan = Column(String, nullable=False)  # basic | pro | enterprise
    status = Column(String, nullable=False, default="incomplete")
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
