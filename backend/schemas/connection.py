"""Pydantic schemas for linked connections and their lifecycle."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from models import ConnectionStatus


class AccountResponse(BaseModel):
    """An account belonging to a connection."""

    account_id: str
    name: str
    official_name: Optional[str] = None
    mask: Optional[str] = None
    type: Optional[str] = None
    subtype: Optional[str] = None
    current_balance: Optional[Decimal] = None
    available_balance: Optional[Decimal] = None
    credit_limit: Optional[Decimal] = None
    iso_currency_code: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ConnectionResponse(BaseModel):
    """A linked institution. Never exposes the credential."""

    id: str
    item_id: str
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None
    status: ConnectionStatus
    last_error_code: Optional[str] = None
    last_error_message: Optional[str] = None
    consent_expires_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    accounts: list[AccountResponse] = []

    model_config = ConfigDict(from_attributes=True)


class DeletionInfoResponse(BaseModel):
    """Whether the user may delete a connection right now."""

    can_delete: bool
    last_deletion_at: Optional[datetime] = None
    days_until_next: int = 0


class DeleteConnectionResponse(BaseModel):
    status: str = "ok"
    connection_id: str
    item_id: str


class SyncResultResponse(BaseModel):
    """Counts from one connection sync."""

    item_id: str
    added: int = 0
    modified: int = 0
    removed: int = 0
    accounts: int = 0
    skipped: bool = False
    coalesced: bool = False
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
