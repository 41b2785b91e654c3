"""SQLAlchemy ORM models."""

from .account import Account
from .audit_log import AuditEventType, AuditLogEntry
from .connection import Connection, ConnectionStatus
from .deletion_record import DeletionRecord
from .entitlement import Entitlement
from .link_session import LinkSession, LinkSessionStatus
from .transaction import Transaction
from .utils import generate_uuid
from .webhook_event import WebhookEvent

__all__ = ["Account", "AuditEventType", "AuditLogEntry", "Connection", "ConnectionStatus", "DeletionRecord", "Entitlement", "LinkSession", "LinkSessionStatus", "Transaction", "WebhookEvent", "generate_uuid"]
