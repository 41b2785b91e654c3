"""API route handlers."""
from . import financial_data, helpers, plaid, sync, webhooks

__all__ = ["financial_data", "helpers", "plaid", "sync", "webhooks"]
