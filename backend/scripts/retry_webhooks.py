#!/usr/bin/env python
"""Replay webhook events whose processing failed.

Meant to run from cron. Events are retried oldest first until they succeed
or reach WEBHOOK_MAX_RETRIES attempts.

Usage:
    python -m scripts.retry_webhooks
    python -m scripts.retry_webhooks --limit 200
    python -m scripts.retry_webhooks --list
"""

import argparse
import sys

from database import get_session_local
from integrations.plaid_client import PlaidClient
from logging_config import setup_logging
from services.credential_vault import get_credential_vault
from services.sync_service import SyncService
from services.webhook_service import WebhookService


def print_unprocessed(service: WebhookService, db, limit: int) -> None:
    events = service.get_unprocessed(db, limit=limit)
    if not events:
        print("No unprocessed webhook events.")
        return
    print(f"{len(events)} unprocessed event(s):")
    for event in events:
        print(
            f"  {event.received_at:%Y-%m-%d %H:%M:%S}  "
            f"{event.webhook_type}/{event.webhook_code}  item={event.item_id}  "
            f"retries={event.retry_count}  error={event.processing_error}"
        )


def main(argv: list[str] | None = None) -> None:
    """Entry point: parse args and replay (or list) failed events."""
    parser = argparse.ArgumentParser(description="Replay unprocessed Plaid webhooks.")
    parser.add_argument("--limit", type=int, default=50, help="Max events to process")
    parser.add_argument(
        "--list",
        action="store_true",
        help="Only list unprocessed events, do not retry",
    )
    args = parser.parse_args(argv)

    setup_logging()
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        service = WebhookService(SyncService(PlaidClient(), get_credential_vault()))
        if args.list:
            print_unprocessed(service, db, args.limit)
            return

        summary = service.retry_unprocessed(db, limit=args.limit)
        print(
            f"Retried {summary.attempted} event(s): "
            f"{summary.succeeded} succeeded, {summary.failed} failed"
        )
        if summary.failed:
            sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
