"""Plaid webhook ingress and replay endpoints."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from api.helpers import get_sync_service, require_user
from database import get_db
from schemas import WebhookAckResponse, WebhookRetryResponse
from services.authorization_service import Identity
from services.exceptions import WebhookSignatureError
from services.sync_service import SyncService
from services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["webhooks"])

SIGNATURE_HEADER = "X-Webhook-Signature"
ADMIN_SCOPE = "admin"


def get_webhook_service(
    sync_service: SyncService = Depends(get_sync_service),
) -> WebhookService:
    """Dependency for injecting the webhook service (overridable in tests)."""
    return WebhookService(sync_service)


@router.post("/webhook", response_model=WebhookAckResponse)
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    service: WebhookService = Depends(get_webhook_service),
):
    """Receive a Plaid webhook.

    Returns 200 for every authentic, well-formed payload whatever the
    processing outcome, so Plaid does not redeliver events we already
    stored; failed events are replayed by ``/webhooks/retry``.

    Raises:
        HTTPException:
            - 401 Unauthorized: Signature missing or invalid
            - 400 Bad Request: Body is not a JSON object
    """
    body = await request.body()
    try:
        service.verify_signature(body, request.headers.get(SIGNATURE_HEADER))
    except WebhookSignatureError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    try:
        await run_in_threadpool(service.process, db, payload)
    except Exception:
        # Acknowledged anyway; the payload is in the log for manual replay
        logger.error("Failed to store webhook payload %s", payload, exc_info=True)
    return WebhookAckResponse()


@router.post("/webhooks/retry", response_model=WebhookRetryResponse)
def retry_webhooks(
    limit: int = 50,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    service: WebhookService = Depends(get_webhook_service),
):
    """Replay unprocessed webhook events (admin scope)."""
    if ADMIN_SCOPE not in identity.scopes:
        raise HTTPException(status_code=403, detail="Admin scope required")
    summary = service.retry_unprocessed(db, limit=limit)
    return WebhookRetryResponse(
        attempted=summary.attempted,
        succeeded=summary.succeeded,
        failed=summary.failed,
    )
