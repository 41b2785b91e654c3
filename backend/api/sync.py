"""Sync API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import credential_http_error, get_sync_service, provider_http_error, require_user
from database import get_db
from integrations.exceptions import ProviderError
from schemas import SyncResultResponse
from services.authorization_service import Identity
from services.connection_service import ConnectionService
from services.exceptions import CredentialError, InternalError
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


@router.post("/api/plaid/items/{item_id}/sync", response_model=SyncResultResponse)
def sync_item(
    item_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Pull the latest accounts and transaction deltas for one connection.

    A request that arrives while the same connection is already syncing
    returns immediately with ``coalesced=true``; the running sync performs a
    follow-up pass on its behalf.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown item or owned by another user
            - 409 Conflict: Stored credential unusable, re-link required
            - 502/503: Provider failure (cursor and data left unchanged)
            - 500 Internal Server Error: Unexpected sync error
    """
    connection = ConnectionService.get_by_item_id(db, item_id)
    if connection is None or connection.user_id != identity.user_id or connection.is_deleted:
        raise HTTPException(status_code=404, detail=f"Connection not found: {item_id}")

    try:
        return sync_service.sync_connection(db, item_id)
    except CredentialError as e:
        raise credential_http_error(e)
    except ProviderError as e:
        raise provider_http_error(e)
    except InternalError:
        # Cause already logged by the sync service; never expose it
        raise HTTPException(
            status_code=500,
            detail="An unexpected error occurred during sync.",
        )


@router.post("/api/sync", response_model=list[SyncResultResponse])
def sync_all(
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Sync every connection of the caller.

    Always returns 200; a connection that failed carries its error message
    in the result instead of failing the whole request.
    """
    try:
        return sync_service.sync_user_connections(db, identity.user_id)
    except Exception:
        logger.error("Unexpected error during sync for user %s", identity.user_id, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="An unexpected error occurred during sync.",
        )
