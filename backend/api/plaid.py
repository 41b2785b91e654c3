"""Plaid Link API endpoints.

Provides the server-side endpoints for the Plaid Link browser-based
authentication flow: creating link tokens, exchanging public tokens,
and managing the caller's linked institutions (connections).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.helpers import (
    get_authorization_gate,
    get_provider_client,
    get_sync_service,
    get_vault,
    provider_http_error,
    require_user,
)
from database import get_db
from integrations.exceptions import ProviderError
from integrations.provider_protocol import FinancialDataProvider
from schemas import ConnectionResponse, DeleteConnectionResponse, DeletionInfoResponse
from services.authorization_service import AuthorizationGate, Identity
from services.connection_lifecycle_service import ConnectionLifecycleService
from services.connection_service import ConnectionService
from services.credential_vault import CredentialVault
from services.exceptions import (
    ConnectionAlreadyDeletedError,
    ConnectionLimitError,
    ConnectionNotFoundError,
    DeletionInProgressError,
    DeletionRateLimitedError,
    LedgerlinkError,
    SyncInProgressError,
)
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["plaid"])


def get_lifecycle_service(
    provider: FinancialDataProvider = Depends(get_provider_client),
    vault: CredentialVault = Depends(get_vault),
) -> ConnectionLifecycleService:
    """Dependency for injecting the lifecycle service (overridable in tests)."""
    return ConnectionLifecycleService(provider, vault)


# ------------------------------------------------------------------
# Request / Response schemas
# ------------------------------------------------------------------


class LinkTokenRequest(BaseModel):
    redirect_uri: str | None = None


class LinkTokenResponse(BaseModel):
    link_token: str


class ExchangeTokenRequest(BaseModel):
    public_token: str
    institution_id: str | None = None
    institution_name: str | None = None


class ExchangeTokenResponse(BaseModel):
    connection_id: str
    item_id: str
    institution_name: str | None = None
    initial_sync_error: str | None = None


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@router.post("/link-token", response_model=LinkTokenResponse)
def create_link_token(
    body: LinkTokenRequest | None = None,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    client: FinancialDataProvider = Depends(get_provider_client),
):
    """Create a Plaid Link token for the frontend.

    The token is recorded as a link session so LINK webhooks for it can be
    attributed to the caller.
    """
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")

    try:
        link_token = client.create_link_token(
            identity.user_id, redirect_uri=body.redirect_uri if body else None,
        )
    except ProviderError as e:
        # Surface actionable hint for the most common error
        if e.error_code == "INVALID_API_KEYS":
            hint = (
                "Plaid rejected the credentials. Check that PLAID_ENVIRONMENT "
                "matches your keys (sandbox or production). "
                "Each environment has different secrets."
            )
            logger.error("Plaid INVALID_API_KEYS: %s", hint)
            raise HTTPException(status_code=400, detail=hint)
        logger.error("Failed to create Plaid link token: %s", e)
        raise provider_http_error(e)

    ConnectionService.record_link_session(db, identity.user_id, link_token)
    db.commit()
    return LinkTokenResponse(link_token=link_token)


@router.post("/exchange-token", response_model=ExchangeTokenResponse)
def exchange_token(
    body: ExchangeTokenRequest,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    client: FinancialDataProvider = Depends(get_provider_client),
    vault: CredentialVault = Depends(get_vault),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Exchange a Plaid Link public_token, store the connection and run its first sync.

    A failed first sync does not fail the link: the connection is stored and
    the next webhook or manual sync picks it up.
    """
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")

    try:
        gate.check_connection_limit(db, identity.user_id)
    except ConnectionLimitError as e:
        raise HTTPException(status_code=403, detail=str(e))

    try:
        result = client.exchange_public_token(body.public_token)
    except ProviderError as e:
        logger.error("Failed to exchange Plaid token: %s", e)
        raise provider_http_error(e)

    try:
        connection = ConnectionService.save_exchanged_item(
            db,
            vault,
            user_id=identity.user_id,
            item_id=result["item_id"],
            access_token=result["access_token"],
            institution_id=body.institution_id,
            institution_name=body.institution_name,
        )
        db.commit()
    except ConnectionNotFoundError:
        db.rollback()
        raise HTTPException(status_code=409, detail="This institution link cannot be reused")

    initial_sync_error = None
    try:
        sync_service.sync_connection(db, connection.item_id)
    except (ProviderError, LedgerlinkError) as e:
        logger.warning("Initial sync failed for %s: %s", connection.item_id, e)
        initial_sync_error = str(e)

    return ExchangeTokenResponse(
        connection_id=connection.id,
        item_id=connection.item_id,
        institution_name=connection.institution_name,
        initial_sync_error=initial_sync_error,
    )


@router.get("/items", response_model=list[ConnectionResponse])
def list_items(
    include_deleted: bool = False,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    """List the caller's linked institutions with their accounts."""
    return ConnectionService.list_for_user(db, identity.user_id, include_deleted=include_deleted)


@router.get("/deletion-info", response_model=DeletionInfoResponse)
def get_deletion_info(
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    lifecycle: ConnectionLifecycleService = Depends(get_lifecycle_service),
):
    """Whether the caller may delete a connection now."""
    info = lifecycle.get_deletion_info(db, identity.user_id)
    return DeletionInfoResponse(
        can_delete=info.can_delete,
        last_deletion_at=info.last_deletion_at,
        days_until_next=info.days_until_next,
    )


@router.delete("/items/{connection_id}", response_model=DeleteConnectionResponse)
def delete_item(
    connection_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    lifecycle: ConnectionLifecycleService = Depends(get_lifecycle_service),
):
    """Disconnect an institution (revokes at Plaid, then soft-deletes locally)."""
    try:
        connection = lifecycle.delete_connection(db, identity.user_id, connection_id)
    except DeletionRateLimitedError as e:
        raise HTTPException(
            status_code=429,
            detail={"message": str(e), "days_until_next": e.days_until_next},
        )
    except ConnectionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Connection not found: {connection_id}")
    except ConnectionAlreadyDeletedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SyncInProgressError:
        raise HTTPException(
            status_code=409,
            detail="A sync for this connection is running. Please try again shortly.",
        )
    except DeletionInProgressError:
        raise HTTPException(
            status_code=409,
            detail="Another deletion is still in progress. Please try again shortly.",
        )
    return DeleteConnectionResponse(connection_id=connection.id, item_id=connection.item_id)
