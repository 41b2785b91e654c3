"""Shared API helpers for route handlers.

Dependency providers used across several routers (provider client, vault,
services, caller identity) and the translation of service errors into
HTTP responses. Tests swap any provider out via ``app.dependency_overrides``.
"""

import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from database import get_db
from integrations.exceptions import AuthRevokedError, ProviderError, TransientProviderError
from integrations.plaid_client import PlaidClient
from integrations.provider_protocol import FinancialDataProvider
from services.authorization_service import (
    AuthorizationGate,
    AuthorizationOutcome,
    AuthorizationResult,
    HeaderIdentityProvider,
    Identity,
    LocalEntitlementProvider,
)
from services.credential_vault import CredentialVault, get_credential_vault
from services.exceptions import CredentialError
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

_DENIED_STATUS = {
    AuthorizationOutcome.LOGIN_REQUIRED: 401,
    AuthorizationOutcome.ENTITLEMENT_REQUIRED: 402,
    AuthorizationOutcome.CONNECTION_REQUIRED: 409,
}


# ------------------------------------------------------------------
# Dependency providers
# ------------------------------------------------------------------


def get_provider_client() -> FinancialDataProvider:
    """Dependency for injecting the Plaid client (overridable in tests)."""
    return PlaidClient()


def get_vault() -> CredentialVault:
    return get_credential_vault()


def get_sync_service(
    provider: FinancialDataProvider = Depends(get_provider_client),
    vault: CredentialVault = Depends(get_vault),
) -> SyncService:
    return SyncService(provider, vault)


def get_authorization_gate() -> AuthorizationGate:
    return AuthorizationGate(LocalEntitlementProvider())


def get_identity(request: Request) -> Identity | None:
    """Caller identity forwarded by the auth proxy, or None."""
    return HeaderIdentityProvider().get_identity(request.headers)


# ------------------------------------------------------------------
# Authorization
# ------------------------------------------------------------------


def raise_for_denied(result: AuthorizationResult) -> None:
    """Convert a failed gate result into a structured HTTP error."""
    if result.allowed:
        return
    raise HTTPException(
        status_code=_DENIED_STATUS[result.outcome],
        detail={
            "outcome": result.outcome.value,
            "feature": result.feature,
            "message": result.message,
            "remediation": result.remediation,
        },
    )


def require_user(identity: Identity | None = Depends(get_identity)) -> Identity:
    """Identity check only (link flow and connection management)."""
    if identity is None or identity.is_expired:
        raise_for_denied(
            AuthorizationResult.denied(AuthorizationOutcome.LOGIN_REQUIRED, "this feature")
        )
    return identity


def require_feature(feature: str):
    """Dependency factory running the full identity/entitlement/connection gate."""

    def dependency(
        identity: Identity | None = Depends(get_identity),
        gate: AuthorizationGate = Depends(get_authorization_gate),
        db: Session = Depends(get_db),
    ) -> Identity:
        raise_for_denied(gate.check(db, identity, feature))
        return identity

    return dependency


# ------------------------------------------------------------------
# Error translation
# ------------------------------------------------------------------


def provider_http_error(e: ProviderError) -> HTTPException:
    """Map a provider failure to a 502/503 without leaking provider payloads."""
    if isinstance(e, TransientProviderError):
        logger.warning("Transient provider error: %s", e)
        return HTTPException(
            status_code=503,
            detail="The bank data provider is temporarily unavailable. Please retry shortly.",
        )
    if isinstance(e, AuthRevokedError):
        logger.warning("Provider rejected credentials: %s", e)
        return HTTPException(
            status_code=502,
            detail="The institution requires you to reconnect this account.",
        )
    logger.warning("Provider error: %s", e)
    return HTTPException(
        status_code=502,
        detail="A provider error occurred. Check the logs for details.",
    )


def credential_http_error(e: CredentialError) -> HTTPException:
    logger.error("Stored credential unusable: %s", e)
    return HTTPException(
        status_code=409,
        detail="This connection's credentials are no longer valid. Please reconnect it.",
    )
