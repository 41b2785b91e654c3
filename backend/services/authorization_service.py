"""Authorization gate - identity, entitlement and connection checks.

Every data-serving endpoint goes through :class:`AuthorizationGate` before
touching financial data. The checks run in a fixed order and stop at the
first failure, so the caller always learns the *first* thing the user has to
fix.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from sqlalchemy.orm import Session

from models import Entitlement
from models.entitlement import ACTIVE_ENTITLEMENT_STATUSES
from models.utils import as_utc, utc_now
from services.connection_service import ConnectionService
from services.exceptions import ConnectionLimitError

logger = logging.getLogger(__name__)

# Max linked institutions per plan; None means unlimited.
PLAN_LIMITS: dict[str, int | None] = {
    "basic": 3,
    "pro": 10,
    "enterprise": None,
}


@dataclass
class Identity:
    """An authenticated caller as asserted by the identity provider."""

    user_id: str
    scopes: frozenset[str] = field(default_factory=frozenset)
    expires_at: datetime | None = None

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) <= utc_now()


class AuthorizationOutcome(str, Enum):
    ALLOWED = "allowed"
    LOGIN_REQUIRED = "login_required"
    ENTITLEMENT_REQUIRED = "entitlement_required"
    CONNECTION_REQUIRED = "connection_required"


_REMEDIATION = {
    AuthorizationOutcome.LOGIN_REQUIRED: (
        "login", "Please sign in to access your financial data.",
    ),
    AuthorizationOutcome.ENTITLEMENT_REQUIRED: (
        "subscribe", "An active subscription is required to use {feature}.",
    ),
    AuthorizationOutcome.CONNECTION_REQUIRED: (
        "connect_bank", "Connect a bank account to use {feature}.",
    ),
}


@dataclass
class AuthorizationResult:
    outcome: AuthorizationOutcome
    feature: str
    user_id: str | None = None
    message: str | None = None
    remediation: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is AuthorizationOutcome.ALLOWED

    @classmethod
    def denied(cls, outcome: AuthorizationOutcome, feature: str, user_id: str | None = None):
        remediation, message = _REMEDIATION[outcome]
        return cls(
            outcome=outcome,
            feature=feature,
            user_id=user_id,
            message=message.format(feature=feature),
            remediation=remediation,
        )


class IdentityProvider(Protocol):
    def get_identity(self, headers) -> Identity | None:
        ...


class EntitlementProvider(Protocol):
    def has_active_entitlement(self, db: Session, user_id: str) -> bool:
        ...

    def get_plan(self, db: Session, user_id: str) -> str | None:
        ...


class HeaderIdentityProvider:
    """Reads the identity forwarded by the upstream auth proxy."""

    USER_HEADER = "X-User-Id"
    SCOPES_HEADER = "X-User-Scopes"
    EXPIRES_HEADER = "X-Session-Expires"

    def get_identity(self, headers) -> Identity | None:
        user_id = (headers.get(self.USER_HEADER) or "").strip()
        if not user_id:
            return None

        scopes = frozenset(
            s.strip() for s in (headers.get(self.SCOPES_HEADER) or "").split(",") if s.strip()
        )
        expires_at = None
        raw_expiry = headers.get(self.EXPIRES_HEADER)
        if raw_expiry:
            try:
                expires_at = datetime.fromisoformat(raw_expiry.replace("Z", "+00:00"))
            except ValueError:
                logger.warning("Ignoring malformed %s header: %r", self.EXPIRES_HEADER, raw_expiry)
                return None
        return Identity(user_id=user_id, scopes=scopes, expires_at=expires_at)


class LocalEntitlementProvider:
    """Entitlements from the local ``entitlements`` table."""

    def _current(self, db: Session, user_id: str) -> Entitlement | None:
        now = utc_now()
        rows = (
            db.query(Entitlement)
            .filter(
                Entitlement.user_id == user_id,
                Entitlement.status.in_(ACTIVE_ENTITLEMENT_STATUSES),
            )
            .order_by(Entitlement.updated_at.desc())
            .all()
        )
        for row in rows:
            if row.period_end is None or as_utc(row.period_end) > now:
                return row
        return None

    def has_active_entitlement(self, db: Session, user_id: str) -> bool:
        return self._current(db, user_id) is not None

    def get_plan(self, db: Session, user_id: str) -> str | None:
        entitlement = self._current(db, user_id)
        return entitlement.plan if entitlement else None


class AuthorizationGate:
    """Ordered checks: identity -> entitlement -> active connection."""

    def __init__(self, entitlements: EntitlementProvider):
        self._entitlements = entitlements

    def check(
        self,
        db: Session,
        identity: Identity | None,
        feature: str,
        require_entitlement: bool = True,
        require_connection: bool = True,
    ) -> AuthorizationResult:
        if identity is None or identity.is_expired:
            return AuthorizationResult.denied(AuthorizationOutcome.LOGIN_REQUIRED, feature)

        user_id = identity.user_id
        if require_entitlement and not self._entitlements.has_active_entitlement(db, user_id):
            logger.info("User %s lacks an entitlement for %s", user_id, feature)
            return AuthorizationResult.denied(
                AuthorizationOutcome.ENTITLEMENT_REQUIRED, feature, user_id,
            )

        # Deleted, revoked and errored connections do not satisfy this check
        if require_connection and not ConnectionService.has_active_connection(db, user_id):
            return AuthorizationResult.denied(
                AuthorizationOutcome.CONNECTION_REQUIRED, feature, user_id,
            )

        return AuthorizationResult(
            outcome=AuthorizationOutcome.ALLOWED, feature=feature, user_id=user_id,
        )

    def check_connection_limit(self, db: Session, user_id: str) -> None:
        """Ensure the user's plan has room for one more linked institution.

        Raises:
            ConnectionLimitError: No active plan, or the plan is full.
        """
        plan = self._entitlements.get_plan(db, user_id)
        if plan is None:
            raise ConnectionLimitError(None, None)
        max_connections = PLAN_LIMITS.get(plan, PLAN_LIMITS["basic"])
        if max_connections is None:
            return
        if ConnectionService.count_linked(db, user_id) >= max_connections:
            raise ConnectionLimitError(plan, max_connections)
