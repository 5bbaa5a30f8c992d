from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from ppdash.core.config import get_settings
from ppdash.persistence.credential_store import CredentialStore, get_credential_store
from ppdash.services.aggregator import DashboardAggregator


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_admin(authorization: str | None = Header(default=None)) -> None:
    # Guard customer administration with a static bearer key when one is configured.
    expected = get_settings().admin_api_key
    if not expected:
        return
    if not authorization:
        raise _auth_error("Missing bearer admin key")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _auth_error("Invalid authorization header")
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise _auth_error("Invalid admin key")


def get_store() -> CredentialStore:
    return get_credential_store()


def get_aggregator() -> DashboardAggregator:
    # Built per request so settings changes apply without a restart.
    return DashboardAggregator()
