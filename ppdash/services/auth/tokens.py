from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any

import httpx
import jwt

from ppdash.core.config import Settings, get_settings
from ppdash.core.errors import TokenAcquisitionError
from ppdash.domain.models import TenantCredential
from ppdash.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    token: str
    scope: str
    token_type: str | None
    expires_in: int | None


def token_endpoint(authority_host: str, tenant_id: str) -> str:
    # Tenant-specific v2 token endpoint for the client-credentials grant.
    return f"{authority_host.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"


def describe_token(token: str) -> dict[str, Any]:
    # Peek at audience and roles for permission troubleshooting; never used for trust decisions.
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return {}
    roles = claims.get("roles") or []
    return {
        "aud": claims.get("aud"),
        "roles": [str(role) for role in roles] if isinstance(roles, list) else [str(roles)],
    }


class TokenProvider:
    """Acquire scoped bearer tokens with each tenant's own application credentials.

    Tokens are not cached: every aggregation cycle asks once per scope.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    async def acquire(self, credential: TenantCredential, scope: str) -> str:
        access_token = await self.acquire_token(credential, scope)
        return access_token.token

    async def acquire_token(self, credential: TenantCredential, scope: str) -> AccessToken:
        if not credential.tenant_id or not credential.client_id or not credential.client_secret:
            raise TokenAcquisitionError("Tenant credential is incomplete", scope=scope)

        url = token_endpoint(self._settings.authority_host, credential.tenant_id)
        payload = {
            "grant_type": "client_credentials",
            "client_id": credential.client_id,
            "client_secret": credential.client_secret,
            "scope": scope,
        }
        start = time.monotonic()
        try:
            response = await self._post(url, payload)
        except httpx.HTTPError as exc:
            self._record(start, success=False)
            logger.warning(
                "token_request_failed tenant_id=%s scope=%s error=%s",
                credential.tenant_id,
                scope,
                exc.__class__.__name__,
            )
            raise TokenAcquisitionError(
                f"Token request for {scope} failed: {exc.__class__.__name__}", scope=scope
            ) from exc

        if response.status_code >= 400:
            self._record(start, success=False)
            error_code = _error_code(response)
            logger.warning(
                "token_request_rejected tenant_id=%s scope=%s status=%s error=%s",
                credential.tenant_id,
                scope,
                response.status_code,
                error_code,
            )
            raise TokenAcquisitionError(
                f"Token request for {scope} rejected with status {response.status_code} ({error_code})",
                scope=scope,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            self._record(start, success=False)
            raise TokenAcquisitionError(f"Token response for {scope} is not JSON", scope=scope) from exc
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            self._record(start, success=False)
            raise TokenAcquisitionError(f"Token response for {scope} missing access_token", scope=scope)

        self._record(start, success=True)
        details = describe_token(token)
        logger.debug(
            "token_acquired tenant_id=%s scope=%s aud=%s roles=%s",
            credential.tenant_id,
            scope,
            details.get("aud"),
            ",".join(details.get("roles", [])),
        )
        expires_in = body.get("expires_in")
        return AccessToken(
            token=token,
            scope=scope,
            token_type=body.get("token_type"),
            expires_in=int(expires_in) if isinstance(expires_in, (int, str)) and str(expires_in).isdigit() else None,
        )

    async def _post(self, url: str, payload: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, data=payload)
        timeout = self._settings.ext_call_timeout_ms / 1000
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, data=payload)

    def _record(self, start: float, *, success: bool) -> None:
        record_external_call(
            integration="identity.token",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )


def _error_code(response: httpx.Response) -> str:
    # Identity platform errors carry an OAuth error code; keep the description out of logs.
    try:
        body = response.json()
    except ValueError:
        return "unknown"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return "unknown"
