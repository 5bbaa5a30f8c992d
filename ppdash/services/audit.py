from __future__ import annotations

import logging
from typing import Any

from starlette.requests import Request


logger = logging.getLogger("ppdash.audit")

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "credential", "api_key", "apikey"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


def record_event(
    *,
    event_type: str,
    outcome: str,
    tenant_id: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
) -> None:
    # Emit audit events to a dedicated logger; metadata is scrubbed first.
    sanitized = sanitize_metadata(metadata or {})
    logger.info(
        "audit_event type=%s outcome=%s tenant_id=%s resource_id=%s request_id=%s error_code=%s metadata=%s",
        event_type,
        outcome,
        tenant_id,
        resource_id,
        request_id,
        error_code,
        sanitized,
    )
