from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ppdash.apps.api.response import error_response
from ppdash.core.errors import CredentialStoreError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    401: "AUTH_UNAUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Route-raised details are {code, message, ...}; Starlette raises plain strings.
    fallback = _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")
    if isinstance(detail, dict):
        code = str(detail.get("code") or fallback)
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return fallback, detail, None
    return fallback, "Request failed", None


async def http_exception_handler(request: Request, exc: HTTPException | StarletteHTTPException) -> JSONResponse:
    # Normalize HTTP exceptions raised by routes and by Starlette into the error envelope.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Surface validation errors with structured details for client parsing.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]},
    )
    return JSONResponse(content=payload, status_code=422)


async def credential_store_exception_handler(request: Request, exc: CredentialStoreError) -> JSONResponse:
    # A malformed registry file is an operator problem; do not echo file contents.
    logger.error("credential_store_unavailable error=%s", exc)
    payload = error_response(
        request=request,
        code="CREDENTIAL_STORE_UNAVAILABLE",
        message="Credential store is unavailable",
    )
    return JSONResponse(content=payload, status_code=503)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("unhandled_request_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
