from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ppdash.apps.api.errors import (
    credential_store_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from ppdash.apps.api.response import API_VERSION
from ppdash.apps.api.routes.consent import router as consent_router
from ppdash.apps.api.routes.customers import router as customers_router
from ppdash.apps.api.routes.health import router as health_router
from ppdash.apps.api.routes.ops import router as ops_router
from ppdash.core.errors import CredentialStoreError
from ppdash.core.logging import configure_logging


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Power Platform Tenant Dashboard API", version=API_VERSION)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - start) * 1000.0,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(CredentialStoreError)
    async def _credential_store_exception_handler(request: Request, exc: CredentialStoreError):
        return await credential_store_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Consent start/callback for tenant onboarding.
    app.include_router(consent_router, prefix=f"/{API_VERSION}")
    # Customer administration and per-tenant dashboards.
    app.include_router(customers_router, prefix=f"/{API_VERSION}")
    app.include_router(ops_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
