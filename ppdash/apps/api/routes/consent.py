from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import RedirectResponse

from ppdash.core.config import get_settings
from ppdash.core.errors import ConsentDeclinedError, ConsentError
from ppdash.persistence.credential_store import get_credential_store
from ppdash.services.audit import get_request_context
from ppdash.services.onboarding import (
    ConsentCallback,
    build_admin_consent_url,
    build_completion_redirect,
    process_consent_callback,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consent", tags=["consent"])


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/start", name="consent_start")
def consent_start(
    customer_name: str | None = Query(default=None, max_length=200),
    tenant_hint: str | None = Query(default=None, max_length=100),
) -> RedirectResponse:
    # Send an administrator to the admin-consent prompt; the name rides along as state.
    return _redirect(build_admin_consent_url(state=customer_name, tenant_hint=tenant_hint))


@router.get("/callback", name="consent_callback")
def consent_callback(
    request: Request,
    tenant: str | None = Query(default=None),
    state: str | None = Query(default=None),
    admin_consent: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
) -> RedirectResponse:
    # Every outcome is reported to the completion page through redirect parameters.
    settings = get_settings()
    completion_url = settings.onboarding_complete_url
    callback = ConsentCallback(
        tenant_id=tenant,
        state=state,
        admin_consent=admin_consent,
        error=error,
        error_description=error_description,
    )
    request_id = get_request_context(request)["request_id"]
    try:
        # Store loading sits inside the guard so a broken registry still redirects.
        store = get_credential_store()
        outcome = process_consent_callback(store, callback, settings=settings, request_id=request_id)
    except ConsentDeclinedError:
        return _redirect(build_completion_redirect(completion_url, success=False, error=ConsentDeclinedError.code))
    except ConsentError as exc:
        logger.info("consent_callback_error tenant_id=%s error=%s", tenant, exc.code)
        return _redirect(
            build_completion_redirect(completion_url, success=False, error=exc.code, description=exc.description)
        )
    except Exception as exc:  # noqa: BLE001 - reported to the completion page instead of a 500
        logger.exception("consent_callback_processing_failed tenant_id=%s", tenant)
        return _redirect(
            build_completion_redirect(
                completion_url,
                success=False,
                error="processing_error",
                description=str(exc),
            )
        )
    logger.info(
        "consent_callback_completed tenant_id=%s customer_id=%s created=%s",
        outcome.credential.tenant_id,
        outcome.credential.customer_id,
        outcome.created,
    )
    return _redirect(build_completion_redirect(completion_url, success=True))
