"""Admin-consent onboarding.

The consent callback is the only path that creates or activates a tenant
credential; it never deletes or deactivates one.

    Unregistered --consent--> Active   (new record, multi-tenant app credentials)
    Pending      --consent--> Active
    Active       --consent--> Active   (idempotent)
    any          --error / declined--> unchanged
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from urllib.parse import urlencode

from ppdash.core.config import Settings, get_settings
from ppdash.core.errors import ConsentDeclinedError, ConsentError
from ppdash.domain.models import ONBOARDING_ACTIVE, TenantCredential
from ppdash.persistence.credential_store import CredentialStore
from ppdash.services.audit import record_event


logger = logging.getLogger(__name__)

ADMIN_CONSENT_GRANTED = "True"


@dataclass(frozen=True)
class ConsentCallback:
    tenant_id: str | None
    state: str | None
    admin_consent: str | None
    error: str | None = None
    error_description: str | None = None


@dataclass(frozen=True)
class OnboardingResult:
    credential: TenantCredential
    created: bool


def process_consent_callback(
    store: CredentialStore,
    callback: ConsentCallback,
    *,
    settings: Settings | None = None,
    request_id: str | None = None,
) -> OnboardingResult:
    # Apply one consent callback to the store; failures leave the store untouched.
    settings = settings or get_settings()
    if callback.error:
        record_event(
            event_type="onboarding.consent.error",
            outcome="failure",
            tenant_id=callback.tenant_id,
            request_id=request_id,
            error_code=callback.error,
        )
        raise ConsentError(callback.error, callback.error_description)
    if callback.admin_consent != ADMIN_CONSENT_GRANTED:
        record_event(
            event_type="onboarding.consent.declined",
            outcome="failure",
            tenant_id=callback.tenant_id,
            request_id=request_id,
            error_code=ConsentDeclinedError.code,
        )
        raise ConsentDeclinedError()
    if not callback.tenant_id:
        raise ConsentError("invalid_request", "Consent callback did not include a tenant id")

    # One atomic store call, so a double-fired redirect cannot register the tenant twice.
    credential, created = store.activate_or_add(
        callback.tenant_id,
        lambda: TenantCredential(
            tenant_id=callback.tenant_id,
            display_name=callback.state or settings.default_customer_name,
            client_id=settings.multi_tenant_client_id,
            client_secret=settings.multi_tenant_client_secret,
            onboarding_status=ONBOARDING_ACTIVE,
        ),
    )
    record_event(
        event_type="onboarding.consent.created" if created else "onboarding.consent.activated",
        outcome="success",
        tenant_id=credential.tenant_id,
        resource_id=credential.customer_id,
        request_id=request_id,
    )
    return OnboardingResult(credential=credential, created=created)


def build_completion_redirect(
    completion_url: str,
    *,
    success: bool,
    error: str | None = None,
    description: str | None = None,
) -> str:
    # Encode the callback outcome for the completion page.
    params: dict[str, str] = {"success": "true" if success else "false"}
    if not success:
        if error:
            params["error"] = error
        if description:
            params["description"] = description
    separator = "&" if "?" in completion_url else "?"
    return f"{completion_url}{separator}{urlencode(params)}"


def build_admin_consent_url(
    *,
    state: str | None = None,
    tenant_hint: str | None = None,
    settings: Settings | None = None,
) -> str:
    # Point an administrator at the identity platform admin-consent prompt.
    settings = settings or get_settings()
    tenant = tenant_hint or "organizations"
    query = {
        "client_id": settings.multi_tenant_client_id,
        "redirect_uri": settings.consent_redirect_uri,
        "scope": " ".join([settings.bap_scope, settings.power_platform_scope]),
    }
    if state:
        query["state"] = state
    return f"{settings.authority_host.rstrip('/')}/{tenant}/v2.0/adminconsent?{urlencode(query)}"
