from __future__ import annotations

from dataclasses import asdict, replace
from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ppdash.apps.api.deps import get_aggregator, get_store, require_admin
from ppdash.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ppdash.apps.api.response import SuccessEnvelope, success_response
from ppdash.domain.models import ONBOARDING_PENDING, DashboardResult, TenantCredential
from ppdash.persistence.credential_store import CredentialStore
from ppdash.services.aggregator import DashboardAggregator
from ppdash.services.audit import get_request_context, record_event


router = APIRouter(
    prefix="/customers",
    tags=["customers"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)

OnboardingStatus = Literal["Pending", "Active"]


class CustomerCreateRequest(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=200)
    client_id: str = ""
    client_secret: str = ""
    onboarding_status: OnboardingStatus = ONBOARDING_PENDING


class CustomerUpdateRequest(BaseModel):
    # Omitted fields keep their stored values.
    tenant_id: str | None = Field(default=None, min_length=1, max_length=100)
    display_name: str | None = Field(default=None, min_length=1, max_length=200)
    client_id: str | None = None
    client_secret: str | None = None
    onboarding_status: OnboardingStatus | None = None


class CustomerResponse(BaseModel):
    # Client secrets never leave the store; only their presence is reported.
    customer_id: str
    tenant_id: str
    display_name: str
    client_id: str
    has_client_secret: bool
    onboarded_at: datetime | None
    onboarding_status: str


class CustomerListResponse(BaseModel):
    items: list[CustomerResponse]


class CustomerDeleteResponse(BaseModel):
    customer_id: str
    deleted: bool


class DashboardResponse(BaseModel):
    customer_id: str
    environments: list[dict[str, Any]]
    capacity: list[dict[str, Any]]
    scan_reports: list[dict[str, Any]]
    environment_operations: list[dict[str, Any]]
    storage_warnings: list[dict[str, Any]]
    advisor_recommendations: list[dict[str, Any]]
    is_loading: bool
    error_message: str | None
    section_errors: dict[str, list[str]]


def _customer_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "CUSTOMER_NOT_FOUND", "message": "Customer not found"},
    )


def _to_response(record: TenantCredential) -> CustomerResponse:
    return CustomerResponse(
        customer_id=record.customer_id or "",
        tenant_id=record.tenant_id,
        display_name=record.display_name,
        client_id=record.client_id,
        has_client_secret=bool(record.client_secret),
        onboarded_at=record.onboarded_at,
        onboarding_status=record.onboarding_status,
    )


def _to_dashboard_response(customer_id: str, result: DashboardResult) -> DashboardResponse:
    # Percentages are properties, so capacity rows need them added explicitly.
    capacity = [
        {
            **asdict(item),
            "database_percent_used": item.database_percent_used,
            "file_percent_used": item.file_percent_used,
            "log_percent_used": item.log_percent_used,
        }
        for item in result.capacity
    ]
    return DashboardResponse(
        customer_id=customer_id,
        environments=[asdict(item) for item in result.environments],
        capacity=capacity,
        scan_reports=[asdict(item) for item in result.scan_reports],
        environment_operations=[asdict(item) for item in result.environment_operations],
        storage_warnings=[asdict(item) for item in result.storage_warnings],
        advisor_recommendations=[asdict(item) for item in result.advisor_recommendations],
        is_loading=result.is_loading,
        error_message=result.error_message,
        section_errors=result.section_errors,
    )


@router.get("", response_model=SuccessEnvelope[CustomerListResponse])
def list_customers(request: Request, store: CredentialStore = Depends(get_store)) -> dict:
    payload = CustomerListResponse(items=[_to_response(record) for record in store.list_all()])
    return success_response(request=request, data=payload)


@router.get("/{customer_id}", response_model=SuccessEnvelope[CustomerResponse])
def get_customer(request: Request, customer_id: str, store: CredentialStore = Depends(get_store)) -> dict:
    record = store.get_by_id(customer_id)
    if record is None:
        raise _customer_not_found()
    return success_response(request=request, data=_to_response(record))


@router.post("", response_model=SuccessEnvelope[CustomerResponse], status_code=status.HTTP_201_CREATED)
def create_customer(
    request: Request,
    body: CustomerCreateRequest,
    store: CredentialStore = Depends(get_store),
) -> dict:
    # Administrative registration; consent-driven onboarding uses the callback instead.
    record = store.add(
        TenantCredential(
            tenant_id=body.tenant_id,
            display_name=body.display_name,
            client_id=body.client_id,
            client_secret=body.client_secret,
            onboarding_status=body.onboarding_status,
        )
    )
    record_event(
        event_type="customer.created",
        outcome="success",
        tenant_id=record.tenant_id,
        resource_id=record.customer_id,
        request_id=get_request_context(request)["request_id"],
    )
    return success_response(request=request, data=_to_response(record))


@router.put("/{customer_id}", response_model=SuccessEnvelope[CustomerResponse])
def update_customer(
    request: Request,
    customer_id: str,
    body: CustomerUpdateRequest,
    store: CredentialStore = Depends(get_store),
) -> dict:
    existing = store.get_by_id(customer_id)
    if existing is None:
        raise _customer_not_found()
    changes = body.model_dump(exclude_none=True)
    updated = store.update(replace(existing, **changes))
    if updated is None:
        raise _customer_not_found()
    record_event(
        event_type="customer.updated",
        outcome="success",
        tenant_id=updated.tenant_id,
        resource_id=updated.customer_id,
        request_id=get_request_context(request)["request_id"],
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=_to_response(updated))


@router.delete("/{customer_id}", response_model=SuccessEnvelope[CustomerDeleteResponse])
def delete_customer(request: Request, customer_id: str, store: CredentialStore = Depends(get_store)) -> dict:
    if not store.delete(customer_id):
        raise _customer_not_found()
    record_event(
        event_type="customer.deleted",
        outcome="success",
        resource_id=customer_id,
        request_id=get_request_context(request)["request_id"],
    )
    return success_response(request=request, data=CustomerDeleteResponse(customer_id=customer_id, deleted=True))


def _resolve_customer(customer_id: str, store: CredentialStore = Depends(get_store)) -> TenantCredential:
    # Sync dependency, so the store lock is taken in the threadpool instead of on the event loop.
    credential = store.get_by_id(customer_id)
    if credential is None:
        raise _customer_not_found()
    return credential


@router.get("/{customer_id}/dashboard", response_model=SuccessEnvelope[DashboardResponse])
async def get_dashboard(
    request: Request,
    customer_id: str,
    credential: TenantCredential = Depends(_resolve_customer),
    aggregator: DashboardAggregator = Depends(get_aggregator),
) -> dict:
    # The aggregator works on a snapshot; no store lock is held during remote calls.
    result = await aggregator.aggregate(credential)
    partial = bool(result.section_errors) or result.error_message is not None
    return success_response(request=request, data=_to_dashboard_response(customer_id, result), partial=partial)
