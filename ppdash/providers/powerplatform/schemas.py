"""Lenient schemas for BAP and Power Platform admin API payloads.

Each remote record type is decoded once through a pydantic model whose fields
carry documented defaults: strings fall back to ``"Unknown"``, numbers to ``0``
and timestamps to ``MIN_TIMESTAMP``. A field that is missing, null or of the
wrong type resolves to its default instead of failing the record.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Callable

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, WrapValidator
from pydantic.alias_generators import to_camel

from ppdash.core.errors import SubFetchError
from ppdash.domain.models import (
    MIN_TIMESTAMP,
    UNKNOWN,
    AdvisorRecommendationRecord,
    CapacityRecord,
    EnvironmentOperationRecord,
    EnvironmentRecord,
    SecurityScanRecord,
    StorageWarningRecord,
)
from ppdash.services.audit import sanitize_metadata


def _fallback(default: Any) -> WrapValidator:
    # Swap validation failures and nulls for the field default.
    def _validate(value: Any, handler: Callable[[Any], Any]) -> Any:
        if value is None:
            return default
        try:
            return handler(value)
        except ValidationError:
            return default

    return WrapValidator(_validate)


def _as_utc(value: datetime) -> datetime:
    # Remote timestamps without an offset are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


LenientStr = Annotated[str, _fallback(UNKNOWN)]
LenientFloat = Annotated[float, _fallback(0.0)]
LenientInt = Annotated[int, _fallback(0)]
LenientBool = Annotated[bool, _fallback(False)]
LenientTimestamp = Annotated[datetime, AfterValidator(_as_utc), _fallback(MIN_TIMESTAMP)]
OptionalStr = Annotated[str | None, _fallback(None)]
OptionalFloat = Annotated[float | None, _fallback(None)]
OptionalInt = Annotated[int | None, _fallback(None)]
OptionalTimestamp = Annotated[datetime | None, AfterValidator(lambda v: _as_utc(v) if v else v), _fallback(None)]
RawList = Annotated[list[Any], _fallback([])]


class RemoteModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class Page(RemoteModel):
    # Common list envelope: ``value`` items plus an optional continuation link.
    value: RawList = Field(default_factory=list)
    next_link: OptionalStr = None
    odata_next_link: OptionalStr = Field(default=None, alias="@odata.nextLink")

    @property
    def continuation(self) -> str | None:
        link = self.next_link or self.odata_next_link
        return link or None


def decode_page(payload: Any, *, url: str | None = None) -> Page:
    # Bare arrays are accepted as a single page without continuation.
    if isinstance(payload, list):
        return Page(value=payload)
    if isinstance(payload, dict):
        return Page.model_validate(payload)
    raise SubFetchError(f"Unexpected payload type {type(payload).__name__}", url=url)


class StorageAmount(RemoteModel):
    consumed: LenientFloat = 0.0
    allocated: LenientFloat = 0.0


class EnvironmentCapacity(RemoteModel):
    database: Annotated[StorageAmount, _fallback(StorageAmount())] = StorageAmount()
    file: Annotated[StorageAmount, _fallback(StorageAmount())] = StorageAmount()
    log: Annotated[StorageAmount, _fallback(StorageAmount())] = StorageAmount()


class EnvironmentProperties(RemoteModel):
    display_name: LenientStr = UNKNOWN
    environment_sku: LenientStr = UNKNOWN
    azure_region: LenientStr = UNKNOWN
    provisioning_state: LenientStr = UNKNOWN
    created_time: LenientTimestamp = MIN_TIMESTAMP
    capacity: Any = None


class EnvironmentItem(RemoteModel):
    name: OptionalStr = None
    properties: Annotated[EnvironmentProperties, _fallback(EnvironmentProperties())] = EnvironmentProperties()


def decode_environment(item: Any) -> EnvironmentRecord | None:
    # Environments without a name cannot scope downstream calls.
    if not isinstance(item, dict):
        return None
    env = EnvironmentItem.model_validate(item)
    if not env.name:
        return None
    props = env.properties
    capacity = props.capacity if isinstance(props.capacity, (dict, list)) else None
    return EnvironmentRecord(
        id=env.name,
        name=env.name,
        display_name=props.display_name,
        sku_type=props.environment_sku,
        region=props.azure_region,
        provisioning_state=props.provisioning_state,
        created_at=props.created_time,
        capacity_raw=capacity,
    )


def decode_capacity(item: Any, environment: EnvironmentRecord) -> CapacityRecord | None:
    # Capacity lives under properties.capacity with database/file/log amounts.
    if not isinstance(item, dict):
        return None
    properties = item.get("properties")
    raw_capacity = properties.get("capacity") if isinstance(properties, dict) else None
    if not isinstance(raw_capacity, dict):
        return None
    capacity = EnvironmentCapacity.model_validate(raw_capacity)
    return CapacityRecord(
        environment_id=environment.id,
        environment_name=environment.display_name,
        database_used_gb=capacity.database.consumed,
        database_capacity_gb=capacity.database.allocated,
        file_used_gb=capacity.file.consumed,
        file_capacity_gb=capacity.file.allocated,
        log_used_gb=capacity.log.consumed,
        log_capacity_gb=capacity.log.allocated,
    )


class OperationProperties(RemoteModel):
    operation_type: LenientStr = UNKNOWN
    state: LenientStr = UNKNOWN
    start_time: LenientTimestamp = MIN_TIMESTAMP
    end_time: LenientTimestamp = MIN_TIMESTAMP


class OperationItem(RemoteModel):
    name: LenientStr = UNKNOWN
    properties: Annotated[OperationProperties, _fallback(OperationProperties())] = OperationProperties()


def decode_operation(item: Any, environment_id: str) -> EnvironmentOperationRecord | None:
    if not isinstance(item, dict):
        return None
    operation = OperationItem.model_validate(item)
    return EnvironmentOperationRecord(
        operation_id=operation.name,
        environment_id=environment_id,
        type=operation.properties.operation_type,
        state=operation.properties.state,
        started_at=operation.properties.start_time,
        completed_at=operation.properties.end_time,
        raw=sanitize_metadata(item),
    )


class WebsiteItem(RemoteModel):
    id: OptionalStr = None
    name: LenientStr = UNKNOWN


def decode_website(item: Any) -> WebsiteItem | None:
    if not isinstance(item, dict):
        return None
    website = WebsiteItem.model_validate(item)
    return website if website.id else None


class ScanProperties(RemoteModel):
    status: LenientStr = UNKNOWN
    critical_issue_count: LenientInt = 0
    warning_issue_count: LenientInt = 0
    info_issue_count: LenientInt = 0
    score: OptionalFloat = None
    findings_count: OptionalInt = None
    completed_on: OptionalTimestamp = None


class ScanReport(RemoteModel):
    properties: Annotated[ScanProperties, _fallback(ScanProperties())] = ScanProperties()


def decode_scan_report(payload: Any, *, environment_id: str, website: WebsiteItem) -> SecurityScanRecord | None:
    if not isinstance(payload, dict):
        return None
    # Some responses are flat; treat the top level as the properties object then.
    source = payload if "properties" in payload else {"properties": payload}
    report = ScanReport.model_validate(source)
    props = report.properties
    return SecurityScanRecord(
        website_id=website.id or UNKNOWN,
        website_name=website.name,
        environment_id=environment_id,
        status=props.status,
        critical_issues=props.critical_issue_count,
        warning_issues=props.warning_issue_count,
        info_issues=props.info_issue_count,
        score=props.score,
        findings_count=props.findings_count,
        completed_at=props.completed_on,
        raw=sanitize_metadata(payload),
    )


class StorageWarningItem(RemoteModel):
    storage_category: LenientStr = UNKNOWN
    storage_entity: LenientStr = UNKNOWN
    is_active: LenientBool = False


def decode_storage_warning(item: Any) -> StorageWarningRecord | None:
    if not isinstance(item, dict):
        return None
    warning = StorageWarningItem.model_validate(item)
    return StorageWarningRecord(
        storage_category=warning.storage_category,
        storage_entity=warning.storage_entity,
        is_active=warning.is_active,
        raw=sanitize_metadata(item),
    )


class AdvisorRecommendationItem(RemoteModel):
    scenario: LenientStr = UNKNOWN
    display_name: LenientStr = UNKNOWN
    status: LenientStr = UNKNOWN
    last_refresh_timestamp: LenientTimestamp = MIN_TIMESTAMP


def decode_advisor_recommendation(item: Any) -> AdvisorRecommendationRecord | None:
    if not isinstance(item, dict):
        return None
    recommendation = AdvisorRecommendationItem.model_validate(item)
    return AdvisorRecommendationRecord(
        scenario=recommendation.scenario,
        display_name=recommendation.display_name,
        status=recommendation.status,
        last_refreshed_at=recommendation.last_refresh_timestamp,
        raw=sanitize_metadata(item),
    )
