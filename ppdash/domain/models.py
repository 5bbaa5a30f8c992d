from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


ONBOARDING_PENDING = "Pending"
ONBOARDING_ACTIVE = "Active"
ONBOARDING_STATUSES = (ONBOARDING_PENDING, ONBOARDING_ACTIVE)

UNKNOWN = "Unknown"
# Default for absent or unparseable remote timestamps.
MIN_TIMESTAMP = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class TenantCredential:
    # Per-tenant application credentials and onboarding status.
    tenant_id: str
    display_name: str
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    onboarding_status: str = ONBOARDING_PENDING
    customer_id: str | None = None
    onboarded_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        # Serialize to the persisted camelCase representation.
        return {
            "customerId": self.customer_id,
            "tenantId": self.tenant_id,
            "displayName": self.display_name,
            "clientId": self.client_id,
            "clientSecret": self.client_secret,
            "onboardedAt": self.onboarded_at.isoformat() if self.onboarded_at else None,
            "onboardingStatus": self.onboarding_status,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TenantCredential":
        onboarded_at = payload.get("onboardedAt")
        return cls(
            customer_id=payload.get("customerId"),
            tenant_id=payload.get("tenantId") or "",
            display_name=payload.get("displayName") or "",
            client_id=payload.get("clientId") or "",
            client_secret=payload.get("clientSecret") or "",
            onboarded_at=datetime.fromisoformat(onboarded_at) if onboarded_at else None,
            onboarding_status=payload.get("onboardingStatus") or ONBOARDING_PENDING,
        )


@dataclass(frozen=True)
class EnvironmentRecord:
    id: str
    name: str
    display_name: str = UNKNOWN
    sku_type: str = UNKNOWN
    region: str = UNKNOWN
    provisioning_state: str = UNKNOWN
    created_at: datetime = MIN_TIMESTAMP
    capacity_raw: list[dict[str, Any]] | dict[str, Any] | None = None


def percent_used(used: float, capacity: float) -> int:
    # Truncate toward zero; an empty allocation reads as 0%.
    if capacity <= 0:
        return 0
    return int(used / capacity * 100)


@dataclass(frozen=True)
class CapacityRecord:
    # Storage consumption for one environment, in GB.
    environment_id: str
    environment_name: str = UNKNOWN
    database_used_gb: float = 0.0
    database_capacity_gb: float = 0.0
    file_used_gb: float = 0.0
    file_capacity_gb: float = 0.0
    log_used_gb: float = 0.0
    log_capacity_gb: float = 0.0

    @property
    def database_percent_used(self) -> int:
        return percent_used(self.database_used_gb, self.database_capacity_gb)

    @property
    def file_percent_used(self) -> int:
        return percent_used(self.file_used_gb, self.file_capacity_gb)

    @property
    def log_percent_used(self) -> int:
        return percent_used(self.log_used_gb, self.log_capacity_gb)


@dataclass(frozen=True)
class SecurityScanRecord:
    website_id: str
    environment_id: str
    website_name: str = UNKNOWN
    status: str = UNKNOWN
    critical_issues: int = 0
    warning_issues: int = 0
    info_issues: int = 0
    score: float | None = None
    findings_count: int | None = None
    completed_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EnvironmentOperationRecord:
    operation_id: str
    environment_id: str
    type: str = UNKNOWN
    state: str = UNKNOWN
    started_at: datetime = MIN_TIMESTAMP
    completed_at: datetime = MIN_TIMESTAMP
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StorageWarningRecord:
    storage_category: str = UNKNOWN
    storage_entity: str = UNKNOWN
    is_active: bool = False
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AdvisorRecommendationRecord:
    scenario: str = UNKNOWN
    display_name: str = UNKNOWN
    status: str = UNKNOWN
    last_refreshed_at: datetime = MIN_TIMESTAMP
    raw: dict[str, Any] = field(default_factory=dict)


SECTION_ENVIRONMENTS = "environments"
SECTION_CAPACITY = "capacity"
SECTION_SCAN_REPORTS = "scan_reports"
SECTION_OPERATIONS = "environment_operations"
SECTION_STORAGE_WARNINGS = "storage_warnings"
SECTION_ADVISOR = "advisor_recommendations"


@dataclass
class DashboardResult:
    # Consolidated per-tenant view; sections may be partial.
    environments: list[EnvironmentRecord] = field(default_factory=list)
    capacity: list[CapacityRecord] = field(default_factory=list)
    scan_reports: list[SecurityScanRecord] = field(default_factory=list)
    environment_operations: list[EnvironmentOperationRecord] = field(default_factory=list)
    storage_warnings: list[StorageWarningRecord] = field(default_factory=list)
    advisor_recommendations: list[AdvisorRecommendationRecord] = field(default_factory=list)
    is_loading: bool = False
    error_message: str | None = None
    section_errors: dict[str, list[str]] = field(default_factory=dict)

    def record_section_error(self, section: str, detail: str) -> None:
        self.section_errors.setdefault(section, []).append(detail)
