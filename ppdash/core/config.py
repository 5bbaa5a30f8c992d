from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "ppdash"
    log_level: str = "INFO"

    # JSON file holding the tenant credential registry.
    credentials_store_path: str = "customers.json"
    # Multi-tenant application registration used for admin consent and new records.
    multi_tenant_client_id: str = ""
    multi_tenant_client_secret: str = ""
    # Redirect URI registered on the application for the consent callback.
    consent_redirect_uri: str = "http://localhost:8000/v1/consent/callback"
    # Completion page that receives the outcome of every consent callback.
    onboarding_complete_url: str = "/onboarding-complete"
    # Display name used when the consent state label is empty.
    default_customer_name: str = "New Customer"
    # Bearer key guarding customer administration; unset disables the check for dev.
    admin_api_key: str | None = None

    # Identity platform authority; tenant id is appended per request.
    authority_host: str = "https://login.microsoftonline.com"
    # One scope per remote API family.
    bap_scope: str = "https://api.bap.microsoft.com/.default"
    power_platform_scope: str = "https://api.powerplatform.com/.default"
    bap_base_url: str = "https://api.bap.microsoft.com"
    power_platform_base_url: str = "https://api.powerplatform.com"
    bap_api_version: str = "2021-04-01"
    licensing_api_version: str = "2022-03-01-preview"
    advisor_api_version: str = "2024-10-01"
    powerpages_api_version: str = "2022-03-01-preview"
    environment_management_api_version: str = "2022-03-01-preview"

    # Bound every outbound call (ms).
    ext_call_timeout_ms: int = 8000
    # Deadline for one whole aggregation cycle (ms).
    aggregation_deadline_ms: int = 45000
    # Cap concurrent outbound calls within one aggregation cycle.
    aggregation_max_concurrency: int = 8
    # Hard stop for continuation chains that never repeat but never end.
    pagination_max_pages: int = 100


@lru_cache
def get_settings() -> Settings:
    return Settings()
