from __future__ import annotations

import asyncio
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from ppdash.core.config import Settings
from ppdash.core.errors import SubFetchError
from ppdash.domain.models import (
    AdvisorRecommendationRecord,
    CapacityRecord,
    EnvironmentOperationRecord,
    EnvironmentRecord,
    SecurityScanRecord,
    StorageWarningRecord,
)
from ppdash.providers.powerplatform.pagination import collect_pages
from ppdash.providers.powerplatform.schemas import (
    Page,
    WebsiteItem,
    decode_advisor_recommendation,
    decode_capacity,
    decode_environment,
    decode_operation,
    decode_page,
    decode_scan_report,
    decode_storage_warning,
    decode_website,
)
from ppdash.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_BAP_ENVIRONMENTS_PATH = "/providers/Microsoft.BusinessAppPlatform/scopes/admin/environments"


class PowerPlatformClient:
    """Calls for one tenant, authorized with the tokens of one aggregation cycle.

    Every request goes through a shared semaphore so a tenant with many
    environments cannot open an unbounded number of connections.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        bap_token: str,
        power_platform_token: str,
        settings: Settings,
        semaphore: asyncio.Semaphore,
    ) -> None:
        self._http = http
        self._bap_token = bap_token
        self._pp_token = power_platform_token
        self._settings = settings
        self._semaphore = semaphore

    def _bap_url(self, path: str, **params: str) -> str:
        query = "&".join([f"api-version={self._settings.bap_api_version}"] + [f"{k}={v}" for k, v in params.items()])
        return f"{self._settings.bap_base_url.rstrip('/')}{path}?{query}"

    def _pp_url(self, path: str, api_version: str) -> str:
        return f"{self._settings.power_platform_base_url.rstrip('/')}{path}?api-version={api_version}"

    async def get_json(self, url: str, *, token: str, integration: str) -> Any:
        # Single GET; non-success statuses and non-JSON bodies raise SubFetchError.
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        async with self._semaphore:
            start = time.monotonic()
            try:
                response = await self._http.get(url, headers=headers)
            except httpx.HTTPError:
                self._record(integration, start, success=False)
                raise
        if response.status_code >= 400:
            self._record(integration, start, success=False)
            logger.warning("remote_call_failed integration=%s status=%s url=%s", integration, response.status_code, url)
            logger.debug("remote_call_error_body integration=%s body=%s", integration, response.text[:500])
            raise SubFetchError(
                f"{integration} returned status {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            self._record(integration, start, success=False)
            raise SubFetchError(f"{integration} returned a non-JSON body", url=url) from exc
        self._record(integration, start, success=True)
        return payload

    async def get_all(self, url: str, *, token: str, integration: str) -> list[Any]:
        # Accumulate ``value`` items across every continuation page.
        async def _fetch(page_url: str) -> Page:
            payload = await self.get_json(page_url, token=token, integration=integration)
            return decode_page(payload, url=page_url)

        return await collect_pages(_fetch, url, max_pages=self._settings.pagination_max_pages)

    def _record(self, integration: str, start: float, *, success: bool) -> None:
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )

    async def list_environments(self) -> list[EnvironmentRecord]:
        items = await self.get_all(self._bap_url(_BAP_ENVIRONMENTS_PATH), token=self._bap_token, integration="bap.environments")
        environments = [env for env in (decode_environment(item) for item in items) if env is not None]
        skipped = len(items) - len(environments)
        if skipped:
            logger.info("environments_skipped_without_name count=%s", skipped)
        return environments

    async def get_capacity(self, environment: EnvironmentRecord) -> list[CapacityRecord]:
        url = self._bap_url(
            f"{_BAP_ENVIRONMENTS_PATH}/{quote(environment.id, safe='')}",
            **{"$expand": "properties.capacity"},
        )
        payload = await self.get_json(url, token=self._bap_token, integration="bap.capacity")
        record = decode_capacity(payload, environment)
        return [record] if record else []

    async def list_storage_warnings(self) -> list[StorageWarningRecord]:
        url = self._pp_url("/licensing/storageWarning/getAllStorageWarnings", self._settings.licensing_api_version)
        items = await self.get_all(url, token=self._pp_token, integration="pp.storage_warnings")
        return [warning for warning in (decode_storage_warning(item) for item in items) if warning is not None]

    async def list_advisor_recommendations(self) -> list[AdvisorRecommendationRecord]:
        url = self._pp_url("/analytics/advisorRecommendations", self._settings.advisor_api_version)
        items = await self.get_all(url, token=self._pp_token, integration="pp.advisor")
        return [rec for rec in (decode_advisor_recommendation(item) for item in items) if rec is not None]

    async def list_websites(self, environment_id: str) -> list[WebsiteItem]:
        url = self._pp_url(
            f"/powerpages/environments/{quote(environment_id, safe='')}/websites",
            self._settings.powerpages_api_version,
        )
        items = await self.get_all(url, token=self._pp_token, integration="pp.websites")
        return [site for site in (decode_website(item) for item in items) if site is not None]

    async def get_scan_report(self, environment_id: str, website: WebsiteItem) -> list[SecurityScanRecord]:
        url = self._pp_url(
            f"/powerpages/environments/{quote(environment_id, safe='')}/websites/"
            f"{quote(website.id or '', safe='')}/scan/deep/getLatestCompletedReport",
            self._settings.powerpages_api_version,
        )
        payload = await self.get_json(url, token=self._pp_token, integration="pp.scan_reports")
        record = decode_scan_report(payload, environment_id=environment_id, website=website)
        return [record] if record else []

    async def list_operations(self, environment_id: str) -> list[EnvironmentOperationRecord]:
        url = self._pp_url(
            f"/environmentmanagement/environments/{quote(environment_id, safe='')}/operations",
            self._settings.environment_management_api_version,
        )
        items = await self.get_all(url, token=self._pp_token, integration="pp.operations")
        return [op for op in (decode_operation(item, environment_id) for item in items) if op is not None]
