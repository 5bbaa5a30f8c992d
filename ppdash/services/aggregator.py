"""Per-tenant dashboard aggregation.

One cycle acquires a token per API family, resolves the environment list,
then fans out to the environment-scoped and tenant-scoped endpoint families.
Each endpoint call is guarded on its own: a failed call leaves its section
short and adds a diagnostic to ``section_errors``; only token acquisition, the
cycle deadline, or an unexpected exception set ``error_message``.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence, TypeVar

import httpx

from ppdash.core.config import Settings, get_settings
from ppdash.core.errors import SubFetchError, TokenAcquisitionError
from ppdash.domain.models import (
    SECTION_ADVISOR,
    SECTION_CAPACITY,
    SECTION_ENVIRONMENTS,
    SECTION_OPERATIONS,
    SECTION_SCAN_REPORTS,
    SECTION_STORAGE_WARNINGS,
    DashboardResult,
    EnvironmentRecord,
    TenantCredential,
)
from ppdash.providers.powerplatform.client import PowerPlatformClient
from ppdash.services.auth.tokens import TokenProvider
from ppdash.services.telemetry import increment_counter, record_aggregation


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _gather_all(*aws: Awaitable[Any]) -> list[Any]:
    # Let every sibling finish, then surface the first unexpected failure.
    results = await asyncio.gather(*aws, return_exceptions=True)
    for outcome in results:
        if isinstance(outcome, BaseException):
            raise outcome
    return results


def _describe_failure(exc: Exception) -> str:
    if isinstance(exc, SubFetchError):
        return str(exc)
    if isinstance(exc, httpx.TimeoutException):
        return f"timed out ({exc.__class__.__name__})"
    return f"request failed ({exc.__class__.__name__})"


class DashboardAggregator:
    def __init__(
        self,
        token_provider: TokenProvider | None = None,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._tokens = token_provider or TokenProvider(settings=self._settings)
        self._transport = transport

    @asynccontextmanager
    async def _http_client(self) -> AsyncIterator[httpx.AsyncClient]:
        # One pooled client per cycle; every request inherits the per-call timeout.
        timeout = self._settings.ext_call_timeout_ms / 1000
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            yield client

    async def aggregate(self, credential: TenantCredential) -> DashboardResult:
        result = DashboardResult(is_loading=True)
        deadline_s = self._settings.aggregation_deadline_ms / 1000
        start = time.monotonic()
        aborted = False
        try:
            await asyncio.wait_for(self._run_cycle(credential, result), timeout=deadline_s)
        except asyncio.TimeoutError:
            aborted = True
            result.error_message = f"Error loading data: aggregation exceeded the {deadline_s:g}s deadline"
            logger.warning(
                "dashboard_aggregation_deadline customer_id=%s tenant_id=%s deadline_s=%s",
                credential.customer_id,
                credential.tenant_id,
                deadline_s,
            )
        except TokenAcquisitionError as exc:
            aborted = True
            result.error_message = f"Error loading data: {exc}"
            logger.warning(
                "dashboard_token_failed customer_id=%s tenant_id=%s scope=%s",
                credential.customer_id,
                credential.tenant_id,
                exc.scope,
            )
        except Exception as exc:  # noqa: BLE001 - surfaced as the aggregation-level error
            aborted = True
            result.error_message = f"Error loading data: {exc}"
            logger.exception(
                "dashboard_aggregation_failed customer_id=%s tenant_id=%s",
                credential.customer_id,
                credential.tenant_id,
            )
        finally:
            result.is_loading = False
            _order_by_environment(result)
            record_aggregation(
                duration_ms=(time.monotonic() - start) * 1000.0,
                failed_sections=len(result.section_errors),
                aborted=aborted,
            )
        logger.info(
            "dashboard_aggregated customer_id=%s environments=%s degraded_sections=%s error=%s",
            credential.customer_id,
            len(result.environments),
            ",".join(sorted(result.section_errors)) or "none",
            result.error_message is not None,
        )
        return result

    async def _run_cycle(self, credential: TenantCredential, result: DashboardResult) -> None:
        bap_token, pp_token = await _gather_all(
            self._tokens.acquire(credential, self._settings.bap_scope),
            self._tokens.acquire(credential, self._settings.power_platform_scope),
        )
        async with self._http_client() as http:
            client = PowerPlatformClient(
                http,
                bap_token=bap_token,
                power_platform_token=pp_token,
                settings=self._settings,
                semaphore=asyncio.Semaphore(max(1, self._settings.aggregation_max_concurrency)),
            )
            # Tenant-scoped families do not wait for the environment list.
            await _gather_all(
                self._environment_branch(client, result),
                self._guarded(
                    result,
                    SECTION_STORAGE_WARNINGS,
                    "tenant",
                    client.list_storage_warnings,
                    result.storage_warnings,
                ),
                self._guarded(
                    result,
                    SECTION_ADVISOR,
                    "tenant",
                    client.list_advisor_recommendations,
                    result.advisor_recommendations,
                ),
            )

    async def _guarded(
        self,
        result: DashboardResult,
        section: str,
        target: str,
        fetch: Callable[[], Awaitable[Sequence[T]]],
        sink: list[T] | None = None,
    ) -> list[T]:
        # Degrade one call to an empty outcome; results land in the sink as soon as they arrive.
        try:
            items = list(await fetch())
        except (httpx.HTTPError, SubFetchError) as exc:
            detail = _describe_failure(exc)
            result.record_section_error(section, f"{target}: {detail}")
            increment_counter(f"subfetch_failures_total.{section}")
            logger.warning("dashboard_subfetch_failed section=%s target=%s error=%s", section, target, detail)
            return []
        if sink is not None:
            sink.extend(items)
        return items

    async def _environment_branch(self, client: PowerPlatformClient, result: DashboardResult) -> None:
        environments = await self._guarded(
            result,
            SECTION_ENVIRONMENTS,
            "tenant",
            client.list_environments,
            result.environments,
        )
        await _gather_all(*(self._environment_details(client, result, env) for env in environments))

    async def _environment_details(
        self,
        client: PowerPlatformClient,
        result: DashboardResult,
        environment: EnvironmentRecord,
    ) -> None:
        await _gather_all(
            self._guarded(
                result,
                SECTION_CAPACITY,
                environment.id,
                lambda: client.get_capacity(environment),
                result.capacity,
            ),
            self._guarded(
                result,
                SECTION_OPERATIONS,
                environment.id,
                lambda: client.list_operations(environment.id),
                result.environment_operations,
            ),
            self._scan_branch(client, result, environment),
        )

    async def _scan_branch(
        self,
        client: PowerPlatformClient,
        result: DashboardResult,
        environment: EnvironmentRecord,
    ) -> None:
        # Scan reports hang off websites, so the website list resolves first.
        websites = await self._guarded(
            result,
            SECTION_SCAN_REPORTS,
            f"{environment.id}/websites",
            lambda: client.list_websites(environment.id),
        )
        await _gather_all(
            *(
                self._guarded(
                    result,
                    SECTION_SCAN_REPORTS,
                    f"{environment.id}/{site.id}",
                    lambda site=site: client.get_scan_report(environment.id, site),
                    result.scan_reports,
                )
                for site in websites
            )
        )


def _order_by_environment(result: DashboardResult) -> None:
    # Concurrent fan-out appends in completion order; present sections in environment order.
    order = {env.id: idx for idx, env in enumerate(result.environments)}
    fallback = len(order)
    result.capacity.sort(key=lambda item: order.get(item.environment_id, fallback))
    result.environment_operations.sort(key=lambda item: order.get(item.environment_id, fallback))
    result.scan_reports.sort(key=lambda item: order.get(item.environment_id, fallback))
