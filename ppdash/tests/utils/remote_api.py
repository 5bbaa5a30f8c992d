from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from ppdash.core.errors import TokenAcquisitionError
from ppdash.domain.models import TenantCredential


BAP_TOKEN = "token-for-https://api.bap.microsoft.com/.default"
PP_TOKEN = "token-for-https://api.powerplatform.com/.default"

_ENVIRONMENTS = r"/providers/Microsoft\.BusinessAppPlatform/scopes/admin/environments"
_ROUTES: list[tuple[str, re.Pattern[str]]] = [
    ("environments", re.compile(rf"^{_ENVIRONMENTS}$")),
    ("capacity", re.compile(rf"^{_ENVIRONMENTS}/(?P<env>[^/]+)$")),
    ("storage_warnings", re.compile(r"^/licensing/storageWarning/getAllStorageWarnings$")),
    ("advisor", re.compile(r"^/analytics/advisorRecommendations$")),
    ("websites", re.compile(r"^/powerpages/environments/(?P<env>[^/]+)/websites$")),
    (
        "scan",
        re.compile(
            r"^/powerpages/environments/(?P<env>[^/]+)/websites/(?P<site>[^/]+)/scan/deep/getLatestCompletedReport$"
        ),
    ),
    ("operations", re.compile(r"^/environmentmanagement/environments/(?P<env>[^/]+)/operations$")),
]


def make_credential(tenant_id: str = "tenant-a", **overrides: Any) -> TenantCredential:
    # Build an onboarded credential snapshot without touching the store.
    values: dict[str, Any] = {
        "tenant_id": tenant_id,
        "display_name": "Contoso",
        "client_id": "client-123",
        "client_secret": "secret-xyz",
        "onboarding_status": "Active",
        "customer_id": "cust-1",
    }
    values.update(overrides)
    return TenantCredential(**values)


class FakeTokenProvider:
    def __init__(self, fail_scope: str | None = None) -> None:
        self.fail_scope = fail_scope
        self.scopes: list[str] = []

    async def acquire(self, credential: TenantCredential, scope: str) -> str:
        self.scopes.append(scope)
        if scope == self.fail_scope:
            raise TokenAcquisitionError(f"Token request for {scope} rejected with status 401", scope=scope)
        return f"token-for-{scope}"


class RemoteApiStub:
    """In-memory stand-in for the BAP and Power Platform admin endpoints.

    Use as the handler of an ``httpx.MockTransport``. Failures, delays and
    raised exceptions are keyed by route name, optionally suffixed with an
    environment id (``"capacity:env-2"``).
    """

    def __init__(self, environments: tuple[str, ...] = ("env-1", "env-2")) -> None:
        self.environments = environments
        self.failures: dict[str, int] = {}
        self.delays: dict[str, float] = {}
        self.errors: dict[str, Exception] = {}
        self.requests: list[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def hits(self, route: str) -> int:
        return sum(1 for request in self.requests if self._route(request)[0] == route)

    def _route(self, request: httpx.Request) -> tuple[str | None, dict[str, str]]:
        for name, pattern in _ROUTES:
            match = pattern.match(request.url.path)
            if match:
                return name, match.groupdict()
        return None, {}

    def _lookup(self, table: dict[str, Any], route: str, params: dict[str, str]) -> Any:
        scoped = f"{route}:{params['env']}" if "env" in params else None
        if scoped and scoped in table:
            return table[scoped]
        return table.get(route)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route, params = self._route(request)
        if route is None:
            return httpx.Response(404, json={"error": {"code": "NotFound"}})
        delay = self._lookup(self.delays, route, params)
        if delay:
            await asyncio.sleep(delay)
        error = self._lookup(self.errors, route, params)
        if error is not None:
            raise error
        status = self._lookup(self.failures, route, params)
        if status:
            return httpx.Response(status, json={"error": {"code": "Forbidden", "message": "denied"}})
        return httpx.Response(200, json=getattr(self, f"_{route}")(request, **params))

    def _environments(self, request: httpx.Request) -> dict[str, Any]:
        return {
            "value": [
                {
                    "name": env_id,
                    "properties": {
                        "displayName": f"Display {env_id}",
                        "environmentSku": "Production",
                        "azureRegion": "westeurope",
                        "provisioningState": "Succeeded",
                        "createdTime": "2024-01-02T03:04:05Z",
                    },
                }
                for env_id in self.environments
            ]
        }

    def _capacity(self, request: httpx.Request, env: str) -> dict[str, Any]:
        return {
            "name": env,
            "properties": {
                "capacity": {
                    "database": {"consumed": 5, "allocated": 10},
                    "file": {"consumed": 1.5, "allocated": 20},
                    "log": {"consumed": 0, "allocated": 0},
                }
            },
        }

    def _storage_warnings(self, request: httpx.Request) -> dict[str, Any]:
        return {"value": [{"storageCategory": "Database", "storageEntity": "account", "isActive": True}]}

    def _advisor(self, request: httpx.Request) -> dict[str, Any]:
        # Two pages chained by an absolute continuation link.
        if request.url.params.get("$skiptoken") == "2":
            return {"value": [{"scenario": "InactiveApps", "displayName": "Inactive apps", "status": "Active"}]}
        return {
            "value": [{"scenario": "UnusedFlows", "displayName": "Unused flows", "status": "Active"}],
            "nextLink": "https://api.powerplatform.com/analytics/advisorRecommendations?api-version=2024-10-01&$skiptoken=2",
        }

    def _websites(self, request: httpx.Request, env: str) -> dict[str, Any]:
        return {"value": [{"id": f"site-{env}", "name": f"Portal {env}"}]}

    def _scan(self, request: httpx.Request, env: str, site: str) -> dict[str, Any]:
        return {
            "properties": {
                "status": "Completed",
                "criticalIssueCount": 1,
                "warningIssueCount": 2,
                "infoIssueCount": 3,
                "completedOn": "2024-05-01T00:00:00Z",
            }
        }

    def _operations(self, request: httpx.Request, env: str) -> dict[str, Any]:
        return {
            "value": [
                {
                    "name": f"op-{env}",
                    "properties": {
                        "operationType": "Backup",
                        "state": "Succeeded",
                        "startTime": "2024-05-01T00:00:00Z",
                        "endTime": "2024-05-01T00:10:00Z",
                    },
                }
            ]
        }
