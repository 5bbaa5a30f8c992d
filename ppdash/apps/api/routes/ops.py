from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from ppdash.apps.api.deps import require_admin
from ppdash.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from ppdash.apps.api.response import SuccessEnvelope, success_response
from ppdash.services.telemetry import aggregation_stats, counters_snapshot, external_latency_by_integration


router = APIRouter(prefix="/ops", tags=["ops"], responses=DEFAULT_ERROR_RESPONSES)


class OpsMetricsResponse(BaseModel):
    # Summarize remote call health and dashboard degradation for operators.
    window_s: int
    external_calls: dict[str, dict[str, Any]]
    aggregation: dict[str, Any]
    counters: dict[str, int]


@router.get("/metrics", response_model=SuccessEnvelope[OpsMetricsResponse])
async def ops_metrics(
    request: Request,
    window_s: int = Query(default=3600, ge=60, le=86400),
    _admin: None = Depends(require_admin),
) -> dict:
    payload = OpsMetricsResponse(
        window_s=window_s,
        external_calls=external_latency_by_integration(window_s),
        aggregation=aggregation_stats(window_s),
        counters=counters_snapshot(),
    )
    return success_response(request=request, data=payload)
