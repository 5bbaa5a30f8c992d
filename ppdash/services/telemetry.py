from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


@dataclass(frozen=True)
class AggregationSample:
    ts: float
    duration_ms: float
    failed_sections: int
    aborted: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_aggregation_samples: Deque[AggregationSample] = deque(maxlen=2000)
_counters: dict[str, int] = defaultdict(int)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture external call latency and outcomes.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def record_aggregation(*, duration_ms: float, failed_sections: int, aborted: bool) -> None:
    # Track whole-cycle duration and degradation for ops dashboards.
    _aggregation_samples.append(
        AggregationSample(
            ts=time.time(),
            duration_ms=duration_ms,
            failed_sections=failed_sections,
            aborted=aborted,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def _p95(sorted_values: list[float]) -> float:
    return sorted_values[max(0, math.ceil(0.95 * len(sorted_values)) - 1)]


def external_latency_by_integration(window_s: int) -> dict[str, dict[str, float | int | None]]:
    # Aggregate external call latency and failures per integration in the window.
    cutoff = time.time() - window_s
    by_integration: dict[str, list[float]] = defaultdict(list)
    failures: dict[str, int] = defaultdict(int)
    for sample in _external_samples:
        if sample.ts < cutoff:
            continue
        by_integration[sample.integration].append(sample.latency_ms)
        if not sample.success:
            failures[sample.integration] += 1
    result: dict[str, dict[str, float | int | None]] = {}
    for integration, latencies in by_integration.items():
        latencies.sort()
        result[integration] = {
            "count": len(latencies),
            "failures": failures.get(integration, 0),
            "p95": _p95(latencies),
            "max": latencies[-1],
        }
    return result


def aggregation_stats(window_s: int) -> dict[str, float | int | None]:
    # Summarize recent aggregation cycles.
    cutoff = time.time() - window_s
    samples = [sample for sample in _aggregation_samples if sample.ts >= cutoff]
    if not samples:
        return {"count": 0, "aborted": 0, "degraded": 0, "p95_ms": None, "max_ms": None}
    durations = sorted(sample.duration_ms for sample in samples)
    return {
        "count": len(samples),
        "aborted": sum(1 for sample in samples if sample.aborted),
        "degraded": sum(1 for sample in samples if sample.failed_sections),
        "p95_ms": _p95(durations),
        "max_ms": durations[-1],
    }


def counters_snapshot() -> dict[str, int]:
    # Return a copy of all counters for metrics reporting.
    return dict(_counters)


def reset_telemetry() -> None:
    # Allow tests to start from empty samples and counters.
    _external_samples.clear()
    _aggregation_samples.clear()
    _counters.clear()
