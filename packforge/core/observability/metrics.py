from __future__ import annotations

from collections import Counter
from typing import Dict, Optional

from prometheus_client import Counter as PromCounter

# Build-level counters
_BUILDS = Counter()

# Named counters (detection, cache, http)
_NAMED = Counter()

_PROM_BUILDS = PromCounter(
    "packforge_builds_total",
    "Builds by outcome",
    ["outcome"],
)

_PROM_DETECTIONS = PromCounter(
    "packforge_detections_total",
    "Module detections by result",
    ["module", "result"],
)

_PROM_CACHE = PromCounter(
    "packforge_layer_cache_lookups_total",
    "Layer cache lookups by result",
    ["result"],
)

_PROM_REQUESTS = PromCounter(
    "packforge_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)


def reset_metrics() -> None:
    """
    Test helper: clears the in-process counters to avoid cross-test leakage.
    Prometheus counters are process-global and are left alone.
    """
    _BUILDS.clear()
    _NAMED.clear()


def inc_build(outcome: str) -> None:
    o = outcome or "unknown"
    _BUILDS["builds_total"] += 1
    _BUILDS[f"builds_{o}"] += 1
    _PROM_BUILDS.labels(outcome=o).inc()


def inc_detection(module_id: str, included: bool) -> None:
    result = "pass" if included else "fail"
    _NAMED[f"detect_{result}"] += 1
    _NAMED[f"detect_{module_id}|{result}"] += 1
    _PROM_DETECTIONS.labels(module=module_id, result=result).inc()


def inc_cache(result: str) -> None:
    """result: hit | miss | write"""
    _NAMED[f"cache_{result}"] += 1
    _PROM_CACHE.labels(result=result).inc()


def inc_named(name: str, value: int = 1) -> None:
    if not name:
        return
    _NAMED[name] += int(value)


def inc_http(method: str, path: str, status: Optional[int] = None) -> None:
    m = (method or "UNKNOWN").upper()
    p = path or "/"
    s = status if status is not None else "unknown"

    _NAMED["requests_total"] += 1
    _NAMED[f"requests_{m}"] += 1
    _PROM_REQUESTS.labels(method=m, path=p, status=str(s)).inc()


def snapshot_builds() -> Dict[str, int]:
    return dict(_BUILDS)


def snapshot_named() -> Dict[str, int]:
    return dict(_NAMED)
