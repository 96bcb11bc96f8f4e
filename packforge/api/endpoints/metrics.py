"""Prometheus scrape endpoint plus a JSON snapshot of the in-process counters."""
from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from packforge.core.observability.metrics import snapshot_builds, snapshot_named

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
def prometheus_metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/v1/metrics/snapshot")
def metrics_snapshot():
    body = {"builds": snapshot_builds()}
    body.update(snapshot_named())
    return body
