from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, HTTPException, Query

from packforge.api.schemas import BuildCompareResponse, BuildRequest, BuildResponse, DetectRequest, DetectResponse
from packforge.core.orchestrator import BuildOrchestrator
from packforge.core.plan.persist import compare_descriptors, load_descriptor
from packforge.core.settings import Settings

router = APIRouter(tags=["Build"])


def _source(settings: Settings, raw: str) -> Path:
    p = Path(raw).expanduser().resolve()
    if settings.source_root is not None:
        root = settings.source_root.resolve()
        if p != root and root not in p.parents:
            raise HTTPException(status_code=400, detail=f"source_path must be inside {root}")
    return p


def _load(settings: Settings, image_id: str):
    try:
        d = load_descriptor(settings.state_dir, image_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if d is None:
        raise HTTPException(status_code=404, detail=f"unknown image id {image_id}")
    return d


@router.post("/detect", response_model=DetectResponse)
def detect(req: DetectRequest):
    settings = Settings.from_env()
    plan = BuildOrchestrator(settings).detect(_source(settings, req.source_path), req.configuration)
    return plan.to_dict()


@router.post("/build", response_model=BuildResponse)
def build(req: BuildRequest):
    settings = Settings.from_env()
    outcome = BuildOrchestrator(settings).build(
        req.image_ref,
        _source(settings, req.source_path),
        req.configuration,
        persist=req.persist,
    )
    return outcome.to_dict()


@router.get("/builds/compare", response_model=BuildCompareResponse)
def compare_builds(
    image_a: str = Query(...),
    image_b: str = Query(...),
):
    settings = Settings.from_env()
    return compare_descriptors(_load(settings, image_a), _load(settings, image_b))


@router.get("/builds/{image_id}")
def get_build(image_id: str):
    return _load(Settings.from_env(), image_id)
