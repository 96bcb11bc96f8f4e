from __future__ import annotations

from fastapi import APIRouter
from starlette.responses import JSONResponse

from packforge.core.errors import ConfigurationError
from packforge.core.observability.metrics import inc_named
from packforge.core.plan.order import load_order
from packforge.core.settings import Settings

router = APIRouter()


@router.get("/health")
def health_check():
    return {"status": "healthy"}


@router.get("/api/v1/health/live")
def liveness():
    inc_named("health_live")
    return {"status": "alive"}


@router.get("/api/v1/health/ready")
def readiness():
    """Ready when the order configuration loads and the state directory is writable."""
    inc_named("health_ready")
    settings = Settings.from_env()
    problems: list[str] = []

    try:
        load_order(settings.order_file)
    except ConfigurationError as e:
        problems.append(f"order_invalid:{e.code}")

    try:
        settings.state_dir.mkdir(parents=True, exist_ok=True)
        probe = settings.state_dir / ".ready_check.tmp"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink()
    except OSError as e:
        problems.append(f"state_dir_not_writable:{type(e).__name__}")

    if problems:
        return JSONResponse(status_code=503, content={"status": "not_ready", "problems": problems})

    return {"status": "ready"}
