from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from packforge import __version__
from packforge.api.endpoints import builds, health, metrics as metrics_ep, modules
from packforge.api.middleware.error_shaping import RequestContextMiddleware, SafeErrorMiddleware
from packforge.core.errors import BuildFailure, ConfigurationError, DetectionFailure

log = logging.getLogger("packforge.api")

app = FastAPI(
    title="packforge",
    version=__version__,
)

# Starlette reverses add_middleware order: the last call is the outermost wrapper
app.add_middleware(RequestContextMiddleware)
app.add_middleware(SafeErrorMiddleware)


@app.exception_handler(DetectionFailure)
async def _detection_failure(request: Request, exc: DetectionFailure):
    log.info("detection failed path=%s groups=%d", request.url.path, len(exc.groups))
    return JSONResponse(status_code=422, content=exc.to_dict())


@app.exception_handler(BuildFailure)
async def _build_failure(request: Request, exc: BuildFailure):
    log.warning("build failed path=%s module=%s phase=%s", request.url.path, exc.module, exc.phase)
    return JSONResponse(status_code=500, content=exc.to_dict())


@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=400, content=exc.to_dict())


app.include_router(health.router)
app.include_router(metrics_ep.router)
app.include_router(builds.router, prefix="/api/v1")
app.include_router(modules.router, prefix="/api/v1")
