from __future__ import annotations

import logging
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from packforge.core.observability.metrics import inc_http

log = logging.getLogger("packforge.api.errors")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id on every response plus a request counter."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid

        resp = await call_next(request)
        resp.headers["X-Request-Id"] = rid
        inc_http(request.method, request.url.path, getattr(resp, "status_code", None))
        return resp


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    Turns anything the exception handlers did not map into a bare 500.

    The traceback is logged to `packforge.api.errors`; the client only gets
    the request id.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception:
            rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
            log.exception("unhandled error method=%s path=%s rid=%s", request.method, request.url.path, rid)
            body = {"detail": "Internal Server Error"}
            if rid:
                body["request_id"] = rid
            return JSONResponse(status_code=500, content=body)
