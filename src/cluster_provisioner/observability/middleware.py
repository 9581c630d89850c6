"""
cluster_provisioner.observability.middleware

HTTP middleware for request-scoped logging context.

Responsibilities:
- Generate/propagate HTTP correlation ids.
- Bind request metadata into structlog contextvars.
- Emit one access event per call (status, duration).
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from cluster_provisioner.observability.logging import get_logger

log = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    - Ensures every HTTP call has a correlation id (`x-request-id`)
    - Binds it under `http_request_id` so it never collides with provisioning `request_id`
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            http_request_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )
        started = time.perf_counter()
        status = 500
        try:
            response: Response = await call_next(request)
            status = response.status_code
        finally:
            # Health probes are polled constantly; keep them at debug level.
            emit = log.debug if request.url.path in ("/healthz", "/readyz") else log.info
            emit(
                "http_request",
                status=status,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            structlog.contextvars.clear_contextvars()

        response.headers["x-request-id"] = correlation_id
        return response


# --- Module Notes -----------------------------------------------------------
# Background tasks spawned while handling a request copy the current context;
# `orchestrator.timers` starts them in a fresh context so pollers never inherit HTTP fields.
