"""Request logging for the payee rules API.

Tenant-scoped routes carry the tenant in the path. The tenant id is bound to
structlog's context variables before the request is handled, so every event
logged by the rule service during that request carries it too.
"""

import re
import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

_TENANT_PATH = re.compile(r"^/api/v1/tenants/(?P<tenant_id>\d+)(?:/|$)")


def tenant_id_from_path(path: str) -> int | None:
    match = _TENANT_PATH.match(path)
    return int(match.group("tenant_id")) if match else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its tenant, status and timing."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        structlog.contextvars.clear_contextvars()
        tenant_id = tenant_id_from_path(request.url.path)
        if tenant_id is not None:
            structlog.contextvars.bind_contextvars(tenant_id=tenant_id)

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response
