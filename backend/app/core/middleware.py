"""
Request middleware — correlation IDs, timing and alert context.

Provides:
    • X-Request-ID header (taken from the client or generated)
    • X-Process-Time header
    • One log line per request; health checks and docs only at DEBUG
    • Request context carrying the active alert_id, so every log line
      written while serving the request can be tied to the alert
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

QUIET_PREFIXES = ("/health", "/docs", "/redoc", "/openapi", "/favicon")


def _active_alert_id(request: Request) -> Optional[str]:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None or runtime.orchestrator.current is None:
        return None
    return runtime.orchestrator.current.alert_id


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with status and duration."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path

        set_request_context(
            request_id=request_id,
            endpoint=path,
            method=request.method,
            alert_id=_active_alert_id(request),
        )
        start = time.perf_counter()
        try:
            return await self._timed(request, call_next, request_id, start)
        finally:
            set_request_context()

    async def _timed(self, request: Request, call_next, request_id: str, start: float) -> Response:
        path = request.url.path
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms)", request.method, path, duration_ms,
                extra={"duration_ms": duration_ms, "status_code": 500, "endpoint": path},
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if path.startswith(QUIET_PREFIXES):
            level = logging.DEBUG
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s → %d (%.1fms)", request.method, path, response.status_code, duration_ms,
            extra={"duration_ms": duration_ms, "status_code": response.status_code, "endpoint": path},
        )
        return response
