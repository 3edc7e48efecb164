"""
Request middleware — correlation IDs and the per-request access log.

Every response carries ``X-Request-ID`` (echoed from the client or freshly
minted) and ``X-Process-Time``. One log line is written per request with
the authenticated caller (when a bearer token resolved to a user) and the
storage backend that served it, so a slow or failing call can be traced to
both.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# Docs and liveness polling stay out of the access log
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _storage_backend(request: Request) -> Optional[str]:
    database = getattr(request.app.state, "database", None)
    return getattr(database, "backend", None)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Stamp correlation headers and log one entry per request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self._log(request, path, 500, start)
            raise
        finally:
            set_request_context()

        duration_ms = self._log(request, path, response.status_code, start)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        return response

    def _log(self, request: Request, path: str, status_code: int, start: float) -> float:
        duration_ms = (time.perf_counter() - start) * 1000
        if path.startswith(_QUIET_PREFIXES) and status_code < 500:
            return duration_ms

        user_id = getattr(request.state, "user_id", None)
        extra: Dict[str, Any] = {
            "duration_ms": duration_ms,
            "status_code": status_code,
            "endpoint": path,
            "user_id": user_id,
            "backend": _storage_backend(request),
        }
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        logger.log(
            level,
            "%s %s → %d (%.1fms) user=%s backend=%s",
            request.method, path, status_code, duration_ms,
            user_id or "-", extra["backend"] or "-",
            extra=extra,
        )
        return duration_ms
