from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access-log line and one histogram sample per request.

    Paths are logged by route template so lead ids never leak into labels.
    """

    quiet_paths = frozenset({"/health", "/metrics"})

    def _record(self, request: Request, status_code: int, started: float, failed: bool = False) -> None:
        path = resolve_http_path_label(request)
        elapsed = time.perf_counter() - started
        observe_http_request(method=request.method, path=path, status=status_code, duration=elapsed)
        if path in self.quiet_paths and not failed:
            return

        fields = {
            "method": request.method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(elapsed * 1000, 2),
        }
        if failed:
            logger.error("http.error", exc_info=True, extra=fields)
        elif status_code >= 400:
            logger.warning("http.request", extra=fields)
        else:
            logger.info("http.request", extra=fields)

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._record(request, 500, started, failed=True)
            raise
        self._record(request, response.status_code, started)
        return response
