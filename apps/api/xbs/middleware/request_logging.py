from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from xbs.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("xbs.request")


def _request_fields(request: Request, path: str) -> dict[str, object]:
    return {
        "method": request.method,
        "path": path,
        "tenant_id": request.headers.get("x-application-id"),
        "test_mode": request.headers.get("x-test-mode", "false").lower() == "true",
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line and one metrics sample per request, labelled by route template."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - started
            path = resolve_http_path_label(request)
            observe_http_request(method=request.method, path=path, status=500, duration=duration)
            logger.error(
                "http.error",
                exc_info=True,
                extra={**_request_fields(request, path), "status_code": 500, "duration_ms": round(duration * 1000, 2)},
            )
            raise

        duration = time.perf_counter() - started
        # the route is only known once routing ran inside call_next
        path = resolve_http_path_label(request)
        observe_http_request(method=request.method, path=path, status=response.status_code, duration=duration)
        logger.info(
            "http.request",
            extra={
                **_request_fields(request, path),
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 2),
            },
        )
        return response
