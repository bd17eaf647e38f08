from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("sched.request")

# Public paths carry bearer-like tokens; keep them out of the logs.
_TOKEN_PREFIXES = ("/schedule/", "/reschedule/")


def _loggable_path(path: str) -> str:
    for prefix in _TOKEN_PREFIXES:
        if path.startswith(prefix):
            rest = path[len(prefix):]
            _, sep, tail = rest.partition("/")
            return f"{prefix}<token>{sep}{tail}"
    return path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "request_completed",
            extra={
                "method": request.method,
                "path": _loggable_path(request.url.path),
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
