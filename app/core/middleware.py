"""Request access logging."""

from __future__ import annotations

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("app.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request: method, path, status, size and duration."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.exception("%s %s 500 - %.1f ms", request.method, request.url.path, elapsed_ms)
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s %s %s - %.1f ms",
            request.method,
            request.url.path,
            response.status_code,
            response.headers.get("content-length", "-"),
            elapsed_ms,
        )
        return response
