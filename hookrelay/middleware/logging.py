"""
Logging middleware for request/response logging.

Logs every API request with timing and a request id.
"""
import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Binds request_id into structlog contextvars so service-level logs emitted
    while handling the request carry it too.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            route=request.url.path,
            method=request.method,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                "request_failed",
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e)
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("route", "method")

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "request_completed",
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2)
        )
        response.headers["X-Request-ID"] = request_id
        return response
