"""
Middleware for the FastAPI application.

Request tracking and logging.
"""

import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import get_logger

logger = get_logger(__name__)


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """
    Track requests with unique IDs and log request/response details.

    Adds:
    - X-Request-ID header to all responses (propagated when the client sends one)
    - Request duration logging
    Health checks get the header but are not logged.
    """

    HEALTH_PATHS = {"/api/v1/health", "/health", "/healthz", "/ping"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        if request.url.path in self.HEALTH_PATHS:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        start_time = time.time()
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }

        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={**context, "client": request.client.host if request.client else None},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={**context, "duration_ms": round(duration_ms, 2), "error": str(e)},
                exc_info=True,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                **context,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        return response
