"""Middleware for request logging."""
import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs method, path, status and timing."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        logger.info(f"Request {request_id}: {request.method} {request.url.path}")
        start_time = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request {request_id} failed after {time.monotonic() - start_time:.2f}s: {e}"
            )
            raise

        duration = time.monotonic() - start_time
        logger.info(f"Response {request_id}: {response.status_code} completed in {duration:.2f}s")

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
