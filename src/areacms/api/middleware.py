"""Middleware for request ids and HTTP error logging."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from areacms.core.logging import request_id_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class HTTPErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to ensure all HTTP errors are logged.

    - 4xx responses: logged at WARN level
    - 5xx responses: logged at ERROR level

    The request id from ``X-Request-ID`` (or a fresh one) is bound to the
    logging context and echoed on the response. The body is never read here;
    upload routes stream it themselves.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = request_id_context.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_context.reset(token)

        duration_ms = (time.time() - start_time) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id

        if 400 <= response.status_code < 500:
            logger.warning(
                "Client error response",
                extra={
                    "http_status": response.status_code,
                    "method": request.method,
                    "path": request.url.path,
                    "request_id": request_id,
                    "duration_ms": duration_ms,
                },
            )
        elif response.status_code >= 500:
            logger.error(
                "Server error response",
                extra={
                    "http_status": response.status_code,
                    "method": request.method,
                    "path": request.url.path,
                    "request_id": request_id,
                    "duration_ms": duration_ms,
                },
            )

        return response
