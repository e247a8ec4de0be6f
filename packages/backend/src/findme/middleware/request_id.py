"""Request correlation middleware.

Learn: Each HTTP request is tagged with an id (the caller's X-Request-ID,
or a fresh UUID) plus its method and path, all bound to structlog's
contextvars. Hub log lines emitted while a handler awaits a queue_*
call therefore carry the id of the request that caused them. The id is
echoed back on the response, and one "http.request" line per request
records status and duration.

Websocket upgrades are not HTTP responses, so /ws/chat bypasses this
middleware (BaseHTTPMiddleware only wraps "http" scopes).
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the logging context and echo it back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        logger.info(
            "http.request",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
