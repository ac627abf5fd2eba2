"""Request context middleware: request id, caller id, timing.

Submissions for many users interleave on one event loop, and a declined
submission is only visible in the log.  The middleware binds the request
id and the caller's user id to ContextVars for the duration of the
request; the handler filter installed by ``setup_logging`` copies them
onto every record.  ContextVars (not thread-locals) because concurrent
requests share a thread under asyncio but each task gets its own
context copy.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from rewards_service.core.logging import request_id_var, user_id_var

logger = logging.getLogger(__name__)

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, bind the caller id, time and log the request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        user_id_var.set(request.headers.get("x-user-id") or None)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
