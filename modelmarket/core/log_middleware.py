"""
Request tracing middleware.

Takes X-Request-ID / X-Correlation-ID from the caller (or mints them),
exposes them to the log chain for the lifetime of the request, echoes
them on the response and logs one line per request.
"""
from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from modelmarket.core.structured_logging import correlation_id_var, request_id_var

logger = logging.getLogger(__name__)

_TRACE_HEADERS = (("x-request-id", request_id_var), ("x-correlation-id", correlation_id_var))


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        ids = {header: request.headers.get(header) or uuid.uuid4().hex for header, _ in _TRACE_HEADERS}
        tokens = [(var, var.set(ids[header])) for header, var in _TRACE_HEADERS]

        started = time.perf_counter()
        status = None
        try:
            response = await call_next(request)
            status = response.status_code
        finally:
            logger.info(
                "%s %s -> %s",
                request.method,
                request.url.path,
                status,
                extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)},
            )
            for var, token in tokens:
                var.reset(token)

        response.headers.update(ids)
        return response
