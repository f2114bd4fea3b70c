import logging
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from codesage.core.logging import LOGGER_NAME, request_id_ctx_var

# Upper bounds (ms) of the latency buckets reported on request.complete
LATENCY_BOUNDS_MS = (10, 50, 250, 1000)


def latency_bucket(duration_ms: Optional[float]) -> str:
    if duration_ms is None:
        return "unknown"
    lower = 0
    for bound in LATENCY_BOUNDS_MS:
        if duration_ms < bound:
            return f"{lower}-{bound}ms"
        lower = bound
    return f">={lower}ms"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request_id to each request, echo it back, log completion."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid

        logging.getLogger(LOGGER_NAME).info(
            "request.complete",
            extra={
                "request_id": rid,
                "user_id": getattr(request.state, "user_id", None),
                "path": request.url.path,
                "method": request.method,
                "status": getattr(response, "status_code", None),
                "latency_bucket": latency_bucket(duration_ms),
            },
        )
        return response
