"""Request correlation for the stock ledger API.

The correlation id comes from ``X-Request-ID`` when the caller sends one and
is generated otherwise. It is echoed on the response and stamped on every log
line written while the request runs. The actor is resolved later, by
``deps.auth``, which logs it against the same id.
"""

from __future__ import annotations

import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ..core.logging import log_extra, request_id_ctx_var

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time"

access_logger = logging.getLogger("stockledger.access")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        reset_token = request_id_ctx_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed = _elapsed_ms(started)
            access_logger.info(
                "request.completed",
                extra=log_extra(
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=elapsed,
                ),
            )
        finally:
            request_id_ctx_var.reset(reset_token)
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[RESPONSE_TIME_HEADER] = f"{elapsed:.2f}ms"
        return response
