from __future__ import annotations

from .request_id import REQUEST_ID_HEADER, RequestIdMiddleware

__all__ = [
    "REQUEST_ID_HEADER",
    "RequestIdMiddleware",
]
