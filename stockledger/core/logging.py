from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Mapping

# Per-request context stamped onto every JSON log line.
request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
actor_ctx_var: ContextVar[str | None] = ContextVar("actor", default=None)

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class JsonLogFormatter(logging.Formatter):
    """Render log records as JSON for easier ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = request_id_ctx_var.get()
        if request_id:
            payload["request_id"] = request_id
        actor = actor_ctx_var.get()
        if actor:
            payload["actor"] = actor
        extra = getattr(record, "extra_data", None)
        if isinstance(extra, Mapping):
            payload.update(extra)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def log_extra(**fields: Any) -> dict[str, Any]:
    """Wrap structured fields the way :class:`JsonLogFormatter` expects them."""

    return {"extra_data": fields}


def configure_logging(level: str = "INFO", *, json_output: bool = True) -> None:
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    logging.root.handlers = [handler]
    logging.root.setLevel(level.upper())
