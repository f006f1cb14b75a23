from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Mapping

from ..middlewares import owner_ctx_var, request_id_ctx_var, session_ctx_var

# Context variables copied onto every record, keyed by their JSON field.
_CONTEXT_FIELDS = (
    ("request_id", request_id_ctx_var),
    ("owner_id", owner_ctx_var),
    ("session_id", session_ctx_var),
)


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record, tagged with the request and the owner behind it."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                payload[key] = value
        extra = getattr(record, "extra_data", None)
        if isinstance(extra, Mapping):
            payload.update(extra)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def configure_logging(level: str | int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    logging.root.handlers = [handler]
    logging.root.setLevel(level if isinstance(level, int) else level.upper())
