import json
import logging
import time
from contextvars import ContextVar
from typing import Optional

# Set by RequestIDMiddleware for the lifetime of a request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_EXTRA_FIELDS = (
    "request_id",
    "user_id",
    "doubt_session_id",
    "event",
    "room",
    "status",
    "duration_ms",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                payload[field] = getattr(record, field)
        if "request_id" not in payload:
            request_id = request_id_var.get()
            if request_id:
                payload["request_id"] = request_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]
