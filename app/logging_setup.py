"""JSON line logging for the portal."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .settings import Settings

SENSITIVE_FIELDS = ("password", "token", "secret", "key", "auth")
REDACTED = "***REDACTED***"


def redact(data: Any) -> Any:
    """Mask values whose key looks like a credential, recursively."""
    if isinstance(data, dict):
        return {
            key: REDACTED
            if any(field in str(key).lower() for field in SENSITIVE_FIELDS)
            else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        for attr in ("component", "user", "payload"):
            if hasattr(record, attr):
                payload[attr] = getattr(record, attr)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(settings: Settings, *, log_level: Optional[str] = None) -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        # already configured (uvicorn reload, pytest)
        return

    level_name = log_level or settings.log_level
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    root_logger.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "hpack"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
