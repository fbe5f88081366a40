# propauth/logging_config.py
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from .middleware.request_id import get_request_id

# Extras lifted onto the top level of each JSON line when a log call sets them.
# Permission decisions log all of these; request lines add the http_* ones.
STRUCTURED_FIELDS = (
    "org_id",
    "user_id",
    "team_id",
    "resource_type",
    "resource_id",
    "action",
    "allowed",
    "reason",
    "http_method",
    "http_path",
    "http_status",
    "latency_ms",
)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, tagged with the current request id."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
        }
        out.update({k: getattr(record, k) for k in STRUCTURED_FIELDS if hasattr(record, k)})

        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)

        return json.dumps({k: v for k, v in out.items() if v is not None}, ensure_ascii=False, default=str)


def _level(env_var: str, default: str) -> str:
    return (os.getenv(env_var) or default).strip().upper()


def configure_logging(level: Optional[str] = None) -> None:
    """
    Route everything through a single stdout handler with JSON output.

    LOG_LEVEL sets the root level. PERMISSION_LOG_LEVEL tunes the decision
    log on its own (DEBUG shows allows too), SQL_LOG_LEVEL the engine echo.
    """
    root_level = (level or _level("LOG_LEVEL", "INFO")).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(root_level)

    logging.getLogger("propauth.permissions").setLevel(_level("PERMISSION_LOG_LEVEL", root_level))
    logging.getLogger("sqlalchemy.engine").setLevel(_level("SQL_LOG_LEVEL", "WARNING"))
    # the request middleware already emits one line per request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
