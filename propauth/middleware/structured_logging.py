# propauth/middleware/structured_logging.py
from __future__ import annotations

import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings

log = logging.getLogger("propauth.request")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    # denials and auth failures are worth seeing without turning on DEBUG
    if status_code in (401, 403):
        return logging.WARNING
    return logging.INFO


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log record per request, carried as structured extras so the JSON
    formatter puts them on the top level of the line.

    Org and user come from the raw headers; a bearer-token user is only
    known inside the handler and shows up on the permission decision lines.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            log.log(
                _level_for(status_code),
                "%s %s -> %s",
                request.method,
                request.url.path,
                status_code,
                extra={
                    "org_id": request.headers.get(settings.org_header),
                    "user_id": request.headers.get(settings.dev_header_user_id),
                    "http_method": request.method,
                    "http_path": request.url.path,
                    "http_status": status_code,
                    "latency_ms": int((time.perf_counter() - started) * 1000),
                },
            )
