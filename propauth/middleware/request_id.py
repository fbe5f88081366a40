# propauth/middleware/request_id.py
from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# upstream ids are echoed into logs, so only accept short token-like values
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

_current: ContextVar[Optional[str]] = ContextVar("propauth_request_id", default=None)


def get_request_id() -> Optional[str]:
    return _current.get()


def _incoming_id(request: Request) -> Optional[str]:
    # starlette headers are case-insensitive, so X-Request-Id matches too
    rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return rid if _SAFE_ID.match(rid) else None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id, reusing a well-formed upstream one.

    The id lives in a ContextVar for the log formatter and on
    request.state for the request log line, and goes back out on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = _incoming_id(request) or uuid.uuid4().hex
        request.state.request_id = rid

        token = _current.set(rid)
        try:
            response = await call_next(request)
        finally:
            _current.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
