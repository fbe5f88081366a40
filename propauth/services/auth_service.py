# propauth/services/auth_service.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import jwt

from ..config import settings


def _now() -> datetime:
    return datetime.utcnow()


def create_access_token(*, user_id: str, organization_id: str | None = None, minutes: int | None = None) -> str:
    now = _now()
    ttl = int(minutes if minutes is not None else settings.jwt_exp_minutes)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl)).timestamp()),
    }
    if organization_id:
        payload["org"] = str(organization_id)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    """Raises jwt.PyJWTError on a bad signature, expiry or malformed token."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
