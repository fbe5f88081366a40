# propauth/auth.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .errors import AuthorizationDenied
from .models import Member, User
from .services.auth_service import decode_access_token
from .services.permission_service import PermissionChecker
from .services.subscription_service import assert_subscription_active


@dataclass(frozen=True)
class Principal:
    user_id: str
    organization_id: str
    email: str
    role: str  # global user role
    member_role: str  # org-scoped role
    team_id: Optional[str] = None


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization") or ""
    if authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def _resolve_user_id(request: Request) -> str:
    token = _bearer_token(request)
    if token:
        try:
            claims = decode_access_token(token)
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.PyJWTError:
            raise HTTPException(status_code=401, detail="Invalid token")
        sub = str(claims.get("sub") or "")
        if not sub:
            raise HTTPException(status_code=401, detail="Token missing sub")
        return sub

    # dev spoofing (never in prod, see Settings.model_post_init)
    if (settings.auth_mode or "").strip().lower() == "dev":
        uid = (request.headers.get(settings.dev_header_user_id) or "").strip()
        if uid:
            return uid

    raise HTTPException(status_code=401, detail="Not authenticated")


def get_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    """
    Binds the caller to (user, active organization, team).

    Auth modes, in priority order:
      1) Authorization: Bearer <jwt>  (sub = user id)
      2) dev header X-User-Id         (only if settings.auth_mode == "dev")
    The active organization always comes from the X-Org-Id header.
    """
    org_id = (request.headers.get(settings.org_header) or "").strip()
    if not org_id:
        raise HTTPException(status_code=401, detail=f"Missing {settings.org_header} (active org context).")

    user_id = _resolve_user_id(request)

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")

    mem = db.scalar(select(Member).where(Member.organization_id == org_id, Member.user_id == user_id))
    if mem is None or mem.status != "active":
        raise AuthorizationDenied()

    return Principal(
        user_id=str(user.id),
        organization_id=org_id,
        email=str(user.email),
        role=str(user.role),
        member_role=str(mem.role),
        team_id=str(mem.team_id) if mem.team_id else None,
    )


def get_permission_checker(
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
) -> PermissionChecker:
    return PermissionChecker(db, user_id=p.user_id, organization_id=p.organization_id)


def require_permission(resource_type: str, action: str, resource_id_param: Optional[str] = None) -> Callable:
    """
    Dependency factory: 403 unless the principal may do `action` on
    `resource_type`. With `resource_id_param`, the path parameter of that
    name is checked as a specific instance.
    """

    def _dep(
        request: Request,
        checker: PermissionChecker = Depends(get_permission_checker),
        p: Principal = Depends(get_principal),
    ) -> Principal:
        resource_id = request.path_params.get(resource_id_param) if resource_id_param else None
        checker.assert_can(resource_type, action, resource_id)
        return p

    return _dep


def require_active_subscription(
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
) -> Principal:
    """402 for organizations whose trial ran out and that have no active subscription."""
    if settings.enforce_subscription:
        assert_subscription_active(db, organization_id=p.organization_id)
    return p
