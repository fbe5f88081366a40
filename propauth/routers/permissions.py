# propauth/routers/permissions.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import (
    Principal,
    get_permission_checker,
    get_principal,
    require_active_subscription,
    require_permission,
)
from ..db import get_db
from ..errors import NotFoundError
from ..schemas import AccessCheckIn, AccessCheckOut, AccessibleProperties, GrantIn, GrantOut, RevokeOut
from ..services.grant_service import grant_permission, list_resource_grants, list_team_grants, revoke_permission
from ..services.permission_service import PermissionChecker, get_accessible_property_ids
from ..services.team_service import get_team

router = APIRouter(prefix="/permissions", tags=["permissions"])


def _must_get_org_team(db: Session, *, organization_id: str, team_id: str):
    team = get_team(db, team_id=team_id)
    if team.organization_id != organization_id:
        # same answer as a missing team so other orgs' teams stay invisible
        raise NotFoundError(f"team not found: {team_id}")
    return team


@router.post("/check", response_model=AccessCheckOut)
def check_permission(payload: AccessCheckIn, checker: PermissionChecker = Depends(get_permission_checker)):
    return AccessCheckOut(allowed=checker.can(payload.resource_type, payload.action, payload.resource_id))


@router.get("/properties", response_model=AccessibleProperties)
def accessible_properties(db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    ids = get_accessible_property_ids(db, user_id=p.user_id, organization_id=p.organization_id)
    return AccessibleProperties(property_ids=sorted(ids))


@router.post("/grants", response_model=GrantOut, dependencies=[Depends(require_active_subscription)])
def create_grant(
    payload: GrantIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("team", "update")),
):
    _must_get_org_team(db, organization_id=p.organization_id, team_id=payload.team_id)
    return grant_permission(
        db,
        team_id=payload.team_id,
        resource_type=payload.resource_type,
        resource_id=payload.resource_id,
        action=payload.action,
        actor_user_id=p.user_id,
    )


@router.post("/grants/revoke", response_model=RevokeOut, dependencies=[Depends(require_active_subscription)])
def delete_grant(
    payload: GrantIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("team", "update")),
):
    _must_get_org_team(db, organization_id=p.organization_id, team_id=payload.team_id)
    removed = revoke_permission(
        db,
        team_id=payload.team_id,
        resource_type=payload.resource_type,
        resource_id=payload.resource_id,
        action=payload.action,
        actor_user_id=p.user_id,
    )
    return RevokeOut(removed=removed)


@router.get("/teams/{team_id}/grants", response_model=list[GrantOut])
def team_grants(
    team_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("team", "update")),
):
    _must_get_org_team(db, organization_id=p.organization_id, team_id=team_id)
    return list_team_grants(db, team_id=team_id)


@router.get("/resources/{resource_type}/{resource_id}/grants", response_model=list[GrantOut])
def resource_grants(
    resource_type: str,
    resource_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("team", "update")),
):
    rows = list_resource_grants(db, resource_type=resource_type, resource_id=resource_id)
    return [r for r in rows if r.team is not None and r.team.organization_id == p.organization_id]
