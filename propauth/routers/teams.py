# propauth/routers/teams.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_active_subscription, require_permission
from ..db import get_db
from ..errors import NotFoundError
from ..models import Team
from ..schemas import AssignPropertiesIn, TeamOut, TeamPropertiesOut, TeamUpdateIn
from ..services.team_service import (
    assign_properties,
    get_property_teams,
    get_team,
    get_team_property_ids,
    get_user_teams,
    list_organization_teams,
    update_team,
)

router = APIRouter(tags=["teams"])


def _must_get_org_team(db: Session, *, organization_id: str, team_id: str) -> Team:
    team = get_team(db, team_id=team_id)
    if team.organization_id != organization_id:
        raise NotFoundError(f"team not found: {team_id}")
    return team


@router.get("/teams", response_model=list[TeamOut])
def list_teams(
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("team", "update")),
):
    return list_organization_teams(db, organization_id=p.organization_id)


@router.get("/teams/mine", response_model=list[TeamOut])
def my_teams(db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return get_user_teams(db, user_id=p.user_id, organization_id=p.organization_id)


@router.patch("/teams/{team_id}", response_model=TeamOut, dependencies=[Depends(require_active_subscription)])
def edit_team(
    team_id: str,
    payload: TeamUpdateIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("team", "update")),
):
    _must_get_org_team(db, organization_id=p.organization_id, team_id=team_id)
    return update_team(
        db,
        team_id=team_id,
        name=payload.name,
        description=payload.description,
        actor_user_id=p.user_id,
    )


@router.put(
    "/teams/{team_id}/properties",
    response_model=TeamPropertiesOut,
    dependencies=[Depends(require_active_subscription)],
)
def replace_team_properties(
    team_id: str,
    payload: AssignPropertiesIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("team", "assign_properties")),
):
    assign_properties(
        db,
        team_id=team_id,
        organization_id=p.organization_id,
        property_ids=payload.property_ids,
        actor_user_id=p.user_id,
    )
    return TeamPropertiesOut(team_id=team_id, property_ids=sorted(get_team_property_ids(db, team_id=team_id)))


@router.get("/teams/{team_id}/properties", response_model=TeamPropertiesOut)
def list_team_properties(
    team_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("team", "update")),
):
    _must_get_org_team(db, organization_id=p.organization_id, team_id=team_id)
    return TeamPropertiesOut(team_id=team_id, property_ids=sorted(get_team_property_ids(db, team_id=team_id)))


@router.get("/properties/{property_id}/teams", response_model=list[TeamOut])
def list_property_teams(
    property_id: str,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("property", "view", resource_id_param="property_id")),
):
    return get_property_teams(db, property_id=property_id, organization_id=p.organization_id)
