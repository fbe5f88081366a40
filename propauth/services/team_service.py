# propauth/services/team_service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..domain.audit import ASSIGN_PROPERTIES, UPDATE_TEAM, audit_write
from ..errors import NotFoundError, ValidationError
from ..models import Member, Organization, Property, Team, TeamProperty

log = logging.getLogger("propauth.teams")


def _now() -> datetime:
    return datetime.utcnow()


# -----------------------------
# Teams
# -----------------------------
def get_team(db: Session, *, team_id: str) -> Team:
    team = db.get(Team, str(team_id))
    if team is None:
        raise NotFoundError(f"team not found: {team_id}")
    return team


def create_team(db: Session, *, organization_id: str, name: str, description: Optional[str] = None) -> Team:
    if db.get(Organization, str(organization_id)) is None:
        raise NotFoundError(f"organization not found: {organization_id}")

    name = (name or "").strip()
    if not name:
        raise ValidationError("team name is required")

    team = Team(organization_id=str(organization_id), name=name, description=description)
    db.add(team)
    db.commit()
    db.refresh(team)
    return team


def delete_team(db: Session, *, team_id: str) -> None:
    """Deleting a team drops its property assignments and grants; members keep their membership."""
    team = get_team(db, team_id=team_id)
    try:
        db.execute(delete(TeamProperty).where(TeamProperty.team_id == team.id))
        for m in db.scalars(select(Member).where(Member.team_id == team.id)).all():
            m.team_id = None
            m.updated_at = _now()
            db.add(m)
        db.delete(team)
        db.commit()
    except Exception:
        db.rollback()
        raise


def update_team(
    db: Session,
    *,
    team_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    actor_user_id: Optional[str] = None,
) -> Team:
    """Rename or re-describe a team. Fields left as None are unchanged; an empty description clears it."""
    team = get_team(db, team_id=team_id)
    before = {"name": team.name, "description": team.description}

    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("team name is required")
        team.name = name
    if description is not None:
        team.description = description.strip() or None

    after = {"name": team.name, "description": team.description}
    if after == before:
        return team

    team.updated_at = _now()
    db.add(team)
    audit_write(
        db,
        organization_id=team.organization_id,
        actor_user_id=actor_user_id,
        action=UPDATE_TEAM,
        entity_type="Team",
        entity_id=team.id,
        before=before,
        after=after,
    )
    db.commit()
    db.refresh(team)
    return team


def list_organization_teams(db: Session, *, organization_id: str) -> list[Team]:
    q = select(Team).where(Team.organization_id == str(organization_id)).order_by(Team.name, Team.id)
    return list(db.scalars(q).all())


def get_user_teams(db: Session, *, user_id: str, organization_id: str) -> list[Team]:
    """The caller's team in the organization as a list: one team, or none."""
    mem = db.scalar(
        select(Member).where(Member.user_id == str(user_id), Member.organization_id == str(organization_id))
    )
    if mem is None or not mem.team_id:
        return []
    team = db.get(Team, mem.team_id)
    return [team] if team is not None else []


def get_team_members(db: Session, *, team_id: str) -> list[Member]:
    get_team(db, team_id=team_id)
    return list(db.scalars(select(Member).where(Member.team_id == str(team_id))).all())


def add_member_to_team(db: Session, *, team_id: str, user_id: str, organization_id: str) -> Member:
    team = get_team(db, team_id=team_id)
    if team.organization_id != str(organization_id):
        raise ValidationError("team does not belong to the organization")

    mem = db.scalar(
        select(Member).where(Member.user_id == str(user_id), Member.organization_id == str(organization_id))
    )
    if mem is None:
        raise ValidationError("user is not a member of the organization")

    if mem.team_id == team.id:
        return mem

    mem.team_id = team.id
    mem.updated_at = _now()
    db.add(mem)
    db.commit()
    db.refresh(mem)
    return mem


def remove_member_from_team(db: Session, *, team_id: str, user_id: str) -> None:
    mem = db.scalar(select(Member).where(Member.user_id == str(user_id), Member.team_id == str(team_id)))
    if mem is None:
        raise NotFoundError("user is not a member of the team")

    mem.team_id = None
    mem.updated_at = _now()
    db.add(mem)
    db.commit()


# -----------------------------
# Team <-> property assignment
# -----------------------------
def assign_properties(
    db: Session,
    *,
    team_id: str,
    organization_id: str,
    property_ids: Iterable[str],
    actor_user_id: Optional[str] = None,
) -> int:
    """
    Replace the team's full property set with `property_ids`.

    All ids are checked against the organization before anything is written;
    one foreign or unknown id rejects the whole call and the previous set is
    left untouched. The delete and the insert run in a single transaction.
    Returns the size of the new set.
    """
    team = get_team(db, team_id=team_id)
    if team.organization_id != str(organization_id):
        raise ValidationError("team does not belong to the organization")

    wanted: list[str] = []
    for pid in property_ids:
        s = str(pid or "").strip()
        if not s:
            raise ValidationError("property id must not be empty")
        if s not in wanted:
            wanted.append(s)

    if wanted:
        found = set(
            db.scalars(
                select(Property.id).where(
                    Property.organization_id == str(organization_id),
                    Property.id.in_(wanted),
                )
            ).all()
        )
        missing = [pid for pid in wanted if pid not in found]
        if missing:
            raise ValidationError("one or more properties not found or not in this organization")

    before = sorted(get_team_property_ids(db, team_id=team.id))

    try:
        db.execute(delete(TeamProperty).where(TeamProperty.team_id == team.id))
        now = _now()
        db.add_all(
            [TeamProperty(team_id=team.id, property_id=pid, created_at=now, updated_at=now) for pid in wanted]
        )
        audit_write(
            db,
            organization_id=str(organization_id),
            actor_user_id=actor_user_id,
            action=ASSIGN_PROPERTIES,
            entity_type="Team",
            entity_id=team.id,
            before={"property_ids": before},
            after={"property_ids": sorted(wanted)},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    log.info(
        "team properties replaced",
        extra={"org_id": str(organization_id), "team_id": team.id},
    )
    return len(wanted)


def is_property_in_team(db: Session, *, team_id: str, property_id: str) -> bool:
    if not team_id or not property_id:
        return False
    row = db.scalar(
        select(TeamProperty.id).where(
            TeamProperty.team_id == str(team_id),
            TeamProperty.property_id == str(property_id),
        )
    )
    return row is not None


def any_property_in_team(db: Session, *, team_id: str, property_ids: Iterable[str]) -> bool:
    ids = [str(p) for p in property_ids if p]
    if not team_id or not ids:
        return False
    row = db.scalar(
        select(TeamProperty.id)
        .where(TeamProperty.team_id == str(team_id), TeamProperty.property_id.in_(ids))
        .limit(1)
    )
    return row is not None


def get_team_property_ids(db: Session, *, team_id: str) -> set[str]:
    rows = db.scalars(select(TeamProperty.property_id).where(TeamProperty.team_id == str(team_id))).all()
    return {str(r) for r in rows}


def get_team_properties(db: Session, *, team_id: str) -> list[Property]:
    q = (
        select(Property)
        .join(TeamProperty, TeamProperty.property_id == Property.id)
        .where(TeamProperty.team_id == str(team_id))
        .order_by(Property.name)
    )
    return list(db.scalars(q).all())


def get_property_teams(db: Session, *, property_id: str, organization_id: str) -> list[Team]:
    """Teams holding `property_id`, restricted to teams of `organization_id`."""
    q = (
        select(Team)
        .join(TeamProperty, TeamProperty.team_id == Team.id)
        .where(
            TeamProperty.property_id == str(property_id),
            Team.organization_id == str(organization_id),
        )
        .order_by(Team.name)
    )
    return list(db.scalars(q).all())
