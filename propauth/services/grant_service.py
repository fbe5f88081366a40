# propauth/services/grant_service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..domain.audit import GRANT, REVOKE, audit_write
from ..domain.roles import STATEMENTS
from ..errors import NotFoundError, ValidationError
from ..models import ResourcePermission, Team
from .resource_chain import resource_organization_ids

log = logging.getLogger("propauth.grants")


def _now() -> datetime:
    return datetime.utcnow()


def _clean(v: Optional[str], field: str) -> str:
    s = str(v or "").strip()
    if not s:
        raise ValidationError(f"{field} is required")
    return s


def _validate_key(team_id: str, resource_type: str, resource_id: str, action: str) -> tuple[str, str, str, str]:
    team_id = _clean(team_id, "team_id")
    resource_type = _clean(resource_type, "resource_type").lower()
    resource_id = _clean(resource_id, "resource_id")
    action = _clean(action, "action").lower()

    actions = STATEMENTS.get(resource_type)
    if actions is None:
        raise ValidationError(f"unknown resource_type: {resource_type}")
    if action not in actions:
        raise ValidationError(f"unknown action for {resource_type}: {action}")
    return team_id, resource_type, resource_id, action


def _must_get_team(db: Session, team_id: str) -> Team:
    team = db.get(Team, team_id)
    if team is None:
        raise NotFoundError(f"team not found: {team_id}")
    return team


def _check_resource_in_org(db: Session, *, organization_id: str, resource_type: str, resource_id: str) -> None:
    owners = resource_organization_ids(db, resource_type=resource_type, resource_id=resource_id)
    if owners is None:
        return
    if owners != {str(organization_id)}:
        raise ValidationError(f"{resource_type} not found in the team's organization: {resource_id}")


def grant_permission(
    db: Session,
    *,
    team_id: str,
    resource_type: str,
    resource_id: str,
    action: str,
    actor_user_id: Optional[str] = None,
) -> ResourcePermission:
    """
    Let `team_id` perform `action` on one resource instance.

    Idempotent: granting an existing tuple only bumps updated_at. Instances
    of modeled types (properties, units, leases, maintenance requests,
    tenants, teams, members, the organization) must exist in the team's
    organization, or the call fails with ValidationError before writing.
    """
    team_id, resource_type, resource_id, action = _validate_key(team_id, resource_type, resource_id, action)
    team = _must_get_team(db, team_id)
    _check_resource_in_org(
        db, organization_id=team.organization_id, resource_type=resource_type, resource_id=resource_id
    )
    key = (team_id, resource_type, resource_id, action)

    try:
        row = db.get(ResourcePermission, key)
        created = row is None
        if row is None:
            row = ResourcePermission(
                team_id=team_id,
                resource_type=resource_type,
                resource_id=resource_id,
                action=action,
                created_at=_now(),
                updated_at=_now(),
            )
        else:
            row.updated_at = _now()
        db.add(row)

        audit_write(
            db,
            organization_id=team.organization_id,
            actor_user_id=actor_user_id,
            action=GRANT,
            entity_type="ResourcePermission",
            entity_id=":".join(key),
            after={"team_id": team_id, "resource_type": resource_type, "resource_id": resource_id, "action": action},
        )
        db.commit()
    except IntegrityError:
        # concurrent grant of the same tuple won the insert; treat as a touch
        db.rollback()
        row = db.get(ResourcePermission, key)
        if row is None:
            raise
        row.updated_at = _now()
        db.add(row)
        db.commit()
        created = False
    except Exception:
        db.rollback()
        raise

    db.refresh(row)
    log.info(
        "resource permission granted" if created else "resource permission touched",
        extra={"team_id": team_id, "resource_type": resource_type, "resource_id": resource_id, "action": action},
    )
    return row


def revoke_permission(
    db: Session,
    *,
    team_id: str,
    resource_type: str,
    resource_id: str,
    action: str,
    actor_user_id: Optional[str] = None,
) -> bool:
    """
    Remove a grant. Returns True if a row was deleted.

    Revoking a grant that does not exist is a successful no-op.
    """
    team_id, resource_type, resource_id, action = _validate_key(team_id, resource_type, resource_id, action)
    team = db.get(Team, team_id)

    try:
        res = db.execute(
            delete(ResourcePermission).where(
                ResourcePermission.team_id == team_id,
                ResourcePermission.resource_type == resource_type,
                ResourcePermission.resource_id == resource_id,
                ResourcePermission.action == action,
            )
        )
        removed = bool(res.rowcount)
        if removed:
            audit_write(
                db,
                organization_id=team.organization_id if team else None,
                actor_user_id=actor_user_id,
                action=REVOKE,
                entity_type="ResourcePermission",
                entity_id=":".join((team_id, resource_type, resource_id, action)),
                before={"team_id": team_id, "resource_type": resource_type, "resource_id": resource_id, "action": action},
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    if removed:
        log.info(
            "resource permission revoked",
            extra={"team_id": team_id, "resource_type": resource_type, "resource_id": resource_id, "action": action},
        )
    return removed


def has_grant(db: Session, *, team_id: str, resource_type: str, resource_id: str, action: str) -> bool:
    if not team_id or not resource_id:
        return False
    row = db.scalar(
        select(ResourcePermission.team_id).where(
            ResourcePermission.team_id == str(team_id),
            ResourcePermission.resource_type == str(resource_type),
            ResourcePermission.resource_id == str(resource_id),
            ResourcePermission.action == str(action),
        )
    )
    return row is not None


def list_team_grants(db: Session, *, team_id: str) -> list[ResourcePermission]:
    q = (
        select(ResourcePermission)
        .where(ResourcePermission.team_id == str(team_id))
        .order_by(ResourcePermission.resource_type, ResourcePermission.resource_id, ResourcePermission.action)
    )
    return list(db.scalars(q).all())


def list_resource_grants(db: Session, *, resource_type: str, resource_id: str) -> list[ResourcePermission]:
    q = (
        select(ResourcePermission)
        .options(selectinload(ResourcePermission.team))
        .where(
            ResourcePermission.resource_type == str(resource_type).lower(),
            ResourcePermission.resource_id == str(resource_id),
        )
        .order_by(ResourcePermission.team_id, ResourcePermission.action)
    )
    return list(db.scalars(q).all())
