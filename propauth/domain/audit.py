# propauth/domain/audit.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AuditEvent

# action names written by the grant and assignment flows
GRANT = "resource_permission.grant"
REVOKE = "resource_permission.revoke"
ASSIGN_PROPERTIES = "team.assign_properties"
UPDATE_TEAM = "team.update"


def _snapshot(state: Optional[Mapping[str, Any]]) -> Optional[str]:
    return None if state is None else json.dumps(dict(state), sort_keys=True, default=str)


def audit_write(
    db: Session,
    *,
    organization_id: Optional[str],
    actor_user_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: str,
    before: Optional[Mapping[str, Any]] = None,
    after: Optional[Mapping[str, Any]] = None,
) -> AuditEvent:
    """
    Stage an audit row in the caller's transaction. The caller commits, so the
    row lands together with the change it describes, or not at all.
    """
    event = AuditEvent(
        organization_id=organization_id,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_snapshot(before),
        after_json=_snapshot(after),
        created_at=datetime.utcnow(),
    )
    db.add(event)
    return event


def list_audit_events(
    db: Session,
    *,
    organization_id: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
) -> list[AuditEvent]:
    q = select(AuditEvent).where(AuditEvent.organization_id == str(organization_id))
    if entity_type:
        q = q.where(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.where(AuditEvent.entity_id == str(entity_id))
    q = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(max(1, min(int(limit), 500)))
    return list(db.scalars(q).all())
