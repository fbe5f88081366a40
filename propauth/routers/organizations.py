# propauth/routers/organizations.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, require_permission
from ..db import get_db
from ..domain.audit import list_audit_events
from ..schemas import AuditEventOut, SubscriptionFeaturesOut, SubscriptionLimitsOut, SubscriptionStatusOut
from ..services.subscription_service import get_subscription_status, get_usage

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.get("/limits", response_model=SubscriptionLimitsOut)
def organization_limits(
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("organization", "view")),
):
    u = get_usage(db, organization_id=p.organization_id)
    return SubscriptionLimitsOut(
        organization_id=u.organization_id,
        subscription_status=u.subscription_status,
        active_members=u.active_members,
        pending_invitations=u.pending_invitations,
        max_users=u.max_users,
        properties=u.properties,
        max_properties=u.max_properties,
        can_invite_users=u.can_invite_users,
        can_add_property=u.can_add_property,
    )


@router.get("/subscription", response_model=SubscriptionStatusOut)
def organization_subscription(
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("organization", "view")),
):
    s = get_subscription_status(db, organization_id=p.organization_id)
    f = s.features
    return SubscriptionStatusOut(
        on_trial=s.on_trial,
        trial_days_remaining=s.trial_days_remaining,
        subscription_active=s.subscription_active,
        subscription_plan=s.subscription_plan,
        features=SubscriptionFeaturesOut(
            max_properties=f.max_properties,
            max_users=f.max_users,
            advanced_reporting=f.advanced_reporting,
            document_storage=f.document_storage,
        ),
    )


@router.get("/audit", response_model=list[AuditEventOut])
def organization_audit(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_permission("organization", "update")),
):
    return list_audit_events(
        db,
        organization_id=p.organization_id,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=limit,
    )
