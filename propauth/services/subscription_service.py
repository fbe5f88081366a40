# propauth/services/subscription_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFoundError, SubscriptionInactiveError, SubscriptionLimitError
from ..models import Invitation, Member, Organization, Property

log = logging.getLogger("propauth.subscription")


@dataclass(frozen=True)
class SubscriptionUsage:
    organization_id: str
    subscription_status: str
    active_members: int
    pending_invitations: int
    max_users: int
    properties: int
    max_properties: int

    @property
    def users(self) -> int:
        return self.active_members + self.pending_invitations

    @property
    def can_invite_users(self) -> bool:
        return self.users < self.max_users

    @property
    def can_add_property(self) -> bool:
        return self.properties < self.max_properties


def _must_get_org(db: Session, organization_id: str) -> Organization:
    org = db.get(Organization, str(organization_id))
    if org is None:
        raise NotFoundError(f"organization not found: {organization_id}")
    return org


def _count_active_members(db: Session, organization_id: str) -> int:
    q = select(func.count(Member.id)).where(Member.organization_id == organization_id, Member.status == "active")
    return int(db.scalar(q) or 0)


def _count_pending_invitations(db: Session, organization_id: str) -> int:
    q = select(func.count(Invitation.id)).where(
        Invitation.organization_id == organization_id, Invitation.status == "pending"
    )
    return int(db.scalar(q) or 0)


def _count_properties(db: Session, organization_id: str) -> int:
    q = select(func.count(Property.id)).where(Property.organization_id == organization_id)
    return int(db.scalar(q) or 0)


def get_usage(db: Session, *, organization_id: str) -> SubscriptionUsage:
    org = _must_get_org(db, organization_id)
    return SubscriptionUsage(
        organization_id=org.id,
        subscription_status=str(org.subscription_status),
        active_members=_count_active_members(db, org.id),
        pending_invitations=_count_pending_invitations(db, org.id),
        max_users=int(org.max_users or 0),
        properties=_count_properties(db, org.id),
        max_properties=int(org.max_properties or 0),
    )


def can_invite_users(db: Session, *, organization_id: str) -> bool:
    """Active members plus pending invitations must stay below max_users."""
    org = _must_get_org(db, organization_id)
    used = _count_active_members(db, org.id) + _count_pending_invitations(db, org.id)
    return used < int(org.max_users or 0)


def can_add_property(db: Session, *, organization_id: str) -> bool:
    org = _must_get_org(db, organization_id)
    return _count_properties(db, org.id) < int(org.max_properties or 0)


def assert_can_invite_users(db: Session, *, organization_id: str) -> None:
    if not can_invite_users(db, organization_id=organization_id):
        raise SubscriptionLimitError("You have reached the maximum number of users for your subscription plan")


def assert_can_add_property(db: Session, *, organization_id: str) -> None:
    if not can_add_property(db, organization_id=organization_id):
        raise SubscriptionLimitError("You have reached the maximum number of properties for your subscription plan")


# -------------------- Trial + subscription status --------------------

@dataclass(frozen=True)
class SubscriptionFeatures:
    max_properties: int
    max_users: int
    advanced_reporting: bool
    document_storage: bool


@dataclass(frozen=True)
class SubscriptionStatus:
    on_trial: bool
    trial_days_remaining: int
    subscription_active: bool
    subscription_plan: str
    features: SubscriptionFeatures


def _default_features() -> SubscriptionFeatures:
    return SubscriptionFeatures(
        max_properties=settings.default_max_properties,
        max_users=settings.default_max_users,
        advanced_reporting=False,
        document_storage=False,
    )


def _org_in_trial(org: Organization, now: datetime) -> bool:
    return org.trial_status == "active" and org.trial_expires_at is not None and now < org.trial_expires_at


def is_in_trial(db: Session, *, organization_id: str, now: Optional[datetime] = None) -> bool:
    org = db.get(Organization, str(organization_id))
    if org is None:
        return False
    return _org_in_trial(org, now or datetime.utcnow())


def get_trial_days_remaining(db: Session, *, organization_id: str, now: Optional[datetime] = None) -> int:
    """Whole days left in a running trial; 0 when there is none or it has run out."""
    org = db.get(Organization, str(organization_id))
    if org is None or org.trial_status != "active" or org.trial_expires_at is None:
        return 0
    now = now or datetime.utcnow()
    if org.trial_expires_at < now:
        return 0
    return (org.trial_expires_at - now).days


def has_active_subscription(db: Session, *, organization_id: str) -> bool:
    org = db.get(Organization, str(organization_id))
    return org is not None and org.subscription_status == "active"


def get_subscription_features(db: Session, *, organization_id: str) -> SubscriptionFeatures:
    """
    Limits and feature flags for an organization.

    Limits come from the organization row and fall back to the configured
    defaults when unset. A trial marked active gets document storage; an
    active paid plan also gets advanced reporting unless it is "basic".
    Unknown organizations get the defaults.
    """
    base = _default_features()
    org = db.get(Organization, str(organization_id))
    if org is None:
        return base

    max_properties = int(org.max_properties or base.max_properties)
    max_users = int(org.max_users or base.max_users)

    if org.trial_status == "active":
        return SubscriptionFeatures(max_properties, max_users, advanced_reporting=False, document_storage=True)

    if org.subscription_status == "active" and org.subscription_plan:
        plan = org.subscription_plan.strip().lower()
        return SubscriptionFeatures(max_properties, max_users, advanced_reporting=plan != "basic", document_storage=True)

    return SubscriptionFeatures(max_properties, max_users, advanced_reporting=False, document_storage=False)


def get_subscription_status(db: Session, *, organization_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
    org = _must_get_org(db, organization_id)
    now = now or datetime.utcnow()
    return SubscriptionStatus(
        on_trial=_org_in_trial(org, now),
        trial_days_remaining=get_trial_days_remaining(db, organization_id=org.id, now=now),
        subscription_active=org.subscription_status == "active",
        subscription_plan=org.subscription_plan or "none",
        features=get_subscription_features(db, organization_id=org.id),
    )


def assert_subscription_active(db: Session, *, organization_id: str, now: Optional[datetime] = None) -> None:
    if is_in_trial(db, organization_id=organization_id, now=now):
        return
    if has_active_subscription(db, organization_id=organization_id):
        return
    log.info("subscription inactive", extra={"org_id": str(organization_id)})
    raise SubscriptionInactiveError("Your trial has expired. Please subscribe to continue.")
