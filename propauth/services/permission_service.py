# propauth/services/permission_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.roles import (
    ADMIN,
    CARETAKER,
    PROPERTY_OWNER,
    PROPERTY_SCOPED_TYPES,
    TENANT_USER,
    role_allows,
)
from ..errors import AuthorizationDenied
from ..models import Lease, LeaseTenant, Member, Organization, Property, ResourcePermission, Tenant, Unit, User
from .grant_service import has_grant
from .resource_chain import resolve_property_ids
from .team_service import any_property_in_team, get_team_property_ids, is_property_in_team

log = logging.getLogger("propauth.permissions")

# -----------------------------------------------------------------------------
# Permission resolver
# -----------------------------------------------------------------------------
# Ordered rules, first match wins:
#   1. no active membership            -> deny
#   2. org owner / global admin        -> allow (no further checks)
#   3. role table says no              -> deny (role ceiling)
#      role table says yes, no id      -> allow (type-level check)
#   4. instance check for team members -> property scoping OR explicit grant
#   5. instance check, no team         -> role outcome from step 3
#
# The resolver only reads. Missing rows are denials; store errors propagate.
# -----------------------------------------------------------------------------

REASON_NOT_MEMBER = "not_a_member"
REASON_INACTIVE_MEMBER = "member_not_active"
REASON_OWNER_BYPASS = "organization_owner"
REASON_ADMIN_BYPASS = "global_admin"
REASON_ROLE_DENIED = "role_denied"
REASON_ROLE_ALLOWED = "role_allowed"
REASON_TEAM_PROPERTY = "team_property"
REASON_RESOURCE_GRANT = "resource_grant"
REASON_OUT_OF_SCOPE = "outside_team_scope"
REASON_NO_TEAM = "role_allowed_no_team"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def _get_member(db: Session, *, user_id: str, organization_id: str) -> Optional[Member]:
    return db.scalar(
        select(Member).where(Member.user_id == str(user_id), Member.organization_id == str(organization_id))
    )


def _is_bypass(member: Member, user: Optional[User], organization: Optional[Organization]) -> Optional[str]:
    if member.role == "owner":
        return REASON_OWNER_BYPASS
    if organization is not None and organization.agent_owner_id and organization.agent_owner_id == member.user_id:
        return REASON_OWNER_BYPASS
    if user is not None and user.role == ADMIN:
        return REASON_ADMIN_BYPASS
    return None


def _team_scope_allows(db: Session, *, team_id: str, resource_type: str, resource_id: str) -> bool:
    if resource_type == "property":
        return is_property_in_team(db, team_id=team_id, property_id=resource_id)
    if resource_type in PROPERTY_SCOPED_TYPES:
        # tenants may resolve to several properties; any one assigned is enough
        property_ids = resolve_property_ids(db, resource_type=resource_type, resource_id=resource_id)
        return any_property_in_team(db, team_id=team_id, property_ids=property_ids)
    return False


def _decide(
    db: Session,
    *,
    user_id: str,
    organization_id: str,
    resource_type: str,
    action: str,
    resource_id: Optional[str],
) -> tuple[AccessDecision, Optional[Member]]:
    member = _get_member(db, user_id=user_id, organization_id=organization_id)
    if member is None:
        return AccessDecision(False, REASON_NOT_MEMBER), None
    if member.status != "active":
        return AccessDecision(False, REASON_INACTIVE_MEMBER), member

    user = db.get(User, member.user_id)
    organization = db.get(Organization, member.organization_id)

    bypass = _is_bypass(member, user, organization)
    if bypass:
        return AccessDecision(True, bypass), member

    # role ceiling uses the global user role, not the org-scoped member role
    global_role = user.role if user is not None else None
    if not role_allows(global_role, resource_type, action):
        return AccessDecision(False, REASON_ROLE_DENIED), member

    if not resource_id:
        return AccessDecision(True, REASON_ROLE_ALLOWED), member

    if not member.team_id:
        return AccessDecision(True, REASON_NO_TEAM), member

    if _team_scope_allows(db, team_id=member.team_id, resource_type=resource_type, resource_id=resource_id):
        return AccessDecision(True, REASON_TEAM_PROPERTY), member

    if has_grant(db, team_id=member.team_id, resource_type=resource_type, resource_id=resource_id, action=action):
        return AccessDecision(True, REASON_RESOURCE_GRANT), member

    return AccessDecision(False, REASON_OUT_OF_SCOPE), member


def evaluate_permission(
    db: Session,
    *,
    user_id: str,
    organization_id: str,
    resource_type: str,
    action: str,
    resource_id: Optional[str] = None,
) -> AccessDecision:
    """
    Decide whether `user_id` may perform `action` on `resource_type`
    (optionally one instance of it) inside `organization_id`.

    The reason is for logs and tests only; callers must not show it to end users.
    """
    resource_type = (resource_type or "").strip().lower()
    action = (action or "").strip().lower()
    resource_id = str(resource_id) if resource_id else None

    if not user_id or not organization_id:
        decision, member = AccessDecision(False, REASON_NOT_MEMBER), None
    else:
        decision, member = _decide(
            db,
            user_id=str(user_id),
            organization_id=str(organization_id),
            resource_type=resource_type,
            action=action,
            resource_id=resource_id,
        )

    log.log(
        logging.DEBUG if decision.allowed else logging.INFO,
        "permission %s",
        "allowed" if decision.allowed else "denied",
        extra={
            "user_id": user_id,
            "org_id": organization_id,
            "team_id": member.team_id if member is not None else None,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "action": action,
            "allowed": decision.allowed,
            "reason": decision.reason,
        },
    )
    return decision


def has_permission(
    db: Session,
    *,
    user_id: str,
    organization_id: str,
    resource_type: str,
    action: str,
    resource_id: Optional[str] = None,
) -> bool:
    return evaluate_permission(
        db,
        user_id=user_id,
        organization_id=organization_id,
        resource_type=resource_type,
        action=action,
        resource_id=resource_id,
    ).allowed


def filter_permitted(
    db: Session,
    *,
    user_id: str,
    organization_id: str,
    resource_type: str,
    action: str,
    resource_ids: Iterable[str],
) -> list[str]:
    """Subset of `resource_ids` the user may act on, in input order."""
    return [
        rid
        for rid in resource_ids
        if has_permission(
            db,
            user_id=user_id,
            organization_id=organization_id,
            resource_type=resource_type,
            action=action,
            resource_id=rid,
        )
    ]


def can_access_property(db: Session, *, user_id: str, organization_id: str, property_id: str) -> bool:
    return has_permission(
        db,
        user_id=user_id,
        organization_id=organization_id,
        resource_type="property",
        action="view",
        resource_id=property_id,
    )


def _org_property_ids(db: Session, organization_id: str) -> set[str]:
    rows = db.scalars(select(Property.id).where(Property.organization_id == str(organization_id))).all()
    return {str(r) for r in rows}


def _team_granted_property_ids(db: Session, *, team_id: str, organization_id: str) -> set[str]:
    q = (
        select(ResourcePermission.resource_id)
        .join(Property, Property.id == ResourcePermission.resource_id)
        .where(
            ResourcePermission.team_id == str(team_id),
            ResourcePermission.resource_type == "property",
            ResourcePermission.action == "view",
            Property.organization_id == str(organization_id),
        )
    )
    return {str(r) for r in db.scalars(q).all()}


def get_accessible_property_ids(db: Session, *, user_id: str, organization_id: str) -> set[str]:
    """
    Properties the user can see in the organization.

    For owners, admins, team members and staff without a team this is exactly
    the set of org properties for which `can_access_property` is True:
    everything for owners and admins, the team's assigned properties plus
    any property granted to the team for "view", and everything for a
    no-team member whose role may view properties.

    Property owners, caretakers and tenant users without a team are listed
    by relationship instead: the properties they own, look after, or lease.
    That list is narrower than what `can_access_property` reports for owners
    and caretakers, and tenant users get it even though their role cannot
    view properties directly.
    """
    member = _get_member(db, user_id=user_id, organization_id=organization_id)
    if member is None or member.status != "active":
        return set()

    user = db.get(User, member.user_id)
    organization = db.get(Organization, member.organization_id)
    if _is_bypass(member, user, organization):
        return _org_property_ids(db, organization_id)

    role = user.role if user is not None else None
    may_view = role_allows(role, "property", "view")

    if member.team_id:
        if not may_view:
            return set()
        return get_team_property_ids(db, team_id=member.team_id) | _team_granted_property_ids(
            db, team_id=member.team_id, organization_id=organization_id
        )

    if role == PROPERTY_OWNER:
        q = select(Property.id).where(Property.organization_id == str(organization_id), Property.owner_id == str(user_id))
        return {str(r) for r in db.scalars(q).all()}

    if role == CARETAKER:
        q = select(Property.id).where(
            Property.organization_id == str(organization_id), Property.caretaker_id == str(user_id)
        )
        return {str(r) for r in db.scalars(q).all()}

    if role == TENANT_USER:
        q = (
            select(Unit.property_id)
            .join(Lease, Lease.unit_id == Unit.id)
            .join(LeaseTenant, LeaseTenant.lease_id == Lease.id)
            .join(Tenant, Tenant.id == LeaseTenant.tenant_id)
            .where(Tenant.organization_id == str(organization_id), Tenant.user_id == str(user_id))
            .distinct()
        )
        return {str(r) for r in db.scalars(q).all()}

    return _org_property_ids(db, organization_id) if may_view else set()


def get_member_role(db: Session, *, user_id: str, organization_id: str) -> Optional[str]:
    org = db.get(Organization, str(organization_id))
    if org is not None and org.agent_owner_id == str(user_id):
        return "owner"
    member = _get_member(db, user_id=user_id, organization_id=organization_id)
    return member.role if member is not None else None


def is_organization_admin(db: Session, *, user_id: str, organization_id: str) -> bool:
    return get_member_role(db, user_id=user_id, organization_id=organization_id) in ("owner", "admin")


def is_organization_owner(db: Session, *, user_id: str, organization_id: str) -> bool:
    org = db.get(Organization, str(organization_id))
    return bool(org is not None and org.agent_owner_id == str(user_id))


class PermissionChecker:
    """
    Per-request permission helper bound to one user and organization.

    Decisions are cached for the life of the instance; create one per request.
    """

    def __init__(self, db: Session, *, user_id: str, organization_id: str) -> None:
        self.db = db
        self.user_id = user_id
        self.organization_id = organization_id
        self._cache: dict[tuple[str, str, str], bool] = {}

    def can(self, resource_type: str, action: str, resource_id: Optional[str] = None) -> bool:
        key = ((resource_type or "").lower(), (action or "").lower(), str(resource_id or ""))
        if key not in self._cache:
            self._cache[key] = has_permission(
                self.db,
                user_id=self.user_id,
                organization_id=self.organization_id,
                resource_type=resource_type,
                action=action,
                resource_id=resource_id,
            )
        return self._cache[key]

    def assert_can(self, resource_type: str, action: str, resource_id: Optional[str] = None) -> None:
        if not self.can(resource_type, action, resource_id):
            raise AuthorizationDenied()

    def filter(self, resource_type: str, action: str, resource_ids: Iterable[str]) -> list[str]:
        return [rid for rid in resource_ids if self.can(resource_type, action, rid)]
