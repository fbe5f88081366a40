# propauth/services/resource_chain.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Lease, LeaseTenant, MaintenanceRequest, Member, Organization, Property, Team, Tenant, Unit


def _unit_property_id(db: Session, unit_id: str) -> str | None:
    return db.scalar(select(Unit.property_id).where(Unit.id == str(unit_id)))


def _lease_property_id(db: Session, lease_id: str) -> str | None:
    q = select(Unit.property_id).join(Lease, Lease.unit_id == Unit.id).where(Lease.id == str(lease_id))
    return db.scalar(q)


def _maintenance_property_id(db: Session, request_id: str) -> str | None:
    row = db.execute(
        select(MaintenanceRequest.property_id, MaintenanceRequest.unit_id).where(
            MaintenanceRequest.id == str(request_id)
        )
    ).first()
    if row is None:
        return None
    property_id, unit_id = row
    if property_id:
        return str(property_id)
    if unit_id:
        return _unit_property_id(db, unit_id)
    return None


def _tenant_property_ids(db: Session, tenant_id: str) -> set[str]:
    q = (
        select(Unit.property_id)
        .join(Lease, Lease.unit_id == Unit.id)
        .join(LeaseTenant, LeaseTenant.lease_id == Lease.id)
        .where(LeaseTenant.tenant_id == str(tenant_id))
        .distinct()
    )
    return {str(pid) for pid in db.scalars(q).all() if pid}


def resolve_property_ids(db: Session, *, resource_type: str, resource_id: str) -> set[str]:
    """
    Property ids a resource instance belongs to.

    Unit -> Property; Lease -> Unit -> Property;
    Maintenance -> Property (or Unit -> Property);
    Tenant -> LeaseTenant -> Lease -> Unit -> Property (may be several).

    Unknown resources and unsupported types resolve to an empty set.
    """
    if not resource_id:
        return set()

    rt = (resource_type or "").strip().lower()
    pid: str | None = None

    if rt == "property":
        pid = db.scalar(select(Property.id).where(Property.id == str(resource_id)))
    elif rt == "unit":
        pid = _unit_property_id(db, resource_id)
    elif rt == "lease":
        pid = _lease_property_id(db, resource_id)
    elif rt == "maintenance":
        pid = _maintenance_property_id(db, resource_id)
    elif rt == "tenant":
        return _tenant_property_ids(db, resource_id)

    return {str(pid)} if pid else set()


def resource_organization_ids(db: Session, *, resource_type: str, resource_id: str) -> set[str] | None:
    """
    Organizations a resource instance belongs to.

    Returns None for resource types with no table here (documents, payments and
    the like), and an empty set when the instance does not exist.
    """
    rt = (resource_type or "").strip().lower()
    rid = str(resource_id or "")
    if not rid:
        return set()

    if rt in ("property", "unit", "lease", "maintenance"):
        property_ids = resolve_property_ids(db, resource_type=rt, resource_id=rid)
        if not property_ids:
            return set()
        q = select(Property.organization_id).where(Property.id.in_(property_ids)).distinct()
        return {str(o) for o in db.scalars(q).all()}

    if rt == "tenant":
        org_id = db.scalar(select(Tenant.organization_id).where(Tenant.id == rid))
    elif rt == "team":
        org_id = db.scalar(select(Team.organization_id).where(Team.id == rid))
    elif rt == "member":
        org_id = db.scalar(select(Member.organization_id).where(Member.id == rid))
    elif rt == "organization":
        org_id = db.scalar(select(Organization.id).where(Organization.id == rid))
    else:
        return None

    return {str(org_id)} if org_id else set()
