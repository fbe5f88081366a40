# propauth/domain/roles.py
from __future__ import annotations

from typing import Dict, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import Member, User

# -----------------------------------------------------------------------------
# Role permission table
# -----------------------------------------------------------------------------
# One table, keyed by the user's global role. Every role carries a complete
# matrix: each resource type in STATEMENTS maps each of its actions to an
# explicit bool. Anything not in the table (unknown role, resource or action)
# is treated as False.
# -----------------------------------------------------------------------------

ROLE_TABLE_VERSION = "2026-10-01.v1"

# Global user roles
ADMIN = "admin"
AGENT_OWNER = "agent_owner"
AGENT_STAFF = "agent_staff"
PROPERTY_OWNER = "property_owner"
CARETAKER = "caretaker"
TENANT_USER = "tenant_user"

USER_ROLES = (ADMIN, AGENT_OWNER, AGENT_STAFF, PROPERTY_OWNER, CARETAKER, TENANT_USER)

# Organization-scoped member roles
MEMBER_ROLES = ("owner", "admin", "staff", "member", "caretaker", "tenant")
MEMBER_STATUSES = ("active", "pending", "inactive", "rejected")

# resource type -> actions that exist for it
STATEMENTS: Dict[str, tuple[str, ...]] = {
    "organization": ("view", "update", "delete", "manage_subscription"),
    "member": ("invite", "remove", "update_role"),
    "team": ("create", "update", "delete", "assign_properties"),
    "property": ("view", "create", "update", "delete", "assign_caretaker", "list", "read", "assign"),
    "unit": ("view", "create", "update", "delete", "list", "read", "assign"),
    "tenant": ("view", "create", "update", "delete", "contact", "list", "read", "approve"),
    "lease": ("view", "create", "update", "delete", "terminate", "renew", "list", "read"),
    "payment": ("view", "record", "process", "approve"),
    "expense": ("view", "create", "update", "delete"),
    "financial": ("view", "record", "manage", "report", "invoice"),
    "maintenance": ("view", "create", "update", "resolve", "assign", "read", "complete", "list"),
    "document": ("view", "upload", "delete"),
    "settings": ("read", "update"),
    "staff": ("invite", "remove", "assign", "view"),
}

RESOURCE_TYPES = tuple(STATEMENTS)

# Resources that hang off a property and are scoped through it
PROPERTY_SCOPED_TYPES = ("unit", "lease", "maintenance", "tenant")


def _matrix(allowed: Mapping[str, Iterable[str]]) -> Dict[str, Dict[str, bool]]:
    unknown = set(allowed) - set(STATEMENTS)
    if unknown:
        raise ValueError(f"role table references unknown resource types: {sorted(unknown)}")

    out: Dict[str, Dict[str, bool]] = {}
    for resource_type, actions in STATEMENTS.items():
        granted = set(allowed.get(resource_type, ()))
        bad = granted - set(actions)
        if bad:
            raise ValueError(f"role table grants unknown {resource_type} actions: {sorted(bad)}")
        out[resource_type] = {a: (a in granted) for a in actions}
    return out


_FULL = {resource_type: actions for resource_type, actions in STATEMENTS.items()}

_STAFF = {
    "organization": ("view",),
    "property": ("view", "read", "update", "list"),
    "unit": ("view", "read", "update", "list"),
    "tenant": ("view", "read", "update", "contact", "list"),
    "lease": ("view", "read", "update", "list"),
    "payment": ("view", "record"),
    "expense": ("view", "create"),
    "financial": ("view", "record", "report"),
    "maintenance": ("view", "create", "update", "resolve", "read", "assign", "complete", "list"),
    "document": ("view", "upload"),
    "settings": ("read",),
    "staff": ("view",),
}

_PROPERTY_OWNER = {
    "property": ("view", "read", "list"),
    "unit": ("view", "read", "list"),
    "tenant": ("view", "read", "list"),
    "lease": ("view", "read", "list"),
    "payment": ("view",),
    "expense": ("view",),
    "financial": ("view", "report"),
    "maintenance": ("view", "create", "read", "list"),
    "document": ("view",),
    "settings": ("read",),
}

_CARETAKER = {
    "property": ("view", "read", "list"),
    "unit": ("view", "read", "list"),
    "tenant": ("view", "read", "contact", "list"),
    "lease": ("view", "read", "list"),
    "maintenance": ("view", "create", "update", "resolve", "read", "complete", "list"),
    "document": ("view",),
    "settings": ("read",),
}

_TENANT_USER = {
    "lease": ("view", "read"),
    "payment": ("view", "record"),
    "financial": ("view",),
    "maintenance": ("view", "create", "read", "list"),
    "document": ("view",),
}

ROLE_PERMISSIONS: Dict[str, Dict[str, Dict[str, bool]]] = {
    ADMIN: _matrix(_FULL),
    AGENT_OWNER: _matrix(_FULL),
    AGENT_STAFF: _matrix(_STAFF),
    PROPERTY_OWNER: _matrix(_PROPERTY_OWNER),
    CARETAKER: _matrix(_CARETAKER),
    TENANT_USER: _matrix(_TENANT_USER),
}


def is_known_role(role: str | None) -> bool:
    return role in ROLE_PERMISSIONS


def get_role_permissions(role: str | None) -> Dict[str, Dict[str, bool]]:
    """Copy of the role's matrix; empty for unknown roles (fail closed)."""
    table = ROLE_PERMISSIONS.get(role or "")
    if table is None:
        return {}
    return {resource_type: dict(actions) for resource_type, actions in table.items()}


def role_allows(role: str | None, resource_type: str, action: str) -> bool:
    table = ROLE_PERMISSIONS.get(role or "")
    if not table:
        return False
    return bool(table.get(resource_type, {}).get(action, False))


def allowed_actions(role: str | None, resource_type: str) -> list[str]:
    table = ROLE_PERMISSIONS.get(role or "", {})
    return [a for a, ok in table.get(resource_type, {}).items() if ok]


def find_unknown_roles(db: Session) -> dict[str, list[tuple[str, str]]]:
    """
    Returns {"users": [(user_id, role)], "members": [(member_id, role)]}
    for every persisted role string outside the known vocabularies.
    """
    users = db.execute(select(User.id, User.role).where(User.role.not_in(USER_ROLES))).all()
    members = db.execute(select(Member.id, Member.role).where(Member.role.not_in(MEMBER_ROLES))).all()
    return {
        "users": [(str(uid), str(role)) for uid, role in users],
        "members": [(str(mid), str(role)) for mid, role in members],
    }


def validate_persisted_roles(db: Session) -> None:
    """
    Raise ValidationError if any stored role is unknown.

    An unknown role silently resolves to an empty permission set, so a typo
    in a role value would lock that user out of everything; catch it at
    startup instead.
    """
    bad = find_unknown_roles(db)
    if not bad["users"] and not bad["members"]:
        return

    parts: list[str] = []
    if bad["users"]:
        parts.append("users: " + ", ".join(f"{uid}={role!r}" for uid, role in bad["users"]))
    if bad["members"]:
        parts.append("members: " + ", ".join(f"{mid}={role!r}" for mid, role in bad["members"]))
    raise ValidationError("unknown persisted roles (" + "; ".join(parts) + ")")
