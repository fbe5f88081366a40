# tests/test_permission_resolver.py
from __future__ import annotations

import pytest

from propauth.errors import AuthorizationDenied
from propauth.services.grant_service import grant_permission, revoke_permission
from propauth.services.permission_service import (
    REASON_ADMIN_BYPASS,
    REASON_INACTIVE_MEMBER,
    REASON_NO_TEAM,
    REASON_NOT_MEMBER,
    REASON_OUT_OF_SCOPE,
    REASON_OWNER_BYPASS,
    REASON_RESOURCE_GRANT,
    REASON_ROLE_DENIED,
    REASON_TEAM_PROPERTY,
    PermissionChecker,
    can_access_property,
    evaluate_permission,
    filter_permitted,
    get_accessible_property_ids,
    get_member_role,
    has_permission,
    is_organization_admin,
    is_organization_owner,
)
from propauth.services.subscription_service import can_invite_users
from propauth.services.team_service import assign_properties


def _can(db, user, org, resource_type, action, resource_id=None) -> bool:
    return has_permission(
        db,
        user_id=user.id,
        organization_id=org.id,
        resource_type=resource_type,
        action=action,
        resource_id=resource_id,
    )


def _why(db, user, org, resource_type, action, resource_id=None) -> str:
    return evaluate_permission(
        db,
        user_id=user.id,
        organization_id=org.id,
        resource_type=resource_type,
        action=action,
        resource_id=resource_id,
    ).reason


# -----------------------------
# membership gate
# -----------------------------
def test_non_member_is_denied_everything(make, db):
    org = make.org()
    stranger = make.user(role="admin")
    p = make.property(org)

    assert not _can(db, stranger, org, "property", "view")
    assert not _can(db, stranger, org, "property", "view", p.id)
    assert _why(db, stranger, org, "property", "view") == REASON_NOT_MEMBER


@pytest.mark.parametrize("status", ["pending", "inactive", "rejected"])
def test_inactive_member_is_denied_even_as_owner(make, db, status):
    org = make.org()
    u = make.user(role="agent_owner")
    make.member(org, u, role="owner", status=status)

    assert not _can(db, u, org, "organization", "view")
    assert _why(db, u, org, "organization", "view") == REASON_INACTIVE_MEMBER


def test_missing_ids_are_denied(db):
    d = evaluate_permission(db, user_id="", organization_id="", resource_type="property", action="view")
    assert not d
    assert d.reason == REASON_NOT_MEMBER


# -----------------------------
# bypasses
# -----------------------------
def test_owner_member_bypasses_role_table_and_scope(make, db):
    org = make.org()
    # tenant_user cannot delete properties per the table; owner membership wins
    u = make.user(role="tenant_user")
    make.member(org, u, role="owner", team=make.team(org))
    p = make.property(org)

    assert _can(db, u, org, "property", "delete", p.id)
    assert _why(db, u, org, "property", "delete", p.id) == REASON_OWNER_BYPASS


def test_agent_owner_on_org_record_bypasses(make, db):
    u = make.user(role="agent_staff")
    org = make.org(agent_owner=u)
    make.member(org, u, role="staff", team=make.team(org))
    p = make.property(org)

    assert _can(db, u, org, "team", "assign_properties")
    assert _can(db, u, org, "property", "delete", p.id)


def test_global_admin_bypasses(make, db):
    org = make.org()
    u = make.user(role="admin")
    make.member(org, u, role="member", team=make.team(org))
    p = make.property(org)

    assert _can(db, u, org, "property", "delete", p.id)
    assert _why(db, u, org, "property", "delete", p.id) == REASON_ADMIN_BYPASS


def test_org_admin_member_role_is_not_a_bypass(make, db):
    org = make.org()
    u = make.user(role="agent_staff")
    make.member(org, u, role="admin", team=make.team(org))
    p = make.property(org)

    assert not _can(db, u, org, "property", "view", p.id)


# -----------------------------
# role ceiling
# -----------------------------
def test_role_ceiling_beats_grant(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    p = make.property(org)
    lease = make.lease(make.unit(p))
    make.assign(team, p)
    grant_permission(db, team_id=team.id, resource_type="lease", resource_id=lease.id, action="delete")

    assert not _can(db, u, org, "lease", "delete", lease.id)
    assert _why(db, u, org, "lease", "delete", lease.id) == REASON_ROLE_DENIED


def test_unknown_global_role_is_denied(make, db):
    org = make.org()
    u = make.user(role="landlord")
    make.member(org, u, role="staff")
    assert not _can(db, u, org, "property", "view")


def test_type_level_check_uses_role_only(make, db):
    org = make.org()
    u = make.staff(org, team=make.team(org))
    assert _can(db, u, org, "lease", "update")
    assert not _can(db, u, org, "lease", "delete")


# -----------------------------
# team scoping
# -----------------------------
def test_property_in_team_is_allowed_and_outside_is_denied(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    p1, p2 = make.property(org), make.property(org)
    make.assign(team, p1)

    assert _can(db, u, org, "property", "view", p1.id)
    assert _why(db, u, org, "property", "view", p1.id) == REASON_TEAM_PROPERTY
    assert not _can(db, u, org, "property", "view", p2.id)
    assert _why(db, u, org, "property", "view", p2.id) == REASON_OUT_OF_SCOPE


def test_scoping_follows_unit_lease_maintenance_chain(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    inside, outside = make.property(org), make.property(org)
    make.assign(team, inside)

    in_unit, out_unit = make.unit(inside), make.unit(outside)
    in_lease, out_lease = make.lease(in_unit), make.lease(out_unit)

    assert _can(db, u, org, "unit", "update", in_unit.id)
    assert not _can(db, u, org, "unit", "update", out_unit.id)
    assert _can(db, u, org, "lease", "update", in_lease.id)
    assert not _can(db, u, org, "lease", "update", out_lease.id)

    direct = make.maintenance(prop=inside)
    via_unit = make.maintenance(unit=in_unit)
    foreign = make.maintenance(unit=out_unit)
    assert _can(db, u, org, "maintenance", "update", direct.id)
    assert _can(db, u, org, "maintenance", "update", via_unit.id)
    assert not _can(db, u, org, "maintenance", "update", foreign.id)


def test_tenant_visible_through_any_of_its_leases(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    inside, outside = make.property(org), make.property(org)
    make.assign(team, inside)

    lease_in = make.lease(make.unit(inside))
    lease_out = make.lease(make.unit(outside))
    shared = make.tenant(org, lease_in, lease_out)
    elsewhere = make.tenant(org, lease_out)

    assert _can(db, u, org, "tenant", "contact", shared.id)
    assert not _can(db, u, org, "tenant", "contact", elsewhere.id)


def test_unknown_resource_is_denied_for_team_member(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    make.assign(team, make.property(org))

    assert not _can(db, u, org, "lease", "update", "no-such-lease")
    assert not _can(db, u, org, "property", "view", "no-such-property")


def test_unscoped_type_needs_a_grant(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)

    assert not _can(db, u, org, "document", "view", "D1")
    grant_permission(db, team_id=team.id, resource_type="document", resource_id="D1", action="view")
    assert _can(db, u, org, "document", "view", "D1")
    assert _why(db, u, org, "document", "view", "D1") == REASON_RESOURCE_GRANT


def test_staff_without_team_gets_role_outcome(make, db):
    org = make.org()
    u = make.staff(org)
    p = make.property(org)

    assert _can(db, u, org, "property", "view", p.id)
    assert _why(db, u, org, "property", "view", p.id) == REASON_NO_TEAM
    assert not _can(db, u, org, "property", "delete", p.id)


def test_reassigning_properties_flips_the_decision(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    p, kept = make.property(org), make.property(org)
    lease = make.lease(make.unit(p))

    assert not _can(db, u, org, "property", "view", p.id)

    assign_properties(db, team_id=team.id, organization_id=org.id, property_ids=[p.id, kept.id])
    assert _can(db, u, org, "property", "view", p.id)
    assert _can(db, u, org, "lease", "update", lease.id)

    assign_properties(db, team_id=team.id, organization_id=org.id, property_ids=[kept.id])
    assert not _can(db, u, org, "property", "view", p.id)
    assert not _can(db, u, org, "lease", "update", lease.id)
    assert _why(db, u, org, "property", "view", p.id) == REASON_OUT_OF_SCOPE
    assert _can(db, u, org, "property", "view", kept.id)


def test_grant_on_an_instance_already_in_scope_changes_nothing(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    p = make.property(org)
    make.assign(team, p)
    lease = make.lease(make.unit(p))

    assert _can(db, u, org, "lease", "update", lease.id)
    grant_permission(db, team_id=team.id, resource_type="lease", resource_id=lease.id, action="update")
    assert _can(db, u, org, "lease", "update", lease.id)
    assert _why(db, u, org, "lease", "update", lease.id) == REASON_TEAM_PROPERTY

    revoke_permission(db, team_id=team.id, resource_type="lease", resource_id=lease.id, action="update")
    assert _can(db, u, org, "lease", "update", lease.id)


# -----------------------------
# end-to-end
# -----------------------------
def test_staff_lease_scenario(make, db):
    org = make.org(max_users=3)
    owner = make.user(role="agent_owner")
    make.member(org, owner, role="owner")
    team = make.team(org)
    u = make.staff(org, team=team)
    make.invitation(org)

    # 2 active members + 1 pending invitation == max_users
    assert can_invite_users(db, organization_id=org.id) is False

    p1, p2 = make.property(org), make.property(org)
    make.assign(team, p1)
    l1 = make.lease(make.unit(p1))
    l2 = make.lease(make.unit(p2))

    assert _can(db, u, org, "lease", "update", l1.id)
    assert not _can(db, u, org, "lease", "update", l2.id)

    grant_permission(db, team_id=team.id, resource_type="lease", resource_id=l2.id, action="update", actor_user_id=owner.id)
    assert _can(db, u, org, "lease", "update", l2.id)
    # grant is per action
    assert not _can(db, u, org, "lease", "view", l2.id)

    revoke_permission(db, team_id=team.id, resource_type="lease", resource_id=l2.id, action="update")
    assert not _can(db, u, org, "lease", "update", l2.id)


def test_membership_is_per_organization(make, db):
    home, away = make.org(), make.org()
    team = make.team(home)
    u = make.staff(home, team=team)
    p_away = make.property(away)

    assert not _can(db, u, away, "property", "view", p_away.id)


# -----------------------------
# helpers
# -----------------------------
def test_filter_permitted_keeps_order(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    p1, p2, p3 = make.property(org), make.property(org), make.property(org)
    make.assign(team, p1, p3)

    got = filter_permitted(
        db,
        user_id=u.id,
        organization_id=org.id,
        resource_type="property",
        action="view",
        resource_ids=[p3.id, p2.id, p1.id],
    )
    assert got == [p3.id, p1.id]


def test_can_access_property(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    p1, p2 = make.property(org), make.property(org)
    make.assign(team, p1)

    assert can_access_property(db, user_id=u.id, organization_id=org.id, property_id=p1.id)
    assert not can_access_property(db, user_id=u.id, organization_id=org.id, property_id=p2.id)


def test_accessible_property_ids(make, db):
    org = make.org()
    team = make.team(org)
    p1, p2, p3 = make.property(org), make.property(org), make.property(org)
    make.assign(team, p1)

    owner = make.user(role="agent_owner")
    make.member(org, owner, role="owner")
    staff = make.staff(org, team=team)
    loner = make.staff(org)

    landlord = make.user(role="property_owner")
    make.member(org, landlord, role="member")
    p2.owner_id = landlord.id
    caretaker = make.user(role="caretaker")
    make.member(org, caretaker, role="caretaker")
    p3.caretaker_id = caretaker.id
    db.commit()

    renter = make.user(role="tenant_user")
    make.member(org, renter, role="tenant")
    make.tenant(org, make.lease(make.unit(p2)), user=renter)

    def ids(user):
        return get_accessible_property_ids(db, user_id=user.id, organization_id=org.id)

    assert ids(owner) == {p1.id, p2.id, p3.id}
    assert ids(staff) == {p1.id}
    assert ids(loner) == {p1.id, p2.id, p3.id}
    assert ids(landlord) == {p2.id}
    assert ids(caretaker) == {p3.id}
    assert ids(renter) == {p2.id}
    assert ids(make.user()) == set()


def test_accessible_property_ids_match_can_access_property(make, db):
    org = make.org()
    team = make.team(org)
    in_team, granted, other = make.property(org), make.property(org), make.property(org)
    make.assign(team, in_team)
    grant_permission(db, team_id=team.id, resource_type="property", resource_id=granted.id, action="view")
    grant_permission(db, team_id=team.id, resource_type="property", resource_id=other.id, action="update")

    staff = make.staff(org, team=team)
    loner = make.staff(org)
    make.property(make.org())

    for user in (staff, loner):
        listed = get_accessible_property_ids(db, user_id=user.id, organization_id=org.id)
        allowed = {
            p.id
            for p in (in_team, granted, other)
            if can_access_property(db, user_id=user.id, organization_id=org.id, property_id=p.id)
        }
        assert listed == allowed

    assert get_accessible_property_ids(db, user_id=staff.id, organization_id=org.id) == {in_team.id, granted.id}


def test_team_member_whose_role_cannot_view_properties_lists_nothing(make, db):
    org = make.org()
    team = make.team(org)
    p = make.property(org)
    make.assign(team, p)
    renter = make.staff(org, team=team, role="tenant_user")

    assert not can_access_property(db, user_id=renter.id, organization_id=org.id, property_id=p.id)
    assert get_accessible_property_ids(db, user_id=renter.id, organization_id=org.id) == set()


def test_org_role_helpers(make, db):
    founder = make.user(role="agent_owner")
    org = make.org(agent_owner=founder)
    make.member(org, founder, role="owner")
    admin = make.user()
    make.member(org, admin, role="admin")
    staff = make.staff(org)

    assert get_member_role(db, user_id=founder.id, organization_id=org.id) == "owner"
    assert get_member_role(db, user_id=staff.id, organization_id=org.id) == "staff"
    assert get_member_role(db, user_id=make.user().id, organization_id=org.id) is None

    assert is_organization_admin(db, user_id=admin.id, organization_id=org.id)
    assert is_organization_admin(db, user_id=founder.id, organization_id=org.id)
    assert not is_organization_admin(db, user_id=staff.id, organization_id=org.id)

    assert is_organization_owner(db, user_id=founder.id, organization_id=org.id)
    assert not is_organization_owner(db, user_id=admin.id, organization_id=org.id)


def test_permission_checker_caches_and_asserts(make, db):
    org = make.org()
    team = make.team(org)
    u = make.staff(org, team=team)
    p1, p2 = make.property(org), make.property(org)
    make.assign(team, p1)

    checker = PermissionChecker(db, user_id=u.id, organization_id=org.id)
    assert checker.can("property", "view", p1.id)
    assert checker.filter("property", "view", [p1.id, p2.id]) == [p1.id]

    checker.assert_can("property", "view", p1.id)
    with pytest.raises(AuthorizationDenied):
        checker.assert_can("property", "view", p2.id)

    # cached: later changes are not seen by this instance
    make.assign(team, p2)
    assert not checker.can("property", "view", p2.id)
    fresh = PermissionChecker(db, user_id=u.id, organization_id=org.id)
    assert fresh.can("property", "view", p2.id)
