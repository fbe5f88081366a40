# tests/conftest.py
from __future__ import annotations

import itertools
import os
import tempfile
from datetime import date, datetime

import pytest

# Point the app at a throwaway SQLite file before propauth.config is imported.
_DB_DIR = tempfile.mkdtemp(prefix="propauth-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["APP_ENV"] = "local"
os.environ["AUTH_MODE"] = "dev"
os.environ["AUTO_CREATE_TABLES"] = "false"

from fastapi.testclient import TestClient  # noqa: E402

from propauth import models  # noqa: E402,F401
from propauth.db import Base, SessionLocal, engine  # noqa: E402
from propauth.main import create_app  # noqa: E402
from propauth.models import (  # noqa: E402
    Invitation,
    Lease,
    LeaseTenant,
    MaintenanceRequest,
    Member,
    Organization,
    Property,
    Team,
    TeamProperty,
    Tenant,
    Unit,
    User,
)

_seq = itertools.count(1)


class Factory:
    """Small row builders; every call commits so the rows are visible to other sessions."""

    def __init__(self, db) -> None:
        self.db = db

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def user(self, role: str = "agent_staff", email: str | None = None) -> User:
        n = next(_seq)
        return self._save(User(email=email or f"user{n}@test.local", name=f"user{n}", role=role))

    def org(
        self,
        *,
        max_users: int = 3,
        max_properties: int = 5,
        agent_owner: User | None = None,
        subscription_status: str = "active",
        subscription_plan: str | None = None,
        trial_status: str = "none",
        trial_expires_at: datetime | None = None,
    ) -> Organization:
        n = next(_seq)
        return self._save(
            Organization(
                name=f"Org {n}",
                slug=f"org-{n}",
                max_users=max_users,
                max_properties=max_properties,
                agent_owner_id=agent_owner.id if agent_owner else None,
                subscription_status=subscription_status,
                subscription_plan=subscription_plan,
                trial_status=trial_status,
                trial_expires_at=trial_expires_at,
            )
        )

    def team(self, org: Organization, name: str | None = None) -> Team:
        return self._save(Team(organization_id=org.id, name=name or f"Team {next(_seq)}"))

    def member(
        self,
        org: Organization,
        user: User,
        *,
        role: str = "staff",
        status: str = "active",
        team: Team | None = None,
    ) -> Member:
        return self._save(
            Member(
                organization_id=org.id,
                user_id=user.id,
                role=role,
                status=status,
                team_id=team.id if team else None,
            )
        )

    def staff(self, org: Organization, *, team: Team | None = None, role: str = "agent_staff") -> User:
        u = self.user(role=role)
        self.member(org, u, role="staff", team=team)
        return u

    def property(
        self,
        org: Organization,
        *,
        owner: User | None = None,
        caretaker: User | None = None,
    ) -> Property:
        n = next(_seq)
        return self._save(
            Property(
                organization_id=org.id,
                name=f"Property {n}",
                address=f"{n} Main St",
                owner_id=owner.id if owner else None,
                caretaker_id=caretaker.id if caretaker else None,
            )
        )

    def unit(self, prop: Property) -> Unit:
        return self._save(Unit(property_id=prop.id, name=f"Unit {next(_seq)}"))

    def lease(self, unit: Unit) -> Lease:
        return self._save(Lease(unit_id=unit.id, start_date=date(2026, 1, 1), end_date=date(2026, 12, 31)))

    def tenant(self, org: Organization, *leases: Lease, user: User | None = None) -> Tenant:
        t = self._save(
            Tenant(organization_id=org.id, full_name=f"Tenant {next(_seq)}", user_id=user.id if user else None)
        )
        for lease in leases:
            self.db.add(LeaseTenant(lease_id=lease.id, tenant_id=t.id))
        self.db.commit()
        return t

    def maintenance(self, *, prop: Property | None = None, unit: Unit | None = None) -> MaintenanceRequest:
        return self._save(
            MaintenanceRequest(
                property_id=prop.id if prop else None,
                unit_id=unit.id if unit else None,
                title="Leaking tap",
            )
        )

    def invitation(self, org: Organization, *, status: str = "pending") -> Invitation:
        return self._save(Invitation(organization_id=org.id, email=f"invite{next(_seq)}@test.local", status=status))

    def assign(self, team: Team, *props: Property) -> None:
        for p in props:
            self.db.add(TeamProperty(team_id=team.id, property_id=p.id))
        self.db.commit()


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def make(db) -> Factory:
    return Factory(db)


@pytest.fixture
def client():
    with TestClient(create_app()) as c:
        yield c


@pytest.fixture
def as_user():
    def _headers(org: Organization, user: User) -> dict[str, str]:
        return {"X-Org-Id": org.id, "X-User-Id": user.id}

    return _headers
