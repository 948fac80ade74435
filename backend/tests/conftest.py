# backend/tests/conftest.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from letlog import db as db_module
from letlog.db import Base, SessionLocal
from letlog import models  # noqa: F401  (register mappers)
from letlog.domain.clock import FixedClock
from letlog.domain.roles import Role
from letlog.models import AppUser, Property, Quote, Tenancy, TenancyTenant, Tender
from letlog.services.policy import Actor

# One in-memory database shared by every SessionLocal() in the process,
# including the ones FastAPI's get_db opens inside TestClient requests.
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
SessionLocal.configure(bind=test_engine)
db_module.engine = test_engine

T0 = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


# ---- factories ----


def mk_user(db, email: str, role: Optional[str]) -> AppUser:
    u = AppUser(email=email, display_name=email.split("@")[0], role=role)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def actor_for(user: AppUser) -> Actor:
    return Actor(user_id=int(user.id), role=Role(user.role), email=user.email)


def mk_tenancy(
    db,
    *,
    landlord: AppUser,
    status: str = "draft",
    end_date: Optional[date] = None,
    ended_at: Optional[datetime] = None,
    tenants: tuple = (),
) -> Tenancy:
    p = Property(landlord_id=landlord.id, address="1 Test Row", city="Leeds", postcode="LS1 1AA")
    db.add(p)
    db.commit()
    db.refresh(p)

    t = Tenancy(property_id=p.id, status=status, start_date=date(2023, 1, 1), end_date=end_date, ended_at=ended_at)
    db.add(t)
    db.commit()
    db.refresh(t)

    for i, tenant in enumerate(tenants):
        db.add(TenancyTenant(tenancy_id=t.id, tenant_id=tenant.id, is_lead_tenant=(i == 0)))
    db.commit()
    return t


def mk_job(
    db,
    *,
    landlord: AppUser,
    contractor: AppUser,
    tender_status: str = "completed",
    quote_status: str = "accepted",
) -> Tender:
    tender = Tender(landlord_id=landlord.id, title="Fix boiler", status=tender_status)
    db.add(tender)
    db.commit()
    db.refresh(tender)
    db.add(Quote(tender_id=tender.id, contractor_id=contractor.id, amount=250.0, status=quote_status))
    db.commit()
    return tender


@pytest.fixture
def people(db):
    """A landlord, a second landlord, two tenants and a contractor."""
    return {
        "landlord": mk_user(db, "landlord@t.local", "landlord"),
        "other_landlord": mk_user(db, "other@t.local", "landlord"),
        "tenant": mk_user(db, "tenant@t.local", "tenant"),
        "tenant2": mk_user(db, "tenant2@t.local", "tenant"),
        "contractor": mk_user(db, "builder@t.local", "contractor"),
    }
