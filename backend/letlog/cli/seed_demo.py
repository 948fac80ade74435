# backend/letlog/cli/seed_demo.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from letlog.db import SessionLocal, init_db
from letlog.domain.roles import Role
from letlog.models import AppUser, Property, Tenancy


@dataclass(frozen=True)
class SeedResult:
    landlord_id: int
    tenant_id: int
    contractor_id: int
    property_id: Optional[int]
    tenancy_id: Optional[int]


def _get_or_create_user(db: Session, email: str, display_name: str, role: Role) -> AppUser:
    row = db.query(AppUser).filter(AppUser.email == email).one_or_none()
    if row:
        return row
    row = AppUser(email=email, display_name=display_name, role=role.value)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def seed_demo(
    *,
    landlord_email: str = "landlord@demo.local",
    tenant_email: str = "tenant@demo.local",
    contractor_email: str = "contractor@demo.local",
    create_sample_tenancy: bool = True,
) -> SeedResult:
    init_db()
    db = SessionLocal()
    try:
        landlord = _get_or_create_user(db, landlord_email, "Demo Landlord", Role.LANDLORD)
        tenant = _get_or_create_user(db, tenant_email, "Demo Tenant", Role.TENANT)
        contractor = _get_or_create_user(db, contractor_email, "Demo Contractor", Role.CONTRACTOR)

        property_id: Optional[int] = None
        tenancy_id: Optional[int] = None
        if create_sample_tenancy:
            prop = db.query(Property).filter(Property.landlord_id == landlord.id).first()
            if not prop:
                prop = Property(landlord_id=landlord.id, address="12 Example Street", city="Leeds", postcode="LS1 1AA")
                db.add(prop)
                db.commit()
                db.refresh(prop)

            tenancy = db.query(Tenancy).filter(Tenancy.property_id == prop.id).first()
            if not tenancy:
                # draft until the first invitation goes out
                tenancy = Tenancy(property_id=prop.id, status="draft")
                db.add(tenancy)
                db.commit()
                db.refresh(tenancy)

            property_id = int(prop.id)
            tenancy_id = int(tenancy.id)

        return SeedResult(
            landlord_id=int(landlord.id),
            tenant_id=int(tenant.id),
            contractor_id=int(contractor.id),
            property_id=property_id,
            tenancy_id=tenancy_id,
        )
    finally:
        db.close()
