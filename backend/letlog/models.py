# backend/letlog/models.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .domain.clock import utcnow


# -----------------------------
# Profiles
# -----------------------------
class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    # landlord|tenant|contractor; parsed through domain.roles.parse_role on load
    role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# -----------------------------
# Properties / tenancies
# -----------------------------
class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    landlord_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)

    address: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    postcode: Mapped[Optional[str]] = mapped_column(String(12), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    tenancies: Mapped[List["Tenancy"]] = relationship(back_populates="property")
    tenders: Mapped[List["Tender"]] = relationship(back_populates="property")


class Tenancy(Base):
    __tablename__ = "tenancies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # No cascade: a property with tenancies cannot be deleted out from under
    # invitations and reviews that reference them.
    property_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("properties.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)  # NULL = rolling
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    rent_amount: Mapped[Optional[float]] = mapped_column(nullable=True)
    rent_frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    property: Mapped["Property"] = relationship(back_populates="tenancies")
    tenants: Mapped[List["TenancyTenant"]] = relationship(back_populates="tenancy", cascade="all, delete-orphan")


class TenancyTenant(Base):
    __tablename__ = "tenancy_tenants"
    __table_args__ = (UniqueConstraint("tenancy_id", "tenant_id", name="uq_tenancy_tenants_tenancy_tenant"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenancy_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tenancies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)
    is_lead_tenant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    tenancy: Mapped["Tenancy"] = relationship(back_populates="tenants")


class TenantInvitation(Base):
    __tablename__ = "tenant_invitations"
    __table_args__ = (
        # At most one pending invitation per (email, tenancy). This index is the
        # authoritative guard; the pre-check in the service is only a fast path.
        Index(
            "uq_tenant_invitations_pending_email_tenancy",
            "email",
            "tenancy_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    tenancy_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tenancies.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    email: Mapped[str] = mapped_column(String(200), nullable=False, index=True)  # lower-cased
    name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    invited_by: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    issued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    accepted_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)


# -----------------------------
# Tenders / quotes
# -----------------------------
class Tender(Base):
    __tablename__ = "tenders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("properties.id"), nullable=True, index=True)
    landlord_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")  # open|in_progress|completed|cancelled
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    property: Mapped[Optional["Property"]] = relationship(back_populates="tenders")
    quotes: Mapped[List["Quote"]] = relationship(back_populates="tender", cascade="all, delete-orphan")


class Quote(Base):
    __tablename__ = "quotes"
    __table_args__ = (UniqueConstraint("tender_id", "contractor_id", name="uq_quotes_tender_contractor"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tender_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)
    contractor_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)

    amount: Mapped[Optional[float]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="submitted")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    tender: Mapped["Tender"] = relationship(back_populates="quotes")


# -----------------------------
# Reviews
# -----------------------------
class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        # write-once per (reviewer, kind, linked tenancy-or-tender)
        UniqueConstraint("reviewer_id", "review_type", "link_type", "link_id", name="uq_reviews_reviewer_kind_link"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reviewer_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)
    reviewee_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)

    review_type: Mapped[str] = mapped_column(String(30), nullable=False)  # landlord_review|contractor_review
    link_type: Mapped[str] = mapped_column(String(20), nullable=False)  # tenancy|tender
    link_id: Mapped[int] = mapped_column(Integer, nullable=False)

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    rating_responsiveness: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rating_condition: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rating_fairness: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
