# backend/letlog/schemas.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict, field_validator

from .domain.invitations import InvitationStatus, normalize_email
from .domain.review_eligibility import RATING_MAX, RATING_MIN, LinkType, ReviewKind
from .domain.tenancy_lifecycle import TenancyStatus


# -------------------- Access --------------------

class RouteOut(BaseModel):
    path: str
    label: str


class AccessOut(BaseModel):
    path: str
    allowed: bool
    reason: str
    roles: List[str] | str
    redirect_to: Optional[str] = None
    visible_routes: List[RouteOut] = Field(default_factory=list)


# -------------------- Invitations --------------------

class InvitationCreate(BaseModel):
    tenancy_id: int
    email: str
    name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("name")
    @classmethod
    def _name(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        return v or None


class InvitationOut(BaseModel):
    id: int
    tenancy_id: int
    email: str
    name: Optional[str] = None
    inviter_id: int
    status: InvitationStatus
    issued_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class InvitationIssuedOut(BaseModel):
    invitation: InvitationOut
    link: str
    notified: bool


class InvitationViewOut(BaseModel):
    # token is never echoed back on the public landing view
    tenancy_id: int
    email: str
    name: Optional[str] = None
    status: InvitationStatus
    expires_at: datetime
    can_accept: bool
    reason: Optional[str] = None


class AcceptOut(BaseModel):
    invitation: InvitationOut
    newly_accepted: bool


# -------------------- Tenancies --------------------

class TenancyOut(BaseModel):
    id: int
    property_id: int
    landlord_id: int
    status: TenancyStatus
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    ended_at: Optional[datetime] = None
    tenant_ids: List[int] = Field(default_factory=list)
    lead_tenant_id: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class TenancyOverviewOut(TenancyOut):
    is_ended: bool
    days_until_end: Optional[int] = None
    urgency: Optional[str] = None


# -------------------- Reviews --------------------

class EligibilityOut(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    kind: ReviewKind
    link_type: LinkType
    link_id: int
    reviewee_id: Optional[int] = None
    window_ends_at: Optional[datetime] = None
    error_kind: Optional[str] = None


class SubRatings(BaseModel):
    responsiveness: Optional[int] = Field(default=None, ge=RATING_MIN, le=RATING_MAX)
    condition: Optional[int] = Field(default=None, ge=RATING_MIN, le=RATING_MAX)
    fairness: Optional[int] = Field(default=None, ge=RATING_MIN, le=RATING_MAX)


class ReviewCreate(BaseModel):
    link_type: Optional[LinkType] = None  # defaults from the reviewer's role
    link_id: int
    rating: int = Field(ge=RATING_MIN, le=RATING_MAX)
    content: Optional[str] = Field(default=None, max_length=5000)
    sub_ratings: Optional[SubRatings] = None
    # landlord reviews of a contractor on a tender with no winning quote
    contractor_id: Optional[int] = None


class ReviewOut(BaseModel):
    id: int
    reviewer_id: int
    reviewee_id: int
    kind: ReviewKind
    link_type: LinkType
    link_id: int
    rating: int
    sub_ratings: dict[str, int] = Field(default_factory=dict)
    content: Optional[str] = None
    created_at: datetime
