# backend/letlog/services/repository.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from sqlalchemy import select, update, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.errors import ErrorKind, PolicyError
from ..domain.invitations import InvitationSnapshot, InvitationStatus
from ..domain.review_eligibility import (
    JobState,
    LinkType,
    QuoteStatus,
    ReviewKind,
    ReviewLink,
    TenderStatus,
    WINNING_QUOTE_STATUSES,
)
from ..domain.roles import Role, parse_role
from ..domain.tenancy_lifecycle import TenancySnapshot, TenancyStatus, TransitionResult
from ..models import AppUser, Property, Quote, Review, Tenancy, TenancyTenant, TenantInvitation, Tender


@dataclass(frozen=True)
class UserProfile:
    id: int
    email: str
    role: Role
    display_name: Optional[str] = None


@dataclass(frozen=True)
class PropertySnapshot:
    id: int
    landlord_id: int


@dataclass(frozen=True)
class ReviewRecord:
    id: int
    reviewer_id: int
    reviewee_id: int
    kind: ReviewKind
    link: ReviewLink
    rating: int
    sub_ratings: dict
    content: Optional[str]
    created_at: datetime


class PolicyRepository(Protocol):
    """
    Everything the policy engine reads, plus the writes services perform
    after a favorable decision. Lookups are single-record and unpaginated.
    """

    def get_user(self, user_id: int) -> Optional[UserProfile]: ...

    def get_property(self, property_id: int) -> Optional[PropertySnapshot]: ...

    def get_tenancy(self, tenancy_id: int) -> Optional[TenancySnapshot]: ...

    def get_invitation(self, invitation_id: int) -> Optional[InvitationSnapshot]: ...

    def get_invitation_by_token(self, token: str) -> Optional[InvitationSnapshot]: ...

    def find_pending_invitation(self, email: str, tenancy_id: int) -> Optional[InvitationSnapshot]: ...

    def get_job_state(self, tender_id: int, contractor_id: Optional[int]) -> Optional[JobState]: ...

    def has_review(self, reviewer_id: int, link: ReviewLink, kind: ReviewKind) -> bool: ...

    def list_review_links(self, user_id: int, role: Role) -> List[Tuple[ReviewLink, Optional[int]]]: ...

    def add_invitation(self, inv: InvitationSnapshot) -> InvitationSnapshot: ...

    def update_invitation_status(
        self,
        invitation_id: int,
        *,
        from_status: InvitationStatus,
        to_status: InvitationStatus,
        at: Optional[datetime] = None,
        accepted_by: Optional[int] = None,
    ) -> bool: ...

    def expire_pending_invitations(self, now: datetime) -> int: ...

    def set_tenancy_status(self, tenancy_id: int, result: TransitionResult) -> None: ...

    def add_tenancy_tenant(self, tenancy_id: int, tenant_id: int, *, is_lead: bool = False) -> bool: ...

    def add_review(
        self,
        *,
        reviewer_id: int,
        reviewee_id: int,
        kind: ReviewKind,
        link: ReviewLink,
        rating: int,
        sub_ratings: dict,
        content: Optional[str],
        created_at: datetime,
    ) -> ReviewRecord: ...


# -----------------------------------------------------------------------------
# Row -> snapshot mapping
# -----------------------------------------------------------------------------


def _invitation_snapshot(row: TenantInvitation) -> InvitationSnapshot:
    return InvitationSnapshot(
        id=int(row.id),
        token=str(row.token),
        tenancy_id=int(row.tenancy_id),
        email=str(row.email),
        name=row.name,
        inviter_id=int(row.invited_by),
        status=InvitationStatus(row.status),
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        accepted_at=row.accepted_at,
        accepted_by=row.accepted_by,
    )


def _review_record(row: Review) -> ReviewRecord:
    subs = {
        "responsiveness": row.rating_responsiveness,
        "condition": row.rating_condition,
        "fairness": row.rating_fairness,
    }
    return ReviewRecord(
        id=int(row.id),
        reviewer_id=int(row.reviewer_id),
        reviewee_id=int(row.reviewee_id),
        kind=ReviewKind(row.review_type),
        link=ReviewLink(LinkType(row.link_type), int(row.link_id)),
        rating=int(row.rating),
        sub_ratings={k: v for k, v in subs.items() if v is not None},
        content=row.content,
        created_at=row.created_at,
    )


def _is_unique_violation(exc: IntegrityError, *markers: str) -> bool:
    # Postgres names the constraint; SQLite lists the columns.
    msg = str(getattr(exc, "orig", exc)).lower()
    return any(m.lower() in msg for m in markers)


class SqlPolicyRepository:
    """
    SQLAlchemy implementation. Never commits; the caller owns the transaction.

    On a constraint violation the session is rolled back (the transaction is
    unusable afterwards on Postgres) and a PolicyError is raised.
    """

    def __init__(self, db: Session):
        self.db = db

    # ---- reads ----

    def get_user(self, user_id: int) -> Optional[UserProfile]:
        row = self.db.scalar(select(AppUser).where(AppUser.id == int(user_id)))
        if row is None:
            return None
        return UserProfile(
            id=int(row.id),
            email=str(row.email),
            role=parse_role(row.role, fallback=settings.role_fallback),
            display_name=row.display_name,
        )

    def get_property(self, property_id: int) -> Optional[PropertySnapshot]:
        row = self.db.scalar(select(Property).where(Property.id == int(property_id)))
        if row is None:
            return None
        return PropertySnapshot(id=int(row.id), landlord_id=int(row.landlord_id))

    def get_tenancy(self, tenancy_id: int) -> Optional[TenancySnapshot]:
        row = self.db.scalar(select(Tenancy).where(Tenancy.id == int(tenancy_id)))
        if row is None:
            return None

        landlord_id = self.db.scalar(select(Property.landlord_id).where(Property.id == row.property_id))
        links = self.db.execute(
            select(TenancyTenant.tenant_id, TenancyTenant.is_lead_tenant)
            .where(TenancyTenant.tenancy_id == row.id)
            .order_by(TenancyTenant.id)
        ).all()
        lead = next((int(t) for t, is_lead in links if is_lead), None)

        return TenancySnapshot(
            id=int(row.id),
            property_id=int(row.property_id),
            landlord_id=int(landlord_id) if landlord_id is not None else 0,
            status=TenancyStatus(row.status),
            start_date=row.start_date,
            end_date=row.end_date,
            ended_at=row.ended_at,
            tenant_ids=tuple(int(t) for t, _ in links),
            lead_tenant_id=lead,
        )

    def get_invitation(self, invitation_id: int) -> Optional[InvitationSnapshot]:
        row = self.db.scalar(select(TenantInvitation).where(TenantInvitation.id == int(invitation_id)))
        return _invitation_snapshot(row) if row is not None else None

    def get_invitation_by_token(self, token: str) -> Optional[InvitationSnapshot]:
        if not token:
            return None
        row = self.db.scalar(select(TenantInvitation).where(TenantInvitation.token == str(token)))
        return _invitation_snapshot(row) if row is not None else None

    def find_pending_invitation(self, email: str, tenancy_id: int) -> Optional[InvitationSnapshot]:
        row = self.db.scalar(
            select(TenantInvitation).where(
                TenantInvitation.email == email,
                TenantInvitation.tenancy_id == int(tenancy_id),
                TenantInvitation.status == InvitationStatus.PENDING.value,
            )
        )
        return _invitation_snapshot(row) if row is not None else None

    def get_job_state(self, tender_id: int, contractor_id: Optional[int]) -> Optional[JobState]:
        """
        Tender + one contractor's quote. With no contractor_id, the contractor
        on the winning (accepted/completed) quote is used.
        """
        tender = self.db.scalar(select(Tender).where(Tender.id == int(tender_id)))
        if tender is None:
            return None

        q = select(Quote).where(Quote.tender_id == tender.id)
        if contractor_id is not None:
            q = q.where(Quote.contractor_id == int(contractor_id))
        else:
            q = q.where(Quote.status.in_([s.value for s in WINNING_QUOTE_STATUSES]))
        quote = self.db.scalar(q.order_by(Quote.id.desc()))

        if quote is None and contractor_id is None:
            return None

        return JobState(
            tender_id=int(tender.id),
            landlord_id=int(tender.landlord_id),
            tender_status=TenderStatus(tender.status),
            contractor_id=int(quote.contractor_id) if quote is not None else int(contractor_id),
            quote_status=QuoteStatus(quote.status) if quote is not None else None,
        )

    def has_review(self, reviewer_id: int, link: ReviewLink, kind: ReviewKind) -> bool:
        return bool(
            self.db.scalar(
                select(
                    exists().where(
                        Review.reviewer_id == int(reviewer_id),
                        Review.review_type == kind.value,
                        Review.link_type == link.type.value,
                        Review.link_id == int(link.id),
                    )
                )
            )
        )

    def list_review_links(self, user_id: int, role: Role) -> List[Tuple[ReviewLink, Optional[int]]]:
        """Candidate (link, contractor_id) pairs a user might review, newest first."""
        uid = int(user_id)
        if role == Role.TENANT:
            ids = self.db.scalars(
                select(Tenancy.id)
                .join(TenancyTenant, TenancyTenant.tenancy_id == Tenancy.id)
                .where(
                    TenancyTenant.tenant_id == uid,
                    Tenancy.status.in_([TenancyStatus.ENDED.value, TenancyStatus.TERMINATED.value]),
                )
                .order_by(Tenancy.id.desc())
            ).all()
            return [(ReviewLink(LinkType.TENANCY, int(i)), None) for i in ids]

        winning = [s.value for s in WINNING_QUOTE_STATUSES]
        q = (
            select(Tender.id, Quote.contractor_id)
            .join(Quote, Quote.tender_id == Tender.id)
            .where(Tender.status == TenderStatus.COMPLETED.value, Quote.status.in_(winning))
        )
        if role == Role.LANDLORD:
            q = q.where(Tender.landlord_id == uid)
        else:
            q = q.where(Quote.contractor_id == uid)
        rows = self.db.execute(q.order_by(Tender.id.desc())).all()
        return [(ReviewLink(LinkType.TENDER, int(t)), int(c)) for t, c in rows]

    # ---- writes ----

    def add_invitation(self, inv: InvitationSnapshot) -> InvitationSnapshot:
        row = TenantInvitation(
            token=inv.token,
            tenancy_id=inv.tenancy_id,
            email=inv.email,
            name=inv.name,
            invited_by=inv.inviter_id,
            status=inv.status.value,
            issued_at=inv.issued_at,
            expires_at=inv.expires_at,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if _is_unique_violation(e, "uq_tenant_invitations_pending_email_tenancy", "tenant_invitations.email"):
                raise PolicyError(
                    ErrorKind.DUPLICATE_PENDING_INVITATION,
                    f"an invitation has already been sent to {inv.email} for this tenancy",
                ) from e
            raise
        return _invitation_snapshot(row)

    def update_invitation_status(
        self,
        invitation_id: int,
        *,
        from_status: InvitationStatus,
        to_status: InvitationStatus,
        at: Optional[datetime] = None,
        accepted_by: Optional[int] = None,
    ) -> bool:
        """Conditional update; True only if this call moved the row."""
        values: dict = {"status": to_status.value}
        if to_status == InvitationStatus.ACCEPTED:
            values["accepted_at"] = at
            values["accepted_by"] = accepted_by

        res = self.db.execute(
            update(TenantInvitation)
            .where(TenantInvitation.id == int(invitation_id), TenantInvitation.status == from_status.value)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return (res.rowcount or 0) == 1

    def expire_pending_invitations(self, now: datetime) -> int:
        res = self.db.execute(
            update(TenantInvitation)
            .where(
                TenantInvitation.status == InvitationStatus.PENDING.value,
                TenantInvitation.expires_at < now,
            )
            .values(status=InvitationStatus.EXPIRED.value)
            .execution_options(synchronize_session="fetch")
        )
        return int(res.rowcount or 0)

    def set_tenancy_status(self, tenancy_id: int, result: TransitionResult) -> None:
        row = self.db.scalar(select(Tenancy).where(Tenancy.id == int(tenancy_id)))
        if row is None:
            raise PolicyError(ErrorKind.NOT_FOUND, f"tenancy {tenancy_id} not found")
        row.status = result.status.value
        row.ended_at = result.ended_at
        self.db.add(row)
        self.db.flush()

    def add_tenancy_tenant(self, tenancy_id: int, tenant_id: int, *, is_lead: bool = False) -> bool:
        found = self.db.scalar(
            select(TenancyTenant).where(
                TenancyTenant.tenancy_id == int(tenancy_id),
                TenancyTenant.tenant_id == int(tenant_id),
            )
        )
        if found is not None:
            return False
        self.db.add(TenancyTenant(tenancy_id=int(tenancy_id), tenant_id=int(tenant_id), is_lead_tenant=bool(is_lead)))
        self.db.flush()
        return True

    def add_review(
        self,
        *,
        reviewer_id: int,
        reviewee_id: int,
        kind: ReviewKind,
        link: ReviewLink,
        rating: int,
        sub_ratings: dict,
        content: Optional[str],
        created_at: datetime,
    ) -> ReviewRecord:
        row = Review(
            reviewer_id=int(reviewer_id),
            reviewee_id=int(reviewee_id),
            review_type=kind.value,
            link_type=link.type.value,
            link_id=int(link.id),
            rating=int(rating),
            rating_responsiveness=sub_ratings.get("responsiveness"),
            rating_condition=sub_ratings.get("condition"),
            rating_fairness=sub_ratings.get("fairness"),
            content=content,
            created_at=created_at,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if _is_unique_violation(e, "uq_reviews_reviewer_kind_link", "reviews.reviewer_id"):
                raise PolicyError(ErrorKind.ALREADY_REVIEWED, f"You have already reviewed this {link.type.value}") from e
            raise
        return _review_record(row)
