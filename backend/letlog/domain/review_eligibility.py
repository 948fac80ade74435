# backend/letlog/domain/review_eligibility.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .errors import ErrorKind, PolicyError
from .roles import Role
from .tenancy_lifecycle import TenancySnapshot, is_ended

# Who may review whom, and when:
#
#   tenant     -> landlord    tenancy ended/terminated, within review_window_days of ended_at
#   landlord   -> contractor  tender completed, contractor's quote accepted/completed
#   contractor -> landlord    tender completed, own quote accepted/completed
#
# Job-based reviews have no window. Every review is write-once per
# (reviewer, link, kind).


class ReviewKind(str, enum.Enum):
    LANDLORD_REVIEW = "landlord_review"  # reviewee is a landlord
    CONTRACTOR_REVIEW = "contractor_review"  # reviewee is a contractor


class LinkType(str, enum.Enum):
    TENANCY = "tenancy"
    TENDER = "tender"


class TenderStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QuoteStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    COMPLETED = "completed"


WINNING_QUOTE_STATUSES = frozenset({QuoteStatus.ACCEPTED, QuoteStatus.COMPLETED})


@dataclass(frozen=True)
class ReviewLink:
    type: LinkType
    id: int

    @property
    def key(self) -> str:
        return f"{self.type.value}:{self.id}"


@dataclass(frozen=True)
class JobState:
    """A tender joined with one contractor's quote on it."""

    tender_id: int
    landlord_id: int
    tender_status: TenderStatus
    contractor_id: int
    quote_status: Optional[QuoteStatus]  # None: contractor never quoted


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: Optional[str]
    kind: ReviewKind
    link: ReviewLink
    reviewee_id: Optional[int] = None
    window_ends_at: Optional[datetime] = None
    error_kind: Optional[ErrorKind] = None


def _no(kind: ReviewKind, link: ReviewLink, error_kind: ErrorKind, reason: str, **kw) -> Eligibility:
    return Eligibility(eligible=False, reason=reason, kind=kind, link=link, error_kind=error_kind, **kw)


def kind_for(reviewer_role: Role) -> ReviewKind:
    """Tenants and contractors review landlords; landlords review contractors."""
    if reviewer_role == Role.LANDLORD:
        return ReviewKind.CONTRACTOR_REVIEW
    return ReviewKind.LANDLORD_REVIEW


def link_type_for(reviewer_role: Role) -> LinkType:
    return LinkType.TENANCY if reviewer_role == Role.TENANT else LinkType.TENDER


def check_role_link(reviewer_role: Role, kind: ReviewKind, link_type: LinkType) -> None:
    """Reject review kinds a role never writes (e.g. a landlord reviewing a landlord)."""
    if kind != kind_for(reviewer_role) or link_type != link_type_for(reviewer_role):
        raise PolicyError(
            ErrorKind.UNAUTHORIZED,
            f"{reviewer_role.value}s cannot write a {kind.value.replace('_', ' ')} linked to a {link_type.value}",
        )


def review_window_ends(ended: datetime, window_days: int) -> datetime:
    return ended + timedelta(days=int(window_days))


def _already(kind: ReviewKind, link: ReviewLink, **kw) -> Eligibility:
    return _no(kind, link, ErrorKind.ALREADY_REVIEWED, f"You have already reviewed this {link.type.value}", **kw)


def tenant_review_of_landlord(
    *,
    reviewer_id: int,
    tenancy: TenancySnapshot,
    now: datetime,
    window_days: int,
    already_reviewed: bool,
) -> Eligibility:
    """
    Eligibility is keyed to this tenancy and its own ended_at, so re-letting
    to the same tenant opens a fresh window on the new tenancy.
    """
    kind = ReviewKind.LANDLORD_REVIEW
    link = ReviewLink(LinkType.TENANCY, tenancy.id)
    reviewee = tenancy.landlord_id

    if reviewer_id not in tenancy.tenant_ids:
        return _no(kind, link, ErrorKind.FORBIDDEN, "You were not a tenant on this tenancy")

    if not is_ended(tenancy) or tenancy.ended_at is None:
        return _no(
            kind,
            link,
            ErrorKind.INVALID_TRANSITION,
            "You can review your landlord once the tenancy has ended",
            reviewee_id=reviewee,
        )

    window_end = review_window_ends(tenancy.ended_at, window_days)
    if now > window_end:
        days_ago = (now - window_end).days
        when = "today" if days_ago == 0 else f"{days_ago} day{'s' if days_ago != 1 else ''} ago"
        return _no(
            kind,
            link,
            ErrorKind.EXPIRED,
            f"Review window closed {when} (reviews are accepted within a {window_days}-day window "
            f"after the tenancy ends)",
            reviewee_id=reviewee,
            window_ends_at=window_end,
        )

    if already_reviewed:
        return _already(kind, link, reviewee_id=reviewee, window_ends_at=window_end)

    return Eligibility(eligible=True, reason=None, kind=kind, link=link, reviewee_id=reviewee, window_ends_at=window_end)


def _job_gate(job: JobState, kind: ReviewKind, link: ReviewLink, reviewee: int) -> Optional[Eligibility]:
    if job.tender_status != TenderStatus.COMPLETED:
        return _no(
            kind,
            link,
            ErrorKind.INVALID_TRANSITION,
            "Reviews open once the job is marked as completed",
            reviewee_id=reviewee,
        )
    if job.quote_status not in WINNING_QUOTE_STATUSES:
        return _no(
            kind,
            link,
            ErrorKind.FORBIDDEN,
            "Only the contractor whose quote was accepted on this job can be reviewed",
            reviewee_id=reviewee,
        )
    return None


def landlord_review_of_contractor(*, reviewer_id: int, job: JobState, already_reviewed: bool) -> Eligibility:
    kind = ReviewKind.CONTRACTOR_REVIEW
    link = ReviewLink(LinkType.TENDER, job.tender_id)

    if reviewer_id != job.landlord_id:
        return _no(kind, link, ErrorKind.FORBIDDEN, "You did not post this job")

    blocked = _job_gate(job, kind, link, job.contractor_id)
    if blocked is not None:
        return blocked
    if already_reviewed:
        return _already(kind, link, reviewee_id=job.contractor_id)
    return Eligibility(eligible=True, reason=None, kind=kind, link=link, reviewee_id=job.contractor_id)


def contractor_review_of_landlord(*, reviewer_id: int, job: JobState, already_reviewed: bool) -> Eligibility:
    kind = ReviewKind.LANDLORD_REVIEW
    link = ReviewLink(LinkType.TENDER, job.tender_id)

    if reviewer_id != job.contractor_id:
        return _no(kind, link, ErrorKind.FORBIDDEN, "You did not quote on this job")

    blocked = _job_gate(job, kind, link, job.landlord_id)
    if blocked is not None:
        return blocked
    if already_reviewed:
        return _already(kind, link, reviewee_id=job.landlord_id)
    return Eligibility(eligible=True, reason=None, kind=kind, link=link, reviewee_id=job.landlord_id)


# ---- review payload rules ----

RATING_MIN = 1
RATING_MAX = 5
SUB_RATING_KEYS = ("responsiveness", "condition", "fairness")


def validate_ratings(kind: ReviewKind, rating: int, sub_ratings: Optional[dict[str, Optional[int]]] = None) -> dict[str, int]:
    """Returns the cleaned sub-ratings. Raises ValueError on bad input."""
    if not (RATING_MIN <= int(rating) <= RATING_MAX):
        raise ValueError(f"rating must be between {RATING_MIN} and {RATING_MAX}")

    cleaned: dict[str, int] = {}
    for k, v in (sub_ratings or {}).items():
        if v is None:
            continue
        if k not in SUB_RATING_KEYS:
            raise ValueError(f"unknown sub-rating {k!r}")
        if kind != ReviewKind.LANDLORD_REVIEW:
            raise ValueError("sub-ratings only apply to landlord reviews")
        if not (RATING_MIN <= int(v) <= RATING_MAX):
            raise ValueError(f"{k} must be between {RATING_MIN} and {RATING_MAX}")
        cleaned[k] = int(v)
    return cleaned
