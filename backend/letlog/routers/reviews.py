# backend/letlog/routers/reviews.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..db import get_db
from ..domain.review_eligibility import Eligibility, LinkType
from ..schemas import EligibilityOut, ReviewCreate, ReviewOut
from ..services.repository import ReviewRecord
from ..services.review_service import check_eligibility, list_eligibility, submit_review

router = APIRouter(prefix="/reviews", tags=["reviews"])


def _eligibility_out(e: Eligibility) -> EligibilityOut:
    return EligibilityOut(
        eligible=e.eligible,
        reason=e.reason,
        kind=e.kind,
        link_type=e.link.type,
        link_id=e.link.id,
        reviewee_id=e.reviewee_id,
        window_ends_at=e.window_ends_at,
        error_kind=e.error_kind.value if e.error_kind else None,
    )


def _review_out(r: ReviewRecord) -> ReviewOut:
    return ReviewOut(
        id=r.id,
        reviewer_id=r.reviewer_id,
        reviewee_id=r.reviewee_id,
        kind=r.kind,
        link_type=r.link.type,
        link_id=r.link.id,
        rating=r.rating,
        sub_ratings=r.sub_ratings,
        content=r.content,
        created_at=r.created_at,
    )


@router.get("/eligibility", response_model=list[EligibilityOut])
def eligibility(
    link_type: Optional[LinkType] = Query(default=None),
    link_id: Optional[int] = Query(default=None),
    contractor_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    """
    With link_id: eligibility for that one tenancy/tender.
    Without: every review the caller could be offered.
    """
    if link_id is None:
        return [_eligibility_out(e) for e in list_eligibility(db, actor=p.actor())]
    e = check_eligibility(db, actor=p.actor(), link_type=link_type, link_id=link_id, contractor_id=contractor_id)
    return [_eligibility_out(e)]


@router.post("", response_model=ReviewOut, status_code=201)
def create_review(payload: ReviewCreate, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    rec = submit_review(
        db,
        actor=p.actor(),
        link_type=payload.link_type,
        link_id=payload.link_id,
        rating=payload.rating,
        content=payload.content,
        sub_ratings=payload.sub_ratings.model_dump() if payload.sub_ratings else None,
        contractor_id=payload.contractor_id,
    )
    return _review_out(rec)
