# backend/letlog/services/review_service.py
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.clock import Clock
from ..domain.review_eligibility import Eligibility, LinkType, ReviewKind, kind_for, validate_ratings
from .policy import Action, Actor, PolicyContext, PolicyEngine
from .repository import ReviewRecord, SqlPolicyRepository

log = logging.getLogger("letlog.reviews")


def check_eligibility(
    db: Session,
    *,
    actor: Actor,
    link_type: Optional[LinkType],
    link_id: int,
    contractor_id: Optional[int] = None,
    clock: Optional[Clock] = None,
) -> Eligibility:
    engine = PolicyEngine(SqlPolicyRepository(db), clock=clock)
    return engine.review_eligibility(
        actor,
        PolicyContext(link_type=link_type, link_id=link_id, contractor_id=contractor_id),
    )


def list_eligibility(db: Session, *, actor: Actor, clock: Optional[Clock] = None) -> List[Eligibility]:
    return PolicyEngine(SqlPolicyRepository(db), clock=clock).eligible_reviews(actor)


def submit_review(
    db: Session,
    *,
    actor: Actor,
    link_type: Optional[LinkType],
    link_id: int,
    rating: int,
    content: Optional[str] = None,
    sub_ratings: Optional[dict] = None,
    contractor_id: Optional[int] = None,
    review_kind: Optional[ReviewKind] = None,
    clock: Optional[Clock] = None,
) -> ReviewRecord:
    """
    Write a review after the WRITE_REVIEW decision allows it.
    Reviews are write-once; a second attempt is ALREADY_REVIEWED, never an update.
    """
    kind = review_kind or kind_for(actor.role)
    cleaned = validate_ratings(kind, rating, sub_ratings)

    repo = SqlPolicyRepository(db)
    decision = PolicyEngine(repo, clock=clock).decide(
        Action.WRITE_REVIEW,
        actor,
        PolicyContext(review_kind=kind, link_type=link_type, link_id=link_id, contractor_id=contractor_id),
    ).raise_if_denied()
    elig: Eligibility = decision.subject

    rec = repo.add_review(
        reviewer_id=actor.user_id,
        reviewee_id=int(elig.reviewee_id),
        kind=elig.kind,
        link=elig.link,
        rating=int(rating),
        sub_ratings=cleaned,
        content=(content or "").strip() or None,
        created_at=decision.evaluated_at,
    )
    audit_write(
        db,
        actor_user_id=actor.user_id,
        action="review.create",
        entity_type="Review",
        entity_id=rec.id,
        after={"kind": rec.kind.value, "link": rec.link.key, "rating": rec.rating},
        created_at=decision.evaluated_at,
    )
    db.commit()

    log.info("review submitted", extra={"review_id": rec.id, "user_id": actor.user_id})
    return rec
