# backend/letlog/services/tenancy_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..domain.audit import audit_write
from ..domain.clock import Clock, SystemClock
from ..domain.errors import ErrorKind, PolicyError, not_found
from ..domain.roles import Role
from ..domain.tenancy_lifecycle import TenancySnapshot, days_until_end, end_urgency, is_ended
from .ownership import must_get_party_tenancy
from .policy import Action, Actor, PolicyContext, PolicyEngine, TenancyPlan
from .repository import SqlPolicyRepository

log = logging.getLogger("letlog.tenancies")


@dataclass(frozen=True)
class TenancyOverview:
    tenancy: TenancySnapshot
    is_ended: bool
    ended_at: Optional[datetime]
    days_until_end: Optional[int]
    urgency: Optional[str]

    def as_dict(self) -> dict:
        t = self.tenancy
        return {
            "id": t.id,
            "property_id": t.property_id,
            "landlord_id": t.landlord_id,
            "status": t.status.value,
            "start_date": t.start_date.isoformat() if t.start_date else None,
            "end_date": t.end_date.isoformat() if t.end_date else None,
            "tenant_ids": list(t.tenant_ids),
            "lead_tenant_id": t.lead_tenant_id,
            "is_ended": self.is_ended,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "days_until_end": self.days_until_end,
            "urgency": self.urgency,
        }


def _apply(db: Session, *, action: Action, actor: Actor, tenancy_id: int, clock: Optional[Clock]) -> TenancySnapshot:
    repo = SqlPolicyRepository(db)
    decision = PolicyEngine(repo, clock=clock).decide(
        action, actor, PolicyContext(tenancy_id=tenancy_id)
    ).raise_if_denied()
    plan: TenancyPlan = decision.subject

    repo.set_tenancy_status(plan.tenancy.id, plan.change)
    audit_write(
        db,
        actor_user_id=actor.user_id,
        action=f"tenancy.{action.value.split('_', 1)[0]}",
        entity_type="Tenancy",
        entity_id=plan.tenancy.id,
        before={"status": plan.tenancy.status.value},
        after={"status": plan.change.status.value, "ended_at": plan.change.ended_at},
        created_at=decision.evaluated_at,
    )
    db.commit()

    log.info(
        "tenancy %s -> %s",
        plan.tenancy.status.value,
        plan.change.status.value,
        extra={"tenancy_id": plan.tenancy.id, "user_id": actor.user_id, "action": action.value},
    )
    updated = repo.get_tenancy(plan.tenancy.id)
    if updated is None:
        raise not_found("tenancy", plan.tenancy.id)
    return updated


def end_tenancy(db: Session, *, actor: Actor, tenancy_id: int, clock: Optional[Clock] = None) -> TenancySnapshot:
    """active -> ended, by the landlord who owns the property."""
    return _apply(db, action=Action.END_TENANCY, actor=actor, tenancy_id=tenancy_id, clock=clock)


def terminate_tenancy(db: Session, *, actor: Actor, tenancy_id: int, clock: Optional[Clock] = None) -> TenancySnapshot:
    return _apply(db, action=Action.TERMINATE_TENANCY, actor=actor, tenancy_id=tenancy_id, clock=clock)


def activate_tenancy(db: Session, *, actor: Actor, tenancy_id: int, clock: Optional[Clock] = None) -> TenancySnapshot:
    """Landlord force-activation of a pending tenancy."""
    return _apply(db, action=Action.ACTIVATE_TENANCY, actor=actor, tenancy_id=tenancy_id, clock=clock)


def tenancy_overview(db: Session, *, actor: Actor, tenancy_id: int, clock: Optional[Clock] = None) -> TenancyOverview:
    """Read-only: the tenancy plus its derived end-date facts, for its landlord or tenants."""
    now = (clock or SystemClock()).now()
    if actor.role not in (Role.LANDLORD, Role.TENANT):
        raise PolicyError(ErrorKind.FORBIDDEN, "not a party to this tenancy")
    tenancy = must_get_party_tenancy(
        SqlPolicyRepository(db), tenancy_id=tenancy_id, user_id=actor.user_id, denial="not a party to this tenancy"
    )

    days = None if is_ended(tenancy) else days_until_end(tenancy, now)
    return TenancyOverview(
        tenancy=tenancy,
        is_ended=is_ended(tenancy),
        ended_at=tenancy.ended_at,
        days_until_end=days,
        urgency=end_urgency(
            days,
            urgent_days=settings.tenancy_end_urgent_days,
            warning_days=settings.tenancy_end_warning_days,
            notice_days=settings.tenancy_end_notice_days,
        ),
    )
