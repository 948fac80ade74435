# backend/letlog/services/invitation_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..domain.audit import audit_write
from ..domain.clock import Clock, SystemClock
from ..domain.errors import ErrorKind, PolicyError, not_found
from ..domain.invitations import (
    InvitationSnapshot,
    InvitationStatus,
    check_acceptable,
    invitation_link,
)
from .notifications import InvitationNotifier, LogNotifier, notify_best_effort
from .policy import AcceptPlan, Action, Actor, IssuePlan, PolicyContext, PolicyEngine, RevokePlan
from .repository import SqlPolicyRepository

log = logging.getLogger("letlog.invitations")


@dataclass(frozen=True)
class IssueResult:
    invitation: InvitationSnapshot
    link: str
    notified: bool


@dataclass(frozen=True)
class AcceptResult:
    invitation: InvitationSnapshot
    newly_accepted: bool


@dataclass(frozen=True)
class InvitationView:
    invitation: InvitationSnapshot
    effective_status: InvitationStatus
    can_accept: bool
    reason: Optional[str]


def issue_invitation(
    db: Session,
    *,
    actor: Actor,
    tenancy_id: int,
    email: str,
    name: Optional[str] = None,
    clock: Optional[Clock] = None,
    notifier: Optional[InvitationNotifier] = None,
) -> IssueResult:
    """
    Create a pending invitation and (best-effort) notify the invitee.

    The invitation is committed before the notifier runs; a failed send
    never removes it.
    """
    repo = SqlPolicyRepository(db)
    engine = PolicyEngine(repo, clock=clock)

    decision = engine.decide(
        Action.ISSUE_INVITATION,
        actor,
        PolicyContext(tenancy_id=tenancy_id, email=email, name=name),
    ).raise_if_denied()
    plan: IssuePlan = decision.subject

    if plan.stale_pending is not None and plan.stale_pending.id is not None:
        # still 'pending' in storage but past expiry; free the unique slot
        repo.update_invitation_status(
            plan.stale_pending.id,
            from_status=InvitationStatus.PENDING,
            to_status=InvitationStatus.EXPIRED,
        )

    inv = repo.add_invitation(plan.invitation)

    if plan.tenancy_change.changed:
        repo.set_tenancy_status(plan.tenancy.id, plan.tenancy_change)

    audit_write(
        db,
        actor_user_id=actor.user_id,
        action="invitation.issue",
        entity_type="TenantInvitation",
        entity_id=inv.id,
        before=None,
        after={"tenancy_id": inv.tenancy_id, "email": inv.email, "expires_at": inv.expires_at},
        created_at=decision.evaluated_at,
    )
    db.commit()

    log.info(
        "invitation issued",
        extra={"invitation_id": inv.id, "tenancy_id": inv.tenancy_id, "user_id": actor.user_id},
    )

    link = invitation_link(settings.invitation_base_url, inv.token)
    notified = notify_best_effort(notifier if notifier is not None else LogNotifier(), inv, link)
    return IssueResult(invitation=inv, link=link, notified=notified)


def _persist_expiry(db: Session, repo: SqlPolicyRepository, token: str, actor: Optional[Actor]) -> None:
    inv = repo.get_invitation_by_token(token)
    if inv is None or inv.status != InvitationStatus.PENDING or inv.id is None:
        return
    moved = repo.update_invitation_status(
        inv.id,
        from_status=InvitationStatus.PENDING,
        to_status=InvitationStatus.EXPIRED,
    )
    if moved:
        audit_write(
            db,
            actor_user_id=actor.user_id if actor else None,
            action="invitation.expire",
            entity_type="TenantInvitation",
            entity_id=inv.id,
            before={"status": InvitationStatus.PENDING.value},
            after={"status": InvitationStatus.EXPIRED.value},
        )
        db.commit()


def _join_tenancy(repo: SqlPolicyRepository, plan: AcceptPlan, actor: Actor) -> bool:
    """Attach the accepting tenant to the invitation's tenancy (never as lead)."""
    if plan.tenancy is None or actor.user_id in plan.tenancy.tenant_ids:
        return False
    return repo.add_tenancy_tenant(plan.tenancy.id, actor.user_id, is_lead=False)


def accept_invitation(
    db: Session,
    *,
    token: str,
    actor: Optional[Actor],
    clock: Optional[Clock] = None,
) -> AcceptResult:
    """
    Accept by token, as the signed-in tenant the invitation was sent to.

    - Retrying after success returns the same accepted invitation, and
      re-attaches the tenant if their membership row is missing.
    - An out-of-date pending invitation is stored as expired, then EXPIRED
      is raised, so the token cannot be retried.
    - The accepting user joins the tenancy; a pending tenancy becomes active.
    """
    repo = SqlPolicyRepository(db)
    engine = PolicyEngine(repo, clock=clock)

    decision = engine.decide(Action.ACCEPT_INVITATION, actor, PolicyContext(token=token))
    if not decision.allowed:
        if decision.kind == ErrorKind.EXPIRED:
            _persist_expiry(db, repo, token, actor)
        decision.raise_if_denied()

    plan: AcceptPlan = decision.subject
    inv = plan.invitation
    now = decision.evaluated_at
    if plan.already_accepted:
        if _join_tenancy(repo, plan, actor):
            audit_write(
                db,
                actor_user_id=actor.user_id,
                action="tenancy.join",
                entity_type="Tenancy",
                entity_id=plan.tenancy.id,
                before=None,
                after={"tenant_id": actor.user_id, "invitation_id": inv.id},
                created_at=now,
            )
            db.commit()
            log.info(
                "tenant re-attached from accepted invitation",
                extra={"invitation_id": inv.id, "tenancy_id": inv.tenancy_id, "user_id": actor.user_id},
            )
        return AcceptResult(invitation=inv, newly_accepted=False)

    moved = repo.update_invitation_status(
        inv.id,
        from_status=InvitationStatus.PENDING,
        to_status=InvitationStatus.ACCEPTED,
        at=now,
        accepted_by=actor.user_id,
    )
    if not moved:
        # Lost a race: another request changed the row between read and update.
        # Rolling back also expires the session so the re-read is fresh.
        db.rollback()
        current = repo.get_invitation(inv.id)
        if current is not None and current.status == InvitationStatus.ACCEPTED:
            return AcceptResult(invitation=current, newly_accepted=False)
        check_acceptable(current, now)  # raises the matching terminal kind
        raise PolicyError(ErrorKind.ALREADY_USED, "this invitation is no longer valid")

    _join_tenancy(repo, plan, actor)

    if plan.tenancy is not None and plan.tenancy_change is not None and plan.tenancy_change.changed:
        repo.set_tenancy_status(plan.tenancy.id, plan.tenancy_change)

    audit_write(
        db,
        actor_user_id=actor.user_id,
        action="invitation.accept",
        entity_type="TenantInvitation",
        entity_id=inv.id,
        before={"status": InvitationStatus.PENDING.value},
        after={"status": InvitationStatus.ACCEPTED.value, "tenancy_id": inv.tenancy_id},
        created_at=now,
    )
    db.commit()

    log.info(
        "invitation accepted",
        extra={"invitation_id": inv.id, "tenancy_id": inv.tenancy_id, "user_id": actor.user_id},
    )
    accepted = repo.get_invitation(inv.id)
    return AcceptResult(invitation=accepted or inv, newly_accepted=True)


def revoke_invitation(
    db: Session,
    *,
    actor: Actor,
    invitation_id: int,
    clock: Optional[Clock] = None,
) -> InvitationSnapshot:
    repo = SqlPolicyRepository(db)
    engine = PolicyEngine(repo, clock=clock)

    decision = engine.decide(
        Action.REVOKE_INVITATION, actor, PolicyContext(invitation_id=invitation_id)
    ).raise_if_denied()
    plan: RevokePlan = decision.subject

    moved = repo.update_invitation_status(
        invitation_id,
        from_status=InvitationStatus.PENDING,
        to_status=InvitationStatus.REVOKED,
    )
    if not moved:
        db.rollback()
        current = repo.get_invitation(invitation_id)
        status = current.status.value if current else "gone"
        raise PolicyError(
            ErrorKind.INVALID_TRANSITION,
            f"only pending invitations can be revoked (this one is {status})",
        )

    audit_write(
        db,
        actor_user_id=actor.user_id,
        action="invitation.revoke",
        entity_type="TenantInvitation",
        entity_id=invitation_id,
        before={"status": plan.invitation.status.value},
        after={"status": plan.revoked.status.value},
        created_at=decision.evaluated_at,
    )
    db.commit()
    log.info("invitation revoked", extra={"invitation_id": invitation_id, "user_id": actor.user_id})
    return repo.get_invitation(invitation_id) or plan.revoked


def sweep_expired_invitations(db: Session, *, clock: Optional[Clock] = None) -> int:
    """Mark every overdue pending invitation expired. Safe to run on any schedule."""
    now = (clock or SystemClock()).now()
    n = SqlPolicyRepository(db).expire_pending_invitations(now)
    db.commit()
    if n:
        log.info("expired %d pending invitations", n)
    return n


def describe_invitation(db: Session, *, token: str, clock: Optional[Clock] = None) -> InvitationView:
    """Read-only view for the invite landing page. Does not write."""
    now = (clock or SystemClock()).now()
    inv = SqlPolicyRepository(db).get_invitation_by_token(token)
    if inv is None:
        raise not_found("invitation")

    try:
        check_acceptable(inv, now)
    except PolicyError as e:
        effective = InvitationStatus.EXPIRED if e.kind == ErrorKind.EXPIRED else inv.status
        return InvitationView(invitation=inv, effective_status=effective, can_accept=False, reason=e.reason)

    return InvitationView(
        invitation=inv,
        effective_status=inv.status,
        can_accept=inv.status == InvitationStatus.PENDING,
        reason=None if inv.status == InvitationStatus.PENDING else "this invitation has already been accepted",
    )
