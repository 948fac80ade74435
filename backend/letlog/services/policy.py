# backend/letlog/services/policy.py
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..domain import invitations as inv_rules
from ..domain import review_eligibility as review_rules
from ..domain.clock import Clock, SystemClock
from ..domain.errors import ErrorKind, PolicyError, not_found
from ..domain.invitations import InvitationSnapshot, InvitationStatus
from ..domain.review_eligibility import Eligibility, LinkType, ReviewKind, ReviewLink
from ..domain.roles import Role
from ..domain.route_permissions import DEFAULT_PERMISSIONS, PermissionTable, can_access, roles_for
from ..domain.tenancy_lifecycle import (
    TenancyAction,
    TenancySnapshot,
    TransitionResult,
    on_invitation_accepted,
    on_invitation_issued,
    transition,
)
from .ownership import (
    must_get_managed_invitation,
    must_get_owned_tenancy,
    must_get_tenancy,
)
from .repository import PolicyRepository, SqlPolicyRepository

log = logging.getLogger("letlog.policy")

# -----------------------------------------------------------------------------
# Policy facade
# -----------------------------------------------------------------------------
# The one entry point for "is this action allowed right now".
#
#   decide(action, actor, context) -> Decision
#
# - reads through the repository only; never writes
# - evaluates everything against ONE `now` taken at the start of the call
# - a denial carries the sub-engine's ErrorKind unchanged; only the reason is
#   prefixed with the action being attempted
# -----------------------------------------------------------------------------


class Action(str, enum.Enum):
    ACCESS_ROUTE = "access_route"
    ISSUE_INVITATION = "issue_invitation"
    ACCEPT_INVITATION = "accept_invitation"
    REVOKE_INVITATION = "revoke_invitation"
    END_TENANCY = "end_tenancy"
    TERMINATE_TENANCY = "terminate_tenancy"
    ACTIVATE_TENANCY = "activate_tenancy"
    WRITE_REVIEW = "write_review"


ACTION_LABELS = {
    Action.ACCESS_ROUTE: "access route",
    Action.ISSUE_INVITATION: "issue invitation",
    Action.ACCEPT_INVITATION: "accept invitation",
    Action.REVOKE_INVITATION: "revoke invitation",
    Action.END_TENANCY: "end tenancy",
    Action.TERMINATE_TENANCY: "terminate tenancy",
    Action.ACTIVATE_TENANCY: "activate tenancy",
    Action.WRITE_REVIEW: "write review",
}


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: Role
    email: Optional[str] = None


@dataclass(frozen=True)
class PolicyContext:
    # access_route
    path: Optional[str] = None
    # invitations / tenancies
    tenancy_id: Optional[int] = None
    invitation_id: Optional[int] = None
    token: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    # reviews
    review_kind: Optional[ReviewKind] = None
    link_type: Optional[LinkType] = None
    link_id: Optional[int] = None
    contractor_id: Optional[int] = None


@dataclass(frozen=True)
class IssuePlan:
    tenancy: TenancySnapshot
    invitation: InvitationSnapshot
    tenancy_change: TransitionResult
    stale_pending: Optional[InvitationSnapshot] = None  # pending but past expiry


@dataclass(frozen=True)
class AcceptPlan:
    invitation: InvitationSnapshot
    tenancy: Optional[TenancySnapshot]
    tenancy_change: Optional[TransitionResult]

    @property
    def already_accepted(self) -> bool:
        return self.invitation.status == InvitationStatus.ACCEPTED


@dataclass(frozen=True)
class TenancyPlan:
    tenancy: TenancySnapshot
    change: TransitionResult


@dataclass(frozen=True)
class RevokePlan:
    invitation: InvitationSnapshot
    revoked: InvitationSnapshot


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    action: Action
    kind: Optional[ErrorKind] = None
    evaluated_at: Optional[datetime] = None
    resource: Optional[str] = None
    # Records loaded while deciding, for the caller's follow-up write.
    subject: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def allow(cls, action: Action, *, now: datetime, subject: Any = None) -> "Decision":
        return cls(allowed=True, reason="allowed", action=action, evaluated_at=now, subject=subject)

    @classmethod
    def deny(cls, action: Action, err: PolicyError, *, now: datetime) -> "Decision":
        ctx_err = err.with_context(ACTION_LABELS[action])
        return cls(
            allowed=False,
            reason=ctx_err.reason,
            action=action,
            kind=err.kind,
            evaluated_at=now,
            resource=err.resource,
        )

    def raise_if_denied(self) -> "Decision":
        if not self.allowed:
            raise PolicyError(self.kind or ErrorKind.UNAUTHORIZED, self.reason, resource=self.resource)
        return self


def _require_actor(actor: Optional[Actor]) -> Actor:
    if actor is None:
        raise PolicyError(ErrorKind.UNAUTHORIZED, "sign in required")
    return actor


def _require_role(actor: Optional[Actor], *roles: Role) -> Actor:
    a = _require_actor(actor)
    if a.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise PolicyError(ErrorKind.UNAUTHORIZED, f"requires role {allowed} (actor is {a.role.value})")
    return a


class PolicyEngine:
    def __init__(
        self,
        repo: PolicyRepository,
        *,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        permissions: PermissionTable = DEFAULT_PERMISSIONS,
    ):
        self.repo = repo
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings
        self.permissions = permissions
        self._handlers: Dict[Action, Callable[[Optional[Actor], PolicyContext, datetime], Any]] = {
            Action.ACCESS_ROUTE: self._access_route,
            Action.ISSUE_INVITATION: self._issue_invitation,
            Action.ACCEPT_INVITATION: self._accept_invitation,
            Action.REVOKE_INVITATION: self._revoke_invitation,
            Action.END_TENANCY: self._end_tenancy,
            Action.TERMINATE_TENANCY: self._terminate_tenancy,
            Action.ACTIVATE_TENANCY: self._activate_tenancy,
            Action.WRITE_REVIEW: self._write_review,
        }

    def decide(self, action: Action, actor: Optional[Actor], context: Optional[PolicyContext] = None) -> Decision:
        action = Action(action)
        ctx = context or PolicyContext()
        now = self.clock.now()

        try:
            subject = self._handlers[action](actor, ctx, now)
        except PolicyError as e:
            log.info(
                "policy denied",
                extra={
                    "action": action.value,
                    "kind": e.kind.value,
                    "user_id": actor.user_id if actor else None,
                    "tenancy_id": ctx.tenancy_id,
                },
            )
            return Decision.deny(action, e, now=now)

        return Decision.allow(action, now=now, subject=subject)

    # ---- routes ----

    def _access_route(self, actor: Optional[Actor], ctx: PolicyContext, now: datetime) -> Any:
        role = actor.role if actor else None
        if not can_access(role, ctx.path, self.permissions):
            who = role.value if role else "anonymous"
            raise PolicyError(ErrorKind.UNAUTHORIZED, f"{who} cannot access {ctx.path}")
        return roles_for(self.permissions, ctx.path)

    # ---- invitations ----

    def _issue_invitation(self, actor: Optional[Actor], ctx: PolicyContext, now: datetime) -> IssuePlan:
        a = _require_role(actor, Role.LANDLORD)
        tenancy = must_get_owned_tenancy(
            self.repo,
            tenancy_id=ctx.tenancy_id,
            user_id=a.user_id,
            denial="you can only invite tenants to your own tenancies",
        )

        change = on_invitation_issued(tenancy, now)

        email = inv_rules.normalize_email(ctx.email)
        existing = self.repo.find_pending_invitation(email, tenancy.id)
        draft = inv_rules.issue(
            tenancy_id=tenancy.id,
            email=email,
            name=ctx.name,
            inviter_id=a.user_id,
            now=now,
            ttl_days=self.settings.invitation_ttl_days,
            existing_pending=existing,
        )
        stale = existing if existing is not None and existing.is_past_expiry(now) else None
        return IssuePlan(tenancy=tenancy, invitation=draft, tenancy_change=change, stale_pending=stale)

    def _accept_invitation(self, actor: Optional[Actor], ctx: PolicyContext, now: datetime) -> AcceptPlan:
        # Accepting claims membership for a signed-in tenant account.
        a = _require_role(actor, Role.TENANT)
        inv = self.repo.get_invitation_by_token(ctx.token or "")
        inv = inv_rules.check_acceptable(inv, now)

        if a.email and a.email.strip().lower() != inv.email:
            raise PolicyError(ErrorKind.FORBIDDEN, "this invitation was sent to a different email address")

        tenancy = must_get_tenancy(self.repo, tenancy_id=inv.tenancy_id)
        if inv.status == InvitationStatus.ACCEPTED:
            return AcceptPlan(invitation=inv, tenancy=tenancy, tenancy_change=None)

        change = on_invitation_accepted(tenancy, now)
        return AcceptPlan(invitation=inv, tenancy=tenancy, tenancy_change=change)

    def _revoke_invitation(self, actor: Optional[Actor], ctx: PolicyContext, now: datetime) -> RevokePlan:
        a = _require_role(actor, Role.LANDLORD)
        if ctx.invitation_id is None and ctx.token:
            found = self.repo.get_invitation_by_token(ctx.token)
        else:
            found = self.repo.get_invitation(ctx.invitation_id) if ctx.invitation_id is not None else None

        inv = must_get_managed_invitation(
            self.repo,
            invitation=found,
            user_id=a.user_id,
            denial="you can only cancel invitations for your own tenancies",
        )
        return RevokePlan(invitation=inv, revoked=inv_rules.revoke(inv))

    # ---- tenancies ----

    def _owned_tenancy_transition(
        self, actor: Optional[Actor], ctx: PolicyContext, now: datetime, action: TenancyAction
    ) -> TenancyPlan:
        a = _require_role(actor, Role.LANDLORD)
        tenancy = must_get_owned_tenancy(
            self.repo,
            tenancy_id=ctx.tenancy_id,
            user_id=a.user_id,
            denial="you do not own this tenancy's property",
        )
        return TenancyPlan(tenancy=tenancy, change=transition(tenancy, action, now))

    def _end_tenancy(self, actor: Optional[Actor], ctx: PolicyContext, now: datetime) -> TenancyPlan:
        return self._owned_tenancy_transition(actor, ctx, now, TenancyAction.END)

    def _terminate_tenancy(self, actor: Optional[Actor], ctx: PolicyContext, now: datetime) -> TenancyPlan:
        return self._owned_tenancy_transition(actor, ctx, now, TenancyAction.TERMINATE)

    def _activate_tenancy(self, actor: Optional[Actor], ctx: PolicyContext, now: datetime) -> TenancyPlan:
        return self._owned_tenancy_transition(actor, ctx, now, TenancyAction.ACTIVATE)

    # ---- reviews ----

    def _write_review(self, actor: Optional[Actor], ctx: PolicyContext, now: datetime) -> Eligibility:
        elig = self._eligibility(_require_actor(actor), ctx, now)
        if not elig.eligible:
            raise PolicyError(elig.error_kind or ErrorKind.FORBIDDEN, elig.reason or "not eligible to review")
        return elig

    def review_eligibility(self, actor: Actor, context: PolicyContext, now: Optional[datetime] = None) -> Eligibility:
        """
        Full eligibility for display. Role/ownership/lookup failures raise
        PolicyError; rule-based ineligibility comes back with a reason.
        """
        return self._eligibility(actor, context, now or self.clock.now())

    def eligible_reviews(self, actor: Actor) -> List[Eligibility]:
        """Every review the actor could be shown, eligible or not (one `now`)."""
        now = self.clock.now()
        out: List[Eligibility] = []
        for link, contractor_id in self.repo.list_review_links(actor.user_id, actor.role):
            ctx = PolicyContext(link_type=link.type, link_id=link.id, contractor_id=contractor_id)
            out.append(self._eligibility(actor, ctx, now))
        return out

    def _eligibility(self, actor: Actor, ctx: PolicyContext, now: datetime) -> Eligibility:
        kind = ctx.review_kind or review_rules.kind_for(actor.role)
        link_type = ctx.link_type or review_rules.link_type_for(actor.role)
        review_rules.check_role_link(actor.role, kind, link_type)

        if ctx.link_id is None:
            raise not_found(link_type.value)
        link = ReviewLink(link_type, int(ctx.link_id))
        already = self.repo.has_review(actor.user_id, link, kind)

        if link_type == LinkType.TENANCY:
            tenancy = self.repo.get_tenancy(link.id)
            if tenancy is None:
                # same answer as someone else's tenancy
                raise PolicyError(ErrorKind.FORBIDDEN, "You were not a tenant on this tenancy")
            return review_rules.tenant_review_of_landlord(
                reviewer_id=actor.user_id,
                tenancy=tenancy,
                now=now,
                window_days=self.settings.review_window_days,
                already_reviewed=already,
            )

        contractor_id = actor.user_id if actor.role == Role.CONTRACTOR else ctx.contractor_id
        job = self.repo.get_job_state(link.id, contractor_id)
        if job is None:
            raise PolicyError(ErrorKind.FORBIDDEN, "you are not a party to this job")

        if actor.role == Role.LANDLORD:
            return review_rules.landlord_review_of_contractor(reviewer_id=actor.user_id, job=job, already_reviewed=already)
        return review_rules.contractor_review_of_landlord(reviewer_id=actor.user_id, job=job, already_reviewed=already)


def engine_for(db: Session, *, clock: Optional[Clock] = None, settings: Optional[Settings] = None) -> PolicyEngine:
    return PolicyEngine(SqlPolicyRepository(db), clock=clock, settings=settings)
