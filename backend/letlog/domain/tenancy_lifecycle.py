# backend/letlog/domain/tenancy_lifecycle.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Optional, Tuple

from .errors import ErrorKind, PolicyError

# -----------------------------------------------------------------------------
# Tenancy lifecycle
# -----------------------------------------------------------------------------
#   draft --issue_invitation--> pending --activate--> active --end--> ended
#     \__________________________\______________________\--terminate--> terminated
#
# Status only changes through an explicit action. A tenancy whose end_date has
# passed is still "active" until someone ends it.
# -----------------------------------------------------------------------------


class TenancyStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    TERMINATED = "terminated"


class TenancyAction(str, enum.Enum):
    ISSUE_INVITATION = "issue_invitation"
    ACTIVATE = "activate"
    END = "end"
    TERMINATE = "terminate"


TERMINAL_STATUSES = frozenset({TenancyStatus.ENDED, TenancyStatus.TERMINATED})

TRANSITIONS: dict[TenancyAction, dict[TenancyStatus, TenancyStatus]] = {
    TenancyAction.ISSUE_INVITATION: {TenancyStatus.DRAFT: TenancyStatus.PENDING},
    TenancyAction.ACTIVATE: {TenancyStatus.PENDING: TenancyStatus.ACTIVE},
    TenancyAction.END: {TenancyStatus.ACTIVE: TenancyStatus.ENDED},
    TenancyAction.TERMINATE: {
        TenancyStatus.DRAFT: TenancyStatus.TERMINATED,
        TenancyStatus.PENDING: TenancyStatus.TERMINATED,
        TenancyStatus.ACTIVE: TenancyStatus.TERMINATED,
    },
}


@dataclass(frozen=True)
class TenancySnapshot:
    id: int
    property_id: int
    landlord_id: int
    status: TenancyStatus
    start_date: Optional[date] = None
    end_date: Optional[date] = None  # None = rolling
    ended_at: Optional[datetime] = None
    tenant_ids: Tuple[int, ...] = field(default_factory=tuple)
    lead_tenant_id: Optional[int] = None

    def __post_init__(self) -> None:
        if (self.ended_at is not None) != (self.status in TERMINAL_STATUSES):
            raise ValueError(
                f"tenancy {self.id}: ended_at must be set iff status is ended/terminated "
                f"(status={self.status.value}, ended_at={self.ended_at})"
            )


@dataclass(frozen=True)
class TransitionResult:
    status: TenancyStatus
    ended_at: Optional[datetime]
    changed: bool = True


def is_ended(tenancy: TenancySnapshot) -> bool:
    return tenancy.status in TERMINAL_STATUSES


def ended_at(tenancy: TenancySnapshot) -> Optional[datetime]:
    return tenancy.ended_at if is_ended(tenancy) else None


def can_accept_tenants(tenancy: TenancySnapshot) -> bool:
    return not is_ended(tenancy)


def transition(tenancy: TenancySnapshot, action: TenancyAction, now: datetime) -> TransitionResult:
    """
    Pure state transition. Raises PolicyError(INVALID_TRANSITION) when the
    action is not allowed from the current status.
    """
    current = tenancy.status
    if current in TERMINAL_STATUSES:
        raise PolicyError(
            ErrorKind.INVALID_TRANSITION,
            f"tenancy {tenancy.id} is already {current.value}; it cannot {action.value.replace('_', ' ')}",
        )

    target = TRANSITIONS[action].get(current)
    if target is None:
        raise PolicyError(
            ErrorKind.INVALID_TRANSITION,
            f"cannot {action.value.replace('_', ' ')} a tenancy that is {current.value}",
        )

    stamp = now if target in TERMINAL_STATUSES else None
    return TransitionResult(status=target, ended_at=stamp)


def apply_transition(tenancy: TenancySnapshot, action: TenancyAction, now: datetime) -> TenancySnapshot:
    res = transition(tenancy, action, now)
    return replace(tenancy, status=res.status, ended_at=res.ended_at)


def on_invitation_issued(tenancy: TenancySnapshot, now: datetime) -> TransitionResult:
    """
    Issuing an invitation moves a draft tenancy to pending and leaves a
    pending/active tenancy alone (extra tenants can be invited). Ended or
    terminated tenancies take no invitations.
    """
    if tenancy.status == TenancyStatus.DRAFT:
        return transition(tenancy, TenancyAction.ISSUE_INVITATION, now)
    if not can_accept_tenants(tenancy):
        raise PolicyError(
            ErrorKind.INVALID_TRANSITION,
            f"tenancy {tenancy.id} is {tenancy.status.value}; invitations can no longer be sent",
        )
    return TransitionResult(status=tenancy.status, ended_at=None, changed=False)


def on_invitation_accepted(tenancy: TenancySnapshot, now: datetime) -> TransitionResult:
    """Acceptance activates a pending tenancy; an active one just gains a tenant."""
    if tenancy.status in (TenancyStatus.DRAFT, TenancyStatus.PENDING):
        # A draft with a live invitation is treated as pending.
        return TransitionResult(status=TenancyStatus.ACTIVE, ended_at=None)
    if not can_accept_tenants(tenancy):
        raise PolicyError(
            ErrorKind.INVALID_TRANSITION,
            f"tenancy {tenancy.id} is {tenancy.status.value}; the invitation can no longer be accepted",
        )
    return TransitionResult(status=tenancy.status, ended_at=None, changed=False)


# ---- derived facts ----


def days_until_end(tenancy: TenancySnapshot, now: datetime) -> Optional[int]:
    """
    Whole calendar days from `now` to the planned end date.
    None for rolling tenancies; negative once the end date has passed.
    """
    if tenancy.end_date is None:
        return None
    end = tenancy.end_date.date() if isinstance(tenancy.end_date, datetime) else tenancy.end_date
    return (end - now.date()).days


def end_urgency(
    days: Optional[int],
    *,
    urgent_days: int,
    warning_days: int,
    notice_days: int,
) -> Optional[str]:
    """Badge band for an upcoming end date: overdue|urgent|warning|notice|None."""
    if days is None:
        return None
    if days < 0:
        return "overdue"
    if days <= urgent_days:
        return "urgent"
    if days <= warning_days:
        return "warning"
    if days <= notice_days:
        return "notice"
    return None
