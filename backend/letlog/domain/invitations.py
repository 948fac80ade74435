# backend/letlog/domain/invitations.py
from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .errors import ErrorKind, PolicyError, not_found

# 32 random bytes -> 43 url-safe chars. The token is a pure lookup key: it
# carries no email/tenancy claim, so it only means something via the store.
TOKEN_BYTES = 32


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


TERMINAL_STATUSES = frozenset({InvitationStatus.ACCEPTED, InvitationStatus.EXPIRED, InvitationStatus.REVOKED})


@dataclass(frozen=True)
class InvitationSnapshot:
    id: Optional[int]
    token: str
    tenancy_id: int
    email: str
    inviter_id: int
    status: InvitationStatus
    issued_at: datetime
    expires_at: datetime
    name: Optional[str] = None
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status == InvitationStatus.PENDING

    def is_past_expiry(self, now: datetime) -> bool:
        return now > self.expires_at


def new_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def normalize_email(email: Optional[str]) -> str:
    e = (email or "").strip().lower()
    if not e or "@" not in e or e.startswith("@") or e.endswith("@"):
        raise ValueError(f"invalid invitee email: {email!r}")
    return e


def invitation_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/{token}"


def issue(
    *,
    tenancy_id: int,
    email: str,
    name: Optional[str],
    inviter_id: int,
    now: datetime,
    ttl_days: int,
    existing_pending: Optional[InvitationSnapshot] = None,
    token: Optional[str] = None,
) -> InvitationSnapshot:
    """
    Build a new pending invitation.

    `existing_pending` is the result of the store lookup for the same
    (email, tenancy); passing one fails fast with DUPLICATE_PENDING_INVITATION.
    The store's unique index remains the real guard against concurrent issues.
    """
    norm = normalize_email(email)

    if existing_pending is not None and existing_pending.is_pending and not existing_pending.is_past_expiry(now):
        raise PolicyError(
            ErrorKind.DUPLICATE_PENDING_INVITATION,
            f"an invitation has already been sent to {norm} for this tenancy",
        )

    clean_name = (name or "").strip() or None
    return InvitationSnapshot(
        id=None,
        token=token or new_token(),
        tenancy_id=int(tenancy_id),
        email=norm,
        name=clean_name,
        inviter_id=int(inviter_id),
        status=InvitationStatus.PENDING,
        issued_at=now,
        expires_at=now + timedelta(days=int(ttl_days)),
    )


def check_acceptable(invitation: Optional[InvitationSnapshot], now: datetime) -> InvitationSnapshot:
    """
    Validate an accept attempt without changing anything.

    Returns the invitation when it may be accepted (pending and in date) or
    when it is already accepted (retries are a no-op success). Raises:
      NOT_FOUND     unknown token
      EXPIRED       past expires_at, or already marked expired
      ALREADY_USED  revoked
    """
    if invitation is None:
        raise not_found("invitation")

    status = invitation.status
    if status == InvitationStatus.ACCEPTED:
        return invitation
    if status == InvitationStatus.REVOKED:
        raise PolicyError(ErrorKind.ALREADY_USED, "this invitation has been cancelled")
    if status == InvitationStatus.EXPIRED or invitation.is_past_expiry(now):
        raise PolicyError(
            ErrorKind.EXPIRED,
            f"this invitation expired on {invitation.expires_at.date().isoformat()}",
        )
    return invitation


def accept(invitation: Optional[InvitationSnapshot], now: datetime, *, accepted_by: Optional[int] = None) -> InvitationSnapshot:
    """
    Pure accept: pending -> accepted. Accepting an accepted invitation returns
    it unchanged.
    """
    inv = check_acceptable(invitation, now)
    if inv.status == InvitationStatus.ACCEPTED:
        return inv
    return replace(inv, status=InvitationStatus.ACCEPTED, accepted_at=now, accepted_by=accepted_by)


def mark_expired(invitation: InvitationSnapshot) -> InvitationSnapshot:
    if invitation.status != InvitationStatus.PENDING:
        return invitation
    return replace(invitation, status=InvitationStatus.EXPIRED)


def expire(invitations: Iterable[InvitationSnapshot], now: datetime) -> List[InvitationSnapshot]:
    """
    Batch sweep: every pending invitation whose expires_at < now becomes
    expired. Returns only the invitations that changed.
    """
    out: List[InvitationSnapshot] = []
    for inv in invitations:
        if inv.status == InvitationStatus.PENDING and inv.expires_at < now:
            out.append(mark_expired(inv))
    return out


def revoke(invitation: Optional[InvitationSnapshot]) -> InvitationSnapshot:
    """pending -> revoked; anything else is INVALID_TRANSITION."""
    if invitation is None:
        raise not_found("invitation")
    if invitation.status != InvitationStatus.PENDING:
        raise PolicyError(
            ErrorKind.INVALID_TRANSITION,
            f"only pending invitations can be revoked (this one is {invitation.status.value})",
        )
    return replace(invitation, status=InvitationStatus.REVOKED)
