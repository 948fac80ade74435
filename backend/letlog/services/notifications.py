# backend/letlog/services/notifications.py
from __future__ import annotations

import logging
from typing import Optional, Protocol

from ..domain.invitations import InvitationSnapshot

log = logging.getLogger("letlog.notifications")


class InvitationNotifier(Protocol):
    """
    Outbound delivery of an invitation link (email in production).
    Implementations raise on failure; callers treat delivery as best-effort.
    """

    def send_invitation(self, invitation: InvitationSnapshot, link: str) -> None: ...


class LogNotifier:
    """Default notifier: records the link in the log instead of sending mail."""

    def send_invitation(self, invitation: InvitationSnapshot, link: str) -> None:
        log.info(
            "invitation link issued",
            extra={"invitation_id": invitation.id, "tenancy_id": invitation.tenancy_id},
        )


def notify_best_effort(notifier: Optional[InvitationNotifier], invitation: InvitationSnapshot, link: str) -> bool:
    """
    Send, and report whether it worked. A failure is logged, not raised:
    the invitation stays issued and valid whatever happens to the send.
    """
    if notifier is None:
        return False
    try:
        notifier.send_invitation(invitation, link)
        return True
    except Exception:
        log.warning(
            "invitation notification failed; invitation kept",
            exc_info=True,
            extra={"invitation_id": invitation.id, "tenancy_id": invitation.tenancy_id},
        )
        return False
