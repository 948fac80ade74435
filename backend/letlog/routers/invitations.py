# backend/letlog/routers/invitations.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..db import get_db
from ..schemas import AcceptOut, InvitationCreate, InvitationIssuedOut, InvitationOut, InvitationViewOut
from ..services.invitation_service import (
    accept_invitation,
    describe_invitation,
    issue_invitation,
    revoke_invitation,
)

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.post("", response_model=InvitationIssuedOut, status_code=201)
def create_invitation(payload: InvitationCreate, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    out = issue_invitation(
        db,
        actor=p.actor(),
        tenancy_id=payload.tenancy_id,
        email=payload.email,
        name=payload.name,
    )
    return InvitationIssuedOut(
        invitation=InvitationOut.model_validate(out.invitation),
        link=out.link,
        notified=out.notified,
    )


@router.get("/{token}", response_model=InvitationViewOut)
def view_invitation(token: str, db: Session = Depends(get_db)):
    # public: the invite landing page is opened before sign-up
    view = describe_invitation(db, token=token)
    inv = view.invitation
    return InvitationViewOut(
        tenancy_id=inv.tenancy_id,
        email=inv.email,
        name=inv.name,
        status=view.effective_status,
        expires_at=inv.expires_at,
        can_accept=view.can_accept,
        reason=view.reason,
    )


@router.post("/{token}/accept", response_model=AcceptOut)
def accept(token: str, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    # sign up first, then accept as that account
    out = accept_invitation(db, token=token, actor=p.actor())
    return AcceptOut(invitation=InvitationOut.model_validate(out.invitation), newly_accepted=out.newly_accepted)


@router.post("/{invitation_id}/revoke", response_model=InvitationOut)
def revoke(invitation_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    inv = revoke_invitation(db, actor=p.actor(), invitation_id=invitation_id)
    return InvitationOut.model_validate(inv)
