# backend/tests/test_invitation_service.py
from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import select

from letlog.domain.clock import FixedClock
from letlog.domain.errors import ErrorKind, PolicyError
from letlog.domain.invitations import InvitationStatus
from letlog.domain.tenancy_lifecycle import TenancyStatus
from letlog.models import AuditEvent, TenantInvitation
from letlog.services import invitation_service as svc
from letlog.services.repository import SqlPolicyRepository

from conftest import actor_for, mk_tenancy


def _status(db, token: str) -> str:
    return db.scalar(select(TenantInvitation.status).where(TenantInvitation.token == token))


def test_issue_moves_draft_tenancy_to_pending_and_audits(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(
        db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="Tenant@T.local", name="Sam", clock=clock
    )

    assert out.invitation.status == InvitationStatus.PENDING
    assert out.invitation.email == "tenant@t.local"
    assert out.link.endswith("/" + out.invitation.token)
    assert out.notified is True

    snap = SqlPolicyRepository(db).get_tenancy(t.id)
    assert snap.status == TenancyStatus.PENDING
    actions = db.scalars(select(AuditEvent.action)).all()
    assert "invitation.issue" in actions


def test_duplicate_pending_then_reissue_after_accept(db, people, clock):
    landlord = actor_for(people["landlord"])
    t = mk_tenancy(db, landlord=people["landlord"])

    first = svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="tenant@t.local", clock=clock)
    with pytest.raises(PolicyError) as e:
        svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="TENANT@t.local", clock=clock)
    assert e.value.kind == ErrorKind.DUPLICATE_PENDING_INVITATION

    svc.accept_invitation(db, token=first.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    again = svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="tenant@t.local", clock=clock)
    assert again.invitation.token != first.invitation.token


def test_reissue_after_expiry_marks_the_old_one_expired(db, people):
    landlord = actor_for(people["landlord"])
    t = mk_tenancy(db, landlord=people["landlord"])
    clock = FixedClock(datetime(2024, 1, 1))

    first = svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="tenant@t.local", clock=clock)
    clock.set(datetime(2024, 1, 9))
    second = svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="tenant@t.local", clock=clock)

    assert _status(db, first.invitation.token) == "expired"
    assert _status(db, second.invitation.token) == "pending"


def test_store_constraint_catches_a_racing_issue(db, people, clock, monkeypatch):
    landlord = actor_for(people["landlord"])
    t = mk_tenancy(db, landlord=people["landlord"])
    svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="tenant@t.local", clock=clock)

    # Simulate a concurrent request that passed the pre-check before the first commit.
    monkeypatch.setattr(SqlPolicyRepository, "find_pending_invitation", lambda self, email, tenancy_id: None)
    with pytest.raises(PolicyError) as e:
        svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="tenant@t.local", clock=clock)
    assert e.value.kind == ErrorKind.DUPLICATE_PENDING_INVITATION

    assert len(db.scalars(select(TenantInvitation)).all()) == 1


def test_notifier_failure_keeps_the_invitation(db, people, clock):
    class Broken:
        def send_invitation(self, invitation, link):
            raise RuntimeError("smtp down")

    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(
        db,
        actor=actor_for(people["landlord"]),
        tenancy_id=t.id,
        email="tenant@t.local",
        clock=clock,
        notifier=Broken(),
    )
    assert out.notified is False
    assert _status(db, out.invitation.token) == "pending"


def test_accept_activates_tenancy_and_adds_tenant_as_non_lead(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)

    res = svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    assert res.newly_accepted
    assert res.invitation.status == InvitationStatus.ACCEPTED
    assert res.invitation.accepted_by == people["tenant"].id

    snap = SqlPolicyRepository(db).get_tenancy(t.id)
    assert snap.status == TenancyStatus.ACTIVE
    assert snap.tenant_ids == (people["tenant"].id,)
    assert snap.lead_tenant_id is None


def test_accept_twice_returns_the_same_invitation(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)
    tenant = actor_for(people["tenant"])

    first = svc.accept_invitation(db, token=out.invitation.token, actor=tenant, clock=clock)
    second = svc.accept_invitation(db, token=out.invitation.token, actor=tenant, clock=clock)

    assert second.newly_accepted is False
    assert second.invitation == first.invitation
    assert SqlPolicyRepository(db).get_tenancy(t.id).tenant_ids == (people["tenant"].id,)


def test_accept_after_expiry_persists_expired(db, people):
    clock = FixedClock(datetime(2024, 1, 1))
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)

    clock.set(datetime(2024, 1, 10))
    with pytest.raises(PolicyError) as e:
        svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    assert e.value.kind == ErrorKind.EXPIRED
    assert _status(db, out.invitation.token) == "expired"

    # and the token stays dead
    with pytest.raises(PolicyError) as e:
        svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    assert e.value.kind == ErrorKind.EXPIRED


def test_accept_checks_the_accepting_account(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)

    with pytest.raises(PolicyError) as e:
        svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant2"]), clock=clock)
    assert e.value.kind == ErrorKind.FORBIDDEN

    with pytest.raises(PolicyError) as e:
        svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["contractor"]), clock=clock)
    assert e.value.kind == ErrorKind.UNAUTHORIZED

    assert _status(db, out.invitation.token) == "pending"


def test_unknown_token(db, people, clock):
    with pytest.raises(PolicyError) as e:
        svc.accept_invitation(db, token="nope", actor=actor_for(people["tenant"]), clock=clock)
    assert e.value.kind == ErrorKind.NOT_FOUND


def test_revoke_then_accept_is_already_used(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)

    with pytest.raises(PolicyError) as e:
        svc.revoke_invitation(db, actor=actor_for(people["other_landlord"]), invitation_id=out.invitation.id, clock=clock)
    assert e.value.kind == ErrorKind.FORBIDDEN

    revoked = svc.revoke_invitation(db, actor=actor_for(people["landlord"]), invitation_id=out.invitation.id, clock=clock)
    assert revoked.status == InvitationStatus.REVOKED

    with pytest.raises(PolicyError) as e:
        svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    assert e.value.kind == ErrorKind.ALREADY_USED

    with pytest.raises(PolicyError) as e:
        svc.revoke_invitation(db, actor=actor_for(people["landlord"]), invitation_id=out.invitation.id, clock=clock)
    assert e.value.kind == ErrorKind.INVALID_TRANSITION


def test_issue_on_ended_tenancy_is_rejected(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"], status="ended", ended_at=datetime(2023, 12, 1))
    with pytest.raises(PolicyError) as e:
        svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)
    assert e.value.kind == ErrorKind.INVALID_TRANSITION


def test_sweep_and_describe(db, people):
    clock = FixedClock(datetime(2024, 1, 1))
    t = mk_tenancy(db, landlord=people["landlord"])
    landlord = actor_for(people["landlord"])
    a = svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="a@t.local", clock=clock)
    clock.set(datetime(2024, 1, 5))
    b = svc.issue_invitation(db, actor=landlord, tenancy_id=t.id, email="b@t.local", clock=clock)

    clock.set(datetime(2024, 1, 9))
    view = svc.describe_invitation(db, token=a.invitation.token, clock=clock)
    assert view.effective_status == InvitationStatus.EXPIRED and not view.can_accept
    assert _status(db, a.invitation.token) == "pending"  # describe does not write

    assert svc.sweep_expired_invitations(db, clock=clock) == 1
    assert _status(db, a.invitation.token) == "expired"
    assert _status(db, b.invitation.token) == "pending"
    assert svc.describe_invitation(db, token=b.invitation.token, clock=clock).can_accept


def test_accept_loses_to_a_concurrent_revoke(db, people, clock, monkeypatch):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)

    real_update = SqlPolicyRepository.update_invitation_status

    def revoke_first(self, invitation_id, *, from_status, to_status, at=None, accepted_by=None):
        # another request revokes between our read and our conditional update
        db.execute(
            TenantInvitation.__table__.update()
            .where(TenantInvitation.id == invitation_id)
            .values(status="revoked")
        )
        return real_update(self, invitation_id, from_status=from_status, to_status=to_status, at=at, accepted_by=accepted_by)

    monkeypatch.setattr(SqlPolicyRepository, "update_invitation_status", revoke_first)
    with pytest.raises(PolicyError) as e:
        svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    assert e.value.kind == ErrorKind.ALREADY_USED


def test_accept_requires_a_signed_in_tenant(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)

    with pytest.raises(PolicyError) as e:
        svc.accept_invitation(db, token=out.invitation.token, actor=None, clock=clock)
    assert e.value.kind == ErrorKind.UNAUTHORIZED

    # the token is still usable by the invitee, who then belongs to the tenancy
    assert _status(db, out.invitation.token) == "pending"
    assert SqlPolicyRepository(db).get_tenancy(t.id).status == TenancyStatus.PENDING

    res = svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    assert res.newly_accepted
    snap = SqlPolicyRepository(db).get_tenancy(t.id)
    assert snap.status == TenancyStatus.ACTIVE
    assert snap.tenant_ids == (people["tenant"].id,)


def test_retry_reattaches_a_missing_membership(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)

    # accepted row with no membership, as left by an accept with no account
    db.execute(
        TenantInvitation.__table__.update()
        .where(TenantInvitation.id == out.invitation.id)
        .values(status="accepted", accepted_at=clock.now())
    )
    db.commit()
    assert SqlPolicyRepository(db).get_tenancy(t.id).tenant_ids == ()

    res = svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    assert res.newly_accepted is False
    assert SqlPolicyRepository(db).get_tenancy(t.id).tenant_ids == (people["tenant"].id,)

    actions = db.scalars(select(AuditEvent.action).where(AuditEvent.entity_type == "Tenancy")).all()
    assert "tenancy.join" in actions

    # and a second retry changes nothing
    svc.accept_invitation(db, token=out.invitation.token, actor=actor_for(people["tenant"]), clock=clock)
    assert SqlPolicyRepository(db).get_tenancy(t.id).tenant_ids == (people["tenant"].id,)


def test_revoke_hides_whether_an_invitation_exists(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    out = svc.issue_invitation(db, actor=actor_for(people["landlord"]), tenancy_id=t.id, email="tenant@t.local", clock=clock)
    outsider = actor_for(people["other_landlord"])

    with pytest.raises(PolicyError) as foreign:
        svc.revoke_invitation(db, actor=outsider, invitation_id=out.invitation.id, clock=clock)
    with pytest.raises(PolicyError) as missing:
        svc.revoke_invitation(db, actor=outsider, invitation_id=99999, clock=clock)

    assert foreign.value.kind == missing.value.kind == ErrorKind.FORBIDDEN
    assert foreign.value.reason == missing.value.reason
