# backend/tests/test_invitation_rules.py
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from letlog.domain import invitations as inv
from letlog.domain.errors import ErrorKind, PolicyError
from letlog.domain.invitations import InvitationStatus

NOW = datetime(2024, 1, 1, 10, 0)


def _issue(**kw):
    base = dict(tenancy_id=3, email="  Tenant@Example.COM ", name=" Sam ", inviter_id=1, now=NOW, ttl_days=7)
    base.update(kw)
    return inv.issue(**base)


def test_issue_normalizes_and_sets_expiry():
    i = _issue()
    assert i.email == "tenant@example.com"
    assert i.name == "Sam"
    assert i.status == InvitationStatus.PENDING
    assert i.expires_at == NOW + timedelta(days=7)
    assert len(i.token) >= 43


def test_tokens_are_unique():
    assert len({inv.new_token() for _ in range(50)}) == 50


def test_invalid_email_is_rejected():
    for bad in ["", "   ", "no-at-sign", "@x.com", "x@"]:
        with pytest.raises(ValueError):
            _issue(email=bad)


def test_duplicate_pending_is_rejected_until_it_lapses():
    first = replace(_issue(), id=1)
    with pytest.raises(PolicyError) as e:
        _issue(existing_pending=first, now=NOW + timedelta(days=1))
    assert e.value.kind == ErrorKind.DUPLICATE_PENDING_INVITATION

    # past expiry the old one no longer blocks
    again = _issue(existing_pending=first, now=NOW + timedelta(days=8))
    assert again.token != first.token

    accepted = replace(first, status=InvitationStatus.ACCEPTED)
    assert _issue(existing_pending=accepted).status == InvitationStatus.PENDING


def test_accept_is_idempotent():
    i = replace(_issue(), id=1)
    once = inv.accept(i, NOW + timedelta(hours=1), accepted_by=5)
    twice = inv.accept(once, NOW + timedelta(hours=2), accepted_by=5)
    assert once.status == InvitationStatus.ACCEPTED
    assert twice == once


def test_accept_at_exact_expiry_is_still_valid():
    i = _issue()
    assert inv.accept(i, i.expires_at).status == InvitationStatus.ACCEPTED


def test_accept_failures():
    with pytest.raises(PolicyError) as e:
        inv.check_acceptable(None, NOW)
    assert e.value.kind == ErrorKind.NOT_FOUND

    i = _issue()
    with pytest.raises(PolicyError) as e:
        inv.accept(i, datetime(2024, 1, 10))
    assert e.value.kind == ErrorKind.EXPIRED
    assert "2024-01-08" in e.value.reason

    with pytest.raises(PolicyError) as e:
        inv.accept(replace(i, status=InvitationStatus.REVOKED), NOW)
    assert e.value.kind == ErrorKind.ALREADY_USED

    with pytest.raises(PolicyError) as e:
        inv.accept(replace(i, status=InvitationStatus.EXPIRED), NOW)
    assert e.value.kind == ErrorKind.EXPIRED


def test_expire_returns_only_changed():
    fresh = _issue(now=NOW)
    old = _issue(now=NOW - timedelta(days=10))
    done = replace(_issue(now=NOW - timedelta(days=10)), status=InvitationStatus.ACCEPTED)

    changed = inv.expire([fresh, old, done], NOW)
    assert len(changed) == 1
    assert changed[0].token == old.token
    assert changed[0].status == InvitationStatus.EXPIRED


def test_revoke():
    i = _issue()
    assert inv.revoke(i).status == InvitationStatus.REVOKED
    with pytest.raises(PolicyError) as e:
        inv.revoke(replace(i, status=InvitationStatus.ACCEPTED))
    assert e.value.kind == ErrorKind.INVALID_TRANSITION


def test_link():
    assert inv.invitation_link("https://www.letlog.uk/invite/", "abc") == "https://www.letlog.uk/invite/abc"
