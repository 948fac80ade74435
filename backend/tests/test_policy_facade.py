# backend/tests/test_policy_facade.py
from __future__ import annotations

from datetime import datetime, timedelta

from letlog.domain.clock import FixedClock
from letlog.domain.errors import ErrorKind
from letlog.domain.review_eligibility import LinkType
from letlog.domain.roles import Role
from letlog.domain.tenancy_lifecycle import TenancyStatus
from letlog.services.policy import Action, Actor, PolicyContext, PolicyEngine, engine_for
from letlog.services.repository import SqlPolicyRepository

from conftest import T0, actor_for, mk_job, mk_tenancy


def test_access_route_decision(db, clock):
    engine = engine_for(db, clock=clock)
    landlord = Actor(user_id=1, role=Role.LANDLORD)
    assert engine.decide(Action.ACCESS_ROUTE, landlord, PolicyContext(path="/properties")).allowed

    d = engine.decide(Action.ACCESS_ROUTE, None, PolicyContext(path="/properties"))
    assert not d.allowed
    assert d.kind == ErrorKind.UNAUTHORIZED
    assert d.reason.startswith("access route:")

    assert engine.decide(Action.ACCESS_ROUTE, None, PolicyContext(path="/invite/abc")).allowed


def test_denial_keeps_the_sub_engine_kind(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"], status="active")
    engine = engine_for(db, clock=clock)

    d = engine.decide(Action.END_TENANCY, actor_for(people["other_landlord"]), PolicyContext(tenancy_id=t.id))
    assert not d.allowed
    assert d.kind == ErrorKind.FORBIDDEN
    assert d.reason.startswith("end tenancy:")
    assert d.evaluated_at == T0

    d = engine.decide(Action.END_TENANCY, actor_for(people["tenant"]), PolicyContext(tenancy_id=t.id))
    assert d.kind == ErrorKind.UNAUTHORIZED


def test_missing_and_foreign_tenancies_get_the_same_denial(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"], status="active")
    engine = engine_for(db, clock=clock)
    outsider = actor_for(people["other_landlord"])

    for action in (Action.END_TENANCY, Action.TERMINATE_TENANCY, Action.ACTIVATE_TENANCY):
        foreign = engine.decide(action, outsider, PolicyContext(tenancy_id=t.id))
        missing = engine.decide(action, outsider, PolicyContext(tenancy_id=99999))
        assert foreign.kind == missing.kind == ErrorKind.FORBIDDEN
        assert foreign.reason == missing.reason

    foreign = engine.decide(Action.ISSUE_INVITATION, outsider, PolicyContext(tenancy_id=t.id, email="x@t.local"))
    missing = engine.decide(Action.ISSUE_INVITATION, outsider, PolicyContext(tenancy_id=99999, email="x@t.local"))
    assert (foreign.kind, foreign.reason) == (missing.kind, missing.reason)


def test_accept_decision_needs_a_tenant_account(db, people, clock):
    engine = engine_for(db, clock=clock)
    d = engine.decide(Action.ACCEPT_INVITATION, None, PolicyContext(token="whatever"))
    assert d.kind == ErrorKind.UNAUTHORIZED

    d = engine.decide(Action.ACCEPT_INVITATION, actor_for(people["tenant"]), PolicyContext(token="whatever"))
    assert d.kind == ErrorKind.NOT_FOUND
    assert d.resource == "invitation"


def test_decide_never_writes(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"], status="active")
    d = engine_for(db, clock=clock).decide(
        Action.END_TENANCY, actor_for(people["landlord"]), PolicyContext(tenancy_id=t.id)
    )
    assert d.allowed
    assert d.subject.change.status == TenancyStatus.ENDED

    db.expire_all()
    assert SqlPolicyRepository(db).get_tenancy(t.id).status == TenancyStatus.ACTIVE


def test_issue_decision_checks_role_then_ownership(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"])
    engine = engine_for(db, clock=clock)

    ctx = PolicyContext(tenancy_id=t.id, email="new@t.local")
    assert engine.decide(Action.ISSUE_INVITATION, actor_for(people["landlord"]), ctx).allowed
    assert engine.decide(Action.ISSUE_INVITATION, actor_for(people["tenant"]), ctx).kind == ErrorKind.UNAUTHORIZED
    assert engine.decide(Action.ISSUE_INVITATION, actor_for(people["other_landlord"]), ctx).kind == ErrorKind.FORBIDDEN


def test_one_now_per_decision(db, people):
    t = mk_tenancy(db, landlord=people["landlord"], status="ended", ended_at=T0, tenants=(people["tenant"],))

    class TickingClock:
        def __init__(self):
            self.calls = 0

        def now(self):
            self.calls += 1
            return T0 + timedelta(days=59, hours=23, minutes=59, seconds=59)

    c = TickingClock()
    engine = PolicyEngine(SqlPolicyRepository(db), clock=c)
    d = engine.decide(
        Action.WRITE_REVIEW,
        actor_for(people["tenant"]),
        PolicyContext(link_type=LinkType.TENANCY, link_id=t.id),
    )
    assert d.allowed
    assert c.calls == 1


def test_write_review_denials_carry_eligibility_kind(db, people, clock):
    t = mk_tenancy(db, landlord=people["landlord"], status="active", tenants=(people["tenant"],))
    engine = engine_for(db, clock=clock)
    d = engine.decide(
        Action.WRITE_REVIEW,
        actor_for(people["tenant"]),
        PolicyContext(link_type=LinkType.TENANCY, link_id=t.id),
    )
    assert d.kind == ErrorKind.INVALID_TRANSITION
    assert "once the tenancy has ended" in d.reason


def test_eligible_reviews_lists_every_candidate(db, people):
    landlord, tenant, builder = people["landlord"], people["tenant"], people["contractor"]
    ended = mk_tenancy(db, landlord=landlord, status="ended", ended_at=datetime(2024, 1, 1), tenants=(tenant,))
    mk_tenancy(db, landlord=landlord, status="active", tenants=(tenant,))
    job = mk_job(db, landlord=landlord, contractor=builder)

    engine = engine_for(db, clock=FixedClock(datetime(2024, 2, 1)))
    tenant_view = engine.eligible_reviews(actor_for(tenant))
    assert [(e.link.id, e.eligible) for e in tenant_view] == [(ended.id, True)]

    landlord_view = engine.eligible_reviews(actor_for(landlord))
    assert [(e.link.type, e.link.id, e.reviewee_id) for e in landlord_view] == [(LinkType.TENDER, job.id, builder.id)]

    builder_view = engine.eligible_reviews(actor_for(builder))
    assert builder_view[0].eligible and builder_view[0].reviewee_id == landlord.id
