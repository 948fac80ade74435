# backend/letlog/routers/access.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_optional_principal
from ..db import get_db
from ..domain.route_permissions import PUBLIC, default_redirect, visible_routes
from ..schemas import AccessOut, RouteOut
from ..services.policy import Action, PolicyContext, engine_for

router = APIRouter(prefix="/access", tags=["access"])


@router.get("", response_model=AccessOut)
def check_access(
    path: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    p: Optional[Principal] = Depends(get_optional_principal),
):
    """
    Route guard used by the web client before rendering a page.
    Denied callers get the path they should be redirected to.
    """
    actor = p.actor() if p else None
    engine = engine_for(db)
    decision = engine.decide(Action.ACCESS_ROUTE, actor, PolicyContext(path=path))

    allowed = engine.permissions.match(path)
    roles = PUBLIC if allowed is None else sorted(r.value for r in allowed.roles)

    return AccessOut(
        path=path,
        allowed=decision.allowed,
        reason="allowed" if decision.allowed else "Not authorized",
        roles=roles,
        redirect_to=None if decision.allowed else (default_redirect(actor.role) if actor else "/login"),
        visible_routes=[
            RouteOut(path=e.path, label=e.label) for e in visible_routes(actor.role, engine.permissions)
        ]
        if actor
        else [],
    )
