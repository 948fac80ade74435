# backend/letlog/routers/tenancies.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..db import get_db
from ..schemas import TenancyOut, TenancyOverviewOut
from ..services.tenancy_service import activate_tenancy, end_tenancy, tenancy_overview, terminate_tenancy

router = APIRouter(prefix="/tenancies", tags=["tenancies"])


@router.get("/{tenancy_id}", response_model=TenancyOverviewOut)
def get_tenancy(tenancy_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    ov = tenancy_overview(db, actor=p.actor(), tenancy_id=tenancy_id)
    return TenancyOverviewOut(
        **TenancyOut.model_validate(ov.tenancy).model_dump(),
        is_ended=ov.is_ended,
        days_until_end=ov.days_until_end,
        urgency=ov.urgency,
    )


@router.post("/{tenancy_id}/end", response_model=TenancyOut)
def end(tenancy_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return TenancyOut.model_validate(end_tenancy(db, actor=p.actor(), tenancy_id=tenancy_id))


@router.post("/{tenancy_id}/terminate", response_model=TenancyOut)
def terminate(tenancy_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return TenancyOut.model_validate(terminate_tenancy(db, actor=p.actor(), tenancy_id=tenancy_id))


@router.post("/{tenancy_id}/activate", response_model=TenancyOut)
def activate(tenancy_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return TenancyOut.model_validate(activate_tenancy(db, actor=p.actor(), tenancy_id=tenancy_id))
