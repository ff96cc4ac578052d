import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, sessionmaker

from ..db import get_db
from ..auth.security import require_roles
from ..models.models import ROLE_ADMIN
from ..schemas.stats import (
    EngineerActivityResponse,
    OverviewResponse,
    WorkersResponse,
    WorkHistoryResponse,
)
from ..services import aggregator
from ..services.clock import get_clock
from ..services.reconciler import sweep

router = APIRouter(prefix="/admin", tags=["dashboard"])


# ---------- OVERVIEW ----------
@router.get("/overview", response_model=OverviewResponse)
def get_overview(
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    return aggregator.overview(db, clock.now())


@router.get("/engineer-stats", response_model=EngineerActivityResponse)
def get_engineer_stats(
    filter: str = Query("today"),
    date: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    """Engineer activity for today, 7days, month or a custom date (YYYY-MM-DD)"""
    return aggregator.engineer_activity(db, filter, clock.now(), custom_day=date)


# ---------- FIELD WORKERS ----------
@router.get("/field-workers", response_model=WorkersResponse)
def list_field_workers(
    db: Session = Depends(get_db),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    return aggregator.list_field_workers(db)


@router.get("/field-workers/{worker_id}/work-history", response_model=WorkHistoryResponse)
def get_work_history(
    worker_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    return aggregator.work_history(db, worker_id)


# ---------- RECONCILIATION ----------
@router.post("/reconcile")
def reconcile_now(
    dry_run: bool = Query(False),
    resume_after: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    """Run one projector status sweep on demand"""
    session_factory = sessionmaker(bind=db.get_bind(), autoflush=False, autocommit=False, future=True)
    result = sweep(session_factory, clock, resume_after=resume_after, dry_run=dry_run)
    return result.to_dict()
