import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Actor, require_roles
from ..models.models import ROLE_ADMIN
from ..schemas.sites import (
    ProjectorCreate,
    ProjectorResponse,
    SiteContactUpdate,
    SiteCreate,
    SiteResponse,
    SitesResponse,
)
from ..schemas.stats import SiteStatistics
from ..services import aggregator, catalog
from ..services.clock import get_clock

router = APIRouter(prefix="/admin", tags=["sites"])


# ---------- SITES ----------
@router.get("/sites", response_model=SitesResponse)
def list_sites(
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    """Sites with projectors, live maintenance status and completed-service totals"""
    return aggregator.sites_overview(db, clock.now())


@router.post("/sites", response_model=SiteResponse, status_code=201)
def create_site(
    payload: SiteCreate,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
):
    return catalog.create_site(
        db,
        actor,
        site_name=payload.site_name,
        address=payload.address,
        contact_details=payload.contact_details,
        site_code=payload.site_code,
        clock=clock,
    )


@router.patch("/sites/{site_id}/contact", response_model=SiteResponse)
def update_site_contact(
    site_id: uuid.UUID,
    payload: SiteContactUpdate,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
):
    return catalog.update_site_contact(db, actor, site_id, payload.contact_details, clock=clock)


@router.get("/sites/{site_id}/statistics", response_model=SiteStatistics)
def get_site_statistics(
    site_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    return aggregator.site_statistics(db, site_id)


# ---------- PROJECTORS ----------
@router.post("/projectors", response_model=ProjectorResponse, status_code=201)
def create_projector(
    payload: ProjectorCreate,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
):
    return catalog.create_projector(
        db,
        actor,
        site_id=payload.site_id,
        model_no=payload.projector_model,
        serial_no=payload.serial_no,
        screen_number=payload.screen_number,
        clock=clock,
    )
