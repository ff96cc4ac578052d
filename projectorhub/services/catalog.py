import uuid
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..auth.security import Actor, ensure_role
from ..db import transaction
from ..errors import ConflictError, NotFoundError, store_errors
from ..models.models import ROLE_ADMIN, Projector, Site
from ..schemas.services import EquipmentStatus
from .clock import system_clock

logger = structlog.get_logger(__name__)


def create_site(
    db: Session,
    actor: Actor,
    *,
    site_name: str,
    address: str,
    contact_details: str,
    site_code: Optional[str] = None,
    clock=system_clock,
) -> Site:
    ensure_role(actor, ROLE_ADMIN)
    with store_errors("create_site"), transaction(db):
        if db.query(Site.id).filter(Site.address == address).first():
            raise ConflictError("A site with this address already exists.", field="address")
        site = Site(
            site_name=site_name,
            address=address,
            contact_details=contact_details,
            site_code=site_code or None,
            created_at=clock.now(),
        )
        db.add(site)
        db.flush()
    logger.info("site_created", site_id=str(site.id), site_name=site.site_name)
    return site


def update_site_contact(db: Session, actor: Actor, site_id: uuid.UUID, contact_details: str, *, clock=system_clock) -> Site:
    """Contact details are the only mutable part of a site."""
    ensure_role(actor, ROLE_ADMIN)
    with store_errors("update_site_contact"), transaction(db):
        site = db.get(Site, site_id)
        if site is None:
            raise NotFoundError("Site not found.")
        site.contact_details = contact_details
        site.updated_at = clock.now()
    return site


def create_projector(
    db: Session,
    actor: Actor,
    *,
    site_id: uuid.UUID,
    model_no: str,
    serial_no: str,
    screen_number: Optional[str] = None,
    clock=system_clock,
) -> Projector:
    ensure_role(actor, ROLE_ADMIN)
    with store_errors("create_projector"), transaction(db):
        if db.query(Projector.id).filter(Projector.serial_no == serial_no).first():
            raise ConflictError("Projector with this serial number already exists.", field="serialNo")
        site = db.get(Site, site_id)
        if site is None:
            raise NotFoundError("Site not found.", field="siteId")
        projector = Projector(
            model_no=model_no,
            serial_no=serial_no,
            site_id=site.id,
            screen_number=screen_number or None,
            status=EquipmentStatus.pending.value,
            created_at=clock.now(),
        )
        db.add(projector)
        db.flush()
    logger.info("projector_created", projector_id=str(projector.id), serial_no=serial_no, site_id=str(site_id))
    return projector
