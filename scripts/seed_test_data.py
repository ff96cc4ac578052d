"""
Seed the local database with an admin, field workers, sites and projectors.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for workers, address for sites, serial for projectors).
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from projectorhub.config import settings
from projectorhub.db import SessionLocal, Base, engine
from projectorhub.models.models import (
    ROLE_ADMIN,
    ROLE_FIELD_WORKER,
    Projector,
    Site,
    Worker,
)
from projectorhub.services.reconciler import sweep


def ensure_worker(session, name: str, email: str, role: str) -> Worker:
    worker = session.query(Worker).filter(Worker.email == email).first()
    if worker:
        worker.name = name
        worker.role = role
        session.flush()
        return worker
    worker = Worker(name=name, email=email, role=role, is_active=True)
    session.add(worker)
    session.flush()
    return worker


def ensure_site(session, site_name: str, address: str, contact_details: str, site_code: str) -> Site:
    site = session.query(Site).filter(Site.address == address).first()
    if site:
        return site
    site = Site(site_name=site_name, address=address, contact_details=contact_details, site_code=site_code)
    session.add(site)
    session.flush()
    return site


def ensure_projector(session, site: Site, model_no: str, serial_no: str, screen_number: str) -> Projector:
    projector = session.query(Projector).filter(Projector.serial_no == serial_no).first()
    if projector:
        return projector
    projector = Projector(site_id=site.id, model_no=model_no, serial_no=serial_no, screen_number=screen_number)
    session.add(projector)
    session.flush()
    return projector


def main():
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        ensure_worker(session, "Admin", "admin@example.com", ROLE_ADMIN)
        ensure_worker(session, "Ravi Kumar", "ravi@example.com", ROLE_FIELD_WORKER)
        ensure_worker(session, "Anita Shah", "anita@example.com", ROLE_FIELD_WORKER)

        sites = [
            ("Regal Cinema", "12 MG Road, Bengaluru", "Manager: 080-1234-5678", "BLR-01"),
            ("Star Multiplex", "44 Park Street, Kolkata", "Ops desk: 033-8765-4321", "CCU-02"),
        ]
        for idx, (name, address, contact, code) in enumerate(sites, start=1):
            site = ensure_site(session, name, address, contact, code)
            for screen in range(1, 3):
                ensure_projector(session, site, "Christie CP2220", f"CP-{idx:02d}-{screen:03d}", f"Screen {screen}")
        session.commit()
        print("Seed complete")
    finally:
        session.close()
    sweep(SessionLocal)


if __name__ == "__main__":
    main()
