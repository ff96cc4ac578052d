from datetime import datetime, timedelta
from typing import Optional

import pytz
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from projectorhub.auth.security import Actor
from projectorhub.db import Base
from projectorhub.models.models import (
    ROLE_ADMIN,
    ROLE_FIELD_WORKER,
    Projector,
    ServiceRecord,
    Site,
    Worker,
)
from projectorhub.services.clock import FixedClock

NOW = datetime(2026, 3, 15, 10, 0, tzinfo=pytz.UTC)


def make_session_factory():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


class StoreTestMixin:
    """In-memory store, pinned clock and row builders for TestCase classes."""

    def setUp(self):
        self.Session = make_session_factory()
        self.db = self.Session()
        self.clock = FixedClock(NOW)
        self.admin = self.add_worker("Admin", "admin@example.com", ROLE_ADMIN)
        self.admin_actor = Actor(id=self.admin.id, role=ROLE_ADMIN)

    def tearDown(self):
        self.db.close()

    def add_worker(self, name, email, role=ROLE_FIELD_WORKER) -> Worker:
        worker = Worker(name=name, email=email, role=role, created_at=NOW - timedelta(days=400))
        self.db.add(worker)
        self.db.commit()
        return worker

    def actor_for(self, worker: Worker) -> Actor:
        return Actor(id=worker.id, role=worker.role)

    def add_site(self, name="Regal Cinema", address="12 MG Road", contact="080-1234") -> Site:
        site = Site(site_name=name, address=address, contact_details=contact)
        self.db.add(site)
        self.db.commit()
        return site

    def add_projector(self, site: Site, serial="CP-001", model="Christie CP2220", status="pending",
                      last_service_at=None, screen_number=None) -> Projector:
        projector = Projector(
            site_id=site.id,
            model_no=model,
            serial_no=serial,
            status=status,
            last_service_at=last_service_at,
            screen_number=screen_number,
        )
        self.db.add(projector)
        self.db.commit()
        return projector

    def add_visit(
        self,
        projector: Projector,
        number: int,
        date: datetime,
        worker: Optional[Worker] = None,
        start_time=None,
        end_time=None,
        report_generated=False,
    ) -> ServiceRecord:
        record = ServiceRecord(
            service_number=number,
            projector_id=projector.id,
            site_id=projector.site_id,
            assigner_id=self.admin.id,
            assigned_to_id=worker.id if worker else None,
            date=date,
            start_time=start_time,
            end_time=end_time,
            report_generated=report_generated,
            created_at=date,
        )
        self.db.add(record)
        self.db.commit()
        return record
