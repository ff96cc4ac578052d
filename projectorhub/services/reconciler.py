"""
Projector status reconciliation.

Recomputes each projector's cached ``last_service_at`` and ``status`` from its
service history. A sweep walks projectors in id order, one transaction per
projector; a failing projector is logged and left for the next run.
"""
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import SessionLocal, transaction
from ..errors import EngineError, store_errors
from ..models.models import Projector, ServiceRecord
from .clock import as_utc, system_clock
from .status import equipment_status, last_served_at, maintenance_interval

logger = structlog.get_logger(__name__)


@dataclass
class ProjectorReconciliation:
    projector_id: uuid.UUID
    serial_no: str
    last_service_at: Optional[datetime]
    status: str
    previous_last_service_at: Optional[datetime]
    previous_status: str

    @property
    def changed(self) -> bool:
        return (
            self.last_service_at != self.previous_last_service_at
            or self.status != self.previous_status
        )


@dataclass
class SweepResult:
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: List[uuid.UUID] = field(default_factory=list)
    last_processed_id: Optional[uuid.UUID] = None
    status_counts: Dict[str, int] = field(default_factory=dict)
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": [str(pid) for pid in self.failed],
            "last_processed_id": str(self.last_processed_id) if self.last_processed_id else None,
            "status_counts": dict(self.status_counts),
            "dry_run": self.dry_run,
        }


def refresh_projector(
    db: Session,
    projector: Projector,
    now: datetime,
    interval: Optional[timedelta] = None,
    dry_run: bool = False,
) -> ProjectorReconciliation:
    """
    Bring one projector's cached fields in line with its service history.
    Writes nothing when both fields already match. Caller owns the transaction.
    """
    if interval is None:
        interval = maintenance_interval()
    visits = db.query(ServiceRecord).filter(ServiceRecord.projector_id == projector.id).all()
    served_at = last_served_at(visits)
    target = equipment_status(visits, now, interval, served_at=served_at)

    result = ProjectorReconciliation(
        projector_id=projector.id,
        serial_no=projector.serial_no,
        last_service_at=served_at,
        status=target.value,
        previous_last_service_at=as_utc(projector.last_service_at),
        previous_status=projector.status,
    )
    if result.changed:
        logger.info(
            "projector_status_drift",
            projector_id=str(projector.id),
            serial_no=projector.serial_no,
            old_status=result.previous_status,
            new_status=result.status,
            old_last_service_at=result.previous_last_service_at.isoformat() if result.previous_last_service_at else None,
            new_last_service_at=served_at.isoformat() if served_at else None,
            dry_run=dry_run,
        )
        if not dry_run:
            projector.last_service_at = served_at
            projector.status = target.value
            projector.updated_at = now
            db.flush()
    return result


def _projector_ids(session_factory: Callable[[], Session], resume_after: Optional[uuid.UUID]) -> List[uuid.UUID]:
    db = session_factory()
    try:
        with store_errors("list_projectors"):
            query = db.query(Projector.id).order_by(Projector.id)
            if resume_after is not None:
                query = query.filter(Projector.id > resume_after)
            return [row[0] for row in query.all()]
    finally:
        db.close()


def sweep(
    session_factory: Callable[[], Session] = SessionLocal,
    clock=system_clock,
    interval: Optional[timedelta] = None,
    resume_after: Optional[uuid.UUID] = None,
    dry_run: bool = False,
) -> SweepResult:
    """
    One pass over every projector (or those after ``resume_after``).

    Only listing the projectors can fail the whole sweep; per-projector errors are
    recorded in ``failed`` and logged.
    """
    if interval is None:
        interval = maintenance_interval()
    now = clock.now()
    result = SweepResult(started_at=now, dry_run=dry_run)
    logger.info("reconcile_sweep_started", resume_after=str(resume_after) if resume_after else None, dry_run=dry_run)

    for projector_id in _projector_ids(session_factory, resume_after):
        db = session_factory()
        try:
            with store_errors("reconcile_projector"), transaction(db):
                projector = db.get(Projector, projector_id)
                if projector is None:
                    continue
                item = refresh_projector(db, projector, now, interval, dry_run=dry_run)
        except (EngineError, SQLAlchemyError) as e:
            result.failed.append(projector_id)
            logger.warning(
                "reconcile_item_failed",
                projector_id=str(projector_id),
                error=str(e),
                retryable=getattr(e, "retryable", False),
                exc_info=True,
            )
            continue
        finally:
            db.close()

        result.processed += 1
        result.last_processed_id = projector_id
        result.status_counts[item.status] = result.status_counts.get(item.status, 0) + 1
        if item.changed:
            result.updated += 1
        else:
            result.unchanged += 1

    result.finished_at = clock.now()
    logger.info("reconcile_sweep_finished", **{k: v for k, v in result.to_dict().items() if k != "started_at"})
    return result


class BackgroundSweeper(threading.Thread):
    """Runs sweep() every ``interval_min`` minutes until stop() is called."""

    def __init__(self, interval_min: int, session_factory: Callable[[], Session] = SessionLocal, clock=system_clock):
        super().__init__(name="projector-reconciler", daemon=True)
        self.interval_seconds = interval_min * 60
        self.session_factory = session_factory
        self.clock = clock
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                sweep(self.session_factory, self.clock)
            except EngineError as e:
                logger.warning("reconcile_sweep_failed", error=e.detail, retryable=e.retryable)
            except Exception as e:
                # Keep the schedule; the next tick retries
                logger.error("reconcile_sweep_failed", error=str(e), retryable=False, exc_info=True)

    def stop(self) -> None:
        self._stop_event.set()
