"""
Service visit scheduling and visit state transitions.

Service numbers are allocated as count(existing visits for the projector) + 1.
The projector row is locked for the allocation where the store supports it, and the
(projector_id, service_number) unique constraint catches anything that slips past;
on a conflict the whole allocation is retried in a fresh transaction.
"""
import uuid
from datetime import datetime
from typing import Optional, Union

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import Actor, ensure_role
from ..config import settings
from ..db import transaction
from ..errors import (
    ConflictError,
    MismatchError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
    ValidationError,
    store_errors,
)
from ..models.models import ROLE_ADMIN, ROLE_FIELD_WORKER, Projector, ServiceRecord, Site, Worker
from .clock import as_utc, parse_instant, system_clock
from .reconciler import refresh_projector
from .status import VisitStatus, visit_status

logger = structlog.get_logger(__name__)


def _get_visit(db: Session, visit_id: uuid.UUID) -> ServiceRecord:
    record = db.get(ServiceRecord, visit_id)
    if record is None:
        raise NotFoundError("Service record not found.")
    return record


def _find_by_idempotency_key(db: Session, key: str) -> Optional[ServiceRecord]:
    return db.query(ServiceRecord).filter(ServiceRecord.idempotency_key == key).first()


def next_service_number(db: Session, projector_id: uuid.UUID) -> int:
    count = db.query(func.count(ServiceRecord.id)).filter(ServiceRecord.projector_id == projector_id).scalar()
    return (count or 0) + 1


def _create_visit(
    db: Session,
    actor: Actor,
    site_id: uuid.UUID,
    projector_id: uuid.UUID,
    worker_id: uuid.UUID,
    scheduled_date: Union[str, datetime],
    idempotency_key: Optional[str],
    now: datetime,
) -> ServiceRecord:
    if idempotency_key:
        existing = _find_by_idempotency_key(db, idempotency_key)
        if existing is not None:
            if existing.projector_id != projector_id or existing.site_id != site_id:
                raise ConflictError("Idempotency key was already used for a different request.", field="idempotencyKey")
            logger.info("visit_schedule_replayed", service_record_id=str(existing.id), idempotency_key=idempotency_key)
            return existing

    site = db.get(Site, site_id)
    if site is None:
        raise NotFoundError("Site not found.", field="siteId")

    projector = (
        db.query(Projector)
        .filter(Projector.id == projector_id)
        .with_for_update()
        .first()
    )
    if projector is None:
        raise NotFoundError("Projector not found.", field="projectorId")
    if projector.site_id != site.id:
        raise MismatchError("Projector not found for this site.", field="projectorId")

    worker = db.get(Worker, worker_id)
    if worker is None or worker.role != ROLE_FIELD_WORKER or not worker.is_active:
        raise NotFoundError("Field worker not found.", field="fieldWorkerId")

    scheduled_at = parse_instant(scheduled_date, field="scheduledDate")

    admin = db.get(Worker, actor.id)
    if admin is None or admin.role != ROLE_ADMIN or not admin.is_active:
        raise PreconditionFailedError("No admin account on record for the scheduling actor.")

    record = ServiceRecord(
        service_number=next_service_number(db, projector.id),
        projector_id=projector.id,
        site_id=site.id,
        assigner_id=admin.id,
        assigned_to_id=worker.id,
        date=scheduled_at,
        report_generated=False,
        cinema_name=site.site_name,
        address=site.address,
        contact_details=site.contact_details,
        location=site.address,
        screen_number=projector.screen_number,
        idempotency_key=idempotency_key,
        created_at=now,
    )
    db.add(record)
    db.flush()
    refresh_projector(db, projector, now)
    return record


def schedule_visit(
    db: Session,
    actor: Actor,
    site_id: uuid.UUID,
    projector_id: uuid.UUID,
    worker_id: uuid.UUID,
    scheduled_date: Union[str, datetime],
    *,
    idempotency_key: Optional[str] = None,
    clock=system_clock,
) -> ServiceRecord:
    """
    Create a visit for a projector at a site, assigned to a field worker.

    The new visit derives ``scheduled`` immediately and the projector's cached
    status is refreshed in the same transaction.
    """
    ensure_role(actor, ROLE_ADMIN)
    attempts = max(1, settings.schedule_max_retries)
    for attempt in range(1, attempts + 1):
        try:
            with store_errors("schedule_visit"), transaction(db):
                record = _create_visit(
                    db, actor, site_id, projector_id, worker_id, scheduled_date, idempotency_key, clock.now()
                )
        except ConflictError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            if idempotency_key and _find_by_idempotency_key(db, idempotency_key) is not None:
                # A concurrent call with the same key won; the next pass returns its visit
                continue
            if attempt == attempts:
                logger.warning("service_number_conflict_exhausted", projector_id=str(projector_id), attempts=attempts)
                raise ConflictError("Could not allocate a service number; please retry.") from e
            logger.info("service_number_conflict_retry", projector_id=str(projector_id), attempt=attempt)
            continue
        logger.info(
            "visit_scheduled",
            service_record_id=str(record.id),
            projector_id=str(record.projector_id),
            service_number=record.service_number,
            assigned_to_id=str(record.assigned_to_id),
            assigner_id=str(record.assigner_id),
        )
        return record
    raise ConflictError("Could not allocate a service number; please retry.")


def unassign_visit(db: Session, actor: Actor, visit_id: uuid.UUID, *, clock=system_clock) -> ServiceRecord:
    """Clear the assigned worker. An untouched visit goes back to ``pending``."""
    ensure_role(actor, ROLE_ADMIN)
    with store_errors("unassign_visit"), transaction(db):
        record = _get_visit(db, visit_id)
        previous = record.assigned_to_id
        now = clock.now()
        record.assigned_to_id = None
        record.updated_at = now
        db.flush()
        refresh_projector(db, record.projector, now)
    logger.info(
        "visit_unassigned",
        service_record_id=str(record.id),
        previous_worker_id=str(previous) if previous else None,
    )
    return record


def _require_assignee(record: ServiceRecord, actor: Actor) -> None:
    if record.assigned_to_id != actor.id:
        raise UnauthorizedError("Service not assigned to you.")


def start_visit(db: Session, actor: Actor, visit_id: uuid.UUID, *, clock=system_clock) -> ServiceRecord:
    ensure_role(actor, ROLE_FIELD_WORKER)
    with store_errors("start_visit"), transaction(db):
        record = _get_visit(db, visit_id)
        _require_assignee(record, actor)
        status = visit_status(record)
        if status is VisitStatus.completed:
            raise ValidationError("Service is already completed.")
        if status is VisitStatus.in_progress:
            return record
        now = clock.now()
        record.start_time = now
        record.updated_at = now
        db.flush()
        refresh_projector(db, record.projector, now)
    logger.info("visit_started", service_record_id=str(record.id), worker_id=str(actor.id))
    return record


def complete_visit(
    db: Session,
    actor: Actor,
    visit_id: uuid.UUID,
    *,
    remarks: Optional[str] = None,
    projector_running_hours: Optional[int] = None,
    end_time: Union[str, datetime, None] = None,
    clock=system_clock,
) -> ServiceRecord:
    """
    Close out a visit: records end time, remarks and running hours and flags the
    report as generated. Completing an already completed visit changes nothing.
    """
    ensure_role(actor, ROLE_FIELD_WORKER)
    if projector_running_hours is not None and projector_running_hours < 0:
        raise ValidationError("projectorRunningHours must be >= 0", field="projectorRunningHours")
    with store_errors("complete_visit"), transaction(db):
        record = _get_visit(db, visit_id)
        _require_assignee(record, actor)
        if visit_status(record) is VisitStatus.completed:
            logger.info("visit_already_completed", service_record_id=str(record.id))
            return record
        now = clock.now()
        finished_at = parse_instant(end_time, field="endTime") if end_time else now
        started_at = as_utc(record.start_time)
        if started_at is not None and finished_at < started_at:
            raise ValidationError("endTime must not be before startTime", field="endTime")
        record.end_time = finished_at
        record.report_generated = True
        if remarks is not None:
            record.remarks = remarks.strip() or None
        if projector_running_hours is not None:
            record.projector_running_hours = projector_running_hours
        record.updated_at = now
        db.flush()
        refresh_projector(db, record.projector, now)
    logger.info("visit_completed", service_record_id=str(record.id), worker_id=str(actor.id))
    return record


def mark_report_generated(db: Session, actor: Actor, visit_id: uuid.UUID, *, clock=system_clock) -> ServiceRecord:
    """Flag set by the report generator; on its own it marks the visit completed."""
    ensure_role(actor, ROLE_ADMIN, ROLE_FIELD_WORKER)
    with store_errors("mark_report_generated"), transaction(db):
        record = _get_visit(db, visit_id)
        if not actor.is_admin:
            _require_assignee(record, actor)
        if record.report_generated:
            return record
        now = clock.now()
        record.report_generated = True
        record.updated_at = now
        db.flush()
        refresh_projector(db, record.projector, now)
    logger.info("visit_report_generated", service_record_id=str(record.id), actor_id=str(actor.id))
    return record
