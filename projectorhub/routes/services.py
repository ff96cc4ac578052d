import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Actor, require_roles
from ..models.models import ROLE_ADMIN, ROLE_FIELD_WORKER, ServiceRecord
from ..schemas.services import (
    CompleteServiceRequest,
    NotificationContext,
    ScheduleServiceRequest,
    ScheduledServicesResponse,
    ServiceRecordResponse,
    UnassignServiceRequest,
    WorkerServicesResponse,
)
from ..services import aggregator, scheduler
from ..services.clock import as_utc, get_clock
from ..services.notifications import notification_context
from ..services.status import service_number_label, visit_status

router = APIRouter(tags=["services"])


def record_response(record: ServiceRecord) -> ServiceRecordResponse:
    return ServiceRecordResponse(
        id=record.id,
        service_number=record.service_number,
        service_label=service_number_label(record.service_number),
        projector_id=record.projector_id,
        site_id=record.site_id,
        assigner_id=record.assigner_id,
        assigned_to_id=record.assigned_to_id,
        date=as_utc(record.date),
        start_time=as_utc(record.start_time),
        end_time=as_utc(record.end_time),
        report_generated=bool(record.report_generated),
        remarks=record.remarks,
        projector_running_hours=record.projector_running_hours,
        status=visit_status(record),
    )


# ---------- ADMIN: SCHEDULING ----------
@router.post("/admin/services/schedule", response_model=ServiceRecordResponse, status_code=201)
def schedule_service(
    payload: ScheduleServiceRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
):
    """Create a service visit for a projector and assign it to a field worker"""
    record = scheduler.schedule_visit(
        db,
        actor,
        payload.site_id,
        payload.projector_id,
        payload.field_worker_id,
        payload.scheduled_date,
        idempotency_key=payload.idempotency_key,
        clock=clock,
    )
    return record_response(record)


@router.post("/admin/services/unassign", response_model=ServiceRecordResponse)
def unassign_service(
    payload: UnassignServiceRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
):
    record = scheduler.unassign_visit(db, actor, payload.service_record_id, clock=clock)
    return record_response(record)


@router.get("/admin/services/scheduled", response_model=ScheduledServicesResponse)
def list_scheduled_services(
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    """Scheduled projectors with their earliest open visit; q searches site, address, model, serial, worker"""
    return aggregator.scheduled_worklist(db, q)


@router.get("/admin/services/{service_id}/notification", response_model=NotificationContext)
def get_notification_context(
    service_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_roles(ROLE_ADMIN)),
):
    return notification_context(db, service_id)


# ---------- FIELD WORKER ----------
@router.get("/user/services", response_model=WorkerServicesResponse)
def my_services(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ROLE_FIELD_WORKER)),
):
    return aggregator.worker_worklist(db, actor)


@router.post("/user/services/{service_id}/start", response_model=ServiceRecordResponse)
def start_service(
    service_id: uuid.UUID,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    actor: Actor = Depends(require_roles(ROLE_FIELD_WORKER)),
):
    return record_response(scheduler.start_visit(db, actor, service_id, clock=clock))


@router.post("/user/services/{service_id}/complete", response_model=ServiceRecordResponse)
def complete_service(
    service_id: uuid.UUID,
    payload: CompleteServiceRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    actor: Actor = Depends(require_roles(ROLE_FIELD_WORKER)),
):
    record = scheduler.complete_visit(
        db,
        actor,
        service_id,
        remarks=payload.remarks,
        projector_running_hours=payload.projector_running_hours,
        end_time=payload.end_time,
        clock=clock,
    )
    return record_response(record)


# ---------- REPORTS ----------
@router.post("/services/{service_id}/report-generated", response_model=ServiceRecordResponse)
def report_generated(
    service_id: uuid.UUID,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    actor: Actor = Depends(require_roles(ROLE_ADMIN, ROLE_FIELD_WORKER)),
):
    """Called by the report generator once the visit report exists"""
    return record_response(scheduler.mark_report_generated(db, actor, service_id, clock=clock))
