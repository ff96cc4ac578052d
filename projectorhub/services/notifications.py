"""
Notification context for newly scheduled visits.
Delivery belongs to the external mailer; this only assembles what it needs.
"""
import uuid

from sqlalchemy.orm import Session

from ..errors import NotFoundError, store_errors
from ..models.models import ServiceRecord
from ..schemas.services import NotificationContext
from .clock import as_utc
from .status import service_number_label


def notification_context(db: Session, visit_id: uuid.UUID) -> NotificationContext:
    with store_errors("notification_context"):
        record = db.get(ServiceRecord, visit_id)
        if record is None:
            raise NotFoundError("Service record not found.")
        worker = record.assigned_to
        projector = record.projector
        # Site fields come from the copy taken at scheduling time
        return NotificationContext(
            service_record_id=record.id,
            service_label=service_number_label(record.service_number),
            scheduled_date=as_utc(record.date),
            worker_name=worker.display_name if worker else None,
            worker_email=worker.email if worker else None,
            site_name=record.cinema_name,
            site_address=record.address,
            contact_details=record.contact_details,
            projector_model=projector.model_no if projector else None,
            projector_serial=projector.serial_no if projector else None,
            screen_number=record.screen_number,
        )
