import uuid
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# Enums
class VisitStatus(str, Enum):
    pending = "pending"
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"


class EquipmentStatus(str, Enum):
    pending = "pending"
    scheduled = "scheduled"
    completed = "completed"


class ActivityBucket(str, Enum):
    completed = "completed"
    pending = "pending"
    in_progress = "in_progress"


# Scheduling
class ScheduleServiceRequest(BaseModel):
    site_id: uuid.UUID = Field(alias="siteId")
    projector_id: uuid.UUID = Field(alias="projectorId")
    field_worker_id: uuid.UUID = Field(alias="fieldWorkerId")
    scheduled_date: str = Field(alias="scheduledDate")
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey", max_length=128)

    model_config = {"populate_by_name": True}


class UnassignServiceRequest(BaseModel):
    service_record_id: uuid.UUID = Field(alias="serviceRecordId")

    model_config = {"populate_by_name": True}


class CompleteServiceRequest(BaseModel):
    remarks: Optional[str] = None
    projector_running_hours: Optional[int] = Field(default=None, alias="projectorRunningHours")
    end_time: Optional[str] = Field(default=None, alias="endTime")

    model_config = {"populate_by_name": True}

    @field_validator("projector_running_hours")
    @classmethod
    def _non_negative_hours(cls, v):
        if v is not None and v < 0:
            raise ValueError("projectorRunningHours must be >= 0")
        return v


class ServiceRecordResponse(BaseModel):
    id: uuid.UUID
    service_number: int
    service_label: str
    projector_id: uuid.UUID
    site_id: uuid.UUID
    assigner_id: uuid.UUID
    assigned_to_id: Optional[uuid.UUID] = None
    date: datetime
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    report_generated: bool = False
    remarks: Optional[str] = None
    projector_running_hours: Optional[int] = None
    status: VisitStatus


class ScheduledServiceItem(BaseModel):
    id: uuid.UUID
    service_number: int
    service_label: str
    site_name: str
    site_address: str
    projector_model: Optional[str] = None
    projector_serial: Optional[str] = None
    screen_number: Optional[str] = None
    assigned_to_name: Optional[str] = None
    assigned_to_email: Optional[str] = None
    status: VisitStatus
    scheduled_date: Optional[datetime] = None


class ScheduledServicesResponse(BaseModel):
    services: List[ScheduledServiceItem]


class WorkerServiceItem(BaseModel):
    id: uuid.UUID
    service_number: int
    service_label: str
    site_id: uuid.UUID
    site: str
    address: str
    contact_details: str
    projector_id: uuid.UUID
    projector: str
    projector_model: str
    date: datetime
    status: VisitStatus


class WorkerServicesResponse(BaseModel):
    services: List[WorkerServiceItem]
    count: int


class NotificationContext(BaseModel):
    service_record_id: uuid.UUID
    service_label: str
    scheduled_date: datetime
    worker_name: Optional[str] = None
    worker_email: Optional[str] = None
    site_name: Optional[str] = None
    site_address: Optional[str] = None
    contact_details: Optional[str] = None
    projector_model: Optional[str] = None
    projector_serial: Optional[str] = None
    screen_number: Optional[str] = None
