import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .services import VisitStatus


class WorkerStatistics(BaseModel):
    total_services: int = 0
    completed: int = 0
    pending: int = 0
    in_progress: int = 0
    sites_worked: int = 0
    projectors_worked: int = 0
    last_completed_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None


class WorkerSummary(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    join_date: datetime
    statistics: WorkerStatistics


class WorkersResponse(BaseModel):
    workers: List[WorkerSummary]
    count: int


class SiteRef(BaseModel):
    id: uuid.UUID
    name: str
    address: str


class ProjectorRef(BaseModel):
    id: uuid.UUID
    model: str
    serial_no: str


class WorkHistoryItem(BaseModel):
    id: uuid.UUID
    service_number: int
    service_label: str
    status: VisitStatus
    date: datetime
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    site: SiteRef
    projector: ProjectorRef
    projector_running_hours: Optional[int] = None
    remarks: Optional[str] = None
    report_generated: bool


class WorkHistoryResponse(BaseModel):
    worker: WorkerSummary
    work_history: List[WorkHistoryItem]
    sites_worked: List[SiteRef]


class SiteStatistics(BaseModel):
    site_id: uuid.UUID
    total_completed_services: int


class EngineerActivity(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    completed: int
    pending: int
    in_progress: int
    total: int


class ActivityTotals(BaseModel):
    engineers: int
    total_assigned: int
    total_completed: int
    total_pending: int
    total_in_progress: int


class DateRange(BaseModel):
    start: datetime
    end: datetime


class EngineerActivityResponse(BaseModel):
    filter: str
    date_range: DateRange
    totals: ActivityTotals
    engineers: List[EngineerActivity]


class OverviewStats(BaseModel):
    total_sites: int
    total_projectors: int
    field_workers: int
    pending_projectors: int
    completed_projectors: int
    scheduled_projectors: int
    active_workers: int


class PendingProjectorItem(BaseModel):
    id: uuid.UUID
    name: str
    site_id: uuid.UUID
    site_name: str
    last_service_at: Optional[datetime] = None


class RecentTaskItem(BaseModel):
    id: uuid.UUID
    projector_id: uuid.UUID
    site_id: uuid.UUID
    field_worker_id: Optional[uuid.UUID] = None
    scheduled_date: datetime
    status: VisitStatus
    projector_name: str
    worker_name: str
    site_name: str


class OverviewResponse(BaseModel):
    stats: OverviewStats
    pending_projectors: List[PendingProjectorItem]
    recent_tasks: List[RecentTaskItem]
