"""
Read-side statistics.

Every count here is computed from raw service records through services.status at
query time. The cached Projector.status column is only consulted by the
scheduled-services worklist, which is a listing of projectors by that column.
"""
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session, selectinload

from ..auth.security import Actor, ensure_role
from ..config import settings
from ..errors import NotFoundError, store_errors
from ..models.models import ROLE_FIELD_WORKER, Projector, ServiceRecord, Site, Worker
from ..schemas.services import (
    ActivityBucket,
    EquipmentStatus,
    ScheduledServiceItem,
    ScheduledServicesResponse,
    VisitStatus,
    WorkerServiceItem,
    WorkerServicesResponse,
)
from ..schemas.sites import ProjectorSummary, SiteOverview, SitesResponse
from ..schemas.stats import (
    ActivityTotals,
    DateRange,
    EngineerActivity,
    EngineerActivityResponse,
    OverviewResponse,
    OverviewStats,
    PendingProjectorItem,
    ProjectorRef,
    RecentTaskItem,
    SiteRef,
    SiteStatistics,
    WorkerStatistics,
    WorkerSummary,
    WorkersResponse,
    WorkHistoryItem,
    WorkHistoryResponse,
)
from .clock import activity_window, as_utc
from .status import (
    activity_bucket,
    equipment_status,
    is_completed,
    last_served_at,
    maintenance_interval,
    next_service_due,
    service_number_label,
    visit_status,
)


# ---------- PER WORKER ----------
def tally_worker_visits(visits: Iterable[ServiceRecord]) -> WorkerStatistics:
    """
    Partition a worker's visits by derived status.
    completed + pending + in_progress always equals total_services.
    """
    stats = WorkerStatistics()
    sites, projectors = set(), set()
    for visit in visits:
        status = visit_status(visit)
        stats.total_services += 1
        if status is VisitStatus.completed:
            stats.completed += 1
            visit_date = as_utc(visit.date)
            if stats.last_completed_at is None or visit_date > stats.last_completed_at:
                stats.last_completed_at = visit_date
        elif status is VisitStatus.in_progress:
            stats.in_progress += 1
        else:
            stats.pending += 1
        visit_date = as_utc(visit.date)
        if stats.last_active_at is None or visit_date > stats.last_active_at:
            stats.last_active_at = visit_date
        sites.add(visit.site_id)
        projectors.add(visit.projector_id)
    stats.sites_worked = len(sites)
    stats.projectors_worked = len(projectors)
    return stats


def _get_field_worker(db: Session, worker_id: uuid.UUID) -> Worker:
    worker = db.get(Worker, worker_id)
    if worker is None or worker.role != ROLE_FIELD_WORKER:
        raise NotFoundError("Field worker not found")
    return worker


def _worker_summary(worker: Worker, visits: Iterable[ServiceRecord]) -> WorkerSummary:
    return WorkerSummary(
        id=worker.id,
        name=worker.display_name,
        email=worker.email,
        join_date=as_utc(worker.created_at),
        statistics=tally_worker_visits(visits),
    )


def worker_statistics(db: Session, worker_id: uuid.UUID) -> WorkerStatistics:
    with store_errors("worker_statistics"):
        _get_field_worker(db, worker_id)
        visits = db.query(ServiceRecord).filter(ServiceRecord.assigned_to_id == worker_id).all()
        return tally_worker_visits(visits)


def list_field_workers(db: Session) -> WorkersResponse:
    with store_errors("list_field_workers"):
        workers = (
            db.query(Worker)
            .filter(Worker.role == ROLE_FIELD_WORKER)
            .order_by(Worker.created_at.desc())
            .all()
        )
        by_worker: Dict[uuid.UUID, List[ServiceRecord]] = defaultdict(list)
        for visit in db.query(ServiceRecord).filter(ServiceRecord.assigned_to_id.isnot(None)).all():
            by_worker[visit.assigned_to_id].append(visit)
    summaries = [_worker_summary(w, by_worker.get(w.id, [])) for w in workers]
    return WorkersResponse(workers=summaries, count=len(summaries))


def work_history(db: Session, worker_id: uuid.UUID) -> WorkHistoryResponse:
    with store_errors("work_history"):
        worker = _get_field_worker(db, worker_id)
        visits = (
            db.query(ServiceRecord)
            .options(selectinload(ServiceRecord.site), selectinload(ServiceRecord.projector))
            .filter(ServiceRecord.assigned_to_id == worker_id)
            .order_by(ServiceRecord.date.desc())
            .all()
        )
    history = []
    sites: Dict[uuid.UUID, SiteRef] = {}
    for visit in visits:
        site_ref = SiteRef(id=visit.site.id, name=visit.site.site_name, address=visit.site.address)
        sites.setdefault(visit.site_id, site_ref)
        history.append(
            WorkHistoryItem(
                id=visit.id,
                service_number=visit.service_number,
                service_label=service_number_label(visit.service_number),
                status=visit_status(visit),
                date=as_utc(visit.date),
                start_time=as_utc(visit.start_time),
                end_time=as_utc(visit.end_time),
                site=site_ref,
                projector=ProjectorRef(
                    id=visit.projector.id,
                    model=visit.projector.model_no,
                    serial_no=visit.projector.serial_no,
                ),
                projector_running_hours=visit.projector_running_hours,
                remarks=visit.remarks,
                report_generated=bool(visit.report_generated),
            )
        )
    return WorkHistoryResponse(
        worker=_worker_summary(worker, visits),
        work_history=history,
        sites_worked=list(sites.values()),
    )


# ---------- PER SITE ----------
def site_statistics(db: Session, site_id: uuid.UUID) -> SiteStatistics:
    with store_errors("site_statistics"):
        if db.get(Site, site_id) is None:
            raise NotFoundError("Site not found")
        visits = db.query(ServiceRecord).filter(ServiceRecord.site_id == site_id).all()
    return SiteStatistics(site_id=site_id, total_completed_services=sum(1 for v in visits if is_completed(v)))


def _visits_by_projector(db: Session) -> Dict[uuid.UUID, List[ServiceRecord]]:
    grouped: Dict[uuid.UUID, List[ServiceRecord]] = defaultdict(list)
    for visit in db.query(ServiceRecord).all():
        grouped[visit.projector_id].append(visit)
    return grouped


def sites_overview(db: Session, now: datetime, interval: Optional[timedelta] = None) -> SitesResponse:
    """Sites with their projectors' live maintenance status and next due date."""
    if interval is None:
        interval = maintenance_interval()
    with store_errors("sites_overview"):
        sites = (
            db.query(Site)
            .options(selectinload(Site.projectors))
            .order_by(Site.site_name.asc())
            .all()
        )
        visits_by_projector = _visits_by_projector(db)

    overviews = []
    for site in sites:
        summaries = []
        site_completed = 0
        for projector in site.projectors:
            visits = visits_by_projector.get(projector.id, [])
            completed = sum(1 for v in visits if is_completed(v))
            site_completed += completed
            served_at = last_served_at(visits)
            summaries.append(
                ProjectorSummary(
                    id=projector.id,
                    name=projector.display_name,
                    model=projector.model_no,
                    serial_number=projector.serial_no,
                    screen_number=projector.screen_number,
                    last_service_date=served_at,
                    next_service_due=next_service_due(served_at, interval),
                    status=equipment_status(visits, now, interval, served_at=served_at),
                    completed_services=completed,
                )
            )
        overviews.append(
            SiteOverview(
                id=site.id,
                name=site.site_name,
                address=site.address,
                contact_details=site.contact_details,
                site_code=site.site_code,
                total_completed_services=site_completed,
                projectors=summaries,
            )
        )
    return SitesResponse(sites=overviews, count=len(overviews))


# ---------- ENGINEER ACTIVITY ----------
def engineer_activity(
    db: Session,
    filter_type: str,
    now: datetime,
    custom_day: Union[str, date, None] = None,
    stale_after: Optional[timedelta] = None,
) -> EngineerActivityResponse:
    """
    Per-engineer activity for a date window.

    Buckets use activity_bucket(), not visit_status(): an open visit is "pending"
    only once it is more than ``stale_after`` (24h) past its date.
    """
    start, end = activity_window(filter_type, now, custom_day)
    with store_errors("engineer_activity"):
        engineers = db.query(Worker).filter(Worker.role == ROLE_FIELD_WORKER).all()
        visits = (
            db.query(ServiceRecord)
            .filter(
                ServiceRecord.assigned_to_id.isnot(None),
                ServiceRecord.date >= start,
                ServiceRecord.date <= end,
            )
            .all()
        )

    by_worker: Dict[uuid.UUID, List[ServiceRecord]] = defaultdict(list)
    for visit in visits:
        by_worker[visit.assigned_to_id].append(visit)

    rows = []
    for engineer in engineers:
        assigned = by_worker.get(engineer.id, [])
        if not assigned:
            continue
        buckets = {b: 0 for b in ActivityBucket}
        for visit in assigned:
            buckets[activity_bucket(visit, now, stale_after)] += 1
        rows.append(
            EngineerActivity(
                id=engineer.id,
                name=engineer.display_name,
                email=engineer.email,
                completed=buckets[ActivityBucket.completed],
                pending=buckets[ActivityBucket.pending],
                in_progress=buckets[ActivityBucket.in_progress],
                total=len(assigned),
            )
        )
    rows.sort(key=lambda r: r.total, reverse=True)

    return EngineerActivityResponse(
        filter=filter_type,
        date_range=DateRange(start=start, end=end),
        totals=ActivityTotals(
            engineers=len(engineers),
            total_assigned=sum(r.total for r in rows),
            total_completed=sum(r.completed for r in rows),
            total_pending=sum(r.pending for r in rows),
            total_in_progress=sum(r.in_progress for r in rows),
        ),
        engineers=rows,
    )


# ---------- WORKLISTS ----------
def _matches(query: str, *fields: Optional[str]) -> bool:
    haystack = " ".join(f or "" for f in fields).casefold()
    return query in haystack


def scheduled_worklist(db: Session, q: Optional[str] = None) -> ScheduledServicesResponse:
    """Projectors flagged scheduled, each with its earliest open visit, optionally filtered."""
    with store_errors("scheduled_worklist"):
        projectors = (
            db.query(Projector)
            .options(
                selectinload(Projector.site),
                selectinload(Projector.service_records).selectinload(ServiceRecord.assigned_to),
            )
            .filter(Projector.status == EquipmentStatus.scheduled.value)
            .all()
        )

    items = []
    for projector in projectors:
        open_visits = sorted(
            (v for v in projector.service_records if not is_completed(v)),
            key=lambda v: as_utc(v.date),
        )
        if not open_visits:
            continue
        visit = open_visits[0]
        worker = visit.assigned_to
        items.append(
            ScheduledServiceItem(
                id=visit.id,
                service_number=visit.service_number,
                service_label=service_number_label(visit.service_number),
                site_name=projector.site.site_name if projector.site else "",
                site_address=projector.site.address if projector.site else "",
                projector_model=projector.model_no,
                projector_serial=projector.serial_no,
                screen_number=visit.screen_number,
                assigned_to_name=worker.name if worker else None,
                assigned_to_email=worker.email if worker else None,
                status=visit_status(visit),
                scheduled_date=as_utc(visit.date),
            )
        )

    query = (q or "").strip().casefold()
    if query:
        items = [
            item for item in items
            if _matches(query, item.site_name, item.site_address, item.projector_model,
                        item.projector_serial, item.assigned_to_name)
        ]
    items.sort(key=lambda item: item.scheduled_date)
    return ScheduledServicesResponse(services=items)


def worker_worklist(db: Session, actor: Actor) -> WorkerServicesResponse:
    """Open visits assigned to the calling field worker, soonest first."""
    ensure_role(actor, ROLE_FIELD_WORKER)
    with store_errors("worker_worklist"):
        visits = (
            db.query(ServiceRecord)
            .options(selectinload(ServiceRecord.site), selectinload(ServiceRecord.projector))
            .filter(ServiceRecord.assigned_to_id == actor.id)
            .order_by(ServiceRecord.date.asc())
            .all()
        )
    items = [
        WorkerServiceItem(
            id=v.id,
            service_number=v.service_number,
            service_label=service_number_label(v.service_number),
            site_id=v.site.id,
            site=v.site.site_name,
            address=v.site.address,
            contact_details=v.site.contact_details,
            projector_id=v.projector.id,
            projector=v.projector.serial_no,
            projector_model=v.projector.model_no,
            date=as_utc(v.date),
            status=visit_status(v),
        )
        for v in visits
        if not is_completed(v)
    ]
    return WorkerServicesResponse(services=items, count=len(items))


# ---------- OVERVIEW ----------
def overview(db: Session, now: datetime, interval: Optional[timedelta] = None) -> OverviewResponse:
    if interval is None:
        interval = maintenance_interval()
    active_since = now - timedelta(days=settings.active_worker_days)
    with store_errors("overview"):
        total_sites = db.query(Site).count()
        projectors = db.query(Projector).options(selectinload(Projector.site)).all()
        workers = db.query(Worker).filter(Worker.role == ROLE_FIELD_WORKER).all()
        visits = (
            db.query(ServiceRecord)
            .options(
                selectinload(ServiceRecord.projector).selectinload(Projector.site),
                selectinload(ServiceRecord.assigned_to),
            )
            .all()
        )

    by_projector: Dict[uuid.UUID, List[ServiceRecord]] = defaultdict(list)
    latest_by_worker: Dict[uuid.UUID, datetime] = {}
    for visit in visits:
        by_projector[visit.projector_id].append(visit)
        if visit.assigned_to_id is not None:
            visit_date = as_utc(visit.date)
            current = latest_by_worker.get(visit.assigned_to_id)
            if current is None or visit_date > current:
                latest_by_worker[visit.assigned_to_id] = visit_date

    counts = {s: 0 for s in EquipmentStatus}
    pending = []
    for projector in projectors:
        history = by_projector.get(projector.id, [])
        served_at = last_served_at(history)
        status = equipment_status(history, now, interval, served_at=served_at)
        counts[status] += 1
        if status is EquipmentStatus.pending:
            pending.append(
                PendingProjectorItem(
                    id=projector.id,
                    name=projector.display_name,
                    site_id=projector.site_id,
                    site_name=projector.site.site_name if projector.site else "",
                    last_service_at=served_at,
                )
            )
    # Never serviced first, then longest since service
    pending.sort(key=lambda p: (p.last_service_at is not None, p.last_service_at or now))

    open_visits = sorted(
        (v for v in visits if not is_completed(v)),
        key=lambda v: as_utc(v.date),
        reverse=True,
    )[:4]
    recent = [
        RecentTaskItem(
            id=v.id,
            projector_id=v.projector_id,
            site_id=v.site_id,
            field_worker_id=v.assigned_to_id,
            scheduled_date=as_utc(v.date),
            status=visit_status(v),
            projector_name=v.projector.display_name,
            worker_name=v.assigned_to.display_name if v.assigned_to else "Unassigned",
            site_name=v.projector.site.site_name if v.projector.site else "",
        )
        for v in open_visits
    ]

    active = sum(1 for w in workers if latest_by_worker.get(w.id) and latest_by_worker[w.id] >= active_since)
    return OverviewResponse(
        stats=OverviewStats(
            total_sites=total_sites,
            total_projectors=len(projectors),
            field_workers=len(workers),
            pending_projectors=counts[EquipmentStatus.pending],
            completed_projectors=counts[EquipmentStatus.completed],
            scheduled_projectors=counts[EquipmentStatus.scheduled],
            active_workers=active,
        ),
        pending_projectors=pending[:5],
        recent_tasks=recent,
    )
