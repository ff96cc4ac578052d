import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


ROLE_ADMIN = "admin"
ROLE_FIELD_WORKER = "field_worker"


class Worker(Base):
    """Accounts provisioned by the identity service; read-only here except for role checks"""
    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default=ROLE_FIELD_WORKER, index=True)  # admin|field_worker
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    assigned_services = relationship(
        "ServiceRecord",
        back_populates="assigned_to",
        foreign_keys="ServiceRecord.assigned_to_id",
    )

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return (self.email or "").split("@")[0] or "Unknown"


class Site(Base):
    """Customer location (cinema) hosting one or more projectors"""
    __tablename__ = "sites"

    id: Mapped[uuid.UUID] = uuid_pk()
    site_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(500), unique=True, nullable=False)
    contact_details: Mapped[str] = mapped_column(Text, nullable=False)
    site_code: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    projectors = relationship("Projector", back_populates="site", order_by="Projector.model_no")


class Projector(Base):
    """Serviced equipment. last_service_at and status are a cache repaired by the reconciler."""
    __tablename__ = "projectors"

    id: Mapped[uuid.UUID] = uuid_pk()
    model_no: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_no: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    site_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    screen_number: Mapped[Optional[str]] = mapped_column(String(50))
    last_service_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)  # pending|scheduled|completed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    site = relationship("Site", back_populates="projectors")
    service_records = relationship(
        "ServiceRecord",
        back_populates="projector",
        order_by="ServiceRecord.service_number",
    )

    @property
    def display_name(self) -> str:
        return f"{self.model_no} ({self.serial_no})"


class ServiceRecord(Base):
    """One scheduled or performed maintenance visit. Append-only per projector."""
    __tablename__ = "service_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    service_number: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based, per projector
    projector_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projectors.id", ondelete="RESTRICT"), nullable=False, index=True)
    site_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    assigner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="RESTRICT"), nullable=False)
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"), index=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)  # scheduled instant
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    report_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    projector_running_hours: Mapped[Optional[int]] = mapped_column(Integer)
    # Point-in-time copy of the site at scheduling
    cinema_name: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    contact_details: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(500))
    screen_number: Mapped[Optional[str]] = mapped_column(String(50))
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    projector = relationship("Projector", back_populates="service_records")
    site = relationship("Site")
    assigner = relationship("Worker", foreign_keys=[assigner_id])
    assigned_to = relationship("Worker", back_populates="assigned_services", foreign_keys=[assigned_to_id])

    __table_args__ = (
        UniqueConstraint("projector_id", "service_number", name="uq_service_record_projector_number"),
        Index("idx_service_record_assignee_date", "assigned_to_id", "date"),
        Index("idx_service_record_projector_date", "projector_id", "date"),
    )
