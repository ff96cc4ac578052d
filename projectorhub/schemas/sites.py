import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .services import EquipmentStatus


def _required_text(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("must not be blank")
    return v


class SiteCreate(BaseModel):
    site_name: str = Field(alias="siteName", max_length=255)
    address: str = Field(max_length=500)
    contact_details: str = Field(alias="contactDetails")
    site_code: Optional[str] = Field(default=None, alias="siteCode", max_length=50)

    model_config = {"populate_by_name": True}

    @field_validator("site_name", "address", "contact_details")
    @classmethod
    def not_blank(cls, v):
        return _required_text(v)


class SiteContactUpdate(BaseModel):
    contact_details: str = Field(alias="contactDetails")

    model_config = {"populate_by_name": True}

    @field_validator("contact_details")
    @classmethod
    def not_blank(cls, v):
        return _required_text(v)


class SiteResponse(BaseModel):
    id: uuid.UUID
    site_name: str
    address: str
    contact_details: str
    site_code: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProjectorCreate(BaseModel):
    site_id: uuid.UUID = Field(alias="siteId")
    projector_model: str = Field(alias="projectorModel", max_length=255)
    serial_no: str = Field(alias="serialNo", max_length=255)
    screen_number: Optional[str] = Field(default=None, alias="screenNumber", max_length=50)

    model_config = {"populate_by_name": True}

    @field_validator("projector_model", "serial_no")
    @classmethod
    def not_blank(cls, v):
        return _required_text(v)


class ProjectorResponse(BaseModel):
    id: uuid.UUID
    model_no: str
    serial_no: str
    site_id: uuid.UUID
    screen_number: Optional[str] = None
    last_service_at: Optional[datetime] = None
    status: EquipmentStatus
    created_at: datetime

    class Config:
        from_attributes = True


class ProjectorSummary(BaseModel):
    id: uuid.UUID
    name: str
    model: str
    serial_number: str
    screen_number: Optional[str] = None
    last_service_date: Optional[datetime] = None
    next_service_due: Optional[datetime] = None
    status: EquipmentStatus
    completed_services: int


class SiteOverview(BaseModel):
    id: uuid.UUID
    name: str
    address: str
    contact_details: str
    site_code: Optional[str] = None
    total_completed_services: int
    projectors: List[ProjectorSummary]


class SitesResponse(BaseModel):
    sites: List[SiteOverview]
    count: int
