"""Pydantic schemas for equipment, categories and maintenance teams."""

from datetime import date, datetime
from uuid import UUID

from pydantic import Field

from ..models import EquipmentStatus
from .base import GearGuardBaseModel, ProfileRef, TimestampMixin


# =============================================================================
# CATEGORY SCHEMAS
# =============================================================================


class CategoryCreate(GearGuardBaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class CategoryResponse(GearGuardBaseModel):
    id: UUID
    name: str
    created_at: datetime


# =============================================================================
# EQUIPMENT SCHEMAS
# =============================================================================


class EquipmentBase(GearGuardBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    serial_number: str | None = Field(default=None, max_length=255)
    category_id: UUID | None = None
    assigned_team_id: UUID | None = None
    technician_id: UUID | None = None
    location: str | None = Field(default=None, max_length=255)
    purchase_date: date | None = None
    warranty_expiry: date | None = None
    description: str | None = None


class EquipmentCreate(EquipmentBase):
    pass


class EquipmentUpdate(GearGuardBaseModel):
    """Partial update. Scrapping happens only through a Scrap transition."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    serial_number: str | None = Field(default=None, max_length=255)
    category_id: UUID | None = None
    assigned_team_id: UUID | None = None
    technician_id: UUID | None = None
    location: str | None = Field(default=None, max_length=255)
    purchase_date: date | None = None
    warranty_expiry: date | None = None
    description: str | None = None


class EquipmentResponse(TimestampMixin, EquipmentBase):
    id: UUID
    organization_id: UUID
    status: EquipmentStatus


# =============================================================================
# TEAM SCHEMAS
# =============================================================================


class TeamCreate(GearGuardBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    member_ids: list[UUID] = Field(default_factory=list)


class TeamUpdate(GearGuardBaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    member_ids: list[UUID] | None = Field(
        default=None, description="Replaces the member list when given"
    )


class TeamResponse(GearGuardBaseModel):
    id: UUID
    name: str
    created_at: datetime
    members: list[ProfileRef] = []
